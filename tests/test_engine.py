"""Tests for the session engine: the turn pipeline and timeline operations."""

import asyncio

import pytest

from conftest import collect
from world_tavern.llm import LLMError, StreamChunk
from world_tavern.models import GenerationOverrides, StateChange
from world_tavern.prompts.templates import CONTINUE_INSTRUCTION, SUMMARIZATION_SYSTEM_PROMPT
from world_tavern.session import (
    GenerationInProgress,
    GenerationStarted,
    SessionEngine,
    TextDelta,
    TurnDone,
    TurnError,
)
from world_tavern.storage import NotFoundError


async def _send(engine, session_id: str, content: str):
    return await collect(engine.send(session_id, content))


def _user_ids(engine, session_id: str) -> list[str]:
    return [m.id for m in engine.storage.get_messages(session_id) if m.role == "user"]


# ── sessions ──────────────────────────────────


def test_create_session_seeds_greeting(engine, world):
    session = engine.create_session(world.id)
    assert session.state.variables == {"hp": 10, "gold": 0, "dead": False}
    messages = engine.storage.get_messages(session.id)
    assert [(m.role, m.content) for m in messages] == [("assistant", "Welcome, Ava. You have 10 health.")]


def test_create_session_unknown_world(engine):
    with pytest.raises(NotFoundError):
        engine.create_session("nowhere")


def test_delete_session(engine, world):
    session = engine.create_session(world.id)
    engine.delete_session(session.id)
    assert engine.storage.get_session(session.id) is None
    with pytest.raises(NotFoundError):
        engine.delete_session(session.id)


# ── send ──────────────────────────────────


async def test_send_happy_path(engine, world, llm):
    llm.replies = ["You find coins. [gold: +5]"]
    session = engine.create_session(world.id)

    events = await _send(engine, session.id, "I search the ruins")

    assert isinstance(events[0], GenerationStarted)
    assert all(isinstance(e, TextDelta) for e in events[1:-1])
    assert "".join(e.content for e in events[1:-1]) == "You find coins. [gold: +5]"
    done = events[-1]
    assert isinstance(done, TurnDone)
    assert done.content == "You find coins."
    assert [(c.variable_id, c.old_value, c.new_value) for c in done.state_changes] == [("gold", 0, 5)]
    assert done.state.turn_count == 1
    assert done.message_id == events[0].message_id
    assert (done.swipe_index, done.total_swipes) == (0, 1)
    assert done.token_count == 5

    messages = engine.storage.get_messages(session.id)
    assert [m.role for m in messages] == ["assistant", "user", "assistant"]
    assert messages[1].id == done.user_message_id
    assert messages[2].id == done.message_id
    assert messages[2].model == "test-model"

    stored = engine.storage.get_session(session.id)
    assert stored.state.variables["gold"] == 5
    assert stored.generation_status == "idle"
    assert stored.state.metadata["lastUserMessage"] == "I search the ruins"
    assert stored.state.metadata["lastCharMessage"] == "You find coins."
    assert stored.state.metadata["model"] == "test-model"


async def test_prompt_contains_entries_and_history(engine, world, llm):
    session = engine.create_session(world.id)
    await _send(engine, session.id, "Tell me about the dragon")

    request = llm.requests[0]
    system = request.messages[0]
    assert system.role == "system"
    assert "You narrate for Ava." in system.content
    assert "The dragon sleeps under the mountain." in system.content
    assert "- Health: 10" in system.content
    assert request.messages[-1].content == "Tell me about the dragon"
    assert request.model == "test-model"
    assert request.response_format == "text"


async def test_overrides_and_model_reach_the_request(engine, world, llm):
    session = engine.create_session(world.id)
    await collect(engine.send(
        session.id, "hi", model="other", overrides=GenerationOverrides(max_tokens=64, temperature=0.1)
    ))
    request = llm.requests[0]
    assert (request.model, request.max_tokens, request.temperature) == ("other", 64, 0.1)


async def test_rules_run_after_parser_effects(engine, world, llm):
    llm.replies = ["[hp: set 0] You fall."]
    session = engine.create_session(world.id)
    done = (await _send(engine, session.id, "I jump"))[-1]
    assert [c.variable_id for c in done.state_changes] == ["hp", "dead"]
    assert done.state.variables["dead"] is True
    assert done.notifications == ["You died."]


async def test_audio_directives_are_tracked(engine, world, llm):
    llm.replies = ["[battle: play] Drums!", "[battle: stop 2] Silence."]
    session = engine.create_session(world.id)
    done = (await _send(engine, session.id, "fight"))[-1]
    assert [(a.track_id, a.action) for a in done.audio_effects] == [("battle", "play")]
    assert done.state.metadata["activeAudio"] == ["battle"]
    done = (await _send(engine, session.id, "rest"))[-1]
    assert "activeAudio" not in done.state.metadata


async def test_choices_when_enabled(engine, world, llm, storage):
    world.settings.enable_choices = True
    storage.save_world(world)
    llm.replies = ["The path forks.\nA) Left\nB) Right"]
    session = engine.create_session(world.id)
    done = (await _send(engine, session.id, "walk"))[-1]
    assert done.choices == ["Left", "Right"]
    assert done.content == "The path forks."
    assert "lettered list" in llm.requests[0].messages[0].content


async def test_structured_output_mode(engine, world, llm, storage):
    world.settings.structured_output = True
    storage.save_world(world)
    llm.replies = ['{"narrative": "Gold!", "stateChanges": [{"variableId": "gold", "operation": "add", "value": 3}]}']
    session = engine.create_session(world.id)
    done = (await _send(engine, session.id, "dig"))[-1]
    assert llm.requests[0].response_format == "json_object"
    assert done.content == "Gold!"
    assert done.state.variables["gold"] == 3


async def test_send_rejects_empty_content(engine, world):
    session = engine.create_session(world.id)
    with pytest.raises(ValueError):
        await anext(engine.send(session.id, "   "))


async def test_send_unknown_session(engine):
    with pytest.raises(NotFoundError):
        await anext(engine.send("missing", "hi"))


async def test_provider_error_persists_nothing(engine, world, llm):
    llm.replies = [[StreamChunk(type="text", content="Hal"), StreamChunk(type="error", content="overloaded")]]
    session = engine.create_session(world.id)

    events = await _send(engine, session.id, "hello")

    error = events[-1]
    assert isinstance(error, TurnError)
    assert error.error == "overloaded"
    assert not error.aborted
    assert len(engine.storage.get_messages(session.id)) == 1
    stored = engine.storage.get_session(session.id)
    assert stored.state.turn_count == 0
    assert stored.generation_status == "idle"


async def test_transport_error_is_retryable(engine, world, llm):
    llm.replies = [LLMError("Cannot connect")]
    session = engine.create_session(world.id)
    error = (await _send(engine, session.id, "hello"))[-1]
    assert isinstance(error, TurnError)
    assert error.retryable
    assert error.error == "Cannot connect"


async def test_abort_discards_the_turn(engine, world, llm):
    llm.replies = ["one two three four"]
    session = engine.create_session(world.id)

    events = engine.send(session.id, "go")
    assert isinstance(await anext(events), GenerationStarted)
    assert isinstance(await anext(events), TextDelta)
    assert engine.abort(session.id)
    rest = await collect(events)

    assert isinstance(rest[-1], TurnError)
    assert rest[-1].aborted
    assert len(engine.storage.get_messages(session.id)) == 1
    assert engine.storage.get_session(session.id).generation_status == "idle"
    assert not engine.abort(session.id)


class StallingLLM:
    """Streams one word, then never answers again."""

    async def generate_stream(self, request):
        yield StreamChunk(type="text", content="Once")
        await asyncio.sleep(3600)
        yield StreamChunk(type="done")


async def test_abort_ends_a_stalled_generation(engine, world):
    engine.configure(StallingLLM(), default_model="test-model")
    session = engine.create_session(world.id)

    events = engine.send(session.id, "go")
    assert isinstance(await anext(events), GenerationStarted)
    assert (await anext(events)).content == "Once"
    assert engine.abort(session.id)
    rest = await asyncio.wait_for(collect(events), timeout=2)

    assert rest[-1].aborted
    assert not engine.guard.is_busy(session.id)
    assert len(engine.storage.get_messages(session.id)) == 1


async def test_consumer_going_away_releases_the_session(engine, world, llm):
    llm.replies = ["one two three"]
    session = engine.create_session(world.id)

    events = engine.send(session.id, "go")
    await anext(events)
    await anext(events)
    await events.aclose()

    assert len(engine.storage.get_messages(session.id)) == 1
    assert not engine.guard.is_busy(session.id)
    done = (await _send(engine, session.id, "again"))[-1]
    assert isinstance(done, TurnDone)


async def test_one_generation_per_session(engine, world, llm):
    llm.replies = ["one two three"]
    session = engine.create_session(world.id)

    events = engine.send(session.id, "go")
    await anext(events)
    assert engine.guard.is_busy(session.id)
    assert engine.storage.get_session(session.id).generation_status == "generating"

    with pytest.raises(GenerationInProgress):
        await anext(engine.send(session.id, "second"))
    with pytest.raises(GenerationInProgress):
        engine.revert(session.id)
    with pytest.raises(GenerationInProgress):
        engine.restart(session.id)

    other = engine.create_session(world.id)
    assert isinstance((await _send(engine, other.id, "parallel"))[-1], TurnDone)

    assert isinstance((await collect(events))[-1], TurnDone)
    assert not engine.guard.is_busy(session.id)


async def test_generating_status_from_another_process_blocks(engine, world):
    session = engine.create_session(world.id)
    engine.storage.compare_and_set_status(session.id, "idle", "generating")
    with pytest.raises(GenerationInProgress):
        await anext(engine.send(session.id, "hi"))


# ── regenerate and swipes ──────────────────────────────────


async def test_regenerate_adds_a_swipe(engine, world, llm):
    llm.replies = ["First. [gold: +5]", "Second. [gold: +2]"]
    session = engine.create_session(world.id)
    first = (await _send(engine, session.id, "search"))[-1]

    events = await collect(engine.regenerate(first.message_id))

    done = events[-1]
    assert isinstance(done, TurnDone)
    assert (done.swipe_index, done.total_swipes) == (1, 2)
    assert done.content == "Second."
    assert done.state.variables["gold"] == 7
    assert done.state_changes == [StateChange(variable_id="gold", old_value=5, new_value=7)]
    assert done.state.turn_count == 1
    assert llm.requests[1].messages[-1].content == "search"

    message = engine.storage.find_message(first.message_id)
    assert message.active_swipe_index == 1
    assert [s.content for s in message.swipes] == ["First.", "Second."]


async def test_swipe_switches_content_and_state(engine, world, llm):
    llm.replies = ["First. [gold: +5]", "Second. [gold: +2]"]
    session = engine.create_session(world.id)
    first = (await _send(engine, session.id, "search"))[-1]
    await collect(engine.regenerate(first.message_id))

    result = engine.swipe(first.message_id, "left")
    assert (result.active_swipe_index, result.total_swipes) == (0, 2)
    assert result.message.content == "First."
    assert engine.storage.get_session(session.id).state.variables["gold"] == 5

    with pytest.raises(ValueError):
        engine.swipe(first.message_id, "left")

    engine.swipe(first.message_id, "right")
    assert engine.storage.get_session(session.id).state.variables["gold"] == 7

    result = engine.swipe(first.message_id, "right")
    assert result.needs_generation
    assert result.active_swipe_index == 1


async def test_regenerate_applies_to_current_state(engine, world, llm):
    llm.replies = ["A. [gold: +5]", "B. [gold: +1]", "C. [gold: +10]"]
    session = engine.create_session(world.id)
    first = (await _send(engine, session.id, "one"))[-1]
    await _send(engine, session.id, "two")

    done = (await collect(engine.regenerate(first.message_id)))[-1]

    assert done.state_changes == [StateChange(variable_id="gold", old_value=6, new_value=16)]
    stored = engine.storage.get_session(session.id)
    assert done.state == stored.state
    assert stored.state.variables["gold"] == 16
    assert stored.state.turn_count == 2
    assert llm.requests[2].messages[-1].content == "one"


async def test_regenerate_requires_an_assistant_message(engine, world):
    session = engine.create_session(world.id)
    await _send(engine, session.id, "hi")
    with pytest.raises(NotFoundError):
        await anext(engine.regenerate(_user_ids(engine, session.id)[0]))


async def test_regenerate_greeting(engine, world, llm):
    llm.replies = ["A new dawn."]
    session = engine.create_session(world.id)
    greeting = engine.storage.get_messages(session.id)[0]
    done = (await collect(engine.regenerate(greeting.id)))[-1]
    assert done.content == "A new dawn."
    assert done.total_swipes == 2


# ── continue ──────────────────────────────────


async def test_continue_extends_last_reply(engine, world, llm):
    llm.replies = ["The door", "creaks open. [gold: +1]"]
    session = engine.create_session(world.id)
    first = (await _send(engine, session.id, "push"))[-1]

    done = (await collect(engine.continue_generation(session.id)))[-1]

    assert done.message_id == first.message_id
    assert done.content == "The door creaks open."
    assert done.state.variables["gold"] == 1
    assert done.state.turn_count == 1
    assert llm.requests[1].messages[-1].content == CONTINUE_INSTRUCTION
    message = engine.storage.find_message(first.message_id)
    assert message.content == "The door creaks open."
    assert message.swipes[0].content == "The door creaks open."
    assert [c.variable_id for c in message.state_changes] == ["gold"]


async def test_continue_needs_an_assistant_reply(engine, world):
    session = engine.create_session(world.id)
    greeting = engine.storage.get_messages(session.id)[0]
    engine.delete_message(greeting.id)
    with pytest.raises(ValueError):
        await anext(engine.continue_generation(session.id))


# ── revert, restart, edit, delete ──────────────────────────────────


async def test_revert_last_exchange(engine, world, llm):
    llm.replies = ["[gold: +5] One.", "[gold: +5] Two."]
    session = engine.create_session(world.id)
    await _send(engine, session.id, "first")
    await _send(engine, session.id, "second")

    view = engine.revert(session.id)

    assert [m.content for m in view.messages][1:] == ["first", "One."]
    assert view.state.variables["gold"] == 5
    assert view.state.turn_count == 1
    assert view.state.metadata["lastUserMessage"] == "first"
    assert engine.storage.get_session(session.id).state == view.state


async def test_revert_to_message(engine, world, llm):
    llm.replies = ["[gold: +5] One."]
    session = engine.create_session(world.id)
    await _send(engine, session.id, "first")

    view = engine.revert(session.id, _user_ids(engine, session.id)[0])

    assert len(view.messages) == 1
    assert view.state.variables == {"hp": 10, "gold": 0, "dead": False}
    assert view.state.turn_count == 0

    with pytest.raises(ValueError):
        engine.revert(session.id)
    with pytest.raises(NotFoundError):
        engine.revert(session.id, "missing")


async def test_restart(engine, world, llm):
    llm.replies = ["[gold: +5] One."]
    session = engine.create_session(world.id)
    await _send(engine, session.id, "first")

    view = engine.restart(session.id)

    assert [m.content for m in view.messages] == ["Welcome, Ava. You have 10 health."]
    assert view.state.variables["gold"] == 0
    assert view.state.turn_count == 0
    assert engine.storage.get_session(session.id).summary is None


async def test_edit_message(engine, world):
    session = engine.create_session(world.id)
    greeting = engine.storage.get_messages(session.id)[0]
    edited = engine.edit_message(greeting.id, "Hello there.")
    assert edited.content == "Hello there."
    stored = engine.storage.find_message(greeting.id)
    assert stored.swipes[0].content == "Hello there."
    with pytest.raises(NotFoundError):
        engine.edit_message("missing", "x")


async def test_delete_message_rebuilds_state(engine, world, llm):
    llm.replies = ["[gold: +5] One."]
    session = engine.create_session(world.id)
    done = (await _send(engine, session.id, "first"))[-1]

    view = engine.delete_message(done.message_id)

    assert [m.role for m in view.messages] == ["assistant", "user"]
    assert view.state.variables["gold"] == 0
    assert view.state.turn_count == 1


# ── checkpoints ──────────────────────────────────


async def test_checkpoint_save_and_restore(engine, world, llm):
    llm.replies = ["[gold: +5] One.", "[gold: +5] Two."]
    session = engine.create_session(world.id)
    await _send(engine, session.id, "first")

    checkpoint = engine.save_checkpoint(session.id)
    assert checkpoint.name == "Checkpoint 1"
    assert checkpoint.message_count == 3
    named = engine.save_checkpoint(session.id, "Before the cave")
    assert named.name == "Before the cave"

    await _send(engine, session.id, "second")
    assert engine.storage.get_session(session.id).state.variables["gold"] == 10

    view = engine.restore_checkpoint(checkpoint.id)
    assert len(view.messages) == 3
    assert view.state.variables["gold"] == 5
    assert len(engine.storage.get_messages(session.id)) == 3
    assert [c.name for c in engine.list_checkpoints(session.id)] == ["Checkpoint 1", "Before the cave"]


async def test_checkpoint_delete(engine, world):
    session = engine.create_session(world.id)
    checkpoint = engine.save_checkpoint(session.id, "c")
    engine.delete_checkpoint(checkpoint.id)
    assert engine.list_checkpoints(session.id) == []
    with pytest.raises(NotFoundError):
        engine.delete_checkpoint(checkpoint.id)
    with pytest.raises(NotFoundError):
        engine.restore_checkpoint(checkpoint.id)


# ── compaction ──────────────────────────────────


@pytest.fixture
def compacting(storage, llm) -> SessionEngine:
    return SessionEngine(
        storage, llm, default_model="test-model", compaction_threshold=0.0001, keep_recent_messages=2
    )


async def test_compaction_summarises_old_messages(compacting, world, llm):
    llm.replies = ["Reply one.", "The story so far.", "Reply two."]
    session = compacting.create_session(world.id)
    await _send(compacting, session.id, "first")
    done = (await _send(compacting, session.id, "second"))[-1]

    assert done.content == "Reply two."
    assert llm.requests[1].messages[0].content == SUMMARIZATION_SYSTEM_PROMPT
    stored = compacting.storage.get_session(session.id)
    assert stored.summary == "The story so far."
    messages = compacting.storage.get_messages(session.id)
    assert [m.compacted for m in messages] == [True, False, False, False, False]

    prompt = [m.content for m in llm.requests[2].messages]
    assert "[Story so far]\nThe story so far." in prompt
    assert "Welcome, Ava. You have 10 health." not in prompt


async def test_reverting_past_compaction_clears_summary(compacting, world, llm):
    llm.replies = ["Reply one.", "The story so far.", "Reply two."]
    session = compacting.create_session(world.id)
    await _send(compacting, session.id, "first")
    await _send(compacting, session.id, "second")

    greeting = compacting.storage.get_messages(session.id)[0]
    compacting.revert(session.id, greeting.id)

    assert compacting.storage.get_session(session.id).summary is None


async def test_compaction_failure_is_not_fatal(compacting, world, llm):
    llm.replies = ["Reply one.", [StreamChunk(type="error", content="nope")], "Reply two."]
    session = compacting.create_session(world.id)
    await _send(compacting, session.id, "first")
    done = (await _send(compacting, session.id, "second"))[-1]

    assert done.content == "Reply two."
    assert compacting.storage.get_session(session.id).summary is None
    assert not any(m.compacted for m in compacting.storage.get_messages(session.id))


# ── prompt preview ──────────────────────────────────


def test_preview_prompt(engine, world):
    session = engine.create_session(world.id)
    prompt = engine.preview_prompt(session.id)
    assert prompt.messages[0].role == "system"
    assert prompt.messages[-1].content == "Welcome, Ava. You have 10 health."
    assert prompt.breakdown.total > 0
