"""Session engine: the turn pipeline and every timeline operation.

A generation (send, regenerate, continue) is an async generator of events:

    GenerationStarted   first, once the session's generation slot is held;
                        internal, the HTTP layer doesn't forward it
    TextDelta           zero or more, as the model streams
    TurnDone | TurnError
                        exactly one, last

Input problems (unknown ids, empty content) and a busy session surface as
exceptions from the first `__anext__`, before anything is mutated.

Send pipeline: hold the slot → compaction (best effort) → retrieval →
assembly → stream → on `done`: parse → apply parser effects → evaluate rules
on the post-parser snapshot → apply rule effects → count the turn → persist
the user and assistant messages together with the new state → TurnDone.
If the stream errors, is aborted or the consumer goes away, nothing from the
turn is persisted.

Session state is always what replaying the timeline's recorded state changes
from the declared defaults gives; swipe, regenerate, revert and delete
rebuild it that way.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Literal

from world_tavern.llm import LLM, ChatMessage, GenerateRequest, LLMError, Usage
from world_tavern.lorebook import lorebook_budget, retrieve
from world_tavern.models import (
    Attachment,
    AudioEffect,
    CamelModel,
    Checkpoint,
    GameState,
    GenerationOverrides,
    Message,
    Session,
    StateChange,
    Swipe,
    WorldDefinition,
    new_id,
    utcnow,
)
from world_tavern.parser import ParsedResponse, parse_response
from world_tavern.prompts import AssembledPrompt, assemble_prompt, render_greeting
from world_tavern.prompts.templates import CONTINUE_INSTRUCTION
from world_tavern.rules import RuleOutcome, evaluate_rules
from world_tavern.session.compaction import (
    COMPACTION_THRESHOLD,
    KEEP_RECENT_MESSAGES,
    compact_if_needed,
)
from world_tavern.session.guard import GenerationGuard
from world_tavern.session.timeline import (
    SwipeDirection,
    SwipeResult,
    TimelineView,
    add_swipe,
    move_swipe,
    replay_state,
    revert_index,
)
from world_tavern.state import RUNTIME_METADATA_KEYS, GameStateManager
from world_tavern.storage import NotFoundError, Storage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

class GenerationStarted(CamelModel):
    type: Literal["started"] = "started"
    session_id: str
    message_id: str


class TextDelta(CamelModel):
    type: Literal["text"] = "text"
    content: str


class TurnDone(CamelModel):
    type: Literal["done"] = "done"
    message_id: str
    user_message_id: str | None = None
    content: str
    state_changes: list[StateChange]
    state: GameState
    token_count: int | None = None
    generation_time_ms: int
    choices: list[str]
    audio_effects: list[AudioEffect]
    notifications: list[str]
    swipe_index: int | None = None
    total_swipes: int | None = None


class TurnError(CamelModel):
    type: Literal["error"] = "error"
    error: str
    retryable: bool = False
    aborted: bool = False


StreamEvent = GenerationStarted | TextDelta | TurnDone | TurnError


@dataclass
class _Generation:
    text: str = ""
    usage: Usage | None = None
    error: str | None = None
    retryable: bool = False
    aborted: bool = False
    started: float = 0.0

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    @property
    def completion_tokens(self) -> int | None:
        if self.usage is None:
            return None
        return self.usage.completion_tokens or None


@dataclass
class _Resolution:
    parsed: ParsedResponse
    changes: list[StateChange]
    rules: RuleOutcome
    audio_effects: list[AudioEffect]


def _join_continuation(existing: str, addition: str) -> str:
    if not existing or not addition:
        return existing + addition
    if existing[-1].isspace() or addition[0].isspace() or addition[0] in ".,;:!?)'\"":
        return existing + addition
    return f"{existing} {addition}"


def _track_audio(manager: GameStateManager, effects: Sequence[AudioEffect]) -> None:
    active: list[str] = list(manager.get_metadata("activeAudio") or [])
    for effect in effects:
        if effect.action == "play" and effect.track_id not in active:
            active.append(effect.track_id)
        elif effect.action == "stop" and effect.track_id in active:
            active.remove(effect.track_id)
        elif effect.action == "crossfade":
            if effect.track_id in active:
                active.remove(effect.track_id)
            if effect.to_track_id and effect.to_track_id not in active:
                active.append(effect.to_track_id)
    manager.set_metadata("activeAudio", active or None)


class SessionEngine:
    def __init__(
        self,
        storage: Storage,
        llm: LLM,
        *,
        default_model: str = "",
        summary_model: str | None = None,
        compaction_threshold: float = COMPACTION_THRESHOLD,
        keep_recent_messages: int = KEEP_RECENT_MESSAGES,
    ) -> None:
        self._storage = storage
        self._llm = llm
        self._guard = GenerationGuard(storage)
        self._default_model = default_model
        self._summary_model = summary_model
        self._compaction_threshold = compaction_threshold
        self._keep_recent = keep_recent_messages

    @property
    def storage(self) -> Storage:
        return self._storage

    @property
    def guard(self) -> GenerationGuard:
        return self._guard

    def configure(self, llm: LLM, *, default_model: str = "", summary_model: str | None = None) -> None:
        """Swap the model connection (settings changed). Takes effect on the next turn."""
        self._llm = llm
        self._default_model = default_model
        self._summary_model = summary_model

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _world(self, world_id: str) -> WorldDefinition:
        world = self._storage.get_world(world_id)
        if world is None:
            raise NotFoundError(f"World not found: {world_id}")
        return world

    def _assistant_message(self, message_id: str) -> Message:
        message = self._storage.find_message(message_id)
        if message is None or message.role != "assistant":
            raise NotFoundError(f"Assistant message not found: {message_id}")
        return message

    def _locate(self, messages: Sequence[Message], message_id: str) -> int:
        for i, message in enumerate(messages):
            if message.id == message_id:
                return i
        raise NotFoundError(f"Message not found: {message_id}")

    def _rebuild_state(
        self, world: WorldDefinition, current: GameState, messages: Sequence[Message]
    ) -> GameState:
        """Replay the timeline; runtime metadata of `current` carries over."""
        state = replay_state(world, current, messages)
        for key in RUNTIME_METADATA_KEYS:
            if key in current.metadata:
                state.metadata[key] = current.metadata[key]
        return state

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _greeting_messages(self, world: WorldDefinition, session: Session) -> list[Message]:
        greeting = render_greeting(world, session.state)
        if not greeting:
            return []
        return [Message(session_id=session.id, role="assistant", content=greeting)]

    def create_session(self, world_id: str) -> Session:
        world = self._world(world_id)
        session = Session(world_id=world.id, state=GameStateManager(world).snapshot())
        messages = self._greeting_messages(world, session)
        self._storage.save_session(session)
        self._storage.save_messages(session.id, messages)
        logger.info("Created session %s for world %s", session.id, world.id)
        return session

    def get_timeline(self, session_id: str) -> TimelineView:
        session = self._storage.require_session(session_id)
        return TimelineView(messages=self._storage.get_messages(session_id), state=session.state)

    def delete_session(self, session_id: str) -> None:
        self._storage.require_session(session_id)
        self._guard.ensure_idle(session_id)
        self._storage.delete_session(session_id)
        logger.info("Deleted session %s", session_id)

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    def _limits(
        self, world: WorldDefinition, overrides: GenerationOverrides | None
    ) -> tuple[int, int, float]:
        overrides = overrides or GenerationOverrides()
        settings = world.settings
        max_context = overrides.max_context or settings.max_context
        max_tokens = overrides.max_tokens or settings.max_tokens
        temperature = overrides.temperature if overrides.temperature is not None else settings.temperature
        return max_context, max_tokens, temperature

    def build_prompt(
        self,
        world: WorldDefinition,
        state: GameState,
        timeline: Sequence[Message],
        summary: str | None,
        *,
        max_context: int,
        max_tokens: int,
    ) -> AssembledPrompt:
        settings = world.settings
        active = [m for m in timeline if not m.compacted]
        scan_depth = settings.lorebook_scan_depth
        recent = [m.content for m in active[-scan_depth:]] if scan_depth > 0 else []
        retrieval = retrieve(
            world.entries,
            recent,
            state,
            lorebook_budget(settings, max_context),
            settings.lorebook_recursion_depth,
        )
        return assemble_prompt(
            world,
            state,
            active,
            retrieval,
            summary=summary,
            max_context=max_context,
            max_tokens=max_tokens,
        )

    def preview_prompt(self, session_id: str, overrides: GenerationOverrides | None = None) -> AssembledPrompt:
        session = self._storage.require_session(session_id)
        world = self._world(session.world_id)
        max_context, max_tokens, _ = self._limits(world, overrides)
        return self.build_prompt(
            world,
            session.state,
            self._storage.get_messages(session_id),
            session.summary,
            max_context=max_context,
            max_tokens=max_tokens,
        )

    def _request(
        self,
        world: WorldDefinition,
        messages: list[ChatMessage],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> GenerateRequest:
        return GenerateRequest(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            response_format="json_object" if world.settings.structured_output else "text",
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate(
        self, request: GenerateRequest, abort: asyncio.Event, out: _Generation
    ) -> AsyncIterator[TextDelta]:
        """Stream text deltas; the outcome lands in `out`.

        Each chunk is awaited against the abort flag, so an abort ends the
        generation even while the provider is stalled.
        """
        out.started = time.monotonic()
        aborted = asyncio.ensure_future(abort.wait())
        try:
            async with aclosing(self._llm.generate_stream(request)) as stream:
                pending: asyncio.Future | None = None
                try:
                    while not abort.is_set():
                        pending = asyncio.ensure_future(anext(stream))
                        await asyncio.wait({pending, aborted}, return_when=asyncio.FIRST_COMPLETED)
                        if not pending.done():
                            break
                        try:
                            chunk = pending.result()
                        except StopAsyncIteration:
                            break
                        if chunk.type == "text":
                            if chunk.content:
                                out.text += chunk.content
                                yield TextDelta(content=chunk.content)
                        elif chunk.type == "error":
                            out.error = chunk.content or "Generation failed"
                            return
                        else:
                            out.usage = chunk.usage
                            break
                finally:
                    # The stream can't be closed while a read is still running
                    if pending is not None and not pending.done():
                        pending.cancel()
                        await asyncio.wait({pending})
        except LLMError as e:
            logger.warning(f"Generation failed: {e}")
            out.error = str(e)
            out.retryable = True
            return
        finally:
            aborted.cancel()
        if abort.is_set():
            out.error = "Generation aborted"
            out.aborted = True

    def _resolve(self, world: WorldDefinition, manager: GameStateManager, text: str) -> _Resolution:
        """Parse the reply and apply its effects, then the rules pass."""
        track_ids = {t.id for t in world.audio_tracks} or None
        parsed = parse_response(
            text,
            structured=world.settings.structured_output,
            track_ids=track_ids,
            extract_choices_block=world.settings.enable_choices,
        )
        parser_changes = manager.apply_effects(parsed.effects)
        outcome = evaluate_rules(
            world.rules, manager.snapshot(), {c.variable_id for c in parser_changes}
        )
        rule_changes = manager.apply_effects(outcome.effects)
        audio = [*parsed.audio_effects, *outcome.audio_effects]
        _track_audio(manager, audio)
        return _Resolution(
            parsed=parsed,
            changes=[*parser_changes, *rule_changes],
            rules=outcome,
            audio_effects=audio,
        )

    def _error(self, gen: _Generation) -> TurnError:
        return TurnError(error=gen.error or "Generation failed", retryable=gen.retryable, aborted=gen.aborted)

    async def send(
        self,
        session_id: str,
        content: str,
        *,
        model: str | None = None,
        attachments: Sequence[Attachment] = (),
        overrides: GenerationOverrides | None = None,
    ) -> AsyncIterator[StreamEvent]:
        if not content or not content.strip():
            raise ValueError("Message content is required")
        session = self._storage.require_session(session_id)
        world = self._world(session.world_id)

        async with self._guard.checkout(session_id) as abort:
            session = self._storage.require_session(session_id)
            messages = self._storage.get_messages(session_id)
            max_context, max_tokens, temperature = self._limits(world, overrides)
            model = model or self._default_model
            user_message = Message(
                session_id=session_id, role="user", content=content, attachments=list(attachments)
            )
            assistant_id = new_id()
            yield GenerationStarted(session_id=session_id, message_id=assistant_id)

            if world.settings.compaction_enabled:
                result = await compact_if_needed(
                    session,
                    messages,
                    self._llm,
                    max_context=max_context,
                    model=self._summary_model or model,
                    threshold=self._compaction_threshold,
                    keep_recent=self._keep_recent,
                )
                if result.compacted:
                    self._storage.save_messages(session_id, messages)
                    self._storage.save_session(session)

            manager = GameStateManager(world, session.state)
            manager.set_metadata("lastUserMessage", content)
            manager.set_metadata("lastUserMessageAt", user_message.created_at.isoformat())
            manager.set_metadata("lastMessage", content)
            manager.set_metadata("model", model or None)
            timeline = [*messages, user_message]
            prompt = self.build_prompt(
                world, manager.snapshot(), timeline, session.summary,
                max_context=max_context, max_tokens=max_tokens,
            )
            request = self._request(world, prompt.messages, model, max_tokens, temperature)

            gen = _Generation()
            async with aclosing(self._generate(request, abort, gen)) as deltas:
                async for delta in deltas:
                    yield delta
            if gen.error is not None:
                yield self._error(gen)
                return

            resolution = self._resolve(world, manager, gen.text)
            manager.increment_turn()
            display = resolution.parsed.display_text
            manager.set_metadata("lastCharMessage", display)
            manager.set_metadata("lastMessage", display)

            assistant = Message(
                id=assistant_id,
                session_id=session_id,
                role="assistant",
                content=display,
                state_changes=resolution.changes,
                model=model or None,
                token_count=gen.completion_tokens,
                generation_time_ms=gen.elapsed_ms,
            )
            session.state = manager.snapshot()
            session.updated_at = utcnow()
            self._storage.commit_turn(session, [*messages, user_message, assistant])
            logger.debug(
                "Turn %d committed for session %s (%d changes)",
                session.state.turn_count, session_id, len(resolution.changes),
            )

            yield TurnDone(
                message_id=assistant.id,
                user_message_id=user_message.id,
                content=display,
                state_changes=resolution.changes,
                state=session.state,
                token_count=assistant.token_count,
                generation_time_ms=assistant.generation_time_ms,
                choices=resolution.parsed.choices,
                audio_effects=resolution.audio_effects,
                notifications=resolution.rules.notifications,
                swipe_index=0,
                total_swipes=1,
            )

    async def regenerate(
        self,
        message_id: str,
        *,
        model: str | None = None,
        overrides: GenerationOverrides | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Generate a new swipe for an assistant message.

        The prompt is built from the messages before the target; the reply's
        directives and the rules apply to the session's current state.
        """
        target = self._assistant_message(message_id)
        session_id = target.session_id
        session = self._storage.require_session(session_id)
        world = self._world(session.world_id)

        async with self._guard.checkout(session_id) as abort:
            session = self._storage.require_session(session_id)
            messages = self._storage.get_messages(session_id)
            index = self._locate(messages, message_id)
            prior = messages[:index]
            max_context, max_tokens, temperature = self._limits(world, overrides)
            model = model or self._default_model
            yield GenerationStarted(session_id=session_id, message_id=message_id)

            manager = GameStateManager(world, session.state)
            manager.set_metadata("model", model or None)
            prompt = self.build_prompt(
                world, manager.snapshot(), prior, session.summary,
                max_context=max_context, max_tokens=max_tokens,
            )
            request = self._request(world, prompt.messages, model, max_tokens, temperature)

            gen = _Generation()
            async with aclosing(self._generate(request, abort, gen)) as deltas:
                async for delta in deltas:
                    yield delta
            if gen.error is not None:
                yield self._error(gen)
                return

            resolution = self._resolve(world, manager, gen.text)
            display = resolution.parsed.display_text
            target = messages[index]
            swipe_index = add_swipe(
                target,
                Swipe(
                    content=display,
                    state_changes=resolution.changes,
                    model=model or None,
                    token_count=gen.completion_tokens,
                ),
            )
            target.generation_time_ms = gen.elapsed_ms

            session.state = manager.snapshot()
            session.updated_at = utcnow()
            self._storage.commit_turn(session, messages)

            yield TurnDone(
                message_id=target.id,
                content=display,
                state_changes=resolution.changes,
                state=session.state,
                token_count=target.token_count,
                generation_time_ms=target.generation_time_ms,
                choices=resolution.parsed.choices,
                audio_effects=resolution.audio_effects,
                notifications=resolution.rules.notifications,
                swipe_index=swipe_index,
                total_swipes=len(target.swipes),
            )

    async def continue_generation(
        self,
        session_id: str,
        *,
        model: str | None = None,
        overrides: GenerationOverrides | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Extend the last assistant message in place."""
        session = self._storage.require_session(session_id)
        world = self._world(session.world_id)
        messages = self._storage.get_messages(session_id)
        if not messages or messages[-1].role != "assistant":
            raise ValueError("The last message is not an assistant reply")

        async with self._guard.checkout(session_id) as abort:
            session = self._storage.require_session(session_id)
            messages = self._storage.get_messages(session_id)
            if not messages or messages[-1].role != "assistant":
                raise ValueError("The last message is not an assistant reply")
            last = messages[-1]
            max_context, max_tokens, temperature = self._limits(world, overrides)
            model = model or self._default_model
            yield GenerationStarted(session_id=session_id, message_id=last.id)

            manager = GameStateManager(world, session.state)
            prompt = self.build_prompt(
                world, manager.snapshot(), messages, session.summary,
                max_context=max_context, max_tokens=max_tokens,
            )
            prompt.messages.append(ChatMessage(role="system", content=CONTINUE_INSTRUCTION))
            request = self._request(world, prompt.messages, model, max_tokens, temperature)

            gen = _Generation()
            async with aclosing(self._generate(request, abort, gen)) as deltas:
                async for delta in deltas:
                    yield delta
            if gen.error is not None:
                yield self._error(gen)
                return

            resolution = self._resolve(world, manager, gen.text)
            content = _join_continuation(last.content, resolution.parsed.display_text)
            last.content = content
            last.state_changes = [*last.state_changes, *resolution.changes]
            if gen.completion_tokens is not None:
                last.token_count = (last.token_count or 0) + gen.completion_tokens
            last.generation_time_ms = (last.generation_time_ms or 0) + gen.elapsed_ms
            swipe = last.swipes[last.active_swipe_index]
            swipe.content = content
            swipe.state_changes = list(last.state_changes)
            swipe.token_count = last.token_count
            manager.set_metadata("lastCharMessage", content)
            manager.set_metadata("lastMessage", content)

            session.state = manager.snapshot()
            session.updated_at = utcnow()
            self._storage.commit_turn(session, messages)

            yield TurnDone(
                message_id=last.id,
                content=content,
                state_changes=resolution.changes,
                state=session.state,
                token_count=last.token_count,
                generation_time_ms=last.generation_time_ms,
                choices=resolution.parsed.choices,
                audio_effects=resolution.audio_effects,
                notifications=resolution.rules.notifications,
                swipe_index=last.active_swipe_index,
                total_swipes=len(last.swipes),
            )

    def abort(self, session_id: str) -> bool:
        self._storage.require_session(session_id)
        return self._guard.abort(session_id)

    # ------------------------------------------------------------------
    # Timeline
    # ------------------------------------------------------------------

    def swipe(self, message_id: str, direction: SwipeDirection) -> SwipeResult:
        target = self._assistant_message(message_id)
        self._guard.ensure_idle(target.session_id)
        session = self._storage.require_session(target.session_id)
        world = self._world(session.world_id)
        messages = self._storage.get_messages(session.id)
        message = messages[self._locate(messages, message_id)]

        result = move_swipe(message, direction)
        if result.needs_generation:
            return result

        session.state = self._rebuild_state(world, session.state, messages)
        session.updated_at = utcnow()
        self._storage.commit_turn(session, messages)
        return result

    def revert(self, session_id: str, message_id: str | None = None) -> TimelineView:
        """Delete from `message_id` (default: the last user message) onward."""
        session = self._storage.require_session(session_id)
        self._guard.ensure_idle(session_id)
        world = self._world(session.world_id)
        messages = self._storage.get_messages(session_id)
        try:
            index = revert_index(messages, message_id)
        except LookupError as e:
            raise NotFoundError(str(e)) from e

        retained = messages[:index]
        if any(m.compacted for m in messages[index:]):
            session.summary = None
            for message in retained:
                message.compacted = False
        session.state = replay_state(world, session.state, retained)
        session.updated_at = utcnow()
        self._storage.commit_turn(session, retained)
        logger.info("Reverted session %s to %d messages", session_id, len(retained))
        return TimelineView(messages=retained, state=session.state)

    def restart(self, session_id: str) -> TimelineView:
        """Clear the timeline and reset state to the world's defaults."""
        session = self._storage.require_session(session_id)
        self._guard.ensure_idle(session_id)
        world = self._world(session.world_id)
        manager = GameStateManager(world, session.state)
        manager.reset()
        session.state = manager.snapshot()
        session.summary = None
        session.updated_at = utcnow()
        messages = self._greeting_messages(world, session)
        self._storage.commit_turn(session, messages)
        logger.info("Restarted session %s", session_id)
        return TimelineView(messages=messages, state=session.state)

    def edit_message(self, message_id: str, content: str) -> Message:
        found = self._storage.find_message(message_id)
        if found is None:
            raise NotFoundError(f"Message not found: {message_id}")
        self._guard.ensure_idle(found.session_id)
        messages = self._storage.get_messages(found.session_id)
        message = messages[self._locate(messages, message_id)]
        message.content = content
        if message.swipes:
            message.swipes[message.active_swipe_index].content = content
        self._storage.save_messages(found.session_id, messages)
        return message

    def delete_message(self, message_id: str) -> TimelineView:
        found = self._storage.find_message(message_id)
        if found is None:
            raise NotFoundError(f"Message not found: {message_id}")
        session = self._storage.require_session(found.session_id)
        self._guard.ensure_idle(session.id)
        world = self._world(session.world_id)
        messages = [m for m in self._storage.get_messages(session.id) if m.id != message_id]
        session.state = self._rebuild_state(world, session.state, messages)
        session.updated_at = utcnow()
        self._storage.commit_turn(session, messages)
        return TimelineView(messages=messages, state=session.state)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def save_checkpoint(self, session_id: str, name: str = "") -> Checkpoint:
        session = self._storage.require_session(session_id)
        messages = self._storage.get_messages(session_id)
        existing = len(self._storage.list_checkpoints(session_id))
        checkpoint = Checkpoint(
            session_id=session_id,
            name=name.strip() or f"Checkpoint {existing + 1}",
            message_count=len(messages),
            messages=messages,
            state=session.state,
            summary=session.summary,
        )
        return self._storage.save_checkpoint(checkpoint)

    def list_checkpoints(self, session_id: str) -> list[Checkpoint]:
        self._storage.require_session(session_id)
        return self._storage.list_checkpoints(session_id)

    def restore_checkpoint(self, checkpoint_id: str) -> TimelineView:
        """Replace the session's timeline and state with the snapshot."""
        checkpoint = self._storage.get_checkpoint(checkpoint_id)
        if checkpoint is None:
            raise NotFoundError(f"Checkpoint not found: {checkpoint_id}")
        session = self._storage.require_session(checkpoint.session_id)
        self._guard.ensure_idle(session.id)
        messages = [m.model_copy(deep=True) for m in checkpoint.messages]
        session.state = checkpoint.state.model_copy(deep=True)
        session.summary = checkpoint.summary
        session.updated_at = utcnow()
        self._storage.commit_turn(session, messages)
        logger.info("Restored checkpoint %s into session %s", checkpoint_id, session.id)
        return TimelineView(messages=messages, state=session.state)

    def delete_checkpoint(self, checkpoint_id: str) -> None:
        if not self._storage.delete_checkpoint(checkpoint_id):
            raise NotFoundError(f"Checkpoint not found: {checkpoint_id}")
