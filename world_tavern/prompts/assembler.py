"""Build the chat-message list sent to the model for one generation.

Layout of the result:

    system      entry slots top → before_char → character → after_char →
                persona → bottom (descending priority within a slot), then
                the game-state block, then the output instructions
    system      running summary, when compaction has produced one
    ...         the non-compacted history, trimmed oldest-first to fit,
                with depth entries spliced in as system messages
    system      post_history entries

Every piece is costed with the token estimate so callers can show a
breakdown (see `TokenBreakdown`).
"""

from __future__ import annotations

import random
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from world_tavern.llm import ChatMessage
from world_tavern.lorebook.retriever import RetrievalResult
from world_tavern.models import Entry, GameState, Message, WorldDefinition
from world_tavern.prompts.macros import MacroContext, expand_macros, macro_context
from world_tavern.prompts.templates import (
    DIRECTIVE_INSTRUCTIONS,
    STATE_TEMPLATE,
    STRUCTURED_INSTRUCTIONS,
    SUMMARY_TEMPLATE,
    render_prompt,
)
from world_tavern.rules import by_priority
from world_tavern.tokens import estimate_tokens
from world_tavern.values import format_value

SLOT_ORDER = ("top", "before_char", "character", "after_char", "persona", "bottom")

_BLANK_RUN_RE = re.compile(r"\n{3,}")


@dataclass
class EntryCost:
    entry_id: str
    name: str
    position: str
    tokens: int


@dataclass
class TokenBreakdown:
    total: int = 0
    categories: dict[str, int] = field(default_factory=dict)
    entries: list[EntryCost] = field(default_factory=list)


@dataclass
class AssembledPrompt:
    messages: list[ChatMessage]
    breakdown: TokenBreakdown
    greeting: str | None = None
    trimmed_messages: int = 0


def _tidy(text: str) -> str:
    return _BLANK_RUN_RE.sub("\n\n", text).strip()


def _variable_rows(world: WorldDefinition) -> list[dict[str, str]]:
    return [
        {
            "id": v.id,
            "type": v.type,
            "hint": v.update_hints or v.description,
        }
        for v in world.variables
    ]


def render_state_block(world: WorldDefinition, state: GameState) -> str:
    if not world.variables:
        return ""
    rows = [
        {"name": v.name or v.id, "value": format_value(state.variables.get(v.id, v.default_value))}
        for v in world.variables
    ]
    return _tidy(render_prompt(STATE_TEMPLATE, {"variables": rows}))


def render_instructions(world: WorldDefinition) -> str:
    context = {
        "variables": _variable_rows(world),
        "tracks": [t.id for t in world.audio_tracks],
        "choices": world.settings.enable_choices,
    }
    if world.settings.structured_output:
        return _tidy(render_prompt(STRUCTURED_INSTRUCTIONS, context))
    if not (context["variables"] or context["tracks"] or context["choices"]):
        return ""
    return _tidy(render_prompt(DIRECTIVE_INSTRUCTIONS, context))


def render_greeting(world: WorldDefinition, state: GameState, ctx: MacroContext | None = None) -> str | None:
    """Opening assistant message for a brand-new session, if the world has one."""
    ctx = ctx or macro_context(world, state)
    greetings = by_priority(
        e for e in world.entries if e.enabled and e.position == "greeting" and e.content.strip()
    )
    if not greetings:
        return None
    return "\n\n".join(expand_macros(e.content, ctx).strip() for e in greetings)


def _history_message(message: Message) -> ChatMessage:
    return ChatMessage(
        role=message.role,
        content=message.content,
        images=[a.url for a in message.attachments if a.type == "image"],
    )


def _splice_depth(history: list[ChatMessage], depth_entries: list[tuple[str, int]]) -> list[ChatMessage]:
    buckets: dict[int, list[ChatMessage]] = {}
    for content, depth in depth_entries:
        index = min(len(history), max(0, len(history) - depth))
        buckets.setdefault(index, []).append(ChatMessage(role="system", content=content))
    spliced: list[ChatMessage] = []
    for i in range(len(history) + 1):
        spliced.extend(buckets.get(i, []))
        if i < len(history):
            spliced.append(history[i])
    return spliced


def assemble_prompt(
    world: WorldDefinition,
    state: GameState,
    history: Sequence[Message],
    retrieval: RetrievalResult,
    *,
    summary: str | None = None,
    max_context: int | None = None,
    max_tokens: int | None = None,
    is_new_session: bool = False,
    rng: random.Random | None = None,
) -> AssembledPrompt:
    ctx = macro_context(world, state, rng)
    breakdown = TokenBreakdown()
    categories = breakdown.categories

    def charge(category: str, text: str, entry: Entry | None = None) -> None:
        tokens = estimate_tokens(text)
        categories[category] = categories.get(category, 0) + tokens
        if entry is not None:
            breakdown.entries.append(EntryCost(entry.id, entry.name, entry.position, tokens))

    # -- system prompt ---------------------------------------------------
    by_slot: dict[str, list[Entry]] = {}
    for entry in retrieval.entries:
        by_slot.setdefault(entry.position, []).append(entry)

    system_parts: list[str] = []
    for slot in SLOT_ORDER:
        for entry in by_priority(by_slot.get(slot, [])):
            text = expand_macros(entry.content, ctx).strip()
            if text:
                system_parts.append(text)
                charge("entries", text, entry)

    state_block = render_state_block(world, state)
    if state_block:
        system_parts.append(state_block)
        charge("state", state_block)

    instructions = render_instructions(world)
    if instructions:
        system_parts.append(instructions)
        charge("instructions", instructions)

    system_prompt = "\n\n".join(system_parts)

    depth_entries: list[tuple[str, int]] = []
    for entry in by_priority(by_slot.get("depth", [])):
        text = expand_macros(entry.content, ctx).strip()
        if text:
            depth_entries.append((text, entry.depth))
            charge("depth", text, entry)

    post_history: list[str] = []
    for entry in by_priority(by_slot.get("post_history", [])):
        text = expand_macros(entry.content, ctx).strip()
        if text:
            post_history.append(text)
            charge("post_history", text, entry)

    summary_block = ""
    if summary:
        summary_block = _tidy(render_prompt(SUMMARY_TEMPLATE, {"summary": summary}))
        charge("summary", summary_block)

    # -- history -----------------------------------------------------------
    chat = [_history_message(m) for m in history if not m.compacted]
    trimmed = 0
    if max_context is not None:
        fixed = sum(categories.values())
        available = max_context - (max_tokens or 0) - fixed
        costs = [estimate_tokens(m.content) for m in chat]
        while len(chat) > 1 and sum(costs) > available:
            chat.pop(0)
            costs.pop(0)
            trimmed += 1
    for m in chat:
        charge("history", m.content)

    messages: list[ChatMessage] = []
    if system_prompt:
        messages.append(ChatMessage(role="system", content=system_prompt))
    if summary_block:
        messages.append(ChatMessage(role="system", content=summary_block))
    messages.extend(_splice_depth(chat, depth_entries))
    messages.extend(ChatMessage(role="system", content=text) for text in post_history)

    breakdown.total = sum(categories.values())
    greeting = render_greeting(world, state, ctx) if is_new_session else None
    return AssembledPrompt(
        messages=messages, breakdown=breakdown, greeting=greeting, trimmed_messages=trimmed
    )
