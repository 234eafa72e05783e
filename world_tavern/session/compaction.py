"""Summarise old history when the context window fills up.

When the estimated size of the non-compacted history plus the running summary
reaches `threshold` of the context window, every non-compacted message except
the newest `keep_recent` is summarised by the auxiliary model, merged with any
previous summary, and flagged `compacted`. Compacted messages stay in the
timeline; they just stop being sent to the model.

Compaction is best effort: a failure is logged and the turn goes on with the
full history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from world_tavern.llm import LLM, ChatMessage, GenerateRequest, LLMError
from world_tavern.models import Message, Session
from world_tavern.prompts.templates import (
    SUMMARIZATION_SYSTEM_PROMPT,
    SUMMARIZATION_TEMPLATE,
    render_prompt,
)
from world_tavern.tokens import estimate_tokens

logger = logging.getLogger(__name__)

COMPACTION_THRESHOLD = 0.8
KEEP_RECENT_MESSAGES = 10
SUMMARY_MAX_TOKENS = 1024


@dataclass
class CompactionResult:
    compacted: bool
    summary: str | None = None
    messages_compacted: int = 0


def needs_compaction(
    messages: list[Message],
    summary: str | None,
    max_context: int,
    threshold: float = COMPACTION_THRESHOLD,
    keep_recent: int = KEEP_RECENT_MESSAGES,
) -> bool:
    active = [m for m in messages if not m.compacted]
    if len(active) <= keep_recent:
        return False
    used = estimate_tokens(summary or "") + sum(estimate_tokens(m.content) for m in active)
    return used >= threshold * max_context


async def summarize(
    llm: LLM,
    messages: list[Message],
    previous: str | None,
    model: str = "",
) -> str:
    transcript = render_prompt(
        SUMMARIZATION_TEMPLATE,
        {
            "previous": previous or "",
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        },
    )
    request = GenerateRequest(
        model=model,
        messages=[
            ChatMessage(role="system", content=SUMMARIZATION_SYSTEM_PROMPT),
            ChatMessage(role="user", content=transcript.strip()),
        ],
        max_tokens=SUMMARY_MAX_TOKENS,
        temperature=0.3,
    )
    parts: list[str] = []
    async for chunk in llm.generate_stream(request):
        if chunk.type == "text":
            parts.append(chunk.content)
        elif chunk.type == "error":
            raise LLMError(chunk.content or "Summarisation failed")
        else:
            break
    summary = "".join(parts).strip()
    if not summary:
        raise LLMError("Summarisation returned no text")
    return summary


async def compact_if_needed(
    session: Session,
    messages: list[Message],
    llm: LLM,
    *,
    max_context: int,
    model: str = "",
    threshold: float = COMPACTION_THRESHOLD,
    keep_recent: int = KEEP_RECENT_MESSAGES,
) -> CompactionResult:
    """Compact in place: flips `compacted` on `messages` and sets `session.summary`."""
    if not needs_compaction(messages, session.summary, max_context, threshold, keep_recent):
        return CompactionResult(compacted=False, summary=session.summary)

    active = [m for m in messages if not m.compacted]
    to_compact = active[:-keep_recent] if keep_recent > 0 else active
    try:
        summary = await summarize(llm, to_compact, session.summary, model)
    except Exception as e:
        logger.warning(f"Compaction failed for session {session.id}: {e}")
        return CompactionResult(compacted=False, summary=session.summary)

    for message in to_compact:
        message.compacted = True
    session.summary = summary
    logger.info("Compacted %d messages in session %s", len(to_compact), session.id)
    return CompactionResult(compacted=True, summary=summary, messages_compacted=len(to_compact))
