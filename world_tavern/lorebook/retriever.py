"""Select the lorebook entries that apply to the current turn.

Two kinds of entries come back:

    always_send  enabled, flagged always-send, and conditions pass. Charged
                 against the budget but never dropped for it.
    triggered    enabled, conditions pass, and a keyword hit in the recent
                 messages (or no keywords at all). Secondary keywords, when
                 present, must satisfy the entry's secondary logic.

Optional recursion scans the content of entries matched in the previous pass
for further keyword hits. Within each group the order is descending priority
with declaration order breaking ties, so the same inputs always produce the
same selection.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from world_tavern.lorebook.keywords import keyword_matches
from world_tavern.models import Entry, GameState, WorldSettings
from world_tavern.rules import matches
from world_tavern.tokens import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetrievalResult:
    always_send: list[Entry] = field(default_factory=list)
    triggered: list[Entry] = field(default_factory=list)

    @property
    def entries(self) -> list[Entry]:
        return [*self.always_send, *self.triggered]


def lorebook_budget(settings: WorldSettings, max_context: int | None = None) -> int:
    """Token budget for lorebook content: a percentage of the context window."""
    context = max_context if max_context is not None else settings.max_context
    budget = int(settings.lorebook_budget_percent * context / 100 + 0.5)
    if settings.lorebook_budget_cap is not None:
        budget = min(budget, settings.lorebook_budget_cap)
    return max(budget, 0)


def _secondary_passes(entry: Entry, text: str) -> bool:
    hits = [
        keyword_matches(text, kw, entry.match_whole_words, entry.use_fuzzy_match)
        for kw in entry.secondary_keywords
    ]
    logic = entry.secondary_keyword_logic
    if logic == "AND_ALL":
        return all(hits)
    if logic == "NOT_ANY":
        return not any(hits)
    if logic == "NOT_ALL":
        return not all(hits)
    return any(hits)


def _triggers(entry: Entry, text: str) -> bool:
    if entry.keywords and not any(
        keyword_matches(text, kw, entry.match_whole_words, entry.use_fuzzy_match)
        for kw in entry.keywords
    ):
        return False
    if entry.secondary_keywords:
        return _secondary_passes(entry, text)
    return True


def _ranked(pairs: Sequence[tuple[int, Entry]]) -> list[Entry]:
    return [e for _, e in sorted(pairs, key=lambda p: (-p[1].priority, p[0]))]


def retrieve(
    entries: Sequence[Entry],
    recent_messages: Sequence[str],
    state: GameState,
    token_budget: int | None = None,
    recursion_depth: int = 0,
) -> RetrievalResult:
    eligible = [
        (i, e)
        for i, e in enumerate(entries)
        if e.enabled
        and e.position != "greeting"
        and matches(e.conditions, e.condition_logic, state.variables)
    ]
    always = [(i, e) for i, e in eligible if e.always_send]
    candidates = [(i, e) for i, e in eligible if not e.always_send]

    matched: dict[int, Entry] = {}
    recent_text = "\n".join(recent_messages)
    newly = [(i, e) for i, e in candidates if _triggers(e, recent_text)]
    matched.update(newly)

    feed = [e for _, e in [*always, *newly] if not e.prevent_recursion]
    for depth in range(recursion_depth):
        if not any(e.content.strip() for e in feed):
            break
        text = "\n".join([recent_text, *(e.content for e in feed)])
        newly = [
            (i, e)
            for i, e in candidates
            if i not in matched and not e.exclude_recursion and _triggers(e, text)
        ]
        if not newly:
            break
        logger.debug("Recursion pass %d matched %d entries", depth + 1, len(newly))
        matched.update(newly)
        feed = [e for _, e in newly if not e.prevent_recursion]

    always_sent = _ranked(always)
    remaining = None
    if token_budget is not None:
        remaining = token_budget - sum(estimate_tokens(e.content) for e in always_sent)

    triggered: list[Entry] = []
    for entry in _ranked(list(matched.items())):
        if remaining is not None:
            cost = estimate_tokens(entry.content)
            if cost > remaining:
                break
            remaining -= cost
        triggered.append(entry)

    return RetrievalResult(always_send=always_sent, triggered=triggered)
