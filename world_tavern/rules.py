"""Condition evaluation and the post-turn rules pass.

Ordering contract for a turn: the parser's effects are applied first, the
rules are evaluated against the resulting snapshot, and the rule effects are
applied after that. Every rule sees the same snapshot; a rule's effects never
influence another rule's conditions within the same pass.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from world_tavern.models import AudioEffect, Condition, Effect, GameState, Rule
from world_tavern.values import Scalar, compare


def condition_holds(condition: Condition, variables: Mapping[str, Scalar]) -> bool:
    if condition.variable_id not in variables:
        return False
    return compare(condition.operator, variables[condition.variable_id], condition.value)


def matches(
    conditions: Sequence[Condition],
    logic: str,
    variables: Mapping[str, Scalar],
) -> bool:
    """`all` is AND, `any` is OR. An empty condition list always passes."""
    if not conditions:
        return True
    if logic == "any":
        return any(condition_holds(c, variables) for c in conditions)
    return all(condition_holds(c, variables) for c in conditions)


def by_priority(items: Iterable) -> list:
    """Sort by descending `.priority`, keeping declaration order on ties."""
    indexed = list(enumerate(items))
    indexed.sort(key=lambda pair: (-pair[1].priority, pair[0]))
    return [item for _, item in indexed]


@dataclass(frozen=True, slots=True)
class RuleOutcome:
    effects: list[Effect] = field(default_factory=list)
    audio_effects: list[AudioEffect] = field(default_factory=list)
    fired: list[str] = field(default_factory=list)
    notifications: list[str] = field(default_factory=list)


def evaluate_rules(
    rules: Sequence[Rule],
    snapshot: GameState,
    changed: set[str] | None = None,
) -> RuleOutcome:
    """Collect the effects of every enabled rule whose conditions hold.

    `changed` is the set of variable ids modified earlier in the turn;
    `on_change` rules only fire when one of their condition variables is in it.
    """
    effects: list[Effect] = []
    audio: list[AudioEffect] = []
    fired: list[str] = []
    notifications: list[str] = []

    for rule in by_priority(r for r in rules if r.enabled):
        if rule.trigger == "on_change":
            watched = {c.variable_id for c in rule.conditions}
            if not changed or not watched & changed:
                continue
        if not matches(rule.conditions, rule.condition_logic, snapshot.variables):
            continue
        effects.extend(rule.effects)
        audio.extend(rule.audio_effects)
        fired.append(rule.id)
        if rule.notify == "toast":
            notifications.append(rule.notification or rule.name)

    return RuleOutcome(
        effects=effects, audio_effects=audio, fired=fired, notifications=notifications
    )
