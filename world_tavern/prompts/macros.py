"""`{{macro}}` expansion for entry content.

Expansion is a single left-to-right pass: text substituted for a macro is
never scanned again, so a variable holding "{{user}}" renders literally.
Unknown macros are left in place.

Supported:

    {{variableId}}          current value (declared default if absent)
    {{user}} {{char}}       player name / first character entry's name
    {{lastMessage}} {{lastUserMessage}} {{lastCharMessage}}
    {{turnCount}} {{model}}
    {{// comment}}          removed
    {{trim}}                removes itself and surrounding whitespace
    {{random::a::b::c}}     random pick on every expansion
    {{pick::a::b::c}}       pick that stays stable for the turn
    {{roll::2d6+1}}         dice roll
"""

from __future__ import annotations

import itertools
import random
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from world_tavern.models import GameState, WorldDefinition
from world_tavern.values import Scalar, format_value

_MACRO_RE = re.compile(r"\{\{((?:[^{}]|\{(?!\{)|\}(?!\}))*)\}\}")
_IDENT_RE = re.compile(r"[A-Za-z_][\w.-]*")
_ROLL_RE = re.compile(r"^(\d*)d(\d+)\s*([+-]\s*\d+)?$", re.IGNORECASE)
_TRIM_MARK = "\x00trim\x00"
_TRIM_RE = re.compile(r"\s*\x00trim\x00\s*")


@dataclass
class MacroContext:
    user_name: str = "User"
    char_name: str = "Assistant"
    variables: Mapping[str, Scalar] = field(default_factory=dict)
    defaults: Mapping[str, Scalar] = field(default_factory=dict)
    turn_count: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)
    rng: random.Random = field(default_factory=random.Random)


def macro_context(
    world: WorldDefinition,
    state: GameState,
    rng: random.Random | None = None,
) -> MacroContext:
    char_name = next(
        (e.name for e in world.entries if e.enabled and e.role == "character" and e.name),
        "Assistant",
    )
    return MacroContext(
        user_name=world.settings.player_name or "User",
        char_name=char_name,
        variables=state.variables,
        defaults={v.id: v.default_value for v in world.variables},
        turn_count=state.turn_count,
        metadata=state.metadata,
        rng=rng or random.Random(),
    )


def _meta(key: str) -> Callable[[MacroContext], str]:
    return lambda ctx: str(ctx.metadata.get(key) or "")


_RESERVED: dict[str, Callable[[MacroContext], str]] = {
    "user": lambda ctx: ctx.user_name,
    "char": lambda ctx: ctx.char_name,
    "turnCount": lambda ctx: str(ctx.turn_count),
    "lastMessage": _meta("lastMessage"),
    "lastUserMessage": _meta("lastUserMessage"),
    "lastCharMessage": _meta("lastCharMessage"),
    "model": _meta("model"),
}


def _roll(expr: str, rng: random.Random) -> str | None:
    m = _ROLL_RE.match(expr.strip())
    if m is None:
        return None
    count = int(m.group(1) or 1)
    sides = int(m.group(2))
    if count < 1 or sides < 1 or count > 100:
        return None
    total = sum(rng.randint(1, sides) for _ in range(count))
    if m.group(3):
        total += int(m.group(3).replace(" ", ""))
    return str(total)


def _stable_pick(options: list[str], index: int, turn: int) -> str:
    h = (index * 2654435761 + turn * 40503 + 17) & 0xFFFFFFFF
    return options[h % len(options)]


def _resolve(body: str, index: int, ctx: MacroContext) -> str | None:
    name = body.strip()
    if name.startswith("//"):
        return ""
    if name == "trim":
        return _TRIM_MARK
    reserved = _RESERVED.get(name)
    if reserved is not None:
        return reserved(ctx)
    if name.startswith("random::"):
        return ctx.rng.choice(name[len("random::"):].split("::"))
    if name.startswith("pick::"):
        return _stable_pick(name[len("pick::"):].split("::"), index, ctx.turn_count)
    if name.startswith("roll::"):
        return _roll(name[len("roll::"):], ctx.rng)
    if _IDENT_RE.fullmatch(name):
        if name in ctx.variables:
            return format_value(ctx.variables[name])
        if name in ctx.defaults:
            return format_value(ctx.defaults[name])
    return None


def expand_macros(text: str, ctx: MacroContext) -> str:
    if "{{" not in text:
        return text
    counter = itertools.count()

    def substitute(m: re.Match[str]) -> str:
        value = _resolve(m.group(1), next(counter), ctx)
        return m.group(0) if value is None else value

    expanded = _MACRO_RE.sub(substitute, text)
    if _TRIM_MARK in expanded:
        expanded = _TRIM_RE.sub("", expanded)
    return expanded
