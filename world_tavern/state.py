"""Game state manager.

One manager is checked out per request from the persisted session state and
thrown away afterwards. It owns a private copy of the state; `snapshot()`
always hands out a deep copy, never the live map.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from world_tavern.models import Effect, GameState, StateChange, Variable, WorldDefinition
from world_tavern.values import (
    CoercionError,
    Scalar,
    coerce,
    normalize_number,
    to_number,
    to_text,
)

logger = logging.getLogger(__name__)

# Metadata derived from the timeline; recomputed on revert, dropped on reset.
MESSAGE_METADATA_KEYS = (
    "lastMessage",
    "lastUserMessage",
    "lastCharMessage",
    "lastUserMessageAt",
    "model",
)

# Metadata that only describes the live session (never replayed).
RUNTIME_METADATA_KEYS = ("activeAudio",)


def initial_state(world: WorldDefinition) -> GameState:
    """State built from each variable's declared default."""
    variables: dict[str, Scalar] = {}
    for variable in world.variables:
        try:
            variables[variable.id] = _clamp(variable, coerce(variable.default_value, variable.type))
        except CoercionError:
            logger.warning(
                "Default %r of variable %r is not a %s; using the type's zero value",
                variable.default_value, variable.id, variable.type,
            )
            variables[variable.id] = _zero(variable)
    return GameState(world_id=world.id, variables=variables)


def _zero(variable: Variable) -> Scalar:
    if variable.type == "number":
        return 0
    if variable.type == "boolean":
        return False
    return ""


def _clamp(variable: Variable, value: Scalar) -> Scalar:
    if variable.type != "number" or isinstance(value, (bool, str)):
        return value
    if variable.min is not None and value < variable.min:
        value = variable.min
    if variable.max is not None and value > variable.max:
        value = variable.max
    return normalize_number(value)


class GameStateManager:
    def __init__(self, world: WorldDefinition, state: GameState | None = None) -> None:
        self._world = world
        self._defs = {v.id: v for v in world.variables}
        if state is None:
            self._state = initial_state(world)
        else:
            self._state = state.model_copy(deep=True)
            self._backfill()

    def _backfill(self) -> None:
        """Add variables declared after the state was saved; retype stored values."""
        defaults = initial_state(self._world).variables
        for var_id, variable in self._defs.items():
            if var_id not in self._state.variables:
                self._state.variables[var_id] = defaults[var_id]
                continue
            try:
                self._state.variables[var_id] = _clamp(
                    variable, coerce(self._state.variables[var_id], variable.type)
                )
            except CoercionError:
                logger.warning("Stored value of %r is not a %s; resetting", var_id, variable.type)
                self._state.variables[var_id] = defaults[var_id]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def turn_count(self) -> int:
        return self._state.turn_count

    def get(self, variable_id: str) -> Scalar | None:
        return self._state.variables.get(variable_id)

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self._state.metadata.get(key, default)

    def snapshot(self) -> GameState:
        return self._state.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply_effects(self, effects: Iterable[Effect]) -> list[StateChange]:
        """Apply effects in order and return the changes that actually happened.

        Unknown variables and operands that don't fit the variable's type are
        logged and skipped; the remaining effects still apply.
        """
        changes: list[StateChange] = []
        for effect in effects:
            variable = self._defs.get(effect.variable_id)
            if variable is None:
                logger.warning("Ignoring effect on unknown variable %r", effect.variable_id)
                continue
            old = self._state.variables[variable.id]
            try:
                new = _clamp(variable, self._compute(variable, old, effect))
            except CoercionError as e:
                logger.warning(
                    "Ignoring %s on %r: %s", effect.operation, variable.id, e
                )
                continue
            if new == old and type(new) is type(old):
                continue
            self._state.variables[variable.id] = new
            changes.append(StateChange(variable_id=variable.id, old_value=old, new_value=new))
        return changes

    def _compute(self, variable: Variable, current: Scalar, effect: Effect) -> Scalar:
        op = effect.operation
        if op == "set":
            return coerce(effect.value, variable.type)

        if op in ("add", "subtract", "multiply"):
            if variable.type != "number":
                raise CoercionError(f"{op} needs a number variable, not {variable.type}")
            operand = to_number(effect.value)
            base = to_number(current)
            if op == "add":
                return normalize_number(base + operand)
            if op == "subtract":
                return normalize_number(base - operand)
            return normalize_number(base * operand)

        if op == "toggle":
            if variable.type == "boolean":
                return not current
            if variable.type == "number":
                return 1 if to_number(current) == 0 else 0
            raise CoercionError("toggle needs a boolean or number variable")

        if op == "append":
            if variable.type != "string":
                raise CoercionError(f"append needs a string variable, not {variable.type}")
            return to_text(current) + to_text(effect.value)

        raise CoercionError(f"unknown operation {op!r}")

    def replay(self, changes: Iterable[StateChange]) -> None:
        """Re-apply recorded changes verbatim. Nothing is recomputed."""
        for change in changes:
            variable = self._defs.get(change.variable_id)
            if variable is None:
                continue
            try:
                self._state.variables[variable.id] = coerce(change.new_value, variable.type)
            except CoercionError:
                logger.warning("Skipping unreplayable change on %r", variable.id)

    def increment_turn(self) -> None:
        self._state.turn_count += 1

    def set_turn_count(self, value: int) -> None:
        self._state.turn_count = value

    def set_metadata(self, key: str, value: Any) -> None:
        if value is None:
            self._state.metadata.pop(key, None)
        else:
            self._state.metadata[key] = value

    def reset(self) -> None:
        """Back to declared defaults; timeline and runtime metadata are dropped."""
        metadata = {
            k: v
            for k, v in self._state.metadata.items()
            if k not in MESSAGE_METADATA_KEYS and k not in RUNTIME_METADATA_KEYS
        }
        self._state = initial_state(self._world)
        self._state.metadata = metadata
