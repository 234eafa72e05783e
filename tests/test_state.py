"""Tests for the game state manager."""

from world_tavern.models import Effect, GameState, StateChange, WorldDefinition
from world_tavern.state import GameStateManager, initial_state


def _world() -> WorldDefinition:
    return WorldDefinition.model_validate({
        "id": "w",
        "variables": [
            {"id": "hp", "type": "number", "defaultValue": 10, "min": 0, "max": 10},
            {"id": "gold", "type": "number", "defaultValue": "5"},
            {"id": "lit", "type": "boolean", "defaultValue": False},
            {"id": "log", "type": "string", "defaultValue": ""},
        ],
    })


def test_initial_state_uses_coerced_defaults():
    state = initial_state(_world())
    assert state.variables == {"hp": 10, "gold": 5, "lit": False, "log": ""}
    assert state.turn_count == 0


def test_bad_default_falls_back_to_zero_value():
    world = WorldDefinition.model_validate(
        {"id": "w", "variables": [{"id": "n", "type": "number", "defaultValue": "lots"}]}
    )
    assert initial_state(world).variables["n"] == 0


def test_arithmetic_is_clamped():
    manager = GameStateManager(_world())
    changes = manager.apply_effects([Effect(variable_id="hp", operation="subtract", value=15)])
    assert manager.get("hp") == 0
    assert changes == [StateChange(variable_id="hp", old_value=10, new_value=0)]


def test_empty_effect_list_changes_nothing():
    manager = GameStateManager(_world())
    manager.set_metadata("activeAudio", ["battle"])
    before = manager.snapshot()
    assert manager.apply_effects([]) == []
    assert manager.snapshot() == before


def test_unchanged_value_records_nothing():
    manager = GameStateManager(_world())
    assert manager.apply_effects([Effect(variable_id="hp", operation="add", value=5)]) == []


def test_set_coerces_operand():
    manager = GameStateManager(_world())
    manager.apply_effects([Effect(variable_id="gold", operation="set", value="12")])
    assert manager.get("gold") == 12


def test_toggle_and_append():
    manager = GameStateManager(_world())
    manager.apply_effects([
        Effect(variable_id="lit", operation="toggle"),
        Effect(variable_id="log", operation="append", value="door opened"),
    ])
    assert manager.get("lit") is True
    assert manager.get("log") == "door opened"


def test_invalid_effects_are_skipped():
    manager = GameStateManager(_world())
    changes = manager.apply_effects([
        Effect(variable_id="nope", operation="set", value=1),
        Effect(variable_id="gold", operation="add", value="a lot"),
        Effect(variable_id="log", operation="add", value=1),
        Effect(variable_id="gold", operation="add", value=1),
    ])
    assert [c.variable_id for c in changes] == ["gold"]
    assert manager.get("gold") == 6


def test_snapshot_is_a_copy():
    manager = GameStateManager(_world())
    snap = manager.snapshot()
    snap.variables["hp"] = 1
    assert manager.get("hp") == 10


def test_loaded_state_is_backfilled():
    state = GameState(world_id="w", variables={"hp": "7"})
    manager = GameStateManager(_world(), state)
    assert manager.get("hp") == 7
    assert manager.get("gold") == 5
    assert state.variables == {"hp": "7"}


def test_replay_sets_recorded_values():
    manager = GameStateManager(_world())
    manager.replay([
        StateChange(variable_id="hp", old_value=10, new_value=4),
        StateChange(variable_id="gone", old_value=1, new_value=2),
    ])
    assert manager.get("hp") == 4


def test_metadata_none_removes_key():
    manager = GameStateManager(_world())
    manager.set_metadata("model", "m")
    manager.set_metadata("model", None)
    assert manager.get_metadata("model") is None


def test_reset_keeps_custom_metadata_only():
    manager = GameStateManager(_world())
    manager.apply_effects([Effect(variable_id="hp", operation="set", value=1)])
    manager.increment_turn()
    manager.set_metadata("lastMessage", "hi")
    manager.set_metadata("activeAudio", ["battle"])
    manager.set_metadata("note", "kept")
    manager.reset()
    snap = manager.snapshot()
    assert snap.variables["hp"] == 10
    assert snap.turn_count == 0
    assert snap.metadata == {"note": "kept"}
