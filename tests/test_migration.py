"""Tests for world document migration."""

from world_tavern.migration import CURRENT_SCHEMA_VERSION, migrate_world
from world_tavern.models import WorldDefinition


def test_v1_document_is_folded_into_entries():
    raw = {
        "id": "old",
        "settings": {"systemPrompt": "Narrate.", "greeting": "Hi!", "maxTokens": 300},
        "characters": [{"id": "c1", "name": "Elena", "description": "A healer."}],
        "lorebookEntries": [
            {"id": "l1", "name": "Dragon", "content": "Big.", "keywords": ["dragon"], "position": "before", "type": "lore"},
        ],
    }
    doc = migrate_world(raw)
    assert doc["schemaVersion"] == CURRENT_SCHEMA_VERSION
    assert "characters" not in doc and "lorebookEntries" not in doc
    assert "systemPrompt" not in doc["settings"]
    world = WorldDefinition.model_validate(doc)
    assert [e.id for e in world.entries] == ["system-prompt", "c1", "l1", "greeting"]
    assert world.entries[1].content == "You are Elena. A healer."
    assert world.entries[2].position == "before_char"
    assert world.entries[3].position == "greeting"
    assert world.settings.max_tokens == 300
    assert "characters" in raw


def test_v2_entries_ordered_by_insertion_order():
    raw = {
        "id": "w",
        "entries": [
            {"id": "b", "insertionOrder": 5},
            {"id": "a", "insertionOrder": 1},
            {"id": "c"},
        ],
    }
    doc = migrate_world(raw)
    assert [e["id"] for e in doc["entries"]] == ["a", "c", "b"]
    assert all("insertionOrder" not in e for e in doc["entries"])


def test_current_document_is_unchanged():
    raw = {"id": "w", "schemaVersion": 3, "entries": [{"id": "x"}]}
    assert migrate_world(raw) == raw
