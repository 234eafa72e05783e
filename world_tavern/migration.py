"""Upgrade persisted world documents to the current schema.

Works on the raw camelCase dict, before pydantic sees it, so fields that no
longer exist on the model can still be read. Each step takes a document at
version N and returns one at N + 1; `migrate_world` runs whatever steps are
needed and is a no-op on current documents.

    1 → 2   characters[], lorebookEntries[], settings.systemPrompt and
            settings.greeting are folded into entries[]
    2 → 3   entries ordered by their legacy insertionOrder (declaration order
            is the tie-break everywhere), insertionOrder dropped
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 3

_LEGACY_ROLES = {"character", "lore", "plot", "style", "custom"}


def _detect_version(raw: dict[str, Any]) -> int:
    if "schemaVersion" in raw:
        return int(raw["schemaVersion"])
    settings = raw.get("settings") or {}
    if raw.get("entries"):
        return 2
    if raw.get("characters") or raw.get("lorebookEntries") or settings.get("systemPrompt") or settings.get("greeting"):
        return 1
    return 2


def _v1_to_v2(raw: dict[str, Any]) -> dict[str, Any]:
    settings = dict(raw.get("settings") or {})
    entries: list[dict[str, Any]] = []

    system_prompt = settings.pop("systemPrompt", None)
    if system_prompt:
        entries.append({
            "id": "system-prompt",
            "name": "System Prompt",
            "content": system_prompt,
            "role": "system",
            "position": "top",
            "alwaysSend": True,
            "priority": 100,
        })

    for char in raw.get("characters") or []:
        content = f"You are {char.get('name', '')}. {char.get('description', '')}"
        if char.get("systemPrompt"):
            content += f"\n\n{char['systemPrompt']}"
        entries.append({
            "id": char.get("id") or f"character-{len(entries)}",
            "name": char.get("name", ""),
            "content": content,
            "role": "character",
            "position": "character",
            "alwaysSend": True,
            "priority": 90,
        })

    for lore in raw.get("lorebookEntries") or []:
        role = lore.get("type")
        entries.append({
            "id": lore.get("id") or f"lore-{len(entries)}",
            "name": lore.get("name", ""),
            "content": lore.get("content", ""),
            "role": role if role in _LEGACY_ROLES else "custom",
            "position": "before_char" if lore.get("position") == "before" else "after_char",
            "alwaysSend": bool(lore.get("alwaysSend", False)),
            "keywords": lore.get("keywords") or [],
            "conditions": lore.get("conditions") or [],
            "conditionLogic": lore.get("conditionLogic", "all"),
            "priority": lore.get("priority", 0),
            "enabled": lore.get("enabled", True),
        })

    greeting = settings.pop("greeting", None)
    if greeting:
        entries.append({
            "id": "greeting",
            "name": "Greeting",
            "content": greeting,
            "role": "greeting",
            "position": "greeting",
            "alwaysSend": True,
        })

    for i, entry in enumerate(entries):
        entry["insertionOrder"] = i

    migrated = {k: v for k, v in raw.items() if k not in ("characters", "lorebookEntries")}
    migrated["entries"] = [*(raw.get("entries") or []), *entries]
    migrated["settings"] = settings
    return migrated


def _v2_to_v3(raw: dict[str, Any]) -> dict[str, Any]:
    entries = list(raw.get("entries") or [])
    order = {id(e): (e.get("insertionOrder", i), i) for i, e in enumerate(entries)}
    entries.sort(key=lambda e: order[id(e)])
    migrated = dict(raw)
    migrated["entries"] = [
        {k: v for k, v in e.items() if k != "insertionOrder"} for e in entries
    ]
    return migrated


_STEPS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _v1_to_v2,
    2: _v2_to_v3,
}


def migrate_world(raw: dict[str, Any]) -> dict[str, Any]:
    """Return `raw` upgraded to CURRENT_SCHEMA_VERSION. The input is not modified."""
    version = _detect_version(raw)
    doc = dict(raw)
    while version < CURRENT_SCHEMA_VERSION:
        logger.info("Migrating world %s from schema %d", raw.get("id", "?"), version)
        doc = _STEPS[version](doc)
        version += 1
    doc["schemaVersion"] = max(version, CURRENT_SCHEMA_VERSION)
    return doc
