"""SillyTavern character card and world book import.

`import_st_card` turns a card into a world document (camelCase dict, ready
for `WorldDefinition.model_validate`). V1 cards keep their fields at the top
level, V2 cards nest them under `data`. A bare world book export (an
`entries` object with no card fields) is imported as a book alone.

Card fields become always-send entries; character book entries keep their
keywords, with these conversions:

    key / keysecondary      keywords / secondaryKeywords
    selectiveLogic 0..3     AND_ANY, NOT_ANY, NOT_ALL, AND_ALL
    constant                alwaysSend
    position 0..4           before_char, after_char, bottom, bottom, depth
    priority                priority; without it 1000 - insertion_order

Entries named like variable initialisers (InitVar, MVU) are not imported as
prompt content; their `key: value` lines become variables instead.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from world_tavern.models import new_id
from world_tavern.values import VariableType

logger = logging.getLogger(__name__)

_POSITIONS = {0: "before_char", 1: "after_char", 2: "bottom", 3: "bottom", 4: "depth"}
_SECONDARY_LOGIC = {0: "AND_ANY", 1: "NOT_ANY", 2: "NOT_ALL", 3: "AND_ALL"}

_VARIABLE_ENTRY_RE = re.compile(r"initvar|mvu_update|mvu_初始|初始|变量初始", re.IGNORECASE)

# (name pattern, role); first match wins
_ROLE_BY_NAME = [
    (re.compile(r"格式|format|cot|输出格式|output format", re.IGNORECASE), "style"),
    (re.compile(r"章节|chapter|plot|剧情|故事", re.IGNORECASE), "plot"),
    (re.compile(r"角色|character|人物|npc|人格|personality|性格", re.IGNORECASE), "character"),
    (re.compile(r"世界|world|设定|背景|lore|场景|scenario|场所", re.IGNORECASE), "lore"),
    (re.compile(r"system|系统", re.IGNORECASE), "system"),
]
_CHARACTER_CONTENT_RE = re.compile(r"\{\{char\}\}.*personality|性格|外貌|appearance", re.IGNORECASE)

_YAML_LINE_RE = re.compile(r"^\s*([^:#\n]+?)\s*[:：]\s*(.+?)\s*$")
_VAR_ID_STRIP_RE = re.compile(r"[^a-zA-Z0-9_\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff]")

DEFAULT_MAIN_PROMPT = "Write {{char}}'s next reply in a fictional chat between {{char}} and {{user}}."


def _entry(name: str, content: str, role: str, position: str, priority: int) -> dict[str, Any]:
    return {
        "id": new_id(),
        "name": name,
        "content": content,
        "role": role,
        "position": position,
        "priority": priority,
        "alwaysSend": True,
    }


def _infer_role(name: str, content: str) -> str:
    for pattern, role in _ROLE_BY_NAME:
        if pattern.search(name):
            return role
    if _CHARACTER_CONTENT_RE.search(f"{name} {content}"):
        return "character"
    return "custom"


def _parse_scalar(raw: str) -> tuple[VariableType, Any] | None:
    try:
        return "number", float(raw) if any(c in raw for c in ".eE") else int(raw)
    except ValueError:
        pass
    if raw in ("true", "false"):
        return "boolean", raw == "true"
    text = re.sub(r"^[\"'「]|[\"'」]$", "", raw).strip()
    if 0 < len(text) < 200:
        return "string", text
    return None


def extract_variables(content: str) -> list[dict[str, Any]]:
    """Variables from `key: value` lines; dotted keys are flattened."""
    variables: list[dict[str, Any]] = []
    for line in content.split("\n"):
        m = _YAML_LINE_RE.match(line)
        if m is None:
            continue
        key, raw = m.group(1).strip(), m.group(2).strip()
        if key.startswith(("#", "-", "//")) or len(key) > 60:
            continue
        var_id = _VAR_ID_STRIP_RE.sub("", re.sub(r"[.\s]+", "_", key)).lower()
        parsed = _parse_scalar(raw) if var_id else None
        if parsed is None:
            continue
        var_type, value = parsed
        variables.append({
            "id": var_id,
            "name": re.sub(r"[._]", " ", key),
            "type": var_type,
            "defaultValue": value,
        })
    return variables


def _book_entries(book: dict[str, Any]) -> list[dict[str, Any]]:
    raw = book.get("entries") or []
    if isinstance(raw, dict):
        raw = list(raw.values())
    return [e for e in raw if isinstance(e, dict)]


def _keywords(values: Any) -> list[str]:
    return [k for k in values or [] if isinstance(k, str) and k.strip()]


def _first(*values: Any, default: Any = None) -> Any:
    return next((v for v in values if v is not None), default)


def _convert_book_entry(st: dict[str, Any], name: str) -> dict[str, Any]:
    content = st.get("content") or ""
    order = _first(st.get("insertion_order"), st.get("order"), default=500)
    extensions = st.get("extensions") or {}
    st_position = _first(extensions.get("position"), st.get("position"))
    # V2 book entries name the position; world book exports number it
    if st_position in ("before_char", "after_char"):
        position = st_position
    else:
        position = _POSITIONS.get(st_position, "after_char")

    entry: dict[str, Any] = {
        "id": new_id(),
        "name": name,
        "content": content,
        "role": _infer_role(name, content),
        "position": position,
        "alwaysSend": bool(st.get("constant")),
        "keywords": _keywords(st.get("key")),
        "priority": _first(st.get("priority"), default=1000 - order),
        "enabled": st.get("enabled") is not False and not st.get("disable"),
    }
    if position == "depth":
        entry["depth"] = _first(extensions.get("depth"), st.get("depth"), default=4)
    secondary = _keywords(st.get("keysecondary"))
    if secondary:
        entry["secondaryKeywords"] = secondary
        entry["secondaryKeywordLogic"] = _SECONDARY_LOGIC.get(st.get("selectiveLogic"), "AND_ANY")
    return entry


def import_st_card(card: dict[str, Any]) -> dict[str, Any]:
    """Convert a SillyTavern card or world book into a world document."""
    data = card.get("data") if isinstance(card.get("data"), dict) else card
    book = data.get("character_book") or card.get("character_book") or {}
    if not book and "entries" in card:
        book = card
    char_name = data.get("name") or ""

    entries: list[dict[str, Any]] = []
    if data.get("system_prompt"):
        entries.append(_entry("System Prompt", data["system_prompt"], "system", "top", 100))
    if data.get("description"):
        name = f"{char_name}: Description" if char_name else "Character Description"
        entries.append(_entry(name, data["description"], "character", "character", 90))
    if data.get("personality"):
        name = f"{char_name}: Personality" if char_name else "Personality"
        entries.append(_entry(name, data["personality"], "character", "character", 85))
    if data.get("scenario"):
        entries.append(_entry("Scenario", data["scenario"], "lore", "after_char", 80))
    if data.get("mes_example"):
        entries.append(_entry("Example Messages", data["mes_example"], "style", "bottom", 40))
    if data.get("first_mes"):
        entries.append(_entry("Greeting", data["first_mes"], "greeting", "greeting", 50))
    if data.get("post_history_instructions"):
        entries.append(
            _entry("Post-History Instructions", data["post_history_instructions"], "system", "post_history", 95)
        )

    variables: list[dict[str, Any]] = []
    seen: set[str] = set()
    for st in _book_entries(book):
        keys = _keywords(st.get("key"))
        name = st.get("comment") or (keys[0] if keys else f"Entry {st.get('uid', '?')}")
        if _VARIABLE_ENTRY_RE.search(name):
            for variable in extract_variables(st.get("content") or ""):
                if variable["id"] not in seen:
                    seen.add(variable["id"])
                    variables.append(variable)
            continue
        entries.append(_convert_book_entry(st, name))

    if not entries:
        entries.append(_entry("Main Prompt", DEFAULT_MAIN_PROMPT, "system", "top", 100))

    logger.info(
        "Imported card %r: %d entries, %d variables",
        char_name or book.get("name"), len(entries), len(variables),
    )
    return {
        "id": new_id(),
        "name": char_name or book.get("name") or "Imported World",
        "description": book.get("description") or data.get("scenario") or "",
        "entries": entries,
        "variables": variables,
        "settings": {"playerName": "User"},
    }
