"""JSON envelope output mode.

With structured output enabled the model replies with one JSON object:

    {"narrative": "...", "stateChanges": [...], "choices": [...], "audioTriggers": [...]}

Anything malformed inside the envelope is dropped item by item; a reply that
isn't a JSON object at all yields None and the caller falls back to the text
parser.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from world_tavern.models import AudioEffect, AudioTrack, Effect, Variable

logger = logging.getLogger(__name__)

OPERATIONS = ["set", "add", "subtract", "multiply", "toggle", "append"]
AUDIO_ACTIONS = ["play", "stop", "crossfade", "volume"]


@dataclass
class StructuredEnvelope:
    narrative: str
    effects: list[Effect] = field(default_factory=list)
    audio_effects: list[AudioEffect] = field(default_factory=list)
    choices: list[str] = field(default_factory=list)


def parse_json_output(text: str) -> dict | None:
    """Parse JSON from LLM output, stripping markdown fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.debug("Structured output is not valid JSON: %s", e)
        return None
    return data if isinstance(data, dict) else None


def _items(data: dict, key: str) -> list:
    value = data.get(key)
    return value if isinstance(value, list) else []


def parse_envelope(text: str) -> StructuredEnvelope | None:
    data = parse_json_output(text)
    if data is None:
        return None

    narrative = data.get("narrative")
    envelope = StructuredEnvelope(narrative=narrative if isinstance(narrative, str) else "")

    for raw in _items(data, "stateChanges"):
        try:
            envelope.effects.append(Effect.model_validate(raw))
        except ValidationError as e:
            logger.debug("Dropping malformed state change %r: %s", raw, e.errors()[0]["msg"])

    for raw in _items(data, "audioTriggers"):
        try:
            envelope.audio_effects.append(AudioEffect.model_validate(raw))
        except ValidationError as e:
            logger.debug("Dropping malformed audio trigger %r: %s", raw, e.errors()[0]["msg"])

    envelope.choices = [c.strip() for c in _items(data, "choices") if isinstance(c, str) and c.strip()]
    return envelope


def build_response_schema(
    variables: Sequence[Variable],
    tracks: Sequence[AudioTrack] = (),
) -> dict[str, Any]:
    """JSON Schema for the envelope, enumerating this world's ids."""
    state_change: dict[str, Any] = {
        "type": "object",
        "properties": {
            "variableId": {"type": "string"},
            "operation": {"type": "string", "enum": OPERATIONS},
            "value": {"type": ["number", "string", "boolean"]},
        },
        "required": ["variableId", "operation"],
        "additionalProperties": False,
    }
    if variables:
        state_change["properties"]["variableId"]["enum"] = [v.id for v in variables]

    audio_trigger: dict[str, Any] = {
        "type": "object",
        "properties": {
            "trackId": {"type": "string"},
            "action": {"type": "string", "enum": AUDIO_ACTIONS},
            "volume": {"type": "number", "minimum": 0, "maximum": 1},
            "fadeSeconds": {"type": "number", "minimum": 0},
            "toTrackId": {"type": "string"},
        },
        "required": ["trackId", "action"],
        "additionalProperties": False,
    }
    if tracks:
        audio_trigger["properties"]["trackId"]["enum"] = [t.id for t in tracks]

    return {
        "type": "object",
        "properties": {
            "narrative": {"type": "string"},
            "stateChanges": {"type": "array", "items": state_change},
            "choices": {"type": "array", "items": {"type": "string"}},
            "audioTriggers": {"type": "array", "items": audio_trigger},
        },
        "required": ["narrative", "stateChanges"],
        "additionalProperties": False,
    }
