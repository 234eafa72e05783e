"""Bracket directives embedded in model prose.

Grammar (one definition, used for both state and audio):

    token       "[" IDENT ":" BODY "]"
    IDENT       [A-Za-z_][\\w.-]*

    state BODY  OP VALUE          OP is set, add, subtract, multiply or append
                toggle
                +N | -N | *N      add / subtract / multiply shorthand
                VALUE             bare value, implicit set
    VALUE       number | bare-word | "double quoted, with \\" escapes"

    audio BODY  play [VOLUME]
                stop [FADE_SECONDS]
                volume LEVEL
                crossfade TRACK [SECONDS]

The legacy `[audio: TRACK ACTION ...]` form is accepted as well. A token is
audio when IDENT is a known track id or "audio"; with no track list, when the
first word of BODY is an audio action.

Recognised tokens are removed from the text and collected left to right.
Bracketed text that doesn't fit the grammar stays in the text untouched.
"""

from __future__ import annotations

import re
from collections.abc import Collection
from dataclasses import dataclass, field

from world_tavern.models import AudioEffect, Effect
from world_tavern.values import Scalar, normalize_number

AUDIO_ACTIONS = frozenset({"play", "stop", "volume", "crossfade"})

_NUMBER = r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)"
_UNSIGNED = r"(?:\d+(?:\.\d*)?|\.\d+)"
_QUOTED = r'"(?:[^"\\]|\\.)*"'
_VALUE = rf'(?:{_QUOTED}|[^\s"]+)'
_IDENT = r"[A-Za-z_][\w.-]*"

_TOKEN_RE = re.compile(rf"\[\s*({_IDENT})\s*:\s*([^\[\]]*?)\s*\]")

_OP_RE = re.compile(rf"^(set|add|subtract|multiply|append)\s+({_VALUE})$", re.IGNORECASE)
_TOGGLE_RE = re.compile(r"^toggle$", re.IGNORECASE)
_SHORTHAND_RE = re.compile(rf"^([+\-*])\s*({_UNSIGNED})$")
_BARE_RE = re.compile(rf"^({_VALUE})$")
_NUMBER_RE = re.compile(rf"^{_NUMBER}$")

_PLAY_RE = re.compile(rf"^play(?:\s+({_NUMBER}))?$", re.IGNORECASE)
_STOP_RE = re.compile(rf"^stop(?:\s+({_NUMBER}))?$", re.IGNORECASE)
_VOLUME_RE = re.compile(rf"^volume\s+({_NUMBER})$", re.IGNORECASE)
_CROSSFADE_RE = re.compile(rf"^crossfade\s+({_IDENT})(?:\s+({_NUMBER}))?$", re.IGNORECASE)

_SHORTHAND_OPS = {"+": "add", "-": "subtract", "*": "multiply"}

_SPACE_RUN_RE = re.compile(r"[ \t]{2,}")
_LINE_EDGE_RE = re.compile(r"[ \t]+\n")


@dataclass
class DirectiveScan:
    text: str
    effects: list[Effect] = field(default_factory=list)
    audio_effects: list[AudioEffect] = field(default_factory=list)


def parse_value(raw: str) -> Scalar:
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        return re.sub(r"\\(.)", r"\1", raw[1:-1])
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _NUMBER_RE.match(raw):
        return normalize_number(float(raw)) if "." in raw else int(raw)
    return raw


def parse_state_body(variable_id: str, body: str) -> Effect | None:
    if _TOGGLE_RE.match(body):
        return Effect(variable_id=variable_id, operation="toggle", value=True)
    m = _OP_RE.match(body)
    if m:
        return Effect(variable_id=variable_id, operation=m.group(1).lower(), value=parse_value(m.group(2)))
    m = _SHORTHAND_RE.match(body)
    if m:
        return Effect(
            variable_id=variable_id,
            operation=_SHORTHAND_OPS[m.group(1)],
            value=parse_value(m.group(2)),
        )
    m = _BARE_RE.match(body)
    if m:
        return Effect(variable_id=variable_id, operation="set", value=parse_value(m.group(1)))
    return None


def parse_audio_body(track_id: str, body: str) -> AudioEffect | None:
    m = _PLAY_RE.match(body)
    if m:
        volume = float(m.group(1)) if m.group(1) else None
        return AudioEffect(track_id=track_id, action="play", volume=volume)
    m = _STOP_RE.match(body)
    if m:
        fade = float(m.group(1)) if m.group(1) else None
        return AudioEffect(track_id=track_id, action="stop", fade_seconds=fade)
    m = _VOLUME_RE.match(body)
    if m:
        return AudioEffect(track_id=track_id, action="volume", volume=float(m.group(1)))
    m = _CROSSFADE_RE.match(body)
    if m:
        fade = float(m.group(2)) if m.group(2) else None
        return AudioEffect(track_id=track_id, action="crossfade", to_track_id=m.group(1), fade_seconds=fade)
    return None


def _is_audio(ident: str, body: str, track_ids: Collection[str] | None) -> bool:
    if ident.lower() == "audio":
        return True
    if track_ids is not None:
        return ident in track_ids
    first = body.split(None, 1)[0].lower() if body else ""
    return first in AUDIO_ACTIONS


def _parse_token(ident: str, body: str, track_ids: Collection[str] | None) -> Effect | AudioEffect | None:
    if not body:
        return None
    if _is_audio(ident, body, track_ids):
        if ident.lower() == "audio":
            parts = body.split(None, 1)
            if len(parts) != 2:
                return None
            return parse_audio_body(parts[0], parts[1])
        return parse_audio_body(ident, body)
    return parse_state_body(ident, body)


def scan_directives(text: str, track_ids: Collection[str] | None = None) -> DirectiveScan:
    """Pull every recognised directive out of `text`."""
    effects: list[Effect] = []
    audio: list[AudioEffect] = []

    def consume(m: re.Match[str]) -> str:
        parsed = _parse_token(m.group(1), m.group(2), track_ids)
        if parsed is None:
            return m.group(0)
        if isinstance(parsed, AudioEffect):
            audio.append(parsed)
        else:
            effects.append(parsed)
        return ""

    cleaned = _TOKEN_RE.sub(consume, text)
    if effects or audio:
        cleaned = _SPACE_RUN_RE.sub(" ", cleaned)
        cleaned = _LINE_EDGE_RE.sub("\n", cleaned)
        cleaned = cleaned.strip()
    return DirectiveScan(text=cleaned, effects=effects, audio_effects=audio)
