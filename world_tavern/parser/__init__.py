"""Turn a raw model reply into display text plus validated effects.

`parse_response` never raises: whatever goes wrong, the caller gets back at
least the original text with no effects.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass, field

from world_tavern.models import AudioEffect, Effect
from world_tavern.parser.choices import extract_choices
from world_tavern.parser.directives import scan_directives
from world_tavern.parser.structured import build_response_schema, parse_envelope

logger = logging.getLogger(__name__)

__all__ = ["ParsedResponse", "build_response_schema", "parse_response"]


@dataclass
class ParsedResponse:
    display_text: str
    effects: list[Effect] = field(default_factory=list)
    audio_effects: list[AudioEffect] = field(default_factory=list)
    choices: list[str] = field(default_factory=list)


def parse_response(
    text: str,
    *,
    structured: bool = False,
    track_ids: Collection[str] | None = None,
    extract_choices_block: bool = False,
) -> ParsedResponse:
    try:
        return _parse(text, structured, track_ids, extract_choices_block)
    except Exception:
        logger.exception("Response parsing failed; keeping raw text")
        return ParsedResponse(display_text=text)


def _parse(
    text: str,
    structured: bool,
    track_ids: Collection[str] | None,
    extract_choices_block: bool,
) -> ParsedResponse:
    source = text
    choices: list[str] = []
    audio: list[AudioEffect] = []

    if structured:
        envelope = parse_envelope(text)
        if envelope is not None and envelope.effects:
            return ParsedResponse(
                display_text=envelope.narrative.strip(),
                effects=envelope.effects,
                audio_effects=envelope.audio_effects,
                choices=envelope.choices,
            )
        if envelope is not None:
            logger.debug("Envelope carried no state changes; scanning narrative for directives")
            source = envelope.narrative or text
            choices = envelope.choices
            audio = envelope.audio_effects
        else:
            logger.debug("Falling back to directive parsing of the raw reply")

    scan = scan_directives(source, track_ids)
    display = scan.text
    if extract_choices_block and not choices:
        display, choices = extract_choices(display)
    return ParsedResponse(
        display_text=display,
        effects=scan.effects,
        audio_effects=[*audio, *scan.audio_effects],
        choices=choices,
    )
