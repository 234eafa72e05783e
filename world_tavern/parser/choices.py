"""Trailing option lists ("A) Fight", "2. Run") surfaced as player choices."""

from __future__ import annotations

import re

_CHOICE_LINE_RE = re.compile(r"^\s*(?:[A-Ha-h]|[1-9])[.)]\s+(\S.*?)\s*$")

MIN_CHOICES = 2


def extract_choices(text: str) -> tuple[str, list[str]]:
    """Split a trailing block of two or more option lines off `text`.

    Returns (remaining text, choices). Text without such a block comes back
    unchanged with no choices.
    """
    lines = text.rstrip().split("\n")
    choices: list[str] = []
    start = len(lines)
    while start > 0:
        m = _CHOICE_LINE_RE.match(lines[start - 1])
        if m is None:
            break
        choices.append(m.group(1))
        start -= 1
    if len(choices) < MIN_CHOICES:
        return text, []
    choices.reverse()
    return "\n".join(lines[:start]).rstrip(), choices
