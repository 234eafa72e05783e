"""Token cost estimates.

These are estimates, not tokenizer counts: one token per four characters,
rounded up. Good enough for budgeting and the prompt-preview breakdown.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_total(texts: Iterable[str]) -> int:
    return sum(estimate_tokens(t) for t in texts)
