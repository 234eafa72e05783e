"""Keyword matching for lorebook entries.

A keyword is one of:

    /pattern/flags   a user regex (flags: i, m, s; others ignored)
    plain text       case-insensitive substring, or a whole-word match when
                     the entry asks for it

Fuzzy matching is a fallback for plain keywords: any word of the scanned text
within Levenshtein distance 1 (keywords up to 5 characters) or 2 (longer)
counts as a hit. It is never applied to CJK keywords, where one character is
a whole word.
"""

from __future__ import annotations

import logging
import re
import string
from functools import lru_cache

logger = logging.getLogger(__name__)

_USER_REGEX_RE = re.compile(r"^/(.+)/([a-z]*)$", re.DOTALL)
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_CJK_RE = re.compile(r"[぀-ヿ㐀-䶿一-鿿가-힯]")


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def is_cjk(text: str) -> bool:
    return bool(_CJK_RE.search(text))


def fuzzy_match(text: str, keyword: str) -> bool:
    needle = keyword.lower()
    if not needle or is_cjk(needle):
        return False
    limit = 1 if len(needle) <= 5 else 2
    for word in text.lower().split():
        word = word.strip(string.punctuation)
        if word and abs(len(word) - len(needle)) <= limit and levenshtein(word, needle) <= limit:
            return True
    return False


@lru_cache(maxsize=512)
def compile_user_regex(keyword: str) -> re.Pattern[str] | None:
    """Compile a `/pattern/flags` keyword. Malformed patterns return None."""
    m = _USER_REGEX_RE.match(keyword)
    if m is None:
        return None
    flags = 0
    for flag in m.group(2):
        flags |= _REGEX_FLAGS.get(flag, 0)
    try:
        return re.compile(m.group(1), flags)
    except re.error as e:
        logger.warning("Keyword regex %r is malformed and will never match: %s", keyword, e)
        return None


def is_user_regex(keyword: str) -> bool:
    return bool(_USER_REGEX_RE.match(keyword))


def keyword_matches(
    text: str,
    keyword: str,
    whole_word: bool = False,
    fuzzy: bool = False,
) -> bool:
    keyword = keyword.strip()
    if not keyword or not text:
        return False

    if is_user_regex(keyword):
        pattern = compile_user_regex(keyword)
        return pattern is not None and pattern.search(text) is not None

    if whole_word:
        hit = re.search(
            rf"(?<!\w){re.escape(keyword)}(?!\w)", text, re.IGNORECASE
        ) is not None
    else:
        hit = keyword.lower() in text.lower()

    if not hit and fuzzy:
        hit = fuzzy_match(text, keyword)
    return hit
