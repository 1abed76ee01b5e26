# src/clincore/remedy_engine/text.py
from __future__ import annotations

import re
import unicodedata
from typing import FrozenSet, Iterable

_WORD = re.compile(r"[^\W_]+", re.UNICODE)


def clean(text: str | None) -> str:
    """NFKC + collapse whitespace + strip. Keeps case for display."""
    if text is None:
        return ""
    return " ".join(unicodedata.normalize("NFKC", str(text)).split())


def fold(text: str | None) -> str:
    """Comparison form: cleaned and casefolded."""
    return clean(text).casefold()


def tokens(text: str | None, stop_words: Iterable[str] = ()) -> FrozenSet[str]:
    """Significant words: alphanumeric, longer than one char, not a stop word."""
    stop = stop_words if isinstance(stop_words, (set, frozenset)) else frozenset(stop_words)
    return frozenset(
        w for w in _WORD.findall(fold(text)) if len(w) > 1 and w not in stop
    )


def contains_phrase(haystack: str, needle: str) -> bool:
    """Whole-word containment on already folded strings."""
    if not needle or not haystack:
        return False
    return re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", haystack) is not None


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)
