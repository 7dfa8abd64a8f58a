"""Word-overlap similarity used to suppress duplicate findings."""

from __future__ import annotations

import re

DUPLICATE_THRESHOLD = 0.5
LINE_TOLERANCE = 2

STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "can", "could",
        "do", "does", "for", "from", "has", "have", "here", "if", "in", "into", "is",
        "it", "its", "may", "might", "not", "of", "on", "or", "should", "so", "that",
        "the", "their", "then", "there", "these", "this", "those", "to", "was", "were",
        "when", "which", "while", "will", "with", "would", "you", "your",
    }
)  # fmt: skip

_WORD_RE = re.compile(r"[a-z0-9_]+")


def significant_words(text: str) -> set[str]:
    """Lowercased words of ``text`` with stop words and single characters removed."""
    return {w for w in _WORD_RE.findall(text.lower()) if len(w) > 1 and w not in STOP_WORDS}


def word_overlap(a: str, b: str) -> float:
    """Shared significant words divided by the larger word set (0.0 when either is empty)."""
    words_a = significant_words(a)
    words_b = significant_words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / max(len(words_a), len(words_b))


def is_duplicate_finding(
    file_a: str,
    line_a: int,
    text_a: str,
    file_b: str,
    line_b: int,
    text_b: str,
) -> bool:
    if file_a != file_b or abs(line_a - line_b) > LINE_TOLERANCE:
        return False
    return word_overlap(text_a, text_b) >= DUPLICATE_THRESHOLD
