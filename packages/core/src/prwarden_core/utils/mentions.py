"""Bot-mention detection and question text normalization."""

from __future__ import annotations

import re
from typing import Iterable

_FENCED_CODE_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`[^`\n]+`")
_WHITESPACE_RE = re.compile(r"\s+")

# Questions about the PR as a whole. Earlier answers in the conversation
# describe older commits, so these are answered without history.
_FRESH_ANALYSIS_PATTERNS = [
    re.compile(r"\bsummar(y|ize|ise)\b"),
    re.compile(r"\boverview\b"),
    re.compile(r"\bwhat('s| is| are)?\s+(changed|new|different|modified)\b"),
    re.compile(r"\blist\s+(the\s+)?changes\b"),
    re.compile(r"\bdescribe\s+(the\s+)?(changes|pr|pull\s*request)\b"),
    re.compile(r"\bwhat\s+does\s+this\s+pr\s+do\b"),
    re.compile(r"\bexplain\s+(the\s+)?(changes|pr|pull\s*request)\b"),
    re.compile(r"\bchangelog\b"),
    re.compile(r"\brelease\s+notes\b"),
]


def _mention_re(mention: str) -> re.Pattern:
    # "@prwarden" must not match the start of "@prwarden-bot" or "@prwardenx".
    return re.compile(r"(?<!\w)" + re.escape(mention) + r"(?![\w-])", re.IGNORECASE)


def strip_code_spans(text: str) -> str:
    """Remove fenced blocks first, then inline code."""
    text = _FENCED_CODE_RE.sub("", text)
    return _INLINE_CODE_RE.sub("", text)


def contains_mention(body: str, mentions: Iterable[str]) -> bool:
    """True when a bot mention appears outside every code span."""
    cleaned = strip_code_spans(body or "")
    return any(_mention_re(m).search(cleaned) for m in mentions)


def remove_mentions(text: str, mentions: Iterable[str]) -> str:
    # Longest first so "@prwarden-bot" is removed whole.
    for mention in sorted(mentions, key=len, reverse=True):
        text = _mention_re(mention).sub("", text)
    return text.strip()


def normalize_text(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


def text_hash(text: str) -> str:
    """32-bit rolling hash (h * 31 + c) of the normalized text, as 8 hex digits.

    Stable across processes, unlike hash(); used to notice a question that
    was edited after it was answered.
    """
    h = 0
    for ch in normalize_text(text):
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return format(h, "08x")


def requires_fresh_analysis(question: str) -> bool:
    lowered = question.lower()
    return any(p.search(lowered) for p in _FRESH_ANALYSIS_PATTERNS)
