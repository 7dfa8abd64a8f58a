"""Intent classifier — maps free text onto a closed set of intents.

Every classification may come back UNKNOWN (LLM down, unparseable reply).
Callers pass ``on_unknown`` to name what UNKNOWN means at their decision
point, so no fallback policy is implicit:

- bot mentions: UNKNOWN → QUESTION (answering a review request is harmless)
- dispute replies: UNKNOWN → REBUTTAL (never auto-resolve a real issue)
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import TYPE_CHECKING

from prwarden_core.utils.mentions import text_hash

if TYPE_CHECKING:
    from prwarden_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)


class MentionIntent(str, Enum):
    REVIEW_REQUEST = "review-request"
    QUESTION = "question"
    UNKNOWN = "unknown"


class ReplyKind(str, Enum):
    CONCESSION = "concession"
    QUESTION = "question"
    REBUTTAL = "rebuttal"
    UNKNOWN = "unknown"


CONCESSION_PHRASES = (
    "you are correct",
    "i concede",
    "you're right",
    "fair point",
    "good catch",
    "agreed",
    "makes sense",
)

# "@prwarden review", "please re-review this PR!" and the like need no LLM.
_EXPLICIT_REVIEW_RE = re.compile(
    r"^(please\s+)?(do\s+a\s+)?(full\s+)?(re-?)?review(\s+(this|the))?(\s+(pr|pull\s*request|again))?\s*(please)?[.!]*$",
    re.IGNORECASE,
)

_MENTION_PROMPT = """Classify a comment that mentions a code review bot on a pull request.

REVIEW_REQUEST: the author asks the bot to review (or re-review) the pull request.
QUESTION: the author asks a question or wants an explanation.

Comment:
\"\"\"
{text}
\"\"\"

Respond with exactly one word: REVIEW_REQUEST or QUESTION."""

_REPLY_PROMPT = """A code reviewer raised this finding:
\"\"\"
{finding}
\"\"\"

The developer replied:
\"\"\"
{reply}
\"\"\"

Classify the reply:
CONCESSION: the developer agrees, accepts the feedback, or commits to the change.
QUESTION: the developer asks for clarification about the finding.
REBUTTAL: the developer disagrees, argues the code is correct, or proposes keeping it.

Respond with exactly one word: CONCESSION, QUESTION or REBUTTAL."""


def is_concession_phrase(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in CONCESSION_PHRASES)


class IntentClassifier:
    """LLM-backed classifier with a per-run cache keyed by the text hash."""

    def __init__(self, provider: BaseProvider | None):
        self._provider = provider
        self._cache: dict[tuple[str, str], Enum] = {}

    def _complete(self, prompt: str) -> str | None:
        if self._provider is None:
            return None
        try:
            raw = self._provider.complete(prompt, max_tokens=10, temperature=0.0)
        except Exception as e:
            logger.warning("Intent classification failed: %s", e)
            return None
        return raw.strip().upper() if raw else None

    def classify_mention(self, text: str, *, on_unknown: MentionIntent) -> MentionIntent:
        key = ("mention", text_hash(text))
        if key not in self._cache:
            self._cache[key] = self._classify_mention(text)
        intent = self._cache[key]
        if intent is MentionIntent.UNKNOWN:
            logger.info("Could not classify mention; treating it as %s", on_unknown.value)
            return on_unknown
        return intent

    def _classify_mention(self, text: str) -> MentionIntent:
        if _EXPLICIT_REVIEW_RE.match(text.strip()):
            return MentionIntent.REVIEW_REQUEST
        answer = self._complete(_MENTION_PROMPT.format(text=text))
        if answer is None:
            return MentionIntent.UNKNOWN
        if "REVIEW" in answer:
            return MentionIntent.REVIEW_REQUEST
        if "QUESTION" in answer:
            return MentionIntent.QUESTION
        logger.debug("Unexpected mention classification: %r", answer)
        return MentionIntent.UNKNOWN

    def classify_reply(self, finding: str, reply: str, *, on_unknown: ReplyKind) -> ReplyKind:
        key = ("reply", text_hash(f"{finding}\n{reply}"))
        if key not in self._cache:
            self._cache[key] = self._classify_reply(finding, reply)
        kind = self._cache[key]
        if kind is ReplyKind.UNKNOWN:
            logger.info("Could not classify reply; treating it as %s", on_unknown.value)
            return on_unknown
        return kind

    def _classify_reply(self, finding: str, reply: str) -> ReplyKind:
        answer = self._complete(_REPLY_PROMPT.format(finding=finding, reply=reply))
        if answer is not None:
            for kind in (ReplyKind.CONCESSION, ReplyKind.QUESTION, ReplyKind.REBUTTAL):
                if kind.name in answer:
                    return kind
            logger.debug("Unexpected reply classification: %r", answer)
        if is_concession_phrase(reply):
            return ReplyKind.CONCESSION
        return ReplyKind.UNKNOWN
