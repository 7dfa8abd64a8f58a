"""Status block types — the only persisted state.

Each block is a small JSON object tagged by its ``type`` discriminator and
embedded in exactly one comment. ``from_dict`` returns None for anything
malformed: a bad block is treated as no block, never as an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from prwarden_state.models import ManualReviewStatus, PassResult, QuestionStatus, ThreadStatus


def _get_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _get_int(data: dict, key: str) -> int | None:
    value = data.get(key)
    # bool is an int subclass; `"line": true` is not a line number.
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _get_enum(enum_cls, data: dict, key: str, default=None):
    raw = data.get(key)
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        return None


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class FindingBlock:
    TYPE: ClassVar[str] = "finding"

    file: str
    line: int
    score: int
    finding: str
    assessment: str
    status: ThreadStatus = ThreadStatus.PENDING
    last_evaluated_reply_id: int | None = None
    resolution: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.TYPE,
                "file": self.file,
                "line": self.line,
                "score": self.score,
                "finding": self.finding,
                "assessment": self.assessment,
                "status": self.status.value,
                "last_evaluated_reply_id": self.last_evaluated_reply_id,
                "resolution": self.resolution,
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> FindingBlock | None:
        file = _get_str(data, "file")
        line = _get_int(data, "line")
        score = _get_int(data, "score")
        finding = _get_str(data, "finding")
        assessment = _get_str(data, "assessment") or ""
        status = _get_enum(ThreadStatus, data, "status", ThreadStatus.PENDING)
        if file is None or line is None or finding is None or status is None:
            return None
        if score is None or not 1 <= score <= 10:
            return None
        return cls(
            file=file,
            line=line,
            score=score,
            finding=finding,
            assessment=assessment,
            status=status,
            last_evaluated_reply_id=_get_int(data, "last_evaluated_reply_id"),
            resolution=_get_str(data, "resolution"),
        )


@dataclass(frozen=True)
class QuestionBlock:
    TYPE: ClassVar[str] = "question"

    status: QuestionStatus

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE, "status": self.status.value}

    @classmethod
    def from_dict(cls, data: dict) -> QuestionBlock | None:
        status = _get_enum(QuestionStatus, data, "status")
        return cls(status=status) if status is not None else None


@dataclass(frozen=True)
class QuestionAnswerBlock:
    TYPE: ClassVar[str] = "question-answer"

    reply_to_comment_id: int
    question_hash: str | None = None
    answered_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.TYPE,
                "reply_to_comment_id": self.reply_to_comment_id,
                "question_hash": self.question_hash,
                "answered_at": self.answered_at,
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> QuestionAnswerBlock | None:
        reply_to = _get_int(data, "reply_to_comment_id")
        if reply_to is None:
            # Older answers stored the id as a string.
            raw = _get_str(data, "reply_to_comment_id")
            if raw is None or not raw.isdigit():
                return None
            reply_to = int(raw)
        return cls(
            reply_to_comment_id=reply_to,
            question_hash=_get_str(data, "question_hash"),
            answered_at=_get_str(data, "answered_at"),
        )


@dataclass(frozen=True)
class ManualReviewBlock:
    TYPE: ClassVar[str] = "manual-pr-review"

    status: ManualReviewStatus
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({"type": self.TYPE, "status": self.status.value, "reason": self.reason})

    @classmethod
    def from_dict(cls, data: dict) -> ManualReviewBlock | None:
        status = _get_enum(ManualReviewStatus, data, "status")
        if status is None:
            return None
        return cls(status=status, reason=_get_str(data, "reason"))


@dataclass(frozen=True)
class AutoReviewTriggerBlock:
    TYPE: ClassVar[str] = "auto-review-trigger"

    action: str
    sha: str
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.TYPE,
                "action": self.action,
                "sha": self.sha,
                "completed_at": self.completed_at,
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> AutoReviewTriggerBlock | None:
        action = _get_str(data, "action")
        sha = _get_str(data, "sha")
        if not action or not sha:
            return None
        return cls(action=action, sha=sha, completed_at=_get_str(data, "completed_at"))


@dataclass(frozen=True)
class ReviewStatusBlock:
    TYPE: ClassVar[str] = "review-status"

    last_reviewed_sha: str | None = None
    passes: tuple[PassResult, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.TYPE,
                "last_reviewed_sha": self.last_reviewed_sha,
                "passes": [
                    {
                        "number": p.number,
                        "completed": p.completed,
                        "has_blocking_issues": p.has_blocking_issues,
                    }
                    for p in self.passes
                ],
            }
        )

    @classmethod
    def from_dict(cls, data: dict) -> ReviewStatusBlock | None:
        raw_passes = data.get("passes", [])
        if not isinstance(raw_passes, list):
            return None
        passes = []
        for p in raw_passes:
            if not isinstance(p, dict):
                continue
            number = _get_int(p, "number")
            if number is None:
                continue
            passes.append(
                PassResult(
                    number=number,
                    completed=bool(p.get("completed", False)),
                    has_blocking_issues=bool(p.get("has_blocking_issues", False)),
                )
            )
        return cls(last_reviewed_sha=_get_str(data, "last_reviewed_sha"), passes=tuple(passes))


StatusBlock = Union[
    FindingBlock,
    QuestionBlock,
    QuestionAnswerBlock,
    ManualReviewBlock,
    AutoReviewTriggerBlock,
    ReviewStatusBlock,
]

BLOCK_TYPES: dict[str, type] = {
    cls.TYPE: cls
    for cls in (
        FindingBlock,
        QuestionBlock,
        QuestionAnswerBlock,
        ManualReviewBlock,
        AutoReviewTriggerBlock,
        ReviewStatusBlock,
    )
}


def block_from_dict(data: Any) -> StatusBlock | None:
    """Dispatch on the ``type`` discriminator; unknown types yield None."""
    if not isinstance(data, dict):
        return None
    block_cls = BLOCK_TYPES.get(data.get("type"))
    if block_cls is None:
        return None
    return block_cls.from_dict(data)
