"""Task types — the pending work detected on a pull request.

Tasks are recomputed on every run and never persisted. Each kind carries a
fixed priority; lower runs first (disputes, then questions, then reviews).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

DISPUTE_PRIORITY = 1
QUESTION_PRIORITY = 2
REVIEW_PRIORITY = 3


@dataclass(frozen=True)
class ConversationMessage:
    author: str
    body: str
    timestamp: str
    is_bot: bool


@dataclass(frozen=True)
class DisputeTask:
    thread_id: int
    reply_id: int
    reply_body: str
    reply_author: str
    file: str
    line: int
    kind: Literal["dispute-resolution"] = "dispute-resolution"
    priority: int = DISPUTE_PRIORITY

    @property
    def key(self) -> str:
        return f"dispute-{self.thread_id}"


@dataclass(frozen=True)
class QuestionTask:
    comment_id: int
    question: str
    question_hash: str
    author: str
    file_context: str | None = None
    requires_fresh_analysis: bool = False
    history: tuple[ConversationMessage, ...] = field(default_factory=tuple)
    kind: Literal["question-answering"] = "question-answering"
    priority: int = QUESTION_PRIORITY

    @property
    def key(self) -> str:
        return f"question-{self.comment_id}"


@dataclass(frozen=True)
class ReviewTask:
    is_manual: bool
    triggered_by: str  # PR event action ("opened", "synchronize", ...) or "manual-request"
    affects_merge_gate: bool
    trigger_comment_id: int | None = None
    resuming_cancelled: bool = False
    kind: Literal["full-review"] = "full-review"
    priority: int = REVIEW_PRIORITY

    @property
    def key(self) -> str:
        if self.is_manual:
            return f"review-{self.trigger_comment_id}"
        return "review-auto"


Task = Union[DisputeTask, QuestionTask, ReviewTask]


@dataclass(frozen=True)
class ReviewTrigger:
    """What started this run, resolved by the CLI from the CI event."""

    event_name: str | None = None  # "pull_request", "issue_comment", ...
    action: str | None = None  # "opened", "synchronize", "created", ...
    comment_id: int | None = None
    force_review: bool = False


@dataclass
class TaskResult:
    task: Task
    success: bool
    issues_found: int = 0
    blocking_issues: int = 0
    error: str | None = None


@dataclass
class ExecutionResult:
    results: list[TaskResult] = field(default_factory=list)
    has_blocking_issues: bool = False
    review_completed: bool = False
    had_auto_review: bool = False
    had_manual_review: bool = False
    issues_found: int = 0
    blocking_issues: int = 0

    @property
    def should_fail(self) -> bool:
        """Blocking issues fail the run only when an automatic review ran."""
        return self.has_blocking_issues and self.had_auto_review

    @property
    def failed_tasks(self) -> list[TaskResult]:
        return [r for r in self.results if not r.success]
