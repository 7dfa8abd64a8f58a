"""Review state data models.

Decoupled from prwarden_core so the state layer can be used independently:
nothing here knows about the agent, the LLM, or the CLI. Every model is
frozen — components receive an immutable view of the state and propose
changes through StateManager, which swaps in a new snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

# Pseudo-path used for findings that are not anchored to a file, such as an
# insufficient PR description. Those findings live in issue comments.
PR_DESCRIPTION_PATH = "PR_DESCRIPTION"


class ThreadStatus(str, Enum):
    PENDING = "PENDING"
    DISPUTED = "DISPUTED"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class QuestionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    ANSWERED = "ANSWERED"


class ManualReviewStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    DISMISSED_BY_AUTO_REVIEW = "DISMISSED_BY_AUTO_REVIEW"
    DISMISSED_DUPLICATE = "DISMISSED_DUPLICATE"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ManualReviewStatus.COMPLETED,
            ManualReviewStatus.DISMISSED_BY_AUTO_REVIEW,
            ManualReviewStatus.DISMISSED_DUPLICATE,
        )


@dataclass(frozen=True)
class Comment:
    """A single pull request comment as returned by a comment store.

    ``kind`` is "review" for inline review-thread comments and "issue" for
    conversation comments. ``path``/``line``/``in_reply_to_id`` are only set
    for review comments.
    """

    id: int
    author: str
    body: str
    created_at: str  # ISO-8601 UTC timestamp
    kind: str = "issue"
    path: str | None = None
    line: int | None = None
    in_reply_to_id: int | None = None


@dataclass(frozen=True)
class DeveloperReply:
    id: int
    author: str
    body: str
    created_at: str


@dataclass(frozen=True)
class Assessment:
    finding: str
    assessment: str
    score: int


@dataclass(frozen=True)
class OriginalComment:
    author: str
    body: str
    timestamp: str


@dataclass(frozen=True)
class ReviewThread:
    """One finding and its resolution lifecycle.

    Identity is the id of the comment that first posted the finding block.
    Threads are never deleted; superseded findings are marked RESOLVED.
    """

    id: int
    file: str
    line: int
    status: ThreadStatus
    score: int
    assessment: Assessment
    original_comment: OriginalComment
    replies: tuple[DeveloperReply, ...] = ()
    last_evaluated_reply_id: int | None = None
    on_review_comment: bool = True

    @property
    def is_active(self) -> bool:
        return self.status in (ThreadStatus.PENDING, ThreadStatus.DISPUTED)

    @property
    def latest_reply(self) -> DeveloperReply | None:
        return self.replies[-1] if self.replies else None

    @property
    def has_unevaluated_reply(self) -> bool:
        latest = self.latest_reply
        return latest is not None and latest.id != self.last_evaluated_reply_id


@dataclass(frozen=True)
class PassResult:
    number: int
    completed: bool
    has_blocking_issues: bool


@dataclass(frozen=True)
class AutoReviewTrigger:
    comment_id: int
    action: str
    sha: str
    completed_at: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.completed_at is None


@dataclass(frozen=True)
class ProcessState:
    """Full reconstructed snapshot of one pull request's review state.

    Rebuilt from the comment stream at the start of every run; two runs
    observing the same comments produce equal snapshots.
    """

    pr_number: int
    last_commit_sha: str
    threads: tuple[ReviewThread, ...] = ()
    passes: tuple[PassResult, ...] = ()
    pending_auto_review: AutoReviewTrigger | None = None

    def get_thread(self, thread_id: int) -> ReviewThread | None:
        for thread in self.threads:
            if thread.id == thread_id:
                return thread
        return None

    def active_threads(self) -> list[ReviewThread]:
        return [t for t in self.threads if t.status != ThreadStatus.RESOLVED]


@dataclass
class StateCounts:
    """Aggregate issue counts over the non-resolved threads."""

    issues_found: int = 0
    blocking_issues: int = 0
    by_status: dict[str, int] = field(default_factory=dict)


def count_issues(state: ProcessState | None, blocking_threshold: int) -> StateCounts:
    if state is None:
        return StateCounts()
    active = state.active_threads()
    by_status: dict[str, int] = {}
    for thread in state.threads:
        by_status[thread.status.value] = by_status.get(thread.status.value, 0) + 1
    return StateCounts(
        issues_found=len(active),
        blocking_issues=sum(1 for t in active if t.score >= blocking_threshold),
        by_status=by_status,
    )
