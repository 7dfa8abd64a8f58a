"""In-memory comment store — dry runs and tests.

Seeded from a snapshot of real comments (or nothing), it accepts every write
without touching GitHub and remembers what was written, so `prwarden run
--dry-run` can show exactly what a live run would have posted.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Iterable

from prwarden_state.base import BaseCommentStore, CommentNotFoundError
from prwarden_state.models import Comment

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class RecordedWrite:
    """One write accepted by the store, in the order it happened."""

    action: str  # "post-review" | "reply" | "post-issue" | "update-review" | "update-issue"
    comment_id: int
    body: str
    path: str | None = None
    line: int | None = None


class InMemoryCommentStore(BaseCommentStore):
    """Keeps comments in a dict; ids and timestamps are deterministic.

    New comments are stamped one second after the newest known comment so
    chronological order always matches write order.
    """

    def __init__(self, comments: Iterable[Comment] = (), author: str = "prwarden[bot]"):
        self._comments: dict[int, Comment] = {c.id: c for c in comments}
        self._author = author
        start = max(self._comments, default=1000) + 1
        self._ids = itertools.count(start)
        self.writes: list[RecordedWrite] = []

    @classmethod
    def snapshot(cls, source: BaseCommentStore, author: str = "prwarden[bot]") -> InMemoryCommentStore:
        """Copy every comment from ``source`` into a new in-memory store."""
        return cls([*source.list_review_comments(), *source.list_issue_comments()], author=author)

    def _next_timestamp(self) -> str:
        latest = max((c.created_at for c in self._comments.values()), default=None)
        base = datetime.fromisoformat(latest) if latest else _EPOCH
        return (base + timedelta(seconds=1)).isoformat()

    def _add(self, **fields) -> Comment:
        comment = Comment(
            id=next(self._ids),
            author=fields.pop("author", self._author),
            created_at=self._next_timestamp(),
            **fields,
        )
        self._comments[comment.id] = comment
        return comment

    def _get(self, comment_id: int, kind: str) -> Comment:
        comment = self._comments.get(comment_id)
        if comment is None or comment.kind != kind:
            raise CommentNotFoundError(f"{kind} comment {comment_id}: not found")
        return comment

    def _list(self, kind: str) -> list[Comment]:
        return sorted(
            (c for c in self._comments.values() if c.kind == kind),
            key=lambda c: (c.created_at, c.id),
        )

    def list_review_comments(self) -> list[Comment]:
        return self._list("review")

    def list_issue_comments(self) -> list[Comment]:
        return self._list("issue")

    def get_review_comment(self, comment_id: int) -> Comment:
        return self._get(comment_id, "review")

    def get_issue_comment(self, comment_id: int) -> Comment:
        return self._get(comment_id, "issue")

    def post_review_comment(self, path: str, line: int, body: str) -> int:
        comment = self._add(body=body, kind="review", path=path, line=line)
        self.writes.append(RecordedWrite("post-review", comment.id, body, path=path, line=line))
        return comment.id

    def reply_to_review_comment(self, comment_id: int, body: str) -> int:
        root = self._get(comment_id, "review")
        comment = self._add(body=body, kind="review", path=root.path, line=root.line, in_reply_to_id=root.id)
        self.writes.append(RecordedWrite("reply", comment.id, body, path=root.path, line=root.line))
        return comment.id

    def post_issue_comment(self, body: str) -> int:
        comment = self._add(body=body, kind="issue")
        self.writes.append(RecordedWrite("post-issue", comment.id, body))
        return comment.id

    def update_review_comment(self, comment_id: int, body: str) -> None:
        self._comments[comment_id] = replace(self._get(comment_id, "review"), body=body)
        self.writes.append(RecordedWrite("update-review", comment_id, body))

    def update_issue_comment(self, comment_id: int, body: str) -> None:
        self._comments[comment_id] = replace(self._get(comment_id, "issue"), body=body)
        self.writes.append(RecordedWrite("update-issue", comment_id, body))
