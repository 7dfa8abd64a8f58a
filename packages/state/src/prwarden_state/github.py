"""GitHubCommentStore — the pull request's own comments as the state store.

Why the comment stream instead of a cache or database:
- It is the one store every run can see: no cache keys to miss, no database
  to provision, nothing that expires between workflow runs.
- It is append-only and multi-author, so every run re-reads it from scratch
  and reconstructs the same state (see StateManager).
- Writes are targeted read-modify-writes against single comments, which
  bounds the damage two concurrently triggered runs can do to each other.

PyGithub's PaginatedList walks every page lazily, so a thread with more
replies than one page holds is never truncated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from github import GithubException

from prwarden_state.base import BaseCommentStore, CommentNotFoundError, CommentStoreError
from prwarden_state.models import Comment

if TYPE_CHECKING:
    from github.PullRequest import PullRequest

logger = logging.getLogger(__name__)


def _wrap(action: str, error: GithubException) -> CommentStoreError:
    if error.status == 404:
        return CommentNotFoundError(f"{action}: not found")
    return CommentStoreError(f"{action}: {error.status} {error.data}")


def _timestamp(value) -> str:
    return value.isoformat() if value is not None else ""


def _from_review_comment(c) -> Comment:
    # c.line is None once the commented line disappears from the diff
    # (e.g. after a force-push); original_line still points at it.
    line = c.line if c.line is not None else getattr(c, "original_line", None)
    return Comment(
        id=c.id,
        author=c.user.login if c.user else "unknown",
        body=c.body or "",
        created_at=_timestamp(c.created_at),
        kind="review",
        path=c.path,
        line=line,
        in_reply_to_id=getattr(c, "in_reply_to_id", None),
    )


def _from_issue_comment(c) -> Comment:
    return Comment(
        id=c.id,
        author=c.user.login if c.user else "unknown",
        body=c.body or "",
        created_at=_timestamp(c.created_at),
        kind="issue",
    )


class GitHubCommentStore(BaseCommentStore):
    """Reads and writes one pull request's comments through PyGithub."""

    def __init__(self, pull: PullRequest):
        self._pull = pull
        self._head_commit = None

    def list_review_comments(self) -> list[Comment]:
        try:
            comments = [_from_review_comment(c) for c in self._pull.get_review_comments()]
        except GithubException as e:
            raise _wrap("list review comments", e) from e
        return sorted(comments, key=lambda c: (c.created_at, c.id))

    def list_issue_comments(self) -> list[Comment]:
        try:
            comments = [_from_issue_comment(c) for c in self._pull.get_issue_comments()]
        except GithubException as e:
            raise _wrap("list issue comments", e) from e
        return sorted(comments, key=lambda c: (c.created_at, c.id))

    def get_review_comment(self, comment_id: int) -> Comment:
        try:
            return _from_review_comment(self._pull.get_review_comment(comment_id))
        except GithubException as e:
            raise _wrap(f"get review comment {comment_id}", e) from e

    def get_issue_comment(self, comment_id: int) -> Comment:
        try:
            return _from_issue_comment(self._pull.get_issue_comment(comment_id))
        except GithubException as e:
            raise _wrap(f"get issue comment {comment_id}", e) from e

    def post_review_comment(self, path: str, line: int, body: str) -> int:
        try:
            if self._head_commit is None:
                self._head_commit = self._pull.base.repo.get_commit(self._pull.head.sha)
            comment = self._pull.create_review_comment(body, self._head_commit, path, line=line, side="RIGHT")
        except GithubException as e:
            raise _wrap(f"post review comment on {path}:{line}", e) from e
        logger.info("Posted review comment %d on %s:%d", comment.id, path, line)
        return comment.id

    def reply_to_review_comment(self, comment_id: int, body: str) -> int:
        try:
            comment = self._pull.create_review_comment_reply(comment_id, body)
        except GithubException as e:
            raise _wrap(f"reply to review comment {comment_id}", e) from e
        logger.info("Replied to review thread %d", comment_id)
        return comment.id

    def post_issue_comment(self, body: str) -> int:
        try:
            comment = self._pull.create_issue_comment(body)
        except GithubException as e:
            raise _wrap("post issue comment", e) from e
        logger.info("Posted issue comment %d", comment.id)
        return comment.id

    def update_review_comment(self, comment_id: int, body: str) -> None:
        try:
            self._pull.get_review_comment(comment_id).edit(body)
        except GithubException as e:
            raise _wrap(f"update review comment {comment_id}", e) from e

    def update_issue_comment(self, comment_id: int, body: str) -> None:
        try:
            self._pull.get_issue_comment(comment_id).edit(body)
        except GithubException as e:
            raise _wrap(f"update issue comment {comment_id}", e) from e
