"""Abstract comment store interface.

The pull request's comment stream is the only durable store prwarden has.
Every backend (GitHub, in-memory) implements this interface; StateManager
depends on BaseCommentStore, not on a concrete backend, so the dry-run mode
and the tests swap backends without touching reconstruction code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prwarden_state.models import Comment


class CommentStoreError(Exception):
    """A comment could not be read or written."""


class CommentNotFoundError(CommentStoreError):
    """The comment no longer exists (deleted or never visible to us)."""


class BaseCommentStore(ABC):
    """Read and write access to one pull request's comments.

    List methods must return *every* comment, across all pages, in
    chronological order. Write methods return the new comment's id.
    """

    @abstractmethod
    def list_review_comments(self) -> list[Comment]:
        """Return all inline review-thread comments, replies included."""

    @abstractmethod
    def list_issue_comments(self) -> list[Comment]:
        """Return all conversation (issue-level) comments."""

    @abstractmethod
    def get_review_comment(self, comment_id: int) -> Comment:
        """Raise CommentNotFoundError when the comment is gone."""

    @abstractmethod
    def get_issue_comment(self, comment_id: int) -> Comment:
        """Raise CommentNotFoundError when the comment is gone."""

    @abstractmethod
    def post_review_comment(self, path: str, line: int, body: str) -> int: ...

    @abstractmethod
    def reply_to_review_comment(self, comment_id: int, body: str) -> int: ...

    @abstractmethod
    def post_issue_comment(self, body: str) -> int: ...

    @abstractmethod
    def update_review_comment(self, comment_id: int, body: str) -> None: ...

    @abstractmethod
    def update_issue_comment(self, comment_id: int, body: str) -> None: ...
