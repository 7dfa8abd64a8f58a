"""StateManager — reconstructs review state from the comment stream.

There is no cache and no database: every run calls get_or_create_state(),
which re-reads every review and issue comment on the pull request and decodes
the status blocks they carry. The resulting ProcessState is an in-memory
materialized view for the length of one run only. Mutations write the new
block to the one comment it lives in (read, embed, update) and then mirror
the change into the view, so the view never needs to be re-read mid-run.

Only comments written by a configured bot user are trusted to carry
finding, review-status, auto-review-trigger and question-answer blocks.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Iterable

from prwarden_state.base import BaseCommentStore, CommentNotFoundError
from prwarden_state.blocks import (
    AutoReviewTriggerBlock,
    FindingBlock,
    ManualReviewBlock,
    QuestionAnswerBlock,
    QuestionBlock,
    ReviewStatusBlock,
)
from prwarden_state.codec import embed_block, extract_block
from prwarden_state.models import (
    Assessment,
    AutoReviewTrigger,
    Comment,
    DeveloperReply,
    ManualReviewStatus,
    OriginalComment,
    PassResult,
    ProcessState,
    QuestionStatus,
    ReviewThread,
    ThreadStatus,
)
from prwarden_state.similarity import is_duplicate_finding

logger = logging.getLogger(__name__)

_REVIEW_STATUS_HEADER = "### prwarden review status"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def render_finding(file: str, line: int, score: int, finding: str, assessment: str) -> str:
    """Human-readable prose posted above a finding block."""
    lines = [f"**{finding}**", ""]
    if assessment:
        lines += [assessment, ""]
    lines.append(f"_Severity: {score}/10_")
    return "\n".join(lines)


class StateManager:
    """Owns the ProcessState of one pull request for one run."""

    def __init__(
        self,
        store: BaseCommentStore,
        pr_number: int,
        head_sha: str,
        bot_users: Iterable[str] = (),
    ):
        self.store = store
        self.pr_number = pr_number
        self.head_sha = head_sha
        bot_users = tuple(bot_users)
        self._bot_users = frozenset(bot_users)
        self._bot_name = bot_users[0] if bot_users else "unknown"
        self._state: ProcessState | None = None
        self._issue_comments: list[Comment] = []
        self._answers: dict[int, str | None] = {}
        self._review_status_comment_id: int | None = None
        self._trigger_comments: list[tuple[int, AutoReviewTriggerBlock]] = []

    # ------------------------------------------------------------------ #
    # Reconstruction                                                       #
    # ------------------------------------------------------------------ #

    def is_bot(self, author: str) -> bool:
        return author in self._bot_users

    def get_or_create_state(self) -> ProcessState:
        """Return this run's view, reconstructing it on first use."""
        if self._state is None:
            self._state = self._reconstruct()
        return self._state

    def rebuild_state(self) -> ProcessState:
        """Discard the view and reconstruct from the comment stream."""
        self.invalidate()
        return self.get_or_create_state()

    def invalidate(self) -> None:
        self._state = None

    def _reconstruct(self) -> ProcessState:
        review_comments = self.store.list_review_comments()
        issue_comments = self.store.list_issue_comments()

        replies_by_root: dict[int, list[DeveloperReply]] = {}
        for c in review_comments:
            if c.in_reply_to_id is None or self.is_bot(c.author):
                continue
            replies_by_root.setdefault(c.in_reply_to_id, []).append(
                DeveloperReply(id=c.id, author=c.author, body=c.body, created_at=c.created_at)
            )

        threads: list[ReviewThread] = []
        for c in review_comments:
            if c.in_reply_to_id is not None or not self.is_bot(c.author):
                continue
            block = extract_block(c.body)
            if isinstance(block, FindingBlock):
                replies = sorted(replies_by_root.get(c.id, []), key=lambda r: (r.created_at, r.id))
                threads.append(self._thread_from_block(c, block, tuple(replies), on_review_comment=True))

        passes: tuple[PassResult, ...] = ()
        last_reviewed_sha = None
        answers: dict[int, str | None] = {}
        trigger_comments: list[tuple[int, AutoReviewTriggerBlock]] = []
        self._review_status_comment_id = None

        for c in issue_comments:
            if not self.is_bot(c.author):
                continue
            block = extract_block(c.body)
            if isinstance(block, FindingBlock):
                threads.append(self._thread_from_block(c, block, (), on_review_comment=False))
            elif isinstance(block, ReviewStatusBlock):
                # Latest wins; there is normally exactly one.
                self._review_status_comment_id = c.id
                passes = block.passes
                last_reviewed_sha = block.last_reviewed_sha
            elif isinstance(block, AutoReviewTriggerBlock):
                trigger_comments.append((c.id, block))
            elif isinstance(block, QuestionAnswerBlock):
                answers[block.reply_to_comment_id] = block.question_hash

        pending = None
        if trigger_comments:
            comment_id, latest = trigger_comments[-1]
            if latest.completed_at is None:
                pending = AutoReviewTrigger(comment_id=comment_id, action=latest.action, sha=latest.sha)

        self._issue_comments = issue_comments
        self._answers = answers
        self._trigger_comments = trigger_comments

        state = ProcessState(
            pr_number=self.pr_number,
            last_commit_sha=last_reviewed_sha or self.head_sha,
            threads=tuple(sorted(threads, key=lambda t: t.id)),
            passes=passes,
            pending_auto_review=pending,
        )
        logger.info(
            "Reconstructed state for PR #%d: %d thread(s), %d pass(es), pending trigger: %s",
            self.pr_number,
            len(state.threads),
            len(state.passes),
            pending.sha[:7] if pending else "none",
        )
        return state

    @staticmethod
    def _thread_from_block(
        comment: Comment,
        block: FindingBlock,
        replies: tuple[DeveloperReply, ...],
        on_review_comment: bool,
    ) -> ReviewThread:
        return ReviewThread(
            id=comment.id,
            file=block.file,
            line=block.line,
            status=block.status,
            score=block.score,
            assessment=Assessment(finding=block.finding, assessment=block.assessment, score=block.score),
            original_comment=OriginalComment(author=comment.author, body=comment.body, timestamp=comment.created_at),
            replies=replies,
            last_evaluated_reply_id=block.last_evaluated_reply_id,
            on_review_comment=on_review_comment,
        )

    # ------------------------------------------------------------------ #
    # Read helpers for the task detector                                   #
    # ------------------------------------------------------------------ #

    def issue_comments(self) -> list[Comment]:
        """Issue comments fetched during the last reconstruction, chronological."""
        self.get_or_create_state()
        return list(self._issue_comments)

    def answered_questions(self) -> dict[int, str | None]:
        """Map question comment id to the question hash recorded by its latest answer."""
        self.get_or_create_state()
        return dict(self._answers)

    def get_pending_auto_review_trigger(self, sha: str) -> AutoReviewTrigger | None:
        pending = self.get_or_create_state().pending_auto_review
        if pending is not None and pending.sha == sha:
            return pending
        return None

    def find_duplicate_thread(self, file: str, line: int, finding: str) -> ReviewThread | None:
        for thread in self.get_or_create_state().threads:
            if is_duplicate_finding(file, line, finding, thread.file, thread.line, thread.assessment.finding):
                return thread
        return None

    # ------------------------------------------------------------------ #
    # Mutations                                                            #
    # ------------------------------------------------------------------ #

    def _replace_state(self, **changes) -> None:
        self._state = dataclasses.replace(self.get_or_create_state(), **changes)

    def _replace_thread(self, thread: ReviewThread) -> None:
        state = self.get_or_create_state()
        others = [t for t in state.threads if t.id != thread.id]
        self._replace_state(threads=tuple(sorted([*others, thread], key=lambda t: t.id)))

    def update_thread_status(
        self,
        thread_id: int,
        status: ThreadStatus,
        evaluated_reply_id: int | None = None,
        resolution: str | None = None,
    ) -> ReviewThread:
        """Rewrite the thread's finding block with a new status.

        ``evaluated_reply_id`` records the developer reply this evaluation
        covered; the thread is not reported as disputed again until a newer
        reply arrives.
        """
        thread = self.get_or_create_state().get_thread(thread_id)
        if thread is None:
            raise CommentNotFoundError(f"thread {thread_id} is not part of the review state")

        if thread.on_review_comment:
            comment = self.store.get_review_comment(thread_id)
        else:
            comment = self.store.get_issue_comment(thread_id)

        block = extract_block(comment.body)
        if not isinstance(block, FindingBlock):
            block = FindingBlock(
                file=thread.file,
                line=thread.line,
                score=thread.score,
                finding=thread.assessment.finding,
                assessment=thread.assessment.assessment,
            )
        last_evaluated = evaluated_reply_id if evaluated_reply_id is not None else block.last_evaluated_reply_id
        block = dataclasses.replace(
            block,
            status=status,
            last_evaluated_reply_id=last_evaluated,
            resolution=resolution if resolution is not None else block.resolution,
        )
        body = embed_block(comment.body, block)
        if thread.on_review_comment:
            self.store.update_review_comment(thread_id, body)
        else:
            self.store.update_issue_comment(thread_id, body)

        updated = dataclasses.replace(
            thread,
            status=status,
            last_evaluated_reply_id=last_evaluated,
            original_comment=dataclasses.replace(thread.original_comment, body=body),
        )
        self._replace_thread(updated)
        logger.info("Thread %d: %s -> %s", thread_id, thread.status.value, status.value)
        return updated

    def post_finding(
        self,
        file: str,
        line: int,
        score: int,
        finding: str,
        assessment: str,
        on_review_comment: bool = True,
        body_prefix: str | None = None,
    ) -> ReviewThread | None:
        """Post a new finding, or return None when an equivalent thread exists."""
        duplicate = self.find_duplicate_thread(file, line, finding)
        if duplicate is not None:
            logger.info("Skipping duplicate finding on %s:%d (matches thread %d)", file, line, duplicate.id)
            return None

        block = FindingBlock(file=file, line=line, score=score, finding=finding, assessment=assessment)
        prose = body_prefix if body_prefix is not None else render_finding(file, line, score, finding, assessment)
        body = embed_block(prose, block)
        if on_review_comment:
            comment_id = self.store.post_review_comment(file, line, body)
        else:
            comment_id = self.store.post_issue_comment(body)

        comment = Comment(id=comment_id, author=self._bot_name, body=body, created_at=_now())
        thread = self._thread_from_block(comment, block, (), on_review_comment=on_review_comment)
        self._replace_thread(thread)
        return thread

    def record_pass_completion(self, result: PassResult) -> None:
        """Store the pass in the review-status block, replacing a pass with the same number."""
        state = self.get_or_create_state()
        passes = [p for p in state.passes if p.number != result.number]
        passes = tuple(sorted([*passes, result], key=lambda p: p.number))
        block = ReviewStatusBlock(last_reviewed_sha=self.head_sha, passes=passes)

        if self._review_status_comment_id is None:
            self._review_status_comment_id = self.store.post_issue_comment(embed_block(_REVIEW_STATUS_HEADER, block))
        else:
            comment = self.store.get_issue_comment(self._review_status_comment_id)
            self.store.update_issue_comment(self._review_status_comment_id, embed_block(comment.body, block))

        self._replace_state(passes=passes, last_commit_sha=self.head_sha)
        logger.info("Recorded pass %d (blocking: %s)", result.number, result.has_blocking_issues)

    def record_auto_review_trigger(self, action: str, sha: str) -> AutoReviewTrigger:
        """Mark an automatic review as started so an interrupted run can resume it."""
        pending = self.get_pending_auto_review_trigger(sha)
        if pending is not None:
            return pending

        block = AutoReviewTriggerBlock(action=action, sha=sha)
        prose = f"Automatic review started for `{sha[:7]}` ({action})."
        comment_id = self.store.post_issue_comment(embed_block(prose, block))
        self._trigger_comments.append((comment_id, block))

        trigger = AutoReviewTrigger(comment_id=comment_id, action=action, sha=sha)
        self._replace_state(pending_auto_review=trigger)
        return trigger

    def mark_auto_review_completed(self, sha: str) -> None:
        """Stamp every open trigger for ``sha`` as completed. Safe to repeat."""
        completed_at = _now()
        remaining = []
        for comment_id, block in self._trigger_comments:
            if block.sha == sha and block.completed_at is None:
                comment = self.store.get_issue_comment(comment_id)
                current = extract_block(comment.body)
                if isinstance(current, AutoReviewTriggerBlock) and current.completed_at is not None:
                    block = current
                else:
                    block = dataclasses.replace(block, completed_at=completed_at)
                    self.store.update_issue_comment(comment_id, embed_block(comment.body, block))
            remaining.append((comment_id, block))
        self._trigger_comments = remaining

        pending = self.get_or_create_state().pending_auto_review
        if pending is not None and pending.sha == sha:
            self._replace_state(pending_auto_review=None)

    def mark_question(self, comment_id: int, status: QuestionStatus) -> None:
        comment = self.store.get_issue_comment(comment_id)
        self.store.update_issue_comment(comment_id, embed_block(comment.body, QuestionBlock(status=status)))

    def post_question_answer(self, question_comment_id: int, question_hash: str, answer: str) -> int:
        block = QuestionAnswerBlock(
            reply_to_comment_id=question_comment_id,
            question_hash=question_hash,
            answered_at=_now(),
        )
        comment_id = self.store.post_issue_comment(embed_block(answer, block))
        self._answers[question_comment_id] = question_hash
        return comment_id

    def mark_manual_review(self, comment_id: int, status: ManualReviewStatus, reason: str | None = None) -> None:
        comment = self.store.get_issue_comment(comment_id)
        block = ManualReviewBlock(status=status, reason=reason)
        self.store.update_issue_comment(comment_id, embed_block(comment.body, block))
