"""Task detector — derives all pending work from the pull request's comments.

Scans, in order:
  1. disputes   — new developer replies on open finding threads
  2. questions  — bot mentions in conversation comments not yet answered
  3. reviews    — a resumable cancelled auto review, the triggering PR event,
                  or manual review requests found among the mentions

State comes only from status blocks; raw prose is never parsed for status.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prwarden_core.classifier import MentionIntent
from prwarden_core.tasks import ConversationMessage, DisputeTask, QuestionTask, ReviewTask, ReviewTrigger, Task
from prwarden_core.utils.mentions import (
    contains_mention,
    remove_mentions,
    requires_fresh_analysis,
    text_hash,
)
from prwarden_state.base import CommentNotFoundError, CommentStoreError
from prwarden_state.blocks import ManualReviewBlock, QuestionBlock
from prwarden_state.codec import extract_block, strip_block
from prwarden_state.models import ManualReviewStatus, QuestionStatus

if TYPE_CHECKING:
    from prwarden_core.classifier import IntentClassifier
    from prwarden_state.manager import StateManager
    from prwarden_state.models import Comment

logger = logging.getLogger(__name__)

AUTO_REVIEW_EVENTS = ("pull_request", "pull_request_target")
AUTO_REVIEW_ACTIONS = ("opened", "synchronize", "ready_for_review", "reopened")

_DISMISSED_BY_AUTO_MESSAGE = (
    "This review request was dismissed because an automatic review of this pull request "
    "is running in the same batch. Its results will appear as review comments."
)
_DISMISSED_DUPLICATE_MESSAGE = (
    "This review request was dismissed because another review of this pull request "
    "is running in the same batch."
)


class TaskDetector:
    def __init__(self, state: StateManager, classifier: IntentClassifier, config: dict):
        self.state = state
        self.classifier = classifier
        self.mentions = list(config["bot_mentions"])

    def detect_all_tasks(self, head_sha: str, trigger: ReviewTrigger | None = None) -> list[Task]:
        """Return the deduplicated pending tasks sorted by priority."""
        trigger = trigger or ReviewTrigger()
        logger.info("Detecting pending tasks...")
        self.state.get_or_create_state()

        disputes = self.detect_disputes()
        logger.info("Found %d pending dispute(s)", len(disputes))

        questions, manual_reviews = self.detect_mentions()
        logger.info("Found %d pending question(s)", len(questions))

        tasks: list[Task] = [*disputes, *questions]
        review = self.detect_review(head_sha, trigger)
        if review is not None:
            tasks.append(review)
        tasks.extend(manual_reviews)

        return self.deduplicate_and_prioritize(tasks)

    # ------------------------------------------------------------------ #
    # Disputes                                                             #
    # ------------------------------------------------------------------ #

    def detect_disputes(self) -> list[DisputeTask]:
        disputes = []
        for thread in self.state.get_or_create_state().threads:
            if not thread.is_active or not thread.on_review_comment:
                continue
            if not thread.has_unevaluated_reply:
                continue
            try:
                # The view was read at the start of the run; make sure the
                # thread still exists before handing it to the agent.
                self.state.store.get_review_comment(thread.id)
            except CommentNotFoundError:
                logger.warning("Thread %d appears to be deleted, skipping", thread.id)
                continue
            except CommentStoreError as e:
                logger.warning("Error checking thread %d: %s", thread.id, e)
                continue

            reply = thread.latest_reply
            disputes.append(
                DisputeTask(
                    thread_id=thread.id,
                    reply_id=reply.id,
                    reply_body=reply.body,
                    reply_author=reply.author,
                    file=thread.file,
                    line=thread.line,
                )
            )
        return disputes

    # ------------------------------------------------------------------ #
    # Questions and manual review requests                                 #
    # ------------------------------------------------------------------ #

    def detect_mentions(self) -> tuple[list[QuestionTask], list[ReviewTask]]:
        comments = self.state.issue_comments()
        answers = self.state.answered_questions()
        questions: list[QuestionTask] = []
        manual_reviews: list[ReviewTask] = []

        for comment in comments:
            if self.state.is_bot(comment.author):
                continue
            if not contains_mention(comment.body, self.mentions):
                continue

            block = extract_block(comment.body)
            if isinstance(block, ManualReviewBlock):
                if not block.status.is_terminal:
                    # Interrupted before it finished; pick it up again.
                    manual_reviews.append(self._manual_review(comment))
                continue

            text = remove_mentions(strip_block(comment.body), self.mentions)
            if not text:
                continue
            current_hash = text_hash(text)

            if comment.id in answers:
                recorded = answers[comment.id]
                if recorded is None or recorded == current_hash:
                    continue
                logger.info("Question %d was edited after being answered, reprocessing", comment.id)
            elif isinstance(block, QuestionBlock) and block.status == QuestionStatus.ANSWERED:
                continue

            intent = self.classifier.classify_mention(text, on_unknown=MentionIntent.QUESTION)
            if intent is MentionIntent.REVIEW_REQUEST:
                manual_reviews.append(self._manual_review(comment))
                continue

            fresh = requires_fresh_analysis(text)
            if fresh:
                logger.info("Question %d asks about the whole PR; answering without history", comment.id)
            questions.append(
                QuestionTask(
                    comment_id=comment.id,
                    question=text,
                    question_hash=current_hash,
                    author=comment.author,
                    requires_fresh_analysis=fresh,
                    history=() if fresh else self.conversation_history(comment, comments),
                )
            )
        return questions, manual_reviews

    @staticmethod
    def _manual_review(comment: Comment) -> ReviewTask:
        return ReviewTask(
            is_manual=True,
            triggered_by="manual-request",
            affects_merge_gate=False,
            trigger_comment_id=comment.id,
        )

    def conversation_history(self, current: Comment, comments: list[Comment]) -> tuple[ConversationMessage, ...]:
        """Every earlier conversation comment, oldest first, with status blocks removed."""
        key = (current.created_at, current.id)
        return tuple(
            ConversationMessage(
                author=c.author,
                body=strip_block(c.body),
                timestamp=c.created_at,
                is_bot=self.state.is_bot(c.author),
            )
            for c in comments
            if (c.created_at, c.id) < key
        )

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    def detect_review(self, head_sha: str, trigger: ReviewTrigger) -> ReviewTask | None:
        pending = self.state.get_pending_auto_review_trigger(head_sha)
        if pending is not None:
            logger.info("Resuming cancelled auto review (%s) for %s", pending.action, head_sha[:7])
            return ReviewTask(
                is_manual=False,
                triggered_by=pending.action,
                affects_merge_gate=True,
                resuming_cancelled=True,
            )

        if trigger.event_name in AUTO_REVIEW_EVENTS and trigger.action in AUTO_REVIEW_ACTIONS:
            return ReviewTask(is_manual=False, triggered_by=trigger.action, affects_merge_gate=True)

        if trigger.force_review:
            return ReviewTask(
                is_manual=True,
                triggered_by="manual-request",
                affects_merge_gate=False,
                trigger_comment_id=trigger.comment_id,
            )
        return None

    # ------------------------------------------------------------------ #
    # Deduplication                                                        #
    # ------------------------------------------------------------------ #

    def deduplicate_and_prioritize(self, tasks: list[Task]) -> list[Task]:
        """Keep one review per batch; an automatic review supersedes manual requests."""
        has_auto = any(isinstance(t, ReviewTask) and not t.is_manual for t in tasks)
        seen: set[str] = set()
        kept_manual = False
        result: list[Task] = []

        for task in tasks:
            if task.key in seen:
                continue
            seen.add(task.key)
            if isinstance(task, ReviewTask) and task.is_manual:
                if has_auto:
                    logger.info("Dismissing manual review request (handled by auto review)")
                    self._dismiss(task, ManualReviewStatus.DISMISSED_BY_AUTO_REVIEW, _DISMISSED_BY_AUTO_MESSAGE)
                    continue
                if kept_manual:
                    logger.info("Dismissing duplicate manual review request %s", task.trigger_comment_id)
                    self._dismiss(task, ManualReviewStatus.DISMISSED_DUPLICATE, _DISMISSED_DUPLICATE_MESSAGE)
                    continue
                kept_manual = True
            result.append(task)

        # sorted() is stable, so detection order holds within a priority.
        return sorted(result, key=lambda t: t.priority)

    def _dismiss(self, task: ReviewTask, status: ManualReviewStatus, message: str) -> None:
        if task.trigger_comment_id is None:
            return
        try:
            self.state.mark_manual_review(task.trigger_comment_id, status, reason=message)
            self.state.store.post_issue_comment(message)
        except CommentStoreError as e:
            logger.warning("Failed to dismiss manual review %d: %s", task.trigger_comment_id, e)
