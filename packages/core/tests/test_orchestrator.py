"""Tests for sequential task execution and review bookkeeping."""

from __future__ import annotations

import dataclasses
from unittest.mock import AsyncMock, MagicMock

import pytest

from prwarden_core.config import DEFAULT_CONFIG
from prwarden_core.errors import ReviewError
from prwarden_core.executor import ReviewOutput
from prwarden_core.gh.pull_request import PullRequestInfo
from prwarden_core.orchestrator import TaskOrchestrator
from prwarden_core.tasks import DisputeTask, QuestionTask, ReviewTask
from prwarden_state.blocks import AutoReviewTriggerBlock, FindingBlock, ManualReviewBlock, QuestionAnswerBlock
from prwarden_state.codec import embed_block, extract_block, strip_block
from prwarden_state.manager import StateManager
from prwarden_state.memory import InMemoryCommentStore
from prwarden_state.models import PR_DESCRIPTION_PATH, Comment, ManualReviewStatus, QuestionStatus, ThreadStatus

BOT = "prwarden[bot]"
HEAD = "e" * 40

PR = PullRequestInfo(
    number=7,
    title="Add upload retries",
    body="Retry failed uploads up to three times with exponential backoff.",
    head_sha=HEAD,
    head_ref="feature/retry",
    base_sha="b" * 40,
    base_ref="main",
    changed_files=("src/a.ts",),
)

AUTO = ReviewTask(is_manual=False, triggered_by="synchronize", affects_merge_gate=True)


def _issue(cid, body, author="dev", minute=0):
    return Comment(id=cid, author=author, body=body, created_at=f"2024-05-01T10:{minute:02d}:00+00:00")


def _executor(output=None):
    executor = MagicMock()
    executor.execute_review = AsyncMock(return_value=output or ReviewOutput())
    executor.resolve_dispute = AsyncMock(return_value=ThreadStatus.RESOLVED)
    executor.answer_question = AsyncMock(return_value="Jitter is added in `backoff()`.")
    executor.close = AsyncMock()
    return executor


def _orchestrator(comments=(), executor=None, pr=PR, workspace=None, **config):
    store = InMemoryCommentStore(comments)
    state = StateManager(store, pr_number=7, head_sha=HEAD, bot_users=[BOT])
    executor = executor or _executor()
    orchestrator = TaskOrchestrator(state, executor, pr, {**DEFAULT_CONFIG, **config}, provider=None, workspace=workspace)
    return orchestrator, executor, state, store


def _manual(comment_id=400):
    return ReviewTask(is_manual=True, triggered_by="manual-request", affects_merge_gate=False, trigger_comment_id=comment_id)


def _question(comment_id=300):
    return QuestionTask(comment_id=comment_id, question="why no jitter?", question_hash="0badcafe", author="dev")


# ---------------------------------------------------------------------------
# Batch execution
# ---------------------------------------------------------------------------


class TestExecute:
    @pytest.mark.asyncio
    async def test_empty_batch(self):
        orchestrator, executor, _, _ = _orchestrator()
        result = await orchestrator.execute([])
        assert result.results == []
        assert not result.should_fail
        executor.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_batch(self):
        executor = _executor()
        executor.answer_question.side_effect = ReviewError("agent gave no answer")
        dispute = DisputeTask(thread_id=100, reply_id=101, reply_body="ok", reply_author="dev", file="src/a.ts", line=3)
        orchestrator, _, _, _ = _orchestrator([_issue(300, "@prwarden why no jitter?")], executor)

        result = await orchestrator.execute([_question(), dispute])

        assert [r.success for r in result.results] == [False, True]
        assert result.results[0].error == "agent gave no answer"
        assert result.failed_tasks == [result.results[0]]
        executor.resolve_dispute.assert_awaited_once_with(dispute)

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_failed_results(self):
        executor = _executor()
        executor.execute_review.side_effect = RuntimeError("boom")
        orchestrator, _, _, _ = _orchestrator(executor=executor)

        result = await orchestrator.execute([AUTO])

        assert not result.results[0].success
        assert result.results[0].error == "boom"
        executor.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_final_counts_come_from_state(self):
        block = FindingBlock("src/a.ts", 3, 9, "Missing null check", "")
        finding = Comment(id=100, author=BOT, body=embed_block("x", block), created_at="2024-05-01T10:00:00+00:00",
                          kind="review", path="src/a.ts", line=3)
        orchestrator, _, _, _ = _orchestrator([finding])
        result = await orchestrator.execute([])
        assert (result.issues_found, result.blocking_issues) == (1, 1)


# ---------------------------------------------------------------------------
# Questions
# ---------------------------------------------------------------------------


class TestQuestion:
    @pytest.mark.asyncio
    async def test_answer_is_posted_and_question_marked(self):
        orchestrator, _, state, store = _orchestrator([_issue(300, "@prwarden why no jitter?")])

        result = await orchestrator.execute([_question()])

        assert result.results[0].success
        assert extract_block(store.get_issue_comment(300).body).status is QuestionStatus.ANSWERED
        answers = [c for c in store.list_issue_comments() if isinstance(extract_block(c.body), QuestionAnswerBlock)]
        assert len(answers) == 1
        block = extract_block(answers[0].body)
        assert (block.reply_to_comment_id, block.question_hash) == (300, "0badcafe")
        assert strip_block(answers[0].body).startswith("Jitter is added in `backoff()`.")
        assert "Answered by prwarden" in answers[0].body
        assert state.answered_questions() == {300: "0badcafe"}

    @pytest.mark.asyncio
    async def test_failed_answer_stays_in_progress(self):
        executor = _executor()
        executor.answer_question.side_effect = ReviewError("agent gave no answer")
        orchestrator, _, _, store = _orchestrator([_issue(300, "@prwarden why no jitter?")], executor)

        await orchestrator.execute([_question()])

        assert extract_block(store.get_issue_comment(300).body).status is QuestionStatus.IN_PROGRESS


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class TestAutoReview:
    @pytest.mark.asyncio
    async def test_success_completes_trigger(self):
        output = ReviewOutput(issues_found=2, blocking_issues=1, passes_completed=3)
        orchestrator, executor, state, store = _orchestrator(executor=_executor(output))

        result = await orchestrator.execute([AUTO])

        assert result.had_auto_review and result.review_completed
        assert result.has_blocking_issues
        assert result.should_fail
        triggers = [extract_block(c.body) for c in store.list_issue_comments()]
        triggers = [b for b in triggers if isinstance(b, AutoReviewTriggerBlock)]
        assert len(triggers) == 1
        assert (triggers[0].action, triggers[0].sha) == ("synchronize", HEAD)
        assert triggers[0].completed_at is not None
        assert state.get_pending_auto_review_trigger(HEAD) is None
        executor.execute_review.assert_awaited_once_with(orchestrator.load_task_info())

    @pytest.mark.asyncio
    async def test_failure_leaves_trigger_pending(self):
        executor = _executor()
        executor.execute_review.side_effect = ReviewError("review failed after 2 attempt(s)")
        orchestrator, _, state, _ = _orchestrator(executor=executor)

        result = await orchestrator.execute([AUTO])

        assert result.had_auto_review
        assert not result.review_completed
        assert not result.should_fail
        assert state.rebuild_state().pending_auto_review.sha == HEAD

    @pytest.mark.asyncio
    async def test_resumed_review_reuses_trigger(self):
        trigger = _issue(500, embed_block("started", AutoReviewTriggerBlock("synchronize", HEAD)), author=BOT)
        orchestrator, _, _, store = _orchestrator([trigger])
        resumed = dataclasses.replace(AUTO, resuming_cancelled=True)

        await orchestrator.execute([resumed])

        assert not [w for w in store.writes if w.action == "post-issue"]
        assert extract_block(store.get_issue_comment(500).body).completed_at is not None


class TestManualReview:
    @pytest.mark.asyncio
    async def test_success_posts_start_and_end(self):
        orchestrator, _, _, store = _orchestrator([_issue(400, "@prwarden review")])

        result = await orchestrator.execute([_manual()])

        assert result.had_manual_review and not result.had_auto_review
        assert extract_block(store.get_issue_comment(400).body).status is ManualReviewStatus.COMPLETED
        posted = [w.body for w in store.writes if w.action == "post-issue"]
        assert posted[0].startswith("**Review started.**")
        assert posted[-1] == "**Review complete.** No issues found!"

    @pytest.mark.asyncio
    async def test_blocking_issues_never_fail_a_manual_run(self):
        output = ReviewOutput(issues_found=3, blocking_issues=2)
        orchestrator, _, _, store = _orchestrator([_issue(400, "@prwarden review")], _executor(output))

        result = await orchestrator.execute([_manual()])

        assert result.has_blocking_issues
        assert not result.should_fail
        assert "including 2 blocking issue(s)" in store.writes[-1].body

    @pytest.mark.asyncio
    async def test_failure_completes_with_reason(self):
        executor = _executor()
        executor.execute_review.side_effect = ReviewError("agent is looping")
        orchestrator, _, _, store = _orchestrator([_issue(400, "@prwarden review")], executor)

        result = await orchestrator.execute([_manual()])

        assert not result.results[0].success
        block = extract_block(store.get_issue_comment(400).body)
        assert block == ManualReviewBlock(ManualReviewStatus.COMPLETED, reason="agent is looping")
        assert store.writes[-1].body == "**Review failed.** agent is looping"

    @pytest.mark.asyncio
    async def test_comments_can_be_disabled(self):
        orchestrator, _, _, store = _orchestrator(
            [_issue(400, "@prwarden review")], manual_start_comment=False, manual_end_comment=False
        )
        await orchestrator.execute([_manual()])
        assert not [w for w in store.writes if w.action == "post-issue"]

    @pytest.mark.asyncio
    async def test_forced_review_without_comment(self):
        orchestrator, executor, _, store = _orchestrator()
        result = await orchestrator.execute([_manual(comment_id=None)])
        assert result.results[0].success
        assert store.writes == []
        executor.execute_review.assert_awaited_once()


# ---------------------------------------------------------------------------
# Task info
# ---------------------------------------------------------------------------


class TestLoadTaskInfo:
    def test_not_required_and_empty(self):
        orchestrator, _, _, _ = _orchestrator(pr=dataclasses.replace(PR, body=""))
        assert orchestrator.load_task_info() is None

    def test_linked_file_is_read(self, tmp_path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "task.md").write_text("Uploads must retry three times.")
        pr = dataclasses.replace(PR, body="Implements the retry task, see docs/task.md")
        orchestrator, _, _, _ = _orchestrator(pr=pr, workspace=tmp_path)

        info = orchestrator.load_task_info()

        assert [f.path for f in info.linked_files] == ["docs/task.md"]
        assert "Uploads must retry three times." in info.description

    def test_insufficient_description_posts_blocking_finding(self):
        orchestrator, _, state, store = _orchestrator(pr=dataclasses.replace(PR, body="fix"), require_task_info=True)

        with pytest.raises(ReviewError, match="too short"):
            orchestrator.load_task_info()

        (thread,) = state.get_or_create_state().threads
        assert (thread.file, thread.line, thread.score) == (PR_DESCRIPTION_PATH, 0, 10)
        assert not thread.on_review_comment
        assert [w.action for w in store.writes] == ["post-issue"]

    @pytest.mark.asyncio
    async def test_insufficient_description_fails_review_task(self):
        orchestrator, executor, _, _ = _orchestrator(pr=dataclasses.replace(PR, body=""), require_task_info=True)
        result = await orchestrator.execute([AUTO])
        assert not result.results[0].success
        assert result.blocking_issues == 1
        executor.execute_review.assert_not_awaited()

    def test_resolved_description_finding_is_reopened(self):
        orchestrator, _, state, store = _orchestrator(pr=dataclasses.replace(PR, body="fix"), require_task_info=True)
        with pytest.raises(ReviewError):
            orchestrator.load_task_info()
        (thread,) = state.get_or_create_state().threads
        state.update_thread_status(thread.id, ThreadStatus.RESOLVED)

        with pytest.raises(ReviewError):
            orchestrator.load_task_info()

        assert state.get_or_create_state().get_thread(thread.id).status is ThreadStatus.PENDING
        assert len([w for w in store.writes if w.action == "post-issue"]) == 1

    def test_sufficient_description_resolves_open_finding(self):
        block = FindingBlock(PR_DESCRIPTION_PATH, 0, 10, "Insufficient task description in the PR description", "")
        finding = _issue(600, embed_block("x", block), author=BOT)
        orchestrator, _, state, store = _orchestrator([finding], require_task_info=True)

        info = orchestrator.load_task_info()

        assert info.is_sufficient
        assert state.get_or_create_state().get_thread(600).status is ThreadStatus.RESOLVED
        assert extract_block(store.get_issue_comment(600).body).resolution == "description updated"
