"""Task orchestrator — executes detected tasks strictly one after another.

Tasks share one agent session, and their order (disputes, questions,
reviews) is a policy, so nothing runs concurrently. A failing task becomes
a failed TaskResult carrying the current issue counts; the rest of the batch
still runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from prwarden_core.errors import ReviewError
from prwarden_core.task_info import extract_task_info
from prwarden_core.tasks import DisputeTask, ExecutionResult, QuestionTask, ReviewTask, TaskResult
from prwarden_state.base import CommentStoreError
from prwarden_state.models import PR_DESCRIPTION_PATH, ManualReviewStatus, QuestionStatus, ThreadStatus, count_issues

if TYPE_CHECKING:
    from prwarden_core.executor import ReviewExecutor, ReviewOutput
    from prwarden_core.gh.pull_request import PullRequestInfo
    from prwarden_core.providers.base import BaseProvider
    from prwarden_core.task_info import TaskInfo
    from prwarden_core.tasks import Task
    from prwarden_state.manager import StateManager

logger = logging.getLogger(__name__)

_DESCRIPTION_FINDING = "Insufficient task description in the PR description"
_DESCRIPTION_GUIDANCE = (
    "Describe what this pull request is meant to do, or link a task file "
    "(for example `see docs/task.md`), so the change can be reviewed against its requirements."
)
_ANSWER_FOOTER = "\n\n---\n*Answered by prwarden*"
_MANUAL_START = "**Review started.** I'm analyzing this PR now..."


def _manual_end_message(output: ReviewOutput) -> str:
    if output.issues_found == 0:
        return "**Review complete.** No issues found!"
    if output.blocking_issues > 0:
        return (
            f"**Review complete.** Found {output.issues_found} issue(s), "
            f"including {output.blocking_issues} blocking issue(s). Please review the comments above."
        )
    return f"**Review complete.** Found {output.issues_found} issue(s). Please review the comments above."


def _summarize(tasks: list[Task]) -> str:
    counts: dict[str, int] = {}
    for task in tasks:
        counts[task.kind] = counts.get(task.kind, 0) + 1
    return ", ".join(f"{n} {kind}" for kind, n in counts.items()) or "none"


class TaskOrchestrator:
    def __init__(
        self,
        state: StateManager,
        executor: ReviewExecutor,
        pr: PullRequestInfo,
        config: dict,
        provider: BaseProvider | None = None,
        workspace: Path | None = None,
    ):
        self.state = state
        self.executor = executor
        self.pr = pr
        self.config = config
        self.provider = provider
        self.workspace = workspace or Path.cwd()

    async def execute(self, tasks: list[Task]) -> ExecutionResult:
        logger.info("Executing %d task(s): %s", len(tasks), _summarize(tasks))
        result = ExecutionResult()
        try:
            for task in tasks:
                task_result = await self._execute_task(task)
                result.results.append(task_result)
                if task_result.blocking_issues > 0:
                    result.has_blocking_issues = True
                if isinstance(task, ReviewTask):
                    # An automatic review gates the merge even when it failed to finish.
                    if task.affects_merge_gate:
                        result.had_auto_review = True
                    else:
                        result.had_manual_review = True
                    if task_result.success:
                        result.review_completed = True
        finally:
            await self.executor.close()

        counts = count_issues(self.state.get_or_create_state(), self.config["blocking_threshold"])
        result.issues_found = counts.issues_found
        result.blocking_issues = counts.blocking_issues
        logger.info(
            "Executed %d task(s), %d failed; %d open issue(s), %d blocking",
            len(result.results),
            len(result.failed_tasks),
            result.issues_found,
            result.blocking_issues,
        )
        return result

    async def _execute_task(self, task: Task) -> TaskResult:
        try:
            if isinstance(task, DisputeTask):
                return await self._execute_dispute(task)
            if isinstance(task, QuestionTask):
                return await self._execute_question(task)
            if isinstance(task, ReviewTask):
                return await self._execute_review(task)
            raise ReviewError(f"unknown task kind: {task!r}")
        except Exception as e:
            logger.error("Task %s failed: %s", task.key, e)
            counts = count_issues(self.state.get_or_create_state(), self.config["blocking_threshold"])
            return TaskResult(
                task=task,
                success=False,
                issues_found=counts.issues_found,
                blocking_issues=counts.blocking_issues,
                error=str(e),
            )

    # ------------------------------------------------------------------ #
    # Disputes and questions                                               #
    # ------------------------------------------------------------------ #

    async def _execute_dispute(self, task: DisputeTask) -> TaskResult:
        logger.info("Processing reply from %s on thread %d (%s:%d)", task.reply_author, task.thread_id, task.file, task.line)
        status = await self.executor.resolve_dispute(task)
        logger.info("Thread %d is now %s", task.thread_id, status.value)
        return TaskResult(task=task, success=True)

    async def _execute_question(self, task: QuestionTask) -> TaskResult:
        logger.info("Answering question %d from %s", task.comment_id, task.author)
        self.state.mark_question(task.comment_id, QuestionStatus.IN_PROGRESS)
        answer = await self.executor.answer_question(task)
        self.state.post_question_answer(task.comment_id, task.question_hash, answer + _ANSWER_FOOTER)
        self.state.mark_question(task.comment_id, QuestionStatus.ANSWERED)
        logger.info("Posted answer to question %d", task.comment_id)
        return TaskResult(task=task, success=True)

    # ------------------------------------------------------------------ #
    # Reviews                                                              #
    # ------------------------------------------------------------------ #

    async def _execute_review(self, task: ReviewTask) -> TaskResult:
        logger.info(
            "Executing full review (%s, triggered by %s%s)",
            "manual" if task.is_manual else "auto",
            task.triggered_by,
            ", resuming cancelled run" if task.resuming_cancelled else "",
        )
        manual_comment = task.trigger_comment_id if task.is_manual else None
        if manual_comment is not None:
            self.state.mark_manual_review(manual_comment, ManualReviewStatus.IN_PROGRESS)
            if self.config["manual_start_comment"]:
                self.state.store.post_issue_comment(_MANUAL_START)

        try:
            task_info = self.load_task_info()
            if not task.is_manual:
                self.state.record_auto_review_trigger(task.triggered_by, self.pr.head_sha)

            output = await self.executor.execute_review(task_info)

            if not task.is_manual:
                self.state.mark_auto_review_completed(self.pr.head_sha)
        except (ReviewError, CommentStoreError) as e:
            if manual_comment is not None:
                self._finish_manual_review(manual_comment, f"**Review failed.** {e}", reason=str(e))
            raise

        if manual_comment is not None:
            self._finish_manual_review(manual_comment, _manual_end_message(output))
        return TaskResult(
            task=task,
            success=True,
            issues_found=output.issues_found,
            blocking_issues=output.blocking_issues,
        )

    def _finish_manual_review(self, comment_id: int, message: str, reason: str | None = None) -> None:
        self.state.mark_manual_review(comment_id, ManualReviewStatus.COMPLETED, reason=reason)
        if self.config["manual_end_comment"]:
            self.state.store.post_issue_comment(message)

    def load_task_info(self) -> TaskInfo | None:
        """Read the task from the PR description; post a blocking finding when it is insufficient."""
        description = self.pr.body
        require = self.config["require_task_info"]
        if not require and not description.strip():
            logger.debug("PR description is empty, but task info is not required")
            return None

        info = extract_task_info(description, self.workspace, self.provider, require, self.pr.changed_files)
        open_description_threads = [
            t for t in self.state.get_or_create_state().threads if t.file == PR_DESCRIPTION_PATH and t.is_active
        ]

        if not info.is_sufficient:
            reason = info.insufficiency_reason or "PR description is insufficient"
            logger.error("Task info validation failed: %s", reason)
            self._report_insufficient_description(reason)
            raise ReviewError(f"task info validation failed: {reason}")

        for thread in open_description_threads:
            logger.info("PR description is now sufficient; resolving thread %d", thread.id)
            self.state.update_thread_status(thread.id, ThreadStatus.RESOLVED, resolution="description updated")
        return info

    def _report_insufficient_description(self, reason: str) -> None:
        assessment = f"{reason}.\n\n{_DESCRIPTION_GUIDANCE}" if not reason.endswith(".") else f"{reason}\n\n{_DESCRIPTION_GUIDANCE}"
        thread = self.state.post_finding(
            PR_DESCRIPTION_PATH,
            0,
            10,
            _DESCRIPTION_FINDING,
            assessment,
            on_review_comment=False,
        )
        if thread is not None:
            return
        existing = self.state.find_duplicate_thread(PR_DESCRIPTION_PATH, 0, _DESCRIPTION_FINDING)
        if existing is not None and not existing.is_active:
            logger.info("Reopening PR description thread %d", existing.id)
            self.state.update_thread_status(existing.id, ThreadStatus.PENDING)
