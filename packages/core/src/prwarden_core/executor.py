"""Review executor — runs each unit of work through the shared agent session.

    execute_review()  → fix verification → pass 1 → pass 2 → pass 3
    resolve_dispute() → screen reply → classify reply → acknowledge | clarify | evaluate
    answer_question() → screen question → one direct prompt, answer text returned

Every finding, verdict and pass result is written through StateManager, so
nothing the executor learns lives only in memory. Agent-session failures are
raised; the whole review session (not a single pass) is retried here with
linear backoff, tearing the agent session down between attempts.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prwarden_core import prompts
from prwarden_core.classifier import ReplyKind
from prwarden_core.errors import AgentSessionError, ReviewError
from prwarden_core.providers.base import parse_json_reply
from prwarden_core.screening import InjectionScreen
from prwarden_state.base import CommentStoreError
from prwarden_state.models import PassResult, ThreadStatus, count_issues

if TYPE_CHECKING:
    from prwarden_core.agent.session import AgentSession
    from prwarden_core.classifier import IntentClassifier
    from prwarden_core.gh.pull_request import PullRequestInfo
    from prwarden_core.task_info import TaskInfo
    from prwarden_core.tasks import DisputeTask, QuestionTask
    from prwarden_state.manager import StateManager
    from prwarden_state.models import ReviewThread

logger = logging.getLogger(__name__)

PASS_COUNT = 3

_CONCESSION_REPLY = "Thanks for confirming. Marking this finding as resolved."
_VERDICT_STATUSES = {
    "RESOLVED": ThreadStatus.RESOLVED,
    "DISPUTED": ThreadStatus.DISPUTED,
    "ESCALATED": ThreadStatus.ESCALATED,
}


@dataclass
class ReviewOutput:
    issues_found: int = 0
    blocking_issues: int = 0
    passes_completed: int = 0
    findings_posted: int = 0
    attempts: int = 1


def _valid_finding(raw) -> dict | None:
    """Normalize one finding from a pass report, or None when malformed."""
    if not isinstance(raw, dict):
        return None
    file, line, score, finding = raw.get("file"), raw.get("line"), raw.get("score"), raw.get("finding")
    if not isinstance(file, str) or not file or not isinstance(finding, str) or not finding.strip():
        return None
    if isinstance(line, bool) or not isinstance(line, int) or line < 1:
        return None
    if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 10:
        return None
    assessment = raw.get("assessment")
    return {
        "file": file[2:] if file.startswith("./") else file,
        "line": line,
        "score": score,
        "finding": finding.strip(),
        "assessment": assessment.strip() if isinstance(assessment, str) else "",
    }


def _thread_id(value) -> int | None:
    """Thread ids come back as numbers or numeric strings."""
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ReviewExecutor:
    def __init__(
        self,
        session: AgentSession,
        state: StateManager,
        pr: PullRequestInfo,
        classifier: IntentClassifier,
        config: dict,
        screen: InjectionScreen | None = None,
    ):
        self.session = session
        self.state = state
        self.pr = pr
        self.classifier = classifier
        self.config = config
        # Without a provider every flagged text is blocked.
        self.screen = screen or InjectionScreen(None, enabled=config.get("injection_screening", True))

    # ------------------------------------------------------------------ #
    # Session lifecycle                                                    #
    # ------------------------------------------------------------------ #

    @property
    def _session_title(self) -> str:
        return f"PR #{self.pr.number} review"

    async def _ensure_session(self) -> None:
        if self.session.session_id is None:
            await self.session.start(self._session_title, prompts.SYSTEM_PROMPT)

    async def close(self) -> None:
        await self.session.close()

    async def _ask_json(self, prompt: str):
        await self._ensure_session()
        raw = await self.session.send_prompt_and_get_response(prompt)
        return parse_json_reply(raw)

    # ------------------------------------------------------------------ #
    # Full review                                                          #
    # ------------------------------------------------------------------ #

    async def execute_review(self, task_info: TaskInfo | None = None) -> ReviewOutput:
        """Run the multi-pass review, retrying the whole session on failure."""
        max_retries = self.config["max_retries"]
        timeout = self.config["review_timeout"]
        logger.info("Review configuration: timeout=%ss, max_retries=%d", timeout, max_retries)

        last_error: Exception | None = None
        for attempt in range(1, max_retries + 2):
            if attempt > 1:
                delay = self.config["retry_backoff"] * (attempt - 1)
                logger.warning(
                    "Retrying entire review session (attempt %d/%d) in %ss", attempt, max_retries + 1, delay
                )
                await asyncio.sleep(delay)
                try:
                    await self.session.reset(self._session_title, prompts.SYSTEM_PROMPT)
                    self.state.rebuild_state()
                except (AgentSessionError, CommentStoreError) as e:
                    last_error = e
                    logger.warning("Could not reset review session: %s", e)
                    continue

            try:
                output = await asyncio.wait_for(self._run_review(task_info), timeout)
            except asyncio.TimeoutError:
                last_error = ReviewError(f"review did not complete within {timeout}s")
            except (AgentSessionError, CommentStoreError, ReviewError) as e:
                last_error = e
            else:
                output.attempts = attempt
                logger.info(
                    "Review completed: %d issue(s), %d blocking", output.issues_found, output.blocking_issues
                )
                return output
            logger.warning("Review attempt %d failed: %s", attempt, last_error)

        raise ReviewError(f"review failed after {max_retries + 1} attempt(s): {last_error}") from last_error

    async def _run_review(self, task_info: TaskInfo | None) -> ReviewOutput:
        await self._ensure_session()
        state = self.state.get_or_create_state()
        logger.info("Loaded review state with %d existing thread(s)", len(state.threads))

        unresolved = [t for t in state.threads if t.is_active and t.on_review_comment]
        if unresolved:
            await self.verify_fixes(unresolved)

        description = task_info.description.strip() if task_info else ""
        linked = [f.path for f in task_info.linked_files] if task_info else []
        logger.info("Reviewing %d changed file(s), %s", len(self.pr.changed_files), self.pr.head_sha[:7])

        output = ReviewOutput()
        for number in range(1, PASS_COUNT + 1):
            output.findings_posted += await self.run_pass(number, description or None, linked)
            output.passes_completed += 1

        counts = count_issues(self.state.get_or_create_state(), self.config["blocking_threshold"])
        output.issues_found = counts.issues_found
        output.blocking_issues = counts.blocking_issues
        return output

    async def run_pass(self, number: int, task_description: str | None = None, linked_files=()) -> int:
        """Run one review pass; return the number of findings posted."""
        logger.info("Starting pass %d of %d", number, PASS_COUNT)
        await self.session.send_prompt(prompts.review_pass_prompt(number, self.pr, task_description, linked_files))

        existing = self.state.get_or_create_state().active_threads()
        report = await self._ask_json(prompts.pass_report_prompt(number, existing))
        if not isinstance(report, dict):
            raise ReviewError(f"pass {number} report was not a JSON object")

        raw_findings = report.get("findings")
        if not isinstance(raw_findings, list):
            raw_findings = []
        posted = 0
        blocking = bool(report.get("has_blocking_issues", False))
        for raw in raw_findings:
            finding = _valid_finding(raw)
            if finding is None:
                logger.debug("Skipping malformed finding in pass %d: %r", number, raw)
                continue
            if finding["score"] < self.config["problem_threshold"]:
                logger.debug("Skipping finding below threshold: %s:%d", finding["file"], finding["line"])
                continue
            if not self.pr.is_commentable(finding["file"], finding["line"]):
                logger.warning("Skipping finding outside the diff: %s:%d", finding["file"], finding["line"])
                continue
            try:
                thread = self.state.post_finding(**finding)
            except CommentStoreError as e:
                logger.warning("Failed to post finding on %s:%d: %s", finding["file"], finding["line"], e)
                continue
            if thread is not None:
                posted += 1
                blocking = blocking or thread.score >= self.config["blocking_threshold"]

        self.state.record_pass_completion(PassResult(number=number, completed=True, has_blocking_issues=blocking))
        logger.info("Pass %d completed: %d new finding(s)", number, posted)
        return posted

    async def verify_fixes(self, threads: list[ReviewThread]) -> int:
        """Ask the agent which open findings are fixed; return how many were resolved."""
        logger.info("Verifying %d unresolved issue(s)", len(threads))
        report = await self._ask_json(prompts.fix_verification_prompt(threads, self.pr))
        entries = report.get("threads") if isinstance(report, dict) else None
        if not isinstance(entries, list):
            logger.warning("Fix verification returned no usable report; leaving threads unchanged")
            return 0

        known = {t.id for t in threads}
        resolved = 0
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            thread_id = _thread_id(entry.get("id"))
            if thread_id not in known:
                continue
            if str(entry.get("status", "")).upper() != ThreadStatus.RESOLVED.value:
                continue
            explanation = entry.get("explanation") if isinstance(entry.get("explanation"), str) else ""
            self.state.store.reply_to_review_comment(thread_id, f"Verified as fixed. {explanation}".strip())
            self.state.update_thread_status(thread_id, ThreadStatus.RESOLVED, resolution="fixed")
            resolved += 1
        logger.info("Fix verification resolved %d of %d issue(s)", resolved, len(threads))
        return resolved

    # ------------------------------------------------------------------ #
    # Disputes                                                             #
    # ------------------------------------------------------------------ #

    async def resolve_dispute(self, task: DisputeTask) -> ThreadStatus:
        """Evaluate the latest developer reply on a thread and record the outcome."""
        thread = self.state.get_or_create_state().get_thread(task.thread_id)
        if thread is None:
            logger.warning("Thread %d not found in state, skipping", task.thread_id)
            return ThreadStatus.PENDING
        if not thread.is_active:
            logger.info("Thread %d is already %s, skipping", thread.id, thread.status.value)
            return thread.status

        reply_body = self.screen.check(task.reply_body, context=f"dispute reply from {task.reply_author}")
        kind = self.classifier.classify_reply(thread.assessment.finding, reply_body, on_unknown=ReplyKind.REBUTTAL)
        logger.info("Thread %d has a %s reply from %s", thread.id, kind.value, task.reply_author)

        if kind is ReplyKind.CONCESSION:
            self.state.store.reply_to_review_comment(thread.id, _CONCESSION_REPLY)
            self.state.update_thread_status(
                thread.id, ThreadStatus.RESOLVED, evaluated_reply_id=task.reply_id, resolution="conceded"
            )
            return ThreadStatus.RESOLVED

        await self._ensure_session()
        if kind is ReplyKind.QUESTION:
            answer = await self.session.send_prompt_and_get_response(
                prompts.clarify_finding_prompt(thread, reply_body)
            )
            if not answer.strip():
                raise ReviewError(f"agent gave no clarification for thread {thread.id}")
            self.state.store.reply_to_review_comment(thread.id, answer.strip())
            self.state.update_thread_status(thread.id, thread.status, evaluated_reply_id=task.reply_id)
            return thread.status

        escalation = self.config["enable_human_escalation"]
        verdict = await self._ask_json(prompts.dispute_evaluation_prompt(thread, reply_body, kind.value, escalation))
        if not isinstance(verdict, dict):
            raise ReviewError(f"agent returned no verdict for thread {thread.id}")

        status = _VERDICT_STATUSES.get(str(verdict.get("status", "")).upper(), ThreadStatus.DISPUTED)
        if status is ThreadStatus.ESCALATED and not escalation:
            status = ThreadStatus.DISPUTED
        reply = verdict.get("reply") if isinstance(verdict.get("reply"), str) else ""
        if status is ThreadStatus.ESCALATED and self.config["human_reviewers"]:
            mentions = " ".join(f"@{r.lstrip('@')}" for r in self.config["human_reviewers"])
            reply = f"{reply}\n\nEscalating to {mentions} for a decision.".strip()
        if reply:
            self.state.store.reply_to_review_comment(thread.id, reply)
        self.state.update_thread_status(
            thread.id,
            status,
            evaluated_reply_id=task.reply_id,
            resolution="dispute-accepted" if status is ThreadStatus.RESOLVED else None,
        )
        return status

    # ------------------------------------------------------------------ #
    # Questions                                                            #
    # ------------------------------------------------------------------ #

    async def answer_question(self, task: QuestionTask) -> str:
        question = self.screen.check(task.question, context=f"question from {task.author}")
        await self._ensure_session()
        prompt = prompts.question_prompt(
            question,
            task.author,
            self.pr,
            history=task.history,
            file_context=task.file_context,
        )
        answer = await self.session.send_prompt_and_get_response(prompt)
        if not answer.strip():
            raise ReviewError(f"agent gave no answer to question {task.comment_id}")
        return answer.strip()
