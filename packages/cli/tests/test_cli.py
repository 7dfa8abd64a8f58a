"""Tests for the CLI entry point and its wiring helpers."""

import json
import subprocess
from unittest.mock import AsyncMock, MagicMock

import click
import pytest
from click.testing import CliRunner

from prwarden_cli.cli import main
from prwarden_cli.event import CIEvent, load_event
from prwarden_cli.runtime import PullRequestContext
from prwarden_core.config import DEFAULT_CONFIG
from prwarden_core.gh.pull_request import PullRequestInfo
from prwarden_core.tasks import ExecutionResult, ReviewTask, TaskResult
from prwarden_state.blocks import AutoReviewTriggerBlock, FindingBlock
from prwarden_state.codec import embed_block
from prwarden_state.manager import StateManager
from prwarden_state.memory import InMemoryCommentStore
from prwarden_state.models import Comment

BOT = "prwarden[bot]"
HEAD = "a" * 40

PR = PullRequestInfo(
    number=7,
    title="Add upload retries",
    body="Retry failed uploads up to three times.",
    head_sha=HEAD,
    head_ref="feature/retry",
    base_sha="b" * 40,
    base_ref="main",
    changed_files=("src/a.ts",),
)


def _make_config(github_token="tok", model="anthropic", anthropic_key="ant", openai_key=None):
    return {
        **DEFAULT_CONFIG,
        "bot_users": [BOT],
        "github_token": github_token,
        "model": model,
        "anthropic_api_key": anthropic_key,
        "openai_api_key": openai_key,
        "agent_password": None,
    }


def _issue(cid, body, author="dev", minute=0):
    return Comment(id=cid, author=author, body=body, created_at=f"2024-05-01T10:{minute:02d}:00+00:00")


def _context(comments=()):
    store = InMemoryCommentStore(comments)
    state = StateManager(store, PR.number, PR.head_sha, bot_users=[BOT])
    return PullRequestContext(pr=PR, store=store, state=state)


def _patch_common(mocker, config=None, token="tok", comments=()):
    """Patch config loading, token resolution, and the PR context for most tests."""
    cfg = config or _make_config()
    mocker.patch("prwarden_core.config.load_config", return_value=cfg)
    mocker.patch("prwarden_cli.auth.resolve_github_token", return_value=token)
    mocker.patch("prwarden_cli.auth.resolve_repository", return_value="owner/repo")
    pr_ctx = _context(comments)
    mocker.patch("prwarden_cli.runtime.build_context", return_value=pr_ctx)
    provider = MagicMock(complete=MagicMock(return_value="QUESTION"))
    mocker.patch("prwarden_cli.commands.run.get_provider", return_value=provider)
    mocker.patch("prwarden_cli.commands.tasks.get_provider", return_value=provider)
    return cfg, pr_ctx


def _patch_agent(mocker, result):
    client = MagicMock()
    client.close = AsyncMock()
    mocker.patch("prwarden_cli.commands.run.OpenCodeClient", return_value=client)
    orchestrator = MagicMock()
    orchestrator.execute = AsyncMock(return_value=result)
    mocker.patch("prwarden_cli.commands.run.TaskOrchestrator", return_value=orchestrator)
    return client, orchestrator


def _event_file(tmp_path, payload):
    path = tmp_path / "event.json"
    path.write_text(json.dumps(payload))
    return str(path)


AUTO = ReviewTask(is_manual=False, triggered_by="synchronize", affects_merge_gate=True)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("GITHUB_EVENT_NAME", "GITHUB_EVENT_PATH", "GITHUB_TOKEN", "GITHUB_REPOSITORY"):
        monkeypatch.delenv(name, raising=False)
    # Wide enough that rich never wraps table cells.
    monkeypatch.setenv("COLUMNS", "200")


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRunValidation:
    def test_missing_anthropic_key(self, mocker):
        _patch_common(mocker, config=_make_config(anthropic_key=None))

        result = CliRunner().invoke(main, ["run", "--repo", "owner/repo", "--pr", "7"])
        assert result.exit_code == 2
        assert "ANTHROPIC_API_KEY" in result.output

    def test_missing_openai_key(self, mocker):
        _patch_common(mocker, config=_make_config(model="openai", anthropic_key=None))

        result = CliRunner().invoke(main, ["run", "--repo", "owner/repo", "--pr", "7"])
        assert result.exit_code == 2
        assert "OPENAI_API_KEY" in result.output

    def test_missing_pull_request(self, mocker):
        _patch_common(mocker)

        result = CliRunner().invoke(main, ["run", "--repo", "owner/repo"])
        assert result.exit_code == 2
        assert "No pull request given" in result.output


class TestRunCommand:
    def test_no_tasks(self, mocker):
        _patch_common(mocker)
        client, orchestrator = _patch_agent(mocker, ExecutionResult())

        result = CliRunner().invoke(main, ["run", "--repo", "owner/repo", "--pr", "7"])

        assert result.exit_code == 0
        assert "No tasks to execute" in result.output
        orchestrator.execute.assert_not_called()

    def test_pr_number_comes_from_event(self, mocker, tmp_path):
        _patch_common(mocker)
        _patch_agent(mocker, ExecutionResult())
        from prwarden_cli import runtime

        path = _event_file(tmp_path, {"action": "labeled", "pull_request": {"number": 12}})
        CliRunner().invoke(main, ["run", "--event-name", "pull_request", "--event-path", path])

        assert runtime.build_context.call_args.args[1:3] == ("owner/repo", 12)

    def test_auto_review_with_blocking_issues_fails(self, mocker, tmp_path):
        _patch_common(mocker)
        outcome = ExecutionResult(
            results=[TaskResult(task=AUTO, success=True, issues_found=2, blocking_issues=1)],
            has_blocking_issues=True,
            review_completed=True,
            had_auto_review=True,
            issues_found=2,
            blocking_issues=1,
        )
        client, orchestrator = _patch_agent(mocker, outcome)
        path = _event_file(tmp_path, {"action": "synchronize", "number": 7})

        result = CliRunner().invoke(main, ["run", "--pr", "7", "--event-name", "pull_request", "--event-path", path])

        assert result.exit_code == 1
        assert "Blocking issues found" in result.output
        (tasks,) = orchestrator.execute.call_args.args
        assert [t.key for t in tasks] == ["review-auto"]
        client.close.assert_awaited_once()

    def test_failed_auto_review_fails(self, mocker, tmp_path):
        _patch_common(mocker)
        outcome = ExecutionResult(results=[TaskResult(task=AUTO, success=False, error="timeout")], had_auto_review=True)
        _patch_agent(mocker, outcome)
        path = _event_file(tmp_path, {"action": "opened", "number": 7})

        result = CliRunner().invoke(main, ["run", "--pr", "7", "--event-name", "pull_request", "--event-path", path])

        assert result.exit_code == 1
        assert "did not complete" in result.output

    def test_answered_question_succeeds(self, mocker):
        _patch_common(mocker, comments=[_issue(300, "@prwarden why no jitter?")])
        outcome = ExecutionResult(review_completed=False)
        _, orchestrator = _patch_agent(mocker, outcome)

        result = CliRunner().invoke(main, ["run", "--pr", "7"])

        assert result.exit_code == 0
        (tasks,) = orchestrator.execute.call_args.args
        assert [t.key for t in tasks] == ["question-300"]
        assert "Open issues: 0" in result.output

    def test_dry_run_prints_writes(self, mocker):
        _, pr_ctx = _patch_common(mocker)
        pr_ctx.store.post_issue_comment("Dismissed review request")

        result = CliRunner().invoke(main, ["run", "--pr", "7", "--dry-run"])

        assert result.exit_code == 0
        assert "post-issue" in result.output
        assert "Dismissed review request" in result.output


# ---------------------------------------------------------------------------
# tasks and state
# ---------------------------------------------------------------------------


class TestTasksCommand:
    def test_lists_pending_tasks(self, mocker):
        _patch_common(mocker, config=_make_config(anthropic_key=None), comments=[_issue(300, "@prwarden summarize this PR")])
        from prwarden_cli import runtime

        result = CliRunner().invoke(main, ["tasks", "--pr", "7"])

        assert result.exit_code == 0
        assert "question-300" in result.output
        assert runtime.build_context.call_args.kwargs["dry_run"] is True

    def test_nothing_pending(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["tasks", "--pr", "7"])
        assert result.exit_code == 0
        assert "No pending tasks" in result.output


class TestStateCommand:
    def test_prints_threads_and_counts(self, mocker):
        finding = Comment(
            id=100,
            author=BOT,
            body=embed_block("x", FindingBlock("src/a.ts", 10, 9, "Missing null check", "")),
            created_at="2024-05-01T10:00:00+00:00",
            kind="review",
            path="src/a.ts",
            line=10,
        )
        trigger = _issue(200, embed_block("started", AutoReviewTriggerBlock("opened", HEAD)), author=BOT, minute=1)
        _patch_common(mocker, comments=[finding, trigger])

        result = CliRunner().invoke(main, ["state", "--pr", "7"])

        assert result.exit_code == 0
        assert "Missing null check" in result.output
        assert "Open issues: 1, blocking: 1" in result.output
        assert "Pending auto review: opened on aaaaaaa" in result.output

    def test_empty_state(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["state", "--pr", "7"])
        assert result.exit_code == 0
        assert "No review threads found" in result.output

    def test_pr_is_required(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["state"])
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# auth
# ---------------------------------------------------------------------------


class TestResolveGithubToken:
    def test_env_var_wins(self, monkeypatch, mocker):
        from prwarden_cli.auth import resolve_github_token

        monkeypatch.setenv("GITHUB_TOKEN", "env-token")
        run = mocker.patch("prwarden_cli.auth.subprocess.run")
        assert resolve_github_token() == "env-token"
        run.assert_not_called()

    def test_gh_cli_fallback(self, monkeypatch, mocker):
        from prwarden_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        mocker.patch(
            "prwarden_cli.auth.subprocess.run",
            return_value=subprocess.CompletedProcess([], 0, stdout="gh-token\n", stderr=""),
        )
        assert resolve_github_token() == "gh-token"

    def test_gh_not_installed(self, monkeypatch, mocker):
        from prwarden_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        mocker.patch("prwarden_cli.auth.subprocess.run", side_effect=FileNotFoundError)
        assert resolve_github_token() is None

    def test_gh_not_logged_in(self, monkeypatch, mocker):
        from prwarden_cli.auth import resolve_github_token

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        mocker.patch(
            "prwarden_cli.auth.subprocess.run",
            return_value=subprocess.CompletedProcess([], 1, stdout="", stderr="not logged in"),
        )
        assert resolve_github_token() is None


class TestResolveRepository:
    def test_env_var(self, monkeypatch):
        from prwarden_cli.auth import resolve_repository

        monkeypatch.setenv("GITHUB_REPOSITORY", "owner/repo")
        assert resolve_repository() == "owner/repo"

    def test_gh_cli_fallback(self, monkeypatch, mocker):
        from prwarden_cli.auth import resolve_repository

        monkeypatch.delenv("GITHUB_REPOSITORY", raising=False)
        run = mocker.patch(
            "prwarden_cli.auth.subprocess.run",
            return_value=subprocess.CompletedProcess([], 0, stdout="owner/repo\n", stderr=""),
        )
        assert resolve_repository() == "owner/repo"
        assert run.call_args.args[0][:3] == ["gh", "repo", "view"]


# ---------------------------------------------------------------------------
# event
# ---------------------------------------------------------------------------


class TestCIEvent:
    def test_pull_request_event(self):
        event = CIEvent("pull_request", {"action": "synchronize", "number": 7, "pull_request": {"number": 7}})
        assert event.pr_number == 7
        trigger = event.trigger()
        assert (trigger.event_name, trigger.action, trigger.comment_id, trigger.force_review) == (
            "pull_request",
            "synchronize",
            None,
            False,
        )

    def test_issue_comment_event(self):
        event = CIEvent("issue_comment", {"action": "created", "issue": {"number": 9}, "comment": {"id": 55}})
        assert event.pr_number == 9
        assert event.trigger(force_review=True).comment_id == 55
        assert event.trigger(force_review=True).force_review

    def test_empty_payload(self):
        event = CIEvent(None, {})
        assert event.pr_number is None
        assert event.trigger().action is None


class TestLoadEvent:
    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GITHUB_EVENT_NAME", "pull_request")
        monkeypatch.setenv("GITHUB_EVENT_PATH", _event_file(tmp_path, {"action": "opened", "number": 3}))
        event = load_event()
        assert event.name == "pull_request"
        assert event.pr_number == 3

    def test_arguments_override_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GITHUB_EVENT_NAME", "push")
        event = load_event("issue_comment", _event_file(tmp_path, {"issue": {"number": 4}}))
        assert event.name == "issue_comment"
        assert event.pr_number == 4

    def test_unreadable_payload(self, monkeypatch, tmp_path):
        monkeypatch.delenv("GITHUB_EVENT_NAME", raising=False)
        bad = tmp_path / "event.json"
        bad.write_text("{not json")
        event = load_event(event_path=str(bad))
        assert event.payload == {}


# ---------------------------------------------------------------------------
# runtime
# ---------------------------------------------------------------------------


class TestBuildContext:
    def test_missing_token(self):
        from prwarden_cli.runtime import build_context

        with pytest.raises(click.UsageError, match="No GitHub token"):
            build_context(_make_config(github_token=None), "owner/repo", 7)

    def test_dry_run_uses_memory_store(self, mocker):
        from prwarden_cli.runtime import build_context

        mocker.patch("prwarden_cli.runtime.get_repo")
        mocker.patch("prwarden_cli.runtime.get_pull")
        mocker.patch("prwarden_cli.runtime.get_pull_request_info", return_value=PR)
        source = MagicMock()
        source.list_review_comments.return_value = []
        source.list_issue_comments.return_value = [_issue(300, "hello")]
        mocker.patch("prwarden_cli.runtime.GitHubCommentStore", return_value=source)

        ctx = build_context(_make_config(), "owner/repo", 7, dry_run=True)

        assert isinstance(ctx.store, InMemoryCommentStore)
        assert [c.id for c in ctx.store.list_issue_comments()] == [300]
        assert ctx.state.head_sha == HEAD

    def test_live_store(self, mocker):
        from prwarden_cli.runtime import build_context

        mocker.patch("prwarden_cli.runtime.get_repo")
        mocker.patch("prwarden_cli.runtime.get_pull")
        mocker.patch("prwarden_cli.runtime.get_pull_request_info", return_value=PR)
        live = mocker.patch("prwarden_cli.runtime.GitHubCommentStore")

        ctx = build_context(_make_config(), "owner/repo", 7)

        assert ctx.store is live.return_value
