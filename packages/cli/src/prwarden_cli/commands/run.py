"""run command — detect pending work on a pull request and execute it."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from prwarden_core.agent.client import OpenCodeClient
from prwarden_core.agent.session import AgentSession
from prwarden_core.classifier import IntentClassifier
from prwarden_core.detector import TaskDetector
from prwarden_core.errors import ConfigurationError
from prwarden_core.executor import ReviewExecutor
from prwarden_core.orchestrator import TaskOrchestrator
from prwarden_core.providers.base import get_provider
from prwarden_core.screening import InjectionScreen
from prwarden_core.tasks import ExecutionResult, ReviewTask
from prwarden_state.memory import InMemoryCommentStore

console = Console()


def target_options(f):
    """Options shared by every command that works on one pull request."""
    f = click.option("--force-review", is_flag=True, help="Run a manual review even without a review trigger.")(f)
    f = click.option("--event-path", default=None, help="Path to the CI event payload. Defaults to GITHUB_EVENT_PATH.")(f)
    f = click.option("--event-name", default=None, help="CI event name. Defaults to GITHUB_EVENT_NAME.")(f)
    f = click.option("--pr", "pr_number", type=int, default=None, help="Pull request number. Defaults to the event's PR.")(f)
    f = click.option("--repo", default=None, help="GitHub repository in owner/name format.")(f)
    return f


def print_execution_result(result: ExecutionResult) -> None:
    table = Table(title="Task results", show_header=True, header_style="bold cyan")
    table.add_column("Task", style="bold")
    table.add_column("Status", width=8)
    table.add_column("Issues", justify="right", width=8)
    table.add_column("Blocking", justify="right", width=9)
    table.add_column("Error")
    for r in result.results:
        status = "[green]ok[/green]" if r.success else "[red]failed[/red]"
        table.add_row(r.task.key, status, str(r.issues_found), str(r.blocking_issues), r.error or "")
    console.print(table)
    console.print(
        f"Open issues: [bold]{result.issues_found}[/bold], blocking: [bold]{result.blocking_issues}[/bold], "
        f"review completed: {'yes' if result.review_completed else 'no'}"
    )


def print_dry_run_writes(store: InMemoryCommentStore) -> None:
    if not store.writes:
        console.print("[dim]No comments would be written.[/dim]")
        return
    console.print(f"\n[bold]Dry run:[/bold] {len(store.writes)} comment write(s) not posted\n")
    for w in store.writes:
        location = f" {w.path}:{w.line}" if w.path else ""
        console.print(f"[cyan]{w.action}[/cyan] #{w.comment_id}{location}")
        console.print(w.body, markup=False)
        console.print("")


async def _execute(orchestrator: TaskOrchestrator, tasks, client: OpenCodeClient) -> ExecutionResult:
    try:
        return await orchestrator.execute(tasks)
    finally:
        await client.close()


@click.command("run")
@target_options
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="LLM provider for classification. Overrides config file.",
)
@click.option("--agent-url", default=None, help="Agent server URL. Overrides config file.")
@click.option("--dry-run", is_flag=True, help="Keep all comment writes in memory and print them instead.")
@click.option(
    "--workspace",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Checked-out repository used to read linked task files. Defaults to the current directory.",
)
@click.pass_context
def run_cmd(
    ctx,
    repo: str | None,
    pr_number: int | None,
    event_name: str | None,
    event_path: str | None,
    force_review: bool,
    model: str | None,
    agent_url: str | None,
    dry_run: bool,
    workspace: Path | None,
):
    """Detect and execute disputes, questions and reviews on a pull request.

    Exits with status 1 when an automatic review leaves blocking issues or
    fails to complete. Manually requested reviews never fail the run.

    \b
    Required environment variables:
      GITHUB_TOKEN              GitHub token (or use gh CLI)
      ANTHROPIC_API_KEY         Required when using --model anthropic
      OPENAI_API_KEY            Required when using --model openai
      OPENCODE_SERVER_PASSWORD  Agent server password, if it has one
    """
    from prwarden_cli.auth import resolve_repository
    from prwarden_cli.event import load_event
    from prwarden_cli.runtime import build_context, require_target
    from prwarden_core.config import load_config, validate_config

    config = load_config(ctx.obj["config_path"], cli_overrides={"model": model, "agent_url": agent_url})
    config["github_token"] = ctx.obj["config"].get("github_token") or config["github_token"]
    try:
        validate_config(config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        ctx.exit(2)

    event = load_event(event_name, event_path)
    repo, pr_number = require_target(repo or resolve_repository(), pr_number or event.pr_number)
    pr_ctx = build_context(config, repo, pr_number, dry_run=dry_run)

    provider = get_provider(config)
    classifier = IntentClassifier(provider)
    detector = TaskDetector(pr_ctx.state, classifier, config)
    tasks = detector.detect_all_tasks(pr_ctx.pr.head_sha, event.trigger(force_review))
    if not tasks:
        console.print("[green]No tasks to execute.[/green]")
        if dry_run:
            print_dry_run_writes(pr_ctx.store)
        return

    client = OpenCodeClient(config["agent_url"], password=config.get("agent_password"), model=config["agent_model"])
    screen = InjectionScreen(provider, enabled=config["injection_screening"])
    executor = ReviewExecutor(AgentSession(client, config), pr_ctx.state, pr_ctx.pr, classifier, config, screen)
    orchestrator = TaskOrchestrator(pr_ctx.state, executor, pr_ctx.pr, config, provider, workspace)
    result = asyncio.run(_execute(orchestrator, tasks, client))

    print_execution_result(result)
    if dry_run:
        print_dry_run_writes(pr_ctx.store)

    if result.should_fail:
        console.print("[red]Blocking issues found by the automatic review.[/red]")
        ctx.exit(1)
    failed_gate = [r for r in result.failed_tasks if isinstance(r.task, ReviewTask) and r.task.affects_merge_gate]
    if failed_gate:
        console.print("[red]The automatic review did not complete.[/red]")
        ctx.exit(1)
