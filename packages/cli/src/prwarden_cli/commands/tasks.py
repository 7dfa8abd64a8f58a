"""tasks command — print the pending work on a pull request without executing it."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prwarden_cli.commands.run import target_options
from prwarden_core.classifier import IntentClassifier
from prwarden_core.detector import TaskDetector
from prwarden_core.providers.base import get_provider
from prwarden_core.tasks import DisputeTask, QuestionTask, ReviewTask

console = Console()


def _describe(task) -> str:
    if isinstance(task, DisputeTask):
        return f"{task.reply_author} replied on {task.file}:{task.line}"
    if isinstance(task, QuestionTask):
        fresh = " (fresh analysis)" if task.requires_fresh_analysis else ""
        return f"{task.author}: {task.question[:60]}{fresh}"
    if isinstance(task, ReviewTask):
        kind = "manual" if task.is_manual else "auto"
        gate = ", gates merge" if task.affects_merge_gate else ""
        resumed = ", resuming cancelled run" if task.resuming_cancelled else ""
        return f"{kind} review ({task.triggered_by}{gate}{resumed})"
    return ""


@click.command("tasks")
@target_options
@click.pass_context
def tasks_cmd(
    ctx,
    repo: str | None,
    pr_number: int | None,
    event_name: str | None,
    event_path: str | None,
    force_review: bool,
):
    """Show the tasks the next run would execute.

    Nothing is posted: detection runs against an in-memory copy of the
    pull request's comments. Without an LLM API key, mentions and replies
    are classified with the built-in fallbacks only.
    """
    from prwarden_cli.auth import resolve_repository
    from prwarden_cli.event import load_event
    from prwarden_cli.runtime import build_context, require_target

    config = ctx.obj["config"]
    event = load_event(event_name, event_path)
    repo, pr_number = require_target(repo or resolve_repository(), pr_number or event.pr_number)
    pr_ctx = build_context(config, repo, pr_number, dry_run=True)

    provider = get_provider(config) if config.get(f"{config['model']}_api_key") else None
    detector = TaskDetector(pr_ctx.state, IntentClassifier(provider), config)
    tasks = detector.detect_all_tasks(pr_ctx.pr.head_sha, event.trigger(force_review))
    if not tasks:
        console.print("[green]No pending tasks.[/green]")
        return

    table = Table(title=f"Pending tasks — {repo}#{pr_number}", show_header=True, header_style="bold cyan")
    table.add_column("Priority", justify="right", width=8)
    table.add_column("Kind", width=20)
    table.add_column("Key", style="bold")
    table.add_column("Details")
    for task in tasks:
        table.add_row(str(task.priority), task.kind, task.key, _describe(task))
    console.print(table)
