"""state command — print the review state reconstructed from a PR's comments."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from prwarden_state.models import ThreadStatus, count_issues

console = Console()

_STATUS_STYLE = {
    ThreadStatus.PENDING: "yellow",
    ThreadStatus.DISPUTED: "magenta",
    ThreadStatus.RESOLVED: "green",
    ThreadStatus.ESCALATED: "red",
}


@click.command("state")
@click.option("--repo", default=None, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.pass_context
def state_cmd(ctx, repo: str | None, pr_number: int):
    """Show review threads, passes and the pending auto-review trigger."""
    from prwarden_cli.auth import resolve_repository
    from prwarden_cli.runtime import build_context, require_target

    config = ctx.obj["config"]
    repo, pr_number = require_target(repo or resolve_repository(), pr_number)
    pr_ctx = build_context(config, repo, pr_number, dry_run=True)
    state = pr_ctx.state.get_or_create_state()

    if not state.threads:
        console.print("[yellow]No review threads found.[/yellow]")
    else:
        table = Table(title=f"Review threads — {repo}#{pr_number}", show_header=True, header_style="bold cyan")
        table.add_column("Thread", style="bold", width=12)
        table.add_column("Location", max_width=40)
        table.add_column("Score", justify="right", width=6)
        table.add_column("Status", width=10)
        table.add_column("Replies", justify="right", width=8)
        table.add_column("Finding", max_width=60)
        for t in state.threads:
            style = _STATUS_STYLE[t.status]
            table.add_row(
                str(t.id),
                f"{t.file}:{t.line}",
                str(t.score),
                f"[{style}]{t.status.value}[/{style}]",
                str(len(t.replies)),
                t.assessment.finding,
            )
        console.print(table)

    counts = count_issues(state, config["blocking_threshold"])
    passes = ", ".join(f"{p.number}{' (blocking)' if p.has_blocking_issues else ''}" for p in state.passes) or "none"
    pending = state.pending_auto_review
    console.print(f"Last reviewed commit: {state.last_commit_sha[:7]}")
    console.print(f"Completed passes: {passes}")
    console.print(f"Open issues: {counts.issues_found}, blocking: {counts.blocking_issues}")
    if pending is not None:
        console.print(f"[yellow]Pending auto review:[/yellow] {pending.action} on {pending.sha[:7]}")
