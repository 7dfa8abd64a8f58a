"""CLI entry point for prwarden.

Commands:
  run    — detect pending work on a pull request and execute it
  tasks  — detect pending work and print the plan without executing it
  state  — print the review state reconstructed from the PR's comments
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from prwarden_cli.commands.run import run_cmd
from prwarden_cli.commands.state import state_cmd
from prwarden_cli.commands.tasks import tasks_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # Keep third-party HTTP chatter out of debug traces.
    for name in ("httpx", "httpcore", "urllib3", "github"):
        logging.getLogger(name).setLevel(logging.WARNING)


@click.group()
@click.version_option(
    version=importlib.metadata.version("prwarden"),
    prog_name="prwarden",
)
@click.option(
    "--config",
    "config_path",
    default=".prwarden.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRWARDEN_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Agent-driven pull request reviewer that keeps its state in PR comments."""
    from prwarden_cli.auth import resolve_github_token
    from prwarden_core.config import load_config

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    ctx.obj["config_path"] = config_path
    ctx.obj["config"] = config


main.add_command(run_cmd)
main.add_command(tasks_cmd)
main.add_command(state_cmd)
