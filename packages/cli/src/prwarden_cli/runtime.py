"""Wiring shared by the run, tasks and state commands.

This lives in the CLI so neither prwarden_core nor prwarden_state know
where the pull request, credentials, or the comment store come from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import click

from prwarden_core.gh.pull_request import PullRequestInfo, get_pull, get_pull_request_info, get_repo
from prwarden_state.base import BaseCommentStore
from prwarden_state.github import GitHubCommentStore
from prwarden_state.manager import StateManager
from prwarden_state.memory import InMemoryCommentStore

logger = logging.getLogger(__name__)


@dataclass
class PullRequestContext:
    pr: PullRequestInfo
    store: BaseCommentStore
    state: StateManager


def build_context(config: dict, repo: str, pr_number: int, dry_run: bool = False) -> PullRequestContext:
    """Fetch the pull request and build its comment store and state manager.

    With ``dry_run`` the PR's comments are snapshotted into memory and every
    write lands there instead of on GitHub.
    """
    token = config.get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )

    pull = get_pull(get_repo(repo, token=token), pr_number)
    pr = get_pull_request_info(pull)
    store: BaseCommentStore = GitHubCommentStore(pull)
    if dry_run:
        bot = config["bot_users"][0] if config["bot_users"] else "prwarden[bot]"
        store = InMemoryCommentStore.snapshot(store, author=bot)
        logger.info("Dry run: comment writes stay in memory")

    state = StateManager(store, pr.number, pr.head_sha, bot_users=config["bot_users"])
    return PullRequestContext(pr=pr, store=store, state=state)


def require_target(repo: str | None, pr_number: int | None) -> tuple[str, int]:
    if not repo:
        raise click.UsageError("No repository given. Pass --repo owner/name or set GITHUB_REPOSITORY.")
    if pr_number is None:
        raise click.UsageError("No pull request given. Pass --pr or run from a pull request event.")
    return repo, pr_number
