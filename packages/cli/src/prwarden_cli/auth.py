"""Credential and repository resolution with gh CLI fallback.

In GitHub Actions everything comes from the environment. For local runs the
GitHub CLI already knows the developer's token and the current repository,
so `gh auth login` is the only setup needed.

Token resolution (stops at first success):
  1. GITHUB_TOKEN environment variable
  2. `gh auth token`

Repository resolution:
  1. GITHUB_REPOSITORY environment variable (owner/name)
  2. `gh repo view --json nameWithOwner`
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

_GH_TIMEOUT = 5


def _gh(*args: str) -> str | None:
    """Run a gh command and return its stripped stdout, or None on any failure."""
    try:
        result = subprocess.run(["gh", *args], capture_output=True, text=True, timeout=_GH_TIMEOUT)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        logger.debug("gh %s exited with %d: %s", " ".join(args), result.returncode, result.stderr.strip())
        return None
    return result.stdout.strip() or None


def resolve_github_token() -> str | None:
    """Return a GitHub token or None; callers turn None into a UsageError."""
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token
    token = _gh("auth", "token")
    if token:
        logger.debug("Resolved GitHub token via gh CLI session.")
    return token


def resolve_repository() -> str | None:
    repo = os.environ.get("GITHUB_REPOSITORY")
    if repo:
        return repo
    repo = _gh("repo", "view", "--json", "nameWithOwner", "--jq", ".nameWithOwner")
    if repo:
        logger.debug("Resolved repository %s via gh CLI.", repo)
    return repo
