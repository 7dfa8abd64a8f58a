"""Task information carried by the pull request description.

The description may point at task files in the repository ("see
docs/task.md", a markdown link, a bare path on its own line). Those files
are read from the checked-out workspace and appended, so the agent reviews
against the actual requirements.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from prwarden_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_CHARS = 20
_MAX_PROMPT_DESCRIPTION = 4000
_MAX_LISTED_FILES = 50

_EXT = r"\.(?:md|txt|rst|adoc)"
_PATH = r"[a-zA-Z0-9_\-./]+" + _EXT
_FILE_LINK_PATTERNS = [
    re.compile(r"\[[^\]]+\]\(([^)]+" + _EXT + r")\)", re.IGNORECASE),
    re.compile(r"(?:see|refer to|check|read)\s+[`\"]?(" + _PATH + r")[`\"]?", re.IGNORECASE),
    re.compile(r"(?:task|issue|spec|requirement)s?\s+(?:in|at|file)?\s*[`\"]?(" + _PATH + r")[`\"]?", re.IGNORECASE),
    re.compile(r"^(" + _PATH + r")$", re.IGNORECASE | re.MULTILINE),
]


@dataclass(frozen=True)
class LinkedFile:
    path: str
    content: str


@dataclass(frozen=True)
class TaskInfo:
    description: str
    linked_files: tuple[LinkedFile, ...] = field(default_factory=tuple)
    is_sufficient: bool = True
    insufficiency_reason: str | None = None


def _normalize_path(path: str) -> str:
    path = path.strip()
    if path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def find_linked_paths(description: str) -> list[str]:
    """Candidate task-file paths referenced by ``description``, first mention first."""
    found: list[str] = []
    for pattern in _FILE_LINK_PATTERNS:
        for match in pattern.finditer(description):
            path = _normalize_path(match.group(1))
            if path and path not in found:
                found.append(path)
    return found


def read_linked_files(description: str, workspace: Path) -> list[LinkedFile]:
    root = workspace.resolve()
    files = []
    for rel in find_linked_paths(description):
        target = (root / rel).resolve()
        if root not in target.parents:
            logger.debug("Ignoring linked file outside the workspace: %s", rel)
            continue
        try:
            files.append(LinkedFile(path=rel, content=target.read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Could not read linked file %s: %s", rel, e)
            continue
        logger.debug("Loaded linked file: %s", rel)
    return files


def combine_description(description: str, linked_files: Sequence[LinkedFile]) -> str:
    parts = [description]
    for f in linked_files:
        parts.append(f"\n\n---\n**Linked File: {f.path}**\n\n{f.content}")
    return "".join(parts)


def _sufficiency_prompt(description: str, changed_files: Sequence[str]) -> str:
    files_context = ""
    if changed_files:
        listed = "\n".join(f"- {f}" for f in changed_files[:_MAX_LISTED_FILES])
        more = len(changed_files) - _MAX_LISTED_FILES
        if more > 0:
            listed += f"\n... and {more} more files"
        files_context = f"\n\nFiles changed in this PR ({len(changed_files)} files):\n{listed}"

    return f"""You are evaluating whether a Pull Request description explains the task being implemented.

A sufficient description explains WHAT changes and WHY, specifically enough for a reviewer to
understand the scope, in proportion to the size of the change.

It is INSUFFICIENT if it is only a title, only generic phrases like "bug fix" or "update",
unrelated to the code, or too vague for the scope of the change.

Description:
\"\"\"
{description[:_MAX_PROMPT_DESCRIPTION]}
\"\"\"{files_context}

Respond in exactly this format:
SUFFICIENT: yes/no
REASON: <one sentence if insufficient, otherwise N/A>"""


def evaluate_sufficiency(
    description: str,
    provider: BaseProvider | None,
    changed_files: Sequence[str] = (),
) -> tuple[bool, str | None]:
    """Return (is_sufficient, reason).

    Too-short descriptions fail without asking the LLM; any LLM failure
    counts as sufficient so a flaky endpoint never blocks a merge.
    """
    stripped = description.strip()
    if not stripped:
        return False, "PR description is empty"
    if len(stripped) < MIN_DESCRIPTION_CHARS:
        return False, "PR description is too short to understand the task"
    if provider is None:
        return True, None

    response = provider.complete(_sufficiency_prompt(description, changed_files), max_tokens=150, temperature=0.0)
    if not response:
        logger.warning("Sufficiency check returned nothing; treating description as sufficient")
        return True, None

    lines = [line.strip() for line in response.strip().splitlines()]
    verdict = next((line for line in lines if line.upper().startswith("SUFFICIENT:")), None)
    if verdict is None:
        logger.warning("Unexpected sufficiency reply %r; treating description as sufficient", response[:200])
        return True, None
    if "yes" in verdict.lower():
        return True, None

    reason_line = next((line for line in lines if line.upper().startswith("REASON:")), "")
    reason = re.sub(r"^REASON:\s*", "", reason_line, flags=re.IGNORECASE).strip()
    return False, reason or "Description is insufficient"


def extract_task_info(
    description: str,
    workspace: Path,
    provider: BaseProvider | None,
    require_task_info: bool,
    changed_files: Sequence[str] = (),
) -> TaskInfo:
    linked = read_linked_files(description, workspace)
    if linked:
        logger.info("Found %d linked task file(s)", len(linked))
    combined = combine_description(description, linked)
    if not require_task_info:
        return TaskInfo(description=combined, linked_files=tuple(linked))

    sufficient, reason = evaluate_sufficiency(combined, provider, changed_files)
    return TaskInfo(
        description=combined,
        linked_files=tuple(linked),
        is_sufficient=sufficient,
        insufficiency_reason=reason,
    )
