from __future__ import annotations

import logging
from dataclasses import dataclass, field

from github import Github

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PullRequestInfo:
    number: int
    title: str
    body: str
    head_sha: str
    head_ref: str
    base_sha: str
    base_ref: str
    draft: bool = False
    changed_files: tuple[str, ...] = field(default_factory=tuple)
    # New-file line numbers visible in each file's diff; review comments can
    # only be anchored to these.
    diff_lines: dict[str, frozenset[int]] = field(default_factory=dict, compare=False)

    def is_commentable(self, path: str, line: int) -> bool:
        return line in self.diff_lines.get(path, frozenset())


def get_repo(repo_name: str, token: str):
    return Github(token).get_repo(repo_name)


def get_pull(repo, pr_number: int):
    return repo.get_pull(pr_number)


def get_diff_lines(patch_text: str) -> frozenset[int]:
    """
    New-file line numbers that appear in a unified diff patch.

    Added and context lines both count; removed lines do not advance the
    new-file line counter. The @@ header carries the starting line of each hunk.
    """
    lines: set[int] = set()
    file_line: int | None = None

    for line in patch_text.splitlines():
        if line.startswith("@@"):
            try:
                new_file_range = line.split("+")[1].split(" ")[0]
                file_line = int(new_file_range.split(",")[0])
            except (IndexError, ValueError):
                file_line = None
            continue
        if file_line is None:
            continue
        if line.startswith("-") and not line.startswith("---"):
            continue
        if line.startswith("\\"):
            continue  # "\ No newline at end of file"
        lines.add(file_line)
        file_line += 1

    return frozenset(lines)


def get_pull_request_info(pr) -> PullRequestInfo:
    """Snapshot the metadata a run needs; fetched once per run."""
    changed_files = []
    diff_lines = {}
    for f in pr.get_files():
        changed_files.append(f.filename)
        if f.patch:
            diff_lines[f.filename] = get_diff_lines(f.patch)
        else:
            logger.debug("No patch for %s (binary or too large)", f.filename)
    return PullRequestInfo(
        number=pr.number,
        title=pr.title or "",
        body=pr.body or "",
        head_sha=pr.head.sha,
        head_ref=pr.head.ref,
        base_sha=pr.base.sha,
        base_ref=pr.base.ref,
        draft=bool(getattr(pr, "draft", False)),
        changed_files=tuple(changed_files),
        diff_lines=diff_lines,
    )
