"""Prompt builders for the review agent.

The agent works inside the checked-out repository and can read files and run
git itself, so prompts describe the task and the expected output rather than
pasting diffs. Every prompt that feeds a decision asks for JSON only; replies
are parsed with parse_json_reply.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from prwarden_core.gh.pull_request import PullRequestInfo
    from prwarden_core.tasks import ConversationMessage
    from prwarden_state.models import ReviewThread

_MAX_LISTED_FILES = 100

SYSTEM_PROMPT = """You are a strict and precise senior code reviewer working inside a git checkout of a pull request.
You can read any file and run read-only git commands to understand the change.

Rules:
- Review only what this pull request changes, but read surrounding code to judge impact.
- Do not modify files, commit, or push.
- Score every problem from 1 (cosmetic) to 10 (must not merge).
- Avoid assumptions when context is unclear. Be concise and actionable.
- Never repeat a problem that is already listed as an existing issue."""


def _task_section(task_description: str | None, linked_files: Sequence[str] = ()) -> str:
    if not task_description:
        return ""
    section = f"\n## Task\n{task_description}\n"
    if linked_files:
        section += "\nReferenced task files: " + ", ".join(linked_files) + "\n"
    return section


def _files_section(files: Sequence[str]) -> str:
    listed = "\n".join(f"- {f}" for f in files[:_MAX_LISTED_FILES])
    if len(files) > _MAX_LISTED_FILES:
        listed += f"\n- ... and {len(files) - _MAX_LISTED_FILES} more"
    return listed


def review_pass_prompt(
    number: int,
    pr: PullRequestInfo,
    task_description: str | None = None,
    linked_files: Sequence[str] = (),
) -> str:
    task = _task_section(task_description, linked_files)
    if number == 1:
        return f"""Pass 1 of 3: atomic diff review.

Pull request #{pr.number}: {pr.title}
Diff range: {pr.base_sha[:7]}...{pr.head_sha[:7]} ({pr.base_ref} <- {pr.head_ref})
{task}
Changed files:
{_files_section(pr.changed_files)}

Run `git diff {pr.base_sha}...{pr.head_sha}` and review every hunk line by line:
logic errors, off-by-one mistakes, missing error handling, wrong types, dead code.
Keep notes of each problem with its file and new-file line number."""
    if number == 2:
        return f"""Pass 2 of 3: structural review.
{task}
Step back from individual lines. Check how the change fits the codebase:
broken callers, inconsistent interfaces, duplicated logic, missing tests,
and whether the change actually implements the task."""
    return f"""Pass 3 of 3: security and compliance review.
{task}
Look for injection, unsafe deserialization, secrets in code, missing
authorization checks, unsafe file or network access, and data exposure.
Also check error messages and logs for leaked sensitive values."""


def pass_report_prompt(number: int, existing: Sequence[ReviewThread] = ()) -> str:
    known = "\n".join(f"- {t.file}:{t.line} {t.assessment.finding}" for t in existing) or "(none)"
    return f"""Report the problems you found in pass {number}.

Existing issues (do not report these again):
{known}

### Output Format:
Respond with **only** a valid JSON object:

{{
  "findings": [
    {{
      "file": "<path relative to the repository root>",
      "line": <line number in the new file (integer)>,
      "score": <1-10>,
      "finding": "<one-sentence summary of the problem>",
      "assessment": "<why it matters and how to fix it; GitHub-flavored markdown>"
    }}
  ],
  "has_blocking_issues": <true|false>
}}

If there are no new problems, return {{"findings": [], "has_blocking_issues": false}}.
Do not return any text outside the JSON block."""


def fix_verification_prompt(threads: Sequence[ReviewThread], pr: PullRequestInfo) -> str:
    issues = "\n".join(
        f"- [{t.id}] {t.file}:{t.line} (score {t.score}): {t.assessment.finding}" for t in threads
    )
    return f"""Earlier reviews of this pull request raised these unresolved issues:

{issues}

The branch is now at {pr.head_sha[:7]}. For each issue, check the current code and decide
whether it has been fixed.

### Output Format:
Respond with **only** a valid JSON object:

{{
  "threads": [
    {{"id": <issue id>, "status": "<RESOLVED|PENDING>", "explanation": "<one sentence>"}}
  ]
}}

Do not return any text outside the JSON block."""


def clarify_finding_prompt(thread: ReviewThread, reply: str) -> str:
    return f"""A developer asked for clarification about one of your review findings.

File: {thread.file}:{thread.line}
Finding: {thread.assessment.finding}
Assessment: {thread.assessment.assessment}

Developer's question:
\"\"\"
{reply}
\"\"\"

Read the code again and answer the question directly. Explain the problem with
concrete references to the code and suggest a fix. Reply in GitHub-flavored markdown."""


def dispute_evaluation_prompt(thread: ReviewThread, reply: str, kind: str, enable_escalation: bool) -> str:
    statuses = "RESOLVED|DISPUTED|ESCALATED" if enable_escalation else "RESOLVED|DISPUTED"
    escalation = (
        "- ESCALATED: you cannot settle the disagreement and a human reviewer should decide.\n"
        if enable_escalation
        else ""
    )
    return f"""A developer replied to one of your review findings ({kind}).

File: {thread.file}:{thread.line}
Score: {thread.score}/10
Finding: {thread.assessment.finding}
Assessment: {thread.assessment.assessment}

Developer's reply:
\"\"\"
{reply}
\"\"\"

Re-read the code and evaluate the reply on its merits. Be willing to change your mind.
- RESOLVED: the developer is right, or the problem is fixed.
- DISPUTED: the problem stands; explain why.
{escalation}
### Output Format:
Respond with **only** a valid JSON object:

{{"status": "<{statuses}>", "reply": "<your response to the developer; GitHub-flavored markdown>"}}

Do not return any text outside the JSON block."""


def question_prompt(
    question: str,
    author: str,
    pr: PullRequestInfo,
    history: Sequence[ConversationMessage] = (),
    file_context: str | None = None,
) -> str:
    context = f"\nThe question refers to `{file_context}`.\n" if file_context else ""
    if history:
        lines = [f"- {'[bot] ' if m.is_bot else ''}{m.author} ({m.timestamp}): {m.body.strip()}" for m in history]
        conversation = "\n## Earlier conversation\n" + "\n".join(lines) + "\n"
    else:
        conversation = ""
    return f"""@{author} asked a question on pull request #{pr.number} ({pr.title}).
The branch is at {pr.head_sha[:7]}; the diff range is {pr.base_sha[:7]}...{pr.head_sha[:7]}.
{context}{conversation}
## Question
{question}

Investigate the code as needed and answer in GitHub-flavored markdown.
Reply with the answer only."""
