from __future__ import annotations

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from deslop.errors import PublishError
from deslop.models import Task

logger = logging.getLogger(__name__)

PR_TITLE = "chore: deslop codebase"
PR_URL_PATTERN = re.compile(r"https://github\.com/\S+")
COMMIT_LIST_LIMIT = 10
DEFAULT_BRANCHES = {"main", "master"}

GitStatus = Literal["not-git", "no-changes", "changes"]


@dataclass(slots=True)
class CommandOutput:
    success: bool
    output: str


def _run(args: list[str], cwd: Path) -> CommandOutput:
    try:
        proc = subprocess.run(args, cwd=cwd, text=True, capture_output=True, check=False)
    except OSError:
        return CommandOutput(success=False, output=f"Command not found: {args[0]}")
    return CommandOutput(success=proc.returncode == 0, output=proc.stdout + proc.stderr)


def git_status(directory: Path) -> GitStatus:
    if not _run(["git", "rev-parse", "--is-inside-work-tree"], directory).success:
        return "not-git"
    unstaged = _run(["git", "diff", "--quiet"], directory)
    staged = _run(["git", "diff", "--staged", "--quiet"], directory)
    if unstaged.success and staged.success:
        return "no-changes"
    return "changes"


def generate_commit_message(tasks: list[Task]) -> str:
    completed = [task for task in tasks if task.status == "completed"]
    prefixes = list(dict.fromkeys(task.title.split(":")[0] for task in completed))
    if len(prefixes) == 1:
        return f"chore: deslop - {prefixes[0].lower()}"

    lines = [PR_TITLE, "", f"Fixed {len(completed)} issues:"]
    lines.extend(f"- {task.title}" for task in completed[:COMMIT_LIST_LIMIT])
    if len(completed) > COMMIT_LIST_LIMIT:
        lines.append(f"... and {len(completed) - COMMIT_LIST_LIMIT} more")
    return "\n".join(lines)


def generate_pr_body(tasks: list[Task]) -> str:
    completed = [task for task in tasks if task.status == "completed"]
    failed = [task for task in tasks if task.status == "failed"]
    lines = [
        "## Summary",
        "",
        "Automated cleanup of codebase issues using deslop.",
        "",
        f"### Fixed ({len(completed)})",
        "",
        *(f"- {task.title}" for task in completed),
    ]
    if failed:
        lines.extend(["", f"### Failed ({len(failed)})", "", *(f"- {task.title}" for task in failed)])
    lines.extend(["", "---", "*Generated by deslop*"])
    return "\n".join(lines)


def _step(args: list[str], directory: Path, failure: str) -> CommandOutput:
    result = _run(args, directory)
    if not result.success:
        raise PublishError(f"{failure}: {result.output.strip()}")
    return result


def create_pull_request(directory: Path, tasks: list[Task]) -> str | None:
    """Commit the working tree, push it and open a pull request.

    Returns the pull request URL when ``gh`` printed one.
    """
    branch = _run(["git", "branch", "--show-current"], directory).output.strip()
    if branch in DEFAULT_BRANCHES:
        new_branch = f"deslop/{int(time.time() * 1000)}"
        _step(["git", "checkout", "-b", new_branch], directory, "Failed to create branch")
        logger.info("Created branch %s", new_branch)

    _step(["git", "add", "-A"], directory, "Failed to stage changes")
    _step(["git", "commit", "-m", generate_commit_message(tasks)], directory, "Failed to commit")
    _step(["git", "push", "-u", "origin", "HEAD"], directory, "Failed to push")
    result = _step(
        ["gh", "pr", "create", "--title", PR_TITLE, "--body", generate_pr_body(tasks)],
        directory,
        "Failed to create PR",
    )
    match = PR_URL_PATTERN.search(result.output)
    return match.group(0) if match else None
