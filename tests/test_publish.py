import subprocess
from pathlib import Path

import pytest

from deslop.errors import PublishError
from deslop.models import Task
from deslop.publish import create_pull_request, generate_commit_message, generate_pr_body, git_status


def _task(title: str, status: str = "completed") -> Task:
    return Task(id=title, title=title, description="", source_finding_id=title, status=status)  # type: ignore[arg-type]


def _git(repo: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=repo, check=True, text=True, capture_output=True)


def _init_git_repo(repo: Path) -> None:
    _git(repo, "init", "-b", "main")
    _git(repo, "config", "user.email", "test@example.com")
    _git(repo, "config", "user.name", "Test User")
    (repo / "README.md").write_text("seed\n", encoding="utf-8")
    _git(repo, "add", "README.md")
    _git(repo, "commit", "-m", "seed")


def test_commit_message_for_single_prefix() -> None:
    assert generate_commit_message([_task("Fix: A"), _task("Fix: B")]) == "chore: deslop - fix"


def test_commit_message_lists_titles() -> None:
    tasks = [_task(f"Fix{n}: item") for n in range(12)]

    message = generate_commit_message(tasks)

    assert message.startswith("chore: deslop codebase\n\nFixed 12 issues:")
    assert "- Fix0: item" in message
    assert "- Fix10: item" not in message
    assert message.endswith("... and 2 more")


def test_pr_body_lists_failures() -> None:
    body = generate_pr_body([_task("Fix: A"), _task("Fix: B", status="failed")])

    assert "### Fixed (1)" in body
    assert "### Failed (1)\n\n- Fix: B" in body
    assert body.endswith("*Generated by deslop*")


def test_git_status(tmp_path: Path) -> None:
    assert git_status(tmp_path) == "not-git"

    _init_git_repo(tmp_path)
    assert git_status(tmp_path) == "no-changes"

    (tmp_path / "README.md").write_text("changed\n", encoding="utf-8")
    assert git_status(tmp_path) == "changes"


def test_push_failure_raises_after_branching(tmp_path: Path) -> None:
    _init_git_repo(tmp_path)
    (tmp_path / "README.md").write_text("changed\n", encoding="utf-8")

    with pytest.raises(PublishError, match="Failed to push"):
        create_pull_request(tmp_path, [_task("Fix: A")])

    branch = subprocess.run(
        ["git", "branch", "--show-current"], cwd=tmp_path, text=True, capture_output=True
    ).stdout.strip()
    assert branch.startswith("deslop/")
