from datetime import UTC, datetime
from pathlib import Path

from deslop.models import Task, VerificationCommand, VerificationResult
from deslop.runs import RunStore, new_run_id


def test_run_id_is_timestamp_derived() -> None:
    moment = datetime(2025, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)

    assert new_run_id(moment) == "2025-01-02-03-04-05"


def test_create_makes_run_directory(tmp_path: Path) -> None:
    store = RunStore.create(tmp_path, now=datetime(2025, 1, 2, 3, 4, 5, tzinfo=UTC))

    assert store.run_dir == tmp_path.resolve() / ".deslop" / "runs" / "2025-01-02-03-04-05"
    assert store.run_dir.is_dir()
    assert store.findings_path.name == "findings.md"
    assert store.review_path.name == "review.md"


def test_missing_artifacts_read_as_empty(tmp_path: Path) -> None:
    store = RunStore.create(tmp_path)

    assert store.read_findings() == []
    assert store.read_review() == []


def test_write_tasks(tmp_path: Path) -> None:
    store = RunStore.create(tmp_path)
    tasks = [
        Task(
            id="task-slop-0",
            title="Fix: Redundant check",
            description="Remove it.",
            source_finding_id="slop-0",
            file="src/a.ts",
        )
    ]

    content = store.write_tasks(tasks).read_text(encoding="utf-8")

    assert content.startswith("# Deslop Tasks\n")
    assert f"Run: {store.run_id}" in content
    assert "### 1. Fix: Redundant check" in content
    assert "- **ID:** task-slop-0" in content
    assert "- **Status:** pending" in content
    assert "- **File:** src/a.ts" in content


def test_write_verification_results(tmp_path: Path) -> None:
    store = RunStore.create(tmp_path)
    command = VerificationCommand(id="test", name="test", command="npm run test", type="test", optional=False)
    result = VerificationResult(command=command, success=False, output="1 failing\n", exit_code=1, duration_ms=12)

    content = store.write_verification_results([result], attempt=2).read_text(encoding="utf-8")

    assert "Attempt: 2" in content
    assert "## test" in content
    assert "- **Status:** FAILED" in content
    assert "- **Exit Code:** 1" in content
    assert "- **Duration:** 12ms" in content
    assert "1 failing" in content


def test_activity_log_is_append_only(tmp_path: Path) -> None:
    store = RunStore.create(tmp_path)

    store.log_activity("Starting codebase scan")
    store.log_activity("Scan complete: found 0 issues")

    content = store.log_path.read_text(encoding="utf-8")
    assert content.startswith(f"# Deslop Activity Log\nRun: {store.run_id}\n\n")
    entries = store.read_activity()
    assert len(entries) == 2
    assert entries[0].endswith("] Starting codebase scan")
    assert entries[1].endswith("] Scan complete: found 0 issues")
