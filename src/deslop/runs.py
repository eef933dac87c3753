from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from deslop.markdown import (
    parse_findings,
    parse_review,
    render_tasks,
    render_verification,
)
from deslop.models import ReviewSuggestion, SlopFinding, Task, VerificationResult

logger = logging.getLogger(__name__)

RUNS_DIR = Path(".deslop") / "runs"
LOG_HEADER = "# Deslop Activity Log"


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_run_id(now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    stamp = moment.astimezone(UTC).isoformat(timespec="milliseconds")
    return stamp.replace(":", "-").replace(".", "-").replace("T", "-")[:19]


class RunStore:
    """Durable per-run artifact directory under ``.deslop/runs/<run-id>``."""

    def __init__(self, base_dir: Path, run_id: str) -> None:
        self.base_dir = base_dir.resolve()
        self.run_id = run_id
        self.run_dir = self.base_dir / RUNS_DIR / run_id

    @classmethod
    def create(cls, base_dir: Path, *, now: datetime | None = None) -> RunStore:
        store = cls(base_dir, new_run_id(now))
        store.run_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Created run directory %s", store.run_dir)
        return store

    @property
    def findings_path(self) -> Path:
        return self.run_dir / "findings.md"

    @property
    def review_path(self) -> Path:
        return self.run_dir / "review.md"

    @property
    def tasks_path(self) -> Path:
        return self.run_dir / "tasks.md"

    @property
    def verification_path(self) -> Path:
        return self.run_dir / "verification.md"

    @property
    def log_path(self) -> Path:
        return self.run_dir / "log.md"

    def read_findings(self) -> list[SlopFinding]:
        if not self.findings_path.exists():
            logger.info("No findings file written at %s", self.findings_path)
            return []
        return parse_findings(self.findings_path.read_text(encoding="utf-8"))

    def read_review(self) -> list[ReviewSuggestion]:
        if not self.review_path.exists():
            logger.info("No review file written at %s", self.review_path)
            return []
        return parse_review(self.review_path.read_text(encoding="utf-8"))

    def write_tasks(self, tasks: list[Task]) -> Path:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.tasks_path.write_text(render_tasks(self.run_id, tasks), encoding="utf-8")
        return self.tasks_path

    def write_verification_results(self, results: list[VerificationResult], attempt: int) -> Path:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.verification_path.write_text(
            render_verification(self.run_id, results, attempt),
            encoding="utf-8",
        )
        return self.verification_path

    def log_activity(self, message: str) -> None:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        if not self.log_path.exists():
            self.log_path.write_text(f"{LOG_HEADER}\nRun: {self.run_id}\n\n", encoding="utf-8")
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"- [{_utcnow_iso()}] {message}\n")
        logger.debug("[%s] %s", self.run_id, message)

    def read_activity(self) -> list[str]:
        if not self.log_path.exists():
            return []
        return [
            line[2:]
            for line in self.log_path.read_text(encoding="utf-8").splitlines()
            if line.startswith("- [")
        ]
