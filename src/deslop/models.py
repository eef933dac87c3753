from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Literal

Severity = Literal["low", "medium", "high"]
SlopCategory = Literal[
    "extra-comments",
    "defensive-checks",
    "any-cast",
    "style-inconsistency",
    "generated-docs",
    "reinventing-wheel",
    "ui-slop",
]
TaskStatus = Literal["pending", "in_progress", "completed", "failed"]
CommandType = Literal["build", "test", "lint", "typecheck"]
CommandStatus = Literal["pending", "running", "passed", "failed", "skipped"]
VerificationStatus = Literal["discovering", "running", "fixing", "passed", "failed"]
PhaseName = Literal[
    "scanning", "results", "executing", "verifying", "reviewing", "complete", "error"
]

SLOP_CATEGORIES: tuple[str, ...] = (
    "extra-comments",
    "defensive-checks",
    "any-cast",
    "style-inconsistency",
    "generated-docs",
    "reinventing-wheel",
    "ui-slop",
)
HINT_ONLY_CATEGORIES: frozenset[str] = frozenset({"ui-slop"})
REVIEW_FINDING_CATEGORY = "style-inconsistency"


def is_hint_only(category: str) -> bool:
    return category in HINT_ONLY_CATEGORIES


@dataclass(slots=True)
class SlopFinding:
    id: str
    title: str
    description: str
    file: str
    line: int | None
    severity: Severity
    category: SlopCategory
    selected: bool = False

    @property
    def hint_only(self) -> bool:
        return is_hint_only(self.category)


@dataclass(slots=True)
class Task:
    id: str
    title: str
    description: str
    source_finding_id: str
    status: TaskStatus = "pending"
    file: str | None = None
    error: str | None = None


@dataclass(slots=True)
class ReviewSuggestion:
    id: str
    title: str
    description: str
    file: str
    line: int | None
    severity: Severity


@dataclass(slots=True)
class VerificationCommand:
    id: str
    name: str
    command: str
    type: CommandType
    optional: bool
    status: CommandStatus = "pending"
    output: str | None = None
    exit_code: int | None = None

    def reset(self) -> VerificationCommand:
        return VerificationCommand(
            id=self.id,
            name=self.name,
            command=self.command,
            type=self.type,
            optional=self.optional,
        )


@dataclass(slots=True)
class VerificationResult:
    command: VerificationCommand
    success: bool
    output: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False


@dataclass(slots=True)
class VerificationState:
    commands: list[VerificationCommand]
    max_attempts: int
    attempt: int = 1
    current_index: int = 0
    status: VerificationStatus = "discovering"
    last_error: str | None = None


@dataclass(slots=True)
class NotSlopEntry:
    file: str
    line: int | None
    category: str
    title: str
    code_snippet: str
    timestamp: str


def build_tasks(findings: list[SlopFinding]) -> list[Task]:
    """One task per selected, fixable finding, in finding order."""
    return [
        Task(
            id=f"task-{finding.id}",
            title=f"Fix: {finding.title}",
            description=finding.description,
            file=finding.file,
            source_finding_id=finding.id,
        )
        for finding in findings
        if finding.selected and not finding.hint_only
    ]


def promote_suggestions(suggestions: list[ReviewSuggestion]) -> list[SlopFinding]:
    return [
        SlopFinding(
            id=f"review-slop-{index}",
            title=suggestion.title,
            description=suggestion.description,
            file=suggestion.file,
            line=suggestion.line,
            severity=suggestion.severity,
            category=REVIEW_FINDING_CATEGORY,
            selected=True,
        )
        for index, suggestion in enumerate(suggestions)
    ]


# Phase values. Each phase holds exactly the data its screen and its outgoing
# transitions need; the orchestrator swaps whole values on transition.


@dataclass(slots=True)
class ScanningPhase:
    name: ClassVar[PhaseName] = "scanning"
    messages: list[str] = field(default_factory=list)
    tool_calls: int = 0
    current_activity: str = ""


@dataclass(slots=True)
class ResultsPhase:
    name: ClassVar[PhaseName] = "results"
    findings: list[SlopFinding] = field(default_factory=list)

    @property
    def selected_count(self) -> int:
        return sum(1 for finding in self.findings if finding.selected and not finding.hint_only)


@dataclass(slots=True)
class ExecutingPhase:
    name: ClassVar[PhaseName] = "executing"
    tasks: list[Task] = field(default_factory=list)
    output: list[str] = field(default_factory=list)


@dataclass(slots=True)
class VerifyingPhase:
    name: ClassVar[PhaseName] = "verifying"
    verification: VerificationState
    tasks: list[Task] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    output: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ReviewingPhase:
    name: ClassVar[PhaseName] = "reviewing"
    tasks: list[Task] = field(default_factory=list)
    suggestions: list[ReviewSuggestion] = field(default_factory=list)
    loading: bool = True
    output: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CompletePhase:
    name: ClassVar[PhaseName] = "complete"
    tasks: list[Task] = field(default_factory=list)
    message: str = ""

    @property
    def completed(self) -> list[Task]:
        return [task for task in self.tasks if task.status == "completed"]

    @property
    def failed(self) -> list[Task]:
        return [task for task in self.tasks if task.status == "failed"]


@dataclass(slots=True)
class ErrorPhase:
    name: ClassVar[PhaseName] = "error"
    title: str
    message: str
    hint: str | None = None
    failed_phase: PhaseName | None = None


Phase = (
    ScanningPhase
    | ResultsPhase
    | ExecutingPhase
    | VerifyingPhase
    | ReviewingPhase
    | CompletePhase
    | ErrorPhase
)
