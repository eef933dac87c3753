"""Markdown interchange format shared with the agent.

The agent's only output channel is a markdown file it is told to write, so
records travel as repeated blocks::

    ### 1. [HIGH] Title of the issue
    - **File:** path/to/file.ts
    - **Line:** 42
    - **Category:** defensive-checks
    - **Description:** Explanation

The reader is a small line grammar. A block starts at a numbered, severity
tagged ``###`` heading and runs until the next heading of any level. Inside a
block every ``**Label:** value`` occurrence is a field; the first occurrence
of a label wins. Absent fields are reported as absent and mapped to defaults
by the record builders, so a malformed block yields a partial record rather
than an error.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from deslop.models import ReviewSuggestion, SlopFinding, Task, VerificationResult

RECORD_HEADING_PATTERN = re.compile(
    r"^###\s+(?P<ordinal>\d+)\.\s+\[(?P<severity>\w+)\]\s+(?P<title>.+?)\s*$"
)
ANY_HEADING_PATTERN = re.compile(r"^#{1,6}\s")
FIELD_PATTERN = re.compile(r"\*\*(?P<label>[^*\n]+?):\*\*[ \t]*(?P<value>\S.*)$")
LINE_NUMBER_PATTERN = re.compile(r"\s*(\d+)")
NO_SUGGESTIONS_PATTERN = re.compile(r"^##\s+No Suggestions\b|NO_SUGGESTIONS", re.MULTILINE | re.IGNORECASE)

FINDINGS_TITLE = "# Deslop Scan Results"
REVIEW_TITLE = "# Deslop Review Results"
NO_ISSUES_HEADING = "## No Issues Found"
NO_SUGGESTIONS_HEADING = "## No Suggestions"
DEFAULT_FILE = "unknown"
DEFAULT_CATEGORY = "style-inconsistency"


@dataclass(slots=True)
class RecordBlock:
    ordinal: int
    severity: str
    title: str
    fields: dict[str, str] = field(default_factory=dict)

    def has(self, label: str) -> bool:
        return label.lower() in self.fields

    def get(self, label: str) -> str | None:
        return self.fields.get(label.lower())


def read_fields(lines: Iterable[str]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for line in lines:
        match = FIELD_PATTERN.search(line)
        if not match:
            continue
        label = match.group("label").strip().lower()
        fields.setdefault(label, match.group("value").strip())
    return fields


def parse_blocks(text: str) -> list[RecordBlock]:
    blocks: list[RecordBlock] = []
    current: RecordBlock | None = None
    body: list[str] = []

    def _close() -> None:
        if current is not None:
            current.fields.update(read_fields(body))
            blocks.append(current)

    for line in text.splitlines():
        heading = RECORD_HEADING_PATTERN.match(line)
        if heading:
            _close()
            current = RecordBlock(
                ordinal=int(heading.group("ordinal")),
                severity=heading.group("severity"),
                title=heading.group("title").strip(),
            )
            body = []
            continue
        if ANY_HEADING_PATTERN.match(line):
            _close()
            current = None
            body = []
            continue
        if current is not None:
            body.append(line)
    _close()
    return blocks


def parse_line_number(value: str | None) -> int | None:
    if value is None:
        return None
    match = LINE_NUMBER_PATTERN.match(value)
    if not match:
        return None
    number = int(match.group(1))
    return number or None


def parse_findings(text: str) -> list[SlopFinding]:
    findings: list[SlopFinding] = []
    for index, block in enumerate(parse_blocks(text)):
        findings.append(
            SlopFinding(
                id=f"slop-{index}",
                title=block.title,
                description=block.get("description") or "",
                file=block.get("file") or DEFAULT_FILE,
                line=parse_line_number(block.get("line")),
                severity=block.severity.lower(),  # type: ignore[arg-type]
                category=(block.get("category") or DEFAULT_CATEGORY).lower(),  # type: ignore[arg-type]
            )
        )
    return findings


def parse_review(text: str) -> list[ReviewSuggestion]:
    if NO_SUGGESTIONS_PATTERN.search(text):
        return []
    return [
        ReviewSuggestion(
            id=f"review-{index}",
            title=block.title,
            description=block.get("description") or "",
            file=block.get("file") or DEFAULT_FILE,
            line=parse_line_number(block.get("line")),
            severity=block.severity.lower(),  # type: ignore[arg-type]
        )
        for index, block in enumerate(parse_blocks(text))
    ]


def render_block(
    ordinal: int,
    severity: str,
    title: str,
    fields: list[tuple[str, object | None]],
) -> list[str]:
    lines = [f"### {ordinal}. [{severity.upper()}] {title}"]
    for label, value in fields:
        if value is None:
            continue
        lines.append(f"- **{label}:** {value}")
    lines.append("")
    return lines


def render_findings(findings: list[SlopFinding]) -> str:
    lines = [FINDINGS_TITLE, ""]
    if not findings:
        lines.extend([NO_ISSUES_HEADING, ""])
        return "\n".join(lines)
    lines.extend(["## Issues Found", ""])
    for ordinal, finding in enumerate(findings, start=1):
        lines.extend(
            render_block(
                ordinal,
                finding.severity,
                finding.title,
                [
                    ("File", finding.file),
                    ("Line", finding.line),
                    ("Category", finding.category),
                    ("Description", finding.description),
                ],
            )
        )
    return "\n".join(lines)


def render_review(suggestions: list[ReviewSuggestion]) -> str:
    lines = [REVIEW_TITLE, ""]
    if not suggestions:
        lines.extend(
            [
                NO_SUGGESTIONS_HEADING,
                "",
                "The code changes look good. No further improvements needed.",
                "",
            ]
        )
        return "\n".join(lines)
    lines.extend(["## Suggestions", ""])
    for ordinal, suggestion in enumerate(suggestions, start=1):
        lines.extend(
            render_block(
                ordinal,
                suggestion.severity,
                suggestion.title,
                [
                    ("File", suggestion.file),
                    ("Line", suggestion.line),
                    ("Description", suggestion.description),
                ],
            )
        )
    return "\n".join(lines)


def render_tasks(run_id: str, tasks: list[Task]) -> str:
    lines = ["# Deslop Tasks", f"Run: {run_id}", "", "## Tasks to Execute", ""]
    for ordinal, task in enumerate(tasks, start=1):
        lines.append(f"### {ordinal}. {task.title}")
        lines.append(f"- **ID:** {task.id}")
        lines.append(f"- **Status:** {task.status}")
        if task.file:
            lines.append(f"- **File:** {task.file}")
        lines.append(f"- **Description:** {task.description}")
        lines.append("")
    return "\n".join(lines)


def render_verification(run_id: str, results: list[VerificationResult], attempt: int) -> str:
    lines = ["# Verification Results", f"Run: {run_id}", f"Attempt: {attempt}", ""]
    for result in results:
        lines.extend(
            [
                f"## {result.command.name}",
                f"- **Command:** {result.command.command}",
                f"- **Status:** {'PASSED' if result.success else 'FAILED'}",
                f"- **Exit Code:** {result.exit_code}",
                f"- **Duration:** {result.duration_ms}ms",
                "",
                "### Output",
                "```",
                result.output,
                "```",
                "",
            ]
        )
    return "\n".join(lines)
