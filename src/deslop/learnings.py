from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from deslop.markdown import parse_line_number, read_fields
from deslop.models import NotSlopEntry, SlopFinding

logger = logging.getLogger(__name__)

LEARNINGS_DIR = Path(".deslop") / "learnings"
NOT_SLOP_FILE = "not-slop.md"
SNIPPET_PREVIEW_CHARS = 100

LEARNINGS_HEADER = """# Deslop Learnings - Not Slop

These patterns were flagged but the user marked them as NOT slop.
This context is included in future scans to avoid similar false positives.

"""

ENTRY_HEADING_PATTERN = re.compile(r"^## Entry \d+\s*$", re.MULTILINE)
CODE_FENCE_PATTERN = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)

FILE_NOT_FOUND = "(File not found)"
FILE_UNREADABLE = "(Error reading file)"


def code_snippet(base_dir: Path, file_path: str, line: int | None = None, context_lines: int = 3) -> str:
    full_path = base_dir / file_path
    if not full_path.is_file():
        return FILE_NOT_FOUND
    try:
        lines = full_path.read_text(encoding="utf-8").split("\n")
    except (OSError, UnicodeDecodeError):
        return FILE_UNREADABLE

    if not line or line < 1:
        return "\n".join(lines[: context_lines * 2 + 1])
    start = max(0, line - 1 - context_lines)
    end = min(len(lines), line + context_lines)
    return "\n".join(lines[start:end])


class LearningsStore:
    """Append-only, cross-run record of findings the user rejected."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir.resolve()
        self.path = self.base_dir / LEARNINGS_DIR / NOT_SLOP_FILE

    def load(self) -> list[NotSlopEntry]:
        if not self.path.exists():
            return []
        return self.parse(self.path.read_text(encoding="utf-8"))

    @staticmethod
    def parse(content: str) -> list[NotSlopEntry]:
        entries: list[NotSlopEntry] = []
        headings = list(ENTRY_HEADING_PATTERN.finditer(content))
        for index, heading in enumerate(headings):
            end = headings[index + 1].start() if index + 1 < len(headings) else len(content)
            body = content[heading.end() : end]
            code_match = CODE_FENCE_PATTERN.search(body)
            # Fields are read outside the fence so snippet text cannot shadow them.
            field_text = CODE_FENCE_PATTERN.sub("", body)
            fields = read_fields(field_text.splitlines())
            entries.append(
                NotSlopEntry(
                    file=fields.get("file", "unknown"),
                    line=parse_line_number(fields.get("line")),
                    category=fields.get("category", "unknown"),
                    title=fields.get("original title", "unknown"),
                    code_snippet=code_match.group(1).strip() if code_match else "",
                    timestamp=fields.get("marked as not slop on", ""),
                )
            )
        return entries

    def add(self, finding: SlopFinding, snippet: str, *, today: str | None = None) -> NotSlopEntry:
        entry = NotSlopEntry(
            file=finding.file,
            line=finding.line,
            category=finding.category,
            title=finding.title,
            code_snippet=snippet,
            timestamp=today or datetime.now(UTC).date().isoformat(),
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = self.path.read_text(encoding="utf-8") if self.path.exists() else LEARNINGS_HEADER
        number = len(ENTRY_HEADING_PATTERN.findall(content)) + 1

        lines = [f"## Entry {number}", f"- **File:** {entry.file}"]
        if entry.line:
            lines.append(f"- **Line:** {entry.line}")
        lines.extend(
            [
                f"- **Category:** {entry.category}",
                f"- **Original title:** {entry.title}",
                "- **Code snippet:**",
                "```",
                entry.code_snippet,
                "```",
                f"- **Marked as not slop on:** {entry.timestamp}",
                "",
                "",
            ]
        )
        self.path.write_text(content + "\n".join(lines), encoding="utf-8")
        logger.info("Recorded not-slop entry %d for %s", number, entry.file)
        return entry

    def prompt_context(self) -> str:
        entries = self.load()
        if not entries:
            return ""

        parts = [
            "IMPORTANT: The user has previously marked these patterns as NOT slop. "
            "Do NOT flag similar patterns:",
            "",
        ]
        for number, entry in enumerate(entries, start=1):
            location = f"{entry.file}:{entry.line}" if entry.line else entry.file
            preview = entry.code_snippet[:SNIPPET_PREVIEW_CHARS]
            if len(entry.code_snippet) > SNIPPET_PREVIEW_CHARS:
                preview += "..."
            parts.extend(
                [
                    f"{number}. In {location} ({entry.category}):",
                    f'   "{entry.title}" was marked as acceptable.',
                    f"   Code: {preview}",
                    "",
                ]
            )
        parts.append("Avoid flagging similar patterns to the above.")
        return "\n".join(parts) + "\n"
