from deslop.markdown import (
    parse_blocks,
    parse_findings,
    parse_line_number,
    parse_review,
    render_findings,
    render_review,
)
from deslop.models import ReviewSuggestion, SlopFinding

FINDINGS_DOC = """# Deslop Scan Results

## Issues Found

### 1. [HIGH] Redundant null check
- **File:** src/api.ts
- **Line:** 42
- **Category:** defensive-checks
- **Description:** The value is validated by the caller.

### 2. [MEDIUM] Comment restates the code
- **File:** src/util.ts
- **Line:** 7
- **Category:** Extra-Comments
- **Description:** `// increment i` above `i++`.

### 3. [LOW] Start Case button label
- **File:** src/Login.tsx
- **Line:** 19
- **Category:** ui-slop
- **Description:** "Input Your Password" should be sentence case.
"""


def test_parse_findings_recovers_every_block() -> None:
    findings = parse_findings(FINDINGS_DOC)

    assert [finding.id for finding in findings] == ["slop-0", "slop-1", "slop-2"]
    assert [finding.title for finding in findings] == [
        "Redundant null check",
        "Comment restates the code",
        "Start Case button label",
    ]
    assert [finding.file for finding in findings] == ["src/api.ts", "src/util.ts", "src/Login.tsx"]
    assert [finding.line for finding in findings] == [42, 7, 19]
    assert [finding.severity for finding in findings] == ["high", "medium", "low"]
    assert [finding.category for finding in findings] == [
        "defensive-checks",
        "extra-comments",
        "ui-slop",
    ]
    assert findings[1].description == "`// increment i` above `i++`."
    assert not any(finding.selected for finding in findings)


def test_rendered_findings_parse_back() -> None:
    original = [
        SlopFinding(
            id="a",
            title="Any cast hides a type error",
            description="Use the real type.",
            file="src/a.ts",
            line=3,
            severity="high",
            category="any-cast",
        ),
        SlopFinding(
            id="b",
            title="Generated ARCHITECTURE.md",
            description="Boilerplate document.",
            file="ARCHITECTURE.md",
            line=None,
            severity="low",
            category="generated-docs",
        ),
    ]

    parsed = parse_findings(render_findings(original))

    assert [(f.title, f.file, f.line, f.category, f.severity, f.description) for f in parsed] == [
        (f.title, f.file, f.line, f.category, f.severity, f.description) for f in original
    ]


def test_missing_fields_fall_back_to_defaults() -> None:
    doc = """### 1. [MEDIUM] Only a title
- **Description:** Nothing else was written.
"""

    [finding] = parse_findings(doc)

    assert finding.line is None
    assert finding.file == "unknown"
    assert finding.category == "style-inconsistency"
    assert finding.description == "Nothing else was written."


def test_no_issues_sentinel_parses_to_empty_list() -> None:
    assert parse_findings(render_findings([])) == []
    assert parse_findings("# Deslop Scan Results\n\n## No Issues Found\n") == []


def test_block_ends_at_next_heading_of_any_level() -> None:
    doc = """### 1. [LOW] First
- **File:** a.py

## Notes
- **File:** should-not-leak.py
"""

    [block] = parse_blocks(doc)

    assert block.get("File") == "a.py"
    assert block.has("file")
    assert not block.has("line")


def test_first_field_occurrence_wins() -> None:
    [block] = parse_blocks("### 1. [HIGH] Dup\n- **File:** first.py\n- **File:** second.py\n")

    assert block.get("file") == "first.py"


def test_parse_line_number_takes_leading_digits() -> None:
    assert parse_line_number("42") == 42
    assert parse_line_number("42-48") == 42
    assert parse_line_number("0") is None
    assert parse_line_number("n/a") is None
    assert parse_line_number(None) is None


def test_parse_review_suggestions() -> None:
    doc = render_review(
        [
            ReviewSuggestion(
                id="x",
                title="Leftover debug log",
                description="Remove console.log.",
                file="src/app.ts",
                line=10,
                severity="medium",
            )
        ]
    )

    [suggestion] = parse_review(doc)

    assert suggestion.id == "review-0"
    assert suggestion.title == "Leftover debug log"
    assert suggestion.file == "src/app.ts"
    assert suggestion.line == 10
    assert suggestion.severity == "medium"


def test_review_sentinel_parses_to_empty_list() -> None:
    assert parse_review(render_review([])) == []
    assert parse_review("NO_SUGGESTIONS") == []
