from pathlib import Path

from deslop.markdown import parse_findings, parse_review
from deslop.models import SlopFinding, VerificationCommand
from deslop.prompts import (
    build_code_review_prompt,
    build_fix_prompt,
    build_slop_detection_prompt,
    build_verification_fix_prompt,
)


def test_detection_prompt_points_at_findings_file() -> None:
    prompt = build_slop_detection_prompt(Path("/runs/1/findings.md"))

    assert "write your findings to: /runs/1/findings.md" in prompt
    assert "ui-slop" in prompt
    assert '"## No Issues Found"' in prompt
    assert "previously marked" not in prompt


def test_detection_prompt_includes_learnings() -> None:
    prompt = build_slop_detection_prompt(Path("f.md"), "IMPORTANT: The user has previously marked these")

    assert "IMPORTANT: The user has previously marked these" in prompt


def test_prompt_examples_follow_the_parsed_grammar() -> None:
    detection = build_slop_detection_prompt(Path("f.md"))
    review = build_code_review_prompt(Path("r.md"))

    assert len(parse_findings(detection)) == 2
    assert "NO_SUGGESTIONS" not in review
    assert "## No Suggestions" in review


def test_fix_prompt_mentions_location_and_category() -> None:
    finding = SlopFinding(
        id="slop-0",
        title="Emoji in log",
        description="Drop the emoji.",
        file="src/log.ts",
        line=12,
        severity="low",
        category="style-inconsistency",
    )

    prompt = build_fix_prompt(finding)

    assert prompt.startswith("Fix the following AI slop issue in src/log.ts around line 12:")
    assert "Category: style-inconsistency" in prompt
    finding.line = None
    assert build_fix_prompt(finding).startswith("Fix the following AI slop issue in src/log.ts:")


def test_verification_fix_prompt_keeps_output_tail() -> None:
    command = VerificationCommand(
        id="test", name="test", command="npm test", type="test", optional=False, exit_code=1
    )
    output = "head" + "x" * 5000 + "FINAL ERROR"

    prompt = build_verification_fix_prompt(command, output, attempt=2)

    assert "Command: npm test" in prompt
    assert "Exit Code: 1" in prompt
    assert "Attempt: 2" in prompt
    assert "FINAL ERROR" in prompt
    assert "head" not in prompt
    assert "not working around test failures" in prompt


def test_review_prompt_empty_example_is_recognized() -> None:
    review = build_code_review_prompt(Path("r.md"))
    empty_example = review.split("If the code looks good")[1]

    assert parse_review(empty_example) == []
