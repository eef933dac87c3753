from __future__ import annotations

from pathlib import Path

from deslop.markdown import NO_ISSUES_HEADING, render_findings, render_review
from deslop.models import SLOP_CATEGORIES, ReviewSuggestion, SlopFinding, VerificationCommand

VERIFICATION_OUTPUT_CHARS = 4000

SLOP_PATTERNS = """
1. **Extra Comments** (category: extra-comments)
   - Comments that state the obvious or repeat what the code says
   - Comments decorated with emojis, like `# 🔥 Fire the event`
   - Comments that just restate the function name: `# Call the stop function` before `stop()`
   - Misleading comments like `# Optional: send email` for code that always runs
   - Comments inconsistent with the file's existing comment style

2. **Defensive Checks** (category: defensive-checks)
   - Extra try/catch blocks that are abnormal for that area of the codebase
   - Null/undefined checks for values that are already validated upstream
   - Defensive coding for impossible scenarios in trusted codepaths

3. **Any Casts** (category: any-cast)
   - Casts to `any` (or the language's equivalent) used to bypass type issues
   - Type assertions that hide real type problems

4. **Style Inconsistencies** (category: style-inconsistency)
   - Code style that doesn't match the rest of the file
   - Emojis in log statements
   - Naming conventions that differ from surrounding code
   - Over-engineering: unnecessarily complex code for trivial operations

5. **Generated Documentation** (category: generated-docs)
   - Markdown files with obvious AI-generated content
   - Overly formal language, generic boilerplate structure
   - Unrequested files like ARCHITECTURE.md, CONTRIBUTING.md with generic AI content
   - NOTE: Well-written READMEs are fine - only flag clearly AI-generated slop

6. **Reinventing the Wheel** (category: reinventing-wheel)
   - New helper functions when equivalent ones already exist in the codebase
   - Custom implementations of patterns already solved elsewhere in the code

7. **UI Slop** (category: ui-slop) [HINT ONLY - do not auto-fix]
   - Start Case text in UI strings: "Input Your Password", "Choose Username"
   - Emojis in UI text or labels
   - NOTE: This is detection-only. Flag for human review, do not attempt to fix.
""".strip("\n")

_EXAMPLE_FINDINGS = [
    SlopFinding(
        id="example-1",
        title="Title of the issue",
        description="Explanation of what's wrong and why it should be removed",
        file="path/to/file.ts",
        line=42,
        severity="high",
        category="defensive-checks",
    ),
    SlopFinding(
        id="example-2",
        title="Another issue title",
        description="Comment restates what the code already shows",
        file="path/to/other.ts",
        line=15,
        severity="medium",
        category="extra-comments",
    ),
]

_EXAMPLE_SUGGESTIONS = [
    ReviewSuggestion(
        id="example-1",
        title="Title of suggestion",
        description="Detailed explanation of what should be improved",
        file="path/to/file.ts",
        line=42,
        severity="high",
    ),
    ReviewSuggestion(
        id="example-2",
        title="Another suggestion",
        description="What could be better",
        file="path/to/other.ts",
        line=15,
        severity="medium",
    ),
]


def _fenced(text: str, language: str = "") -> str:
    return f"```{language}\n{text.rstrip()}\n```"


def build_slop_detection_prompt(findings_path: Path, learnings_context: str = "") -> str:
    parts = [
        "Analyze the codebase and identify AI-generated slop that should be removed.",
        "",
        "Look for these specific patterns:",
        SLOP_PATTERNS,
    ]
    if learnings_context.strip():
        parts.extend(["", learnings_context.strip()])
    parts.extend(
        [
            "",
            f"After analyzing, write your findings to: {findings_path}",
            "",
            "Use this exact markdown format:",
            "",
            _fenced(render_findings(_EXAMPLE_FINDINGS), "markdown"),
            "",
            "Rules:",
            "- Use [HIGH], [MEDIUM], or [LOW] for severity",
            f"- Category must be one of: {', '.join(SLOP_CATEGORIES)}",
            "- Write ONLY to the specified file, no other output needed",
            f'- If no issues found, write "{NO_ISSUES_HEADING}" in the file',
        ]
    )
    return "\n".join(parts)


def build_fix_prompt(finding: SlopFinding) -> str:
    location = f" around line {finding.line}" if finding.line else ""
    return "\n".join(
        [
            f"Fix the following AI slop issue in {finding.file}{location}:",
            "",
            f"Issue: {finding.title}",
            f"Category: {finding.category}",
            f"Description: {finding.description}",
            "",
            "Instructions:",
            "- Remove or simplify the problematic code",
            "- Make minimal changes - only fix this specific issue",
            "- Ensure the code still works correctly after the fix",
            "- Match the style of the surrounding code",
        ]
    )


def build_verification_fix_prompt(command: VerificationCommand, output: str, attempt: int) -> str:
    tail = output[-VERIFICATION_OUTPUT_CHARS:]
    exit_code = command.exit_code if command.exit_code is not None else "unknown"
    return "\n".join(
        [
            "A verification command failed after code changes were applied. Fix the issues.",
            "",
            f"Command: {command.command}",
            f"Exit Code: {exit_code}",
            f"Attempt: {attempt}",
            "",
            "Error Output:",
            _fenced(tail),
            "",
            "Instructions:",
            "- Analyze the error output to understand what went wrong",
            "- Fix the code issues that are causing the failure",
            "- Do NOT modify test expectations unless the new behavior is clearly correct",
            "- Make minimal changes to fix the specific error",
            "- The goal is to make the verification command pass",
            "",
            "Focus on fixing actual code bugs, not working around test failures.",
        ]
    )


def build_code_review_prompt(review_path: Path) -> str:
    return "\n".join(
        [
            "Review the code changes that were just made in this codebase.",
            "",
            "Look for:",
            "- Incomplete fixes (partial changes that need follow-up)",
            "- New issues introduced by the fixes",
            "- Opportunities for further improvement",
            "- Style inconsistencies with the rest of the codebase",
            "- Any remaining AI slop patterns",
            "",
            f"After reviewing, write your findings to: {review_path}",
            "",
            "Use this exact markdown format:",
            "",
            _fenced(render_review(_EXAMPLE_SUGGESTIONS), "markdown"),
            "",
            "If the code looks good and no improvements are needed, write:",
            _fenced(render_review([]), "markdown"),
        ]
    )
