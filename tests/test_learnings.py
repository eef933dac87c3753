from pathlib import Path

from deslop.learnings import FILE_NOT_FOUND, LearningsStore, code_snippet
from deslop.models import SlopFinding


def _finding(**overrides: object) -> SlopFinding:
    values: dict = {
        "id": "slop-0",
        "title": "Defensive null check",
        "description": "Value is never null.",
        "file": "src/a.ts",
        "line": 5,
        "severity": "medium",
        "category": "defensive-checks",
    }
    values.update(overrides)
    return SlopFinding(**values)


def test_code_snippet_around_line(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("\n".join(f"line {n}" for n in range(1, 21)), encoding="utf-8")

    snippet = code_snippet(tmp_path, "a.py", 10, context_lines=2)

    assert snippet.splitlines() == ["line 8", "line 9", "line 10", "line 11", "line 12"]
    assert code_snippet(tmp_path, "a.py", None, context_lines=1).splitlines() == [
        "line 1",
        "line 2",
        "line 3",
    ]
    assert code_snippet(tmp_path, "missing.py", 3) == FILE_NOT_FOUND


def test_entries_are_numbered_and_parsed_back(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path)

    store.add(_finding(), "if (x == null) return;", today="2025-01-02")
    store.add(_finding(file="README.md", line=None, title="Emoji heading"), "# 🚀 Intro", today="2025-01-03")

    content = store.path.read_text(encoding="utf-8")
    assert content.startswith("# Deslop Learnings - Not Slop")
    assert "## Entry 1" in content
    assert "## Entry 2" in content

    first, second = store.load()
    assert first.file == "src/a.ts"
    assert first.line == 5
    assert first.category == "defensive-checks"
    assert first.title == "Defensive null check"
    assert first.code_snippet == "if (x == null) return;"
    assert first.timestamp == "2025-01-02"
    assert second.line is None
    assert second.code_snippet == "# 🚀 Intro"


def test_snippet_text_cannot_shadow_fields(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path)
    store.add(_finding(), "- **File:** fake.py", today="2025-01-02")

    [entry] = store.load()

    assert entry.file == "src/a.ts"
    assert entry.code_snippet == "- **File:** fake.py"


def test_prompt_context(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path)
    assert store.prompt_context() == ""

    store.add(_finding(), "x" * 150, today="2025-01-02")
    context = store.prompt_context()

    assert context.startswith("IMPORTANT: The user has previously marked these patterns as NOT slop.")
    assert "1. In src/a.ts:5 (defensive-checks):" in context
    assert '"Defensive null check" was marked as acceptable.' in context
    assert f"Code: {'x' * 100}..." in context
    assert context.endswith("Avoid flagging similar patterns to the above.\n")
