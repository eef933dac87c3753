import asyncio
from pathlib import Path

from deslop.models import VerificationCommand
from deslop.verification.runner import (
    MAX_OUTPUT_CHARS,
    TIMEOUT_EXIT_CODE,
    TRUNCATION_MARKER,
    run_verification_command,
    truncate_output,
)


def _command(command: str) -> VerificationCommand:
    return VerificationCommand(id="check", name="check", command=command, type="test", optional=False)


def test_truncate_output_keeps_tail() -> None:
    output = "a" * 50 + "b" * MAX_OUTPUT_CHARS

    truncated = truncate_output(output)

    assert truncated == TRUNCATION_MARKER + "b" * MAX_OUTPUT_CHARS
    assert truncate_output("short") == "short"


def test_successful_command_captures_combined_output(tmp_path: Path) -> None:
    result = asyncio.run(
        run_verification_command(_command("echo out; echo err 1>&2"), tmp_path, 10)
    )

    assert result.success is True
    assert result.exit_code == 0
    assert "out" in result.output
    assert "err" in result.output
    assert result.duration_ms >= 0


def test_failing_command_reports_exit_code(tmp_path: Path) -> None:
    result = asyncio.run(run_verification_command(_command("echo broken; exit 3"), tmp_path, 10))

    assert result.success is False
    assert result.exit_code == 3
    assert "broken" in result.output
    assert result.timed_out is False


def test_command_runs_in_directory(tmp_path: Path) -> None:
    (tmp_path / "marker.txt").write_text("here", encoding="utf-8")

    result = asyncio.run(run_verification_command(_command("cat marker.txt"), tmp_path, 10))

    assert result.output.strip() == "here"


def test_timeout_kills_command(tmp_path: Path) -> None:
    result = asyncio.run(run_verification_command(_command("sleep 5"), tmp_path, 0.2))

    assert result.success is False
    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert "Command timed out after 0.2s" in result.output


def test_missing_directory_is_a_failed_result(tmp_path: Path) -> None:
    result = asyncio.run(run_verification_command(_command("true"), tmp_path / "absent", 10))

    assert result.success is False
    assert result.exit_code == 1
    assert result.output.startswith("Failed to run command:")
