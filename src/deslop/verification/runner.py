from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from pathlib import Path

from deslop.models import VerificationCommand, VerificationResult

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 10_000
TRUNCATION_MARKER = "...[truncated]...\n"
SPAWN_FAILURE_EXIT_CODE = 1
TIMEOUT_EXIT_CODE = 124


def truncate_output(output: str, max_chars: int = MAX_OUTPUT_CHARS) -> str:
    if len(output) <= max_chars:
        return output
    return TRUNCATION_MARKER + output[-max_chars:]


async def _drain(stream: asyncio.StreamReader, chunks: list[bytes]) -> None:
    while True:
        data = await stream.read(4096)
        if not data:
            return
        chunks.append(data)


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass


async def run_verification_command(
    command: VerificationCommand,
    directory: Path,
    timeout_seconds: float,
) -> VerificationResult:
    """Run one command through the shell, capturing stdout and stderr together.

    Never raises for command failures: a command that cannot be started is
    reported as a failed result with a synthetic exit code, and a command
    that outlives ``timeout_seconds`` is killed along with its process group.
    """
    started = time.monotonic()

    def _elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        process = await asyncio.create_subprocess_shell(
            command.command,
            cwd=str(directory),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            stdin=asyncio.subprocess.DEVNULL,
            start_new_session=os.name == "posix",
        )
    except OSError as exc:
        logger.warning("Could not start %r: %s", command.command, exc)
        return VerificationResult(
            command=command,
            success=False,
            output=f"Failed to run command: {exc}\n",
            exit_code=SPAWN_FAILURE_EXIT_CODE,
            duration_ms=_elapsed_ms(),
        )

    chunks: list[bytes] = []
    reader = None
    if process.stdout is not None:
        reader = asyncio.create_task(_drain(process.stdout, chunks))

    timed_out = False
    try:
        exit_code = await asyncio.wait_for(process.wait(), timeout=timeout_seconds)
    except TimeoutError:
        timed_out = True
        _kill(process)
        await process.wait()
        exit_code = TIMEOUT_EXIT_CODE
    if reader is not None:
        await reader

    output = b"".join(chunks).decode("utf-8", errors="replace")
    if timed_out:
        output += f"\nCommand timed out after {timeout_seconds:g}s\n"
        logger.warning("Verification command %r timed out", command.command)

    return VerificationResult(
        command=command,
        success=exit_code == 0 and not timed_out,
        output=truncate_output(output),
        exit_code=exit_code,
        duration_ms=_elapsed_ms(),
        timed_out=timed_out,
    )
