import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

from deslop.agent import (
    AgentUpdate,
    ClaudeCodeAgent,
    CursorAgent,
    StreamJsonAgent,
    TextDelta,
    ToolCallStarted,
)
from deslop.errors import AgentExecutionError, AgentProcessError


class FakeStdout:
    def __init__(self, lines: list[bytes]) -> None:
        self._lines = lines
        self._index = 0

    def __aiter__(self) -> "FakeStdout":
        return self

    async def __anext__(self) -> bytes:
        if self._index >= len(self._lines):
            raise StopAsyncIteration
        line = self._lines[self._index]
        self._index += 1
        return line


class FakeStderr:
    def __init__(self, content: bytes = b"") -> None:
        self._content = content

    async def read(self) -> bytes:
        return self._content


class FakeProcess:
    def __init__(self, lines: list[bytes], return_code: int = 0, stderr: bytes = b"") -> None:
        self.stdout = FakeStdout(lines)
        self.stderr = FakeStderr(stderr)
        self._return_code = return_code

    async def wait(self) -> int:
        return self._return_code


def _patch_process(
    monkeypatch: pytest.MonkeyPatch, process: FakeProcess, calls: list[dict[str, Any]]
) -> None:
    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        calls.append({"args": list(args), **kwargs})
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)


def _collect(agent: Any, message: str) -> tuple[list[dict[str, Any]], list[AgentUpdate]]:
    updates: list[AgentUpdate] = []

    async def _run() -> list[dict[str, Any]]:
        return [event async for event in agent.submit(message, updates.append)]

    return asyncio.run(_run()), updates


def test_cursor_build_command_shape() -> None:
    agent = CursorAgent(model="claude-4.5-opus-high", api_key="secret")
    command = agent.build_command("find slop")

    assert command[0] == "cursor-agent"
    assert command[1:5] == ["--print", "--output-format", "stream-json", "--force"]
    assert command[command.index("--model") + 1] == "claude-4.5-opus-high"
    assert command[-1] == "find slop"
    assert agent.build_env()["CURSOR_API_KEY"] == "secret"


def test_claude_build_command_shape() -> None:
    agent = ClaudeCodeAgent(model="sonnet", binary="claude-dev")
    command = agent.build_command("fix it")

    assert command[0:3] == ["claude-dev", "-p", "fix it"]
    assert "stream-json" in command
    assert command[command.index("--permission-mode") + 1] == "acceptEdits"


def test_cursor_stream_decodes_text_and_tool_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict[str, Any]] = []
    process = FakeProcess(
        [
            b'{"type":"system","subtype":"init"}\n',
            b'{"type":"assistant","message":{"content":[{"type":"text","text":"Looking"}]}}\n',
            b"not json at all\n",
            b'{"type":"tool_call","subtype":"started","tool_call":{"readToolCall":{"path":"a.ts"}}}\n',
            b'{"type":"result","subtype":"success","is_error":false}\n',
        ]
    )
    _patch_process(monkeypatch, process, calls)

    agent = CursorAgent(model="m", api_key="k", working_directory=Path("/tmp/project"))
    events, updates = _collect(agent, "scan")

    assert len(events) == 4
    assert updates == [TextDelta("Looking"), ToolCallStarted("read")]
    assert calls[0]["cwd"] == "/tmp/project"
    assert calls[0]["env"]["CURSOR_API_KEY"] == "k"


def test_stream_joins_json_split_across_lines(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess(
        [
            b'{"type":"assistant","message":{"content":\n',
            b'[{"type":"text","text":"joined"}]}}\n',
        ]
    )
    _patch_process(monkeypatch, process, [])

    _, updates = _collect(ClaudeCodeAgent(model="m"), "review")

    assert updates == [TextDelta("joined")]


def test_nonzero_exit_raises_with_stderr(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess([], return_code=2, stderr=b"Invalid API key")
    _patch_process(monkeypatch, process, [])

    with pytest.raises(AgentExecutionError) as excinfo:
        _collect(CursorAgent(model="m", api_key="bad"), "scan")

    assert excinfo.value.exit_code == 2
    assert excinfo.value.backend == "cursor"
    assert "Invalid API key" in str(excinfo.value)


def test_error_result_event_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess([b'{"type":"result","is_error":true,"result":"rate limit exceeded"}\n'])
    _patch_process(monkeypatch, process, [])

    with pytest.raises(AgentExecutionError, match="rate limit exceeded"):
        _collect(ClaudeCodeAgent(model="m"), "review")


def test_missing_executable_raises_process_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)

    with pytest.raises(AgentProcessError, match="cursor-agent"):
        _collect(CursorAgent(model="m"), "scan")


class ScriptAgent(StreamJsonAgent):
    backend_name = "script"

    def __init__(self, script: str) -> None:
        super().__init__(model="m")
        self.script = script

    def build_command(self, message: str) -> list[str]:
        return [sys.executable, "-c", self.script]


def test_event_lines_longer_than_default_reader_limit() -> None:
    script = (
        "import json\n"
        "big = {'type': 'user', 'message': {'content': [{'type': 'tool_result', 'content': 'x' * 100000}]}}\n"
        "print(json.dumps(big))\n"
        "print(json.dumps({'type': 'assistant', 'message': {'content': [{'type': 'text', 'text': 'done'}]}}))\n"
    )

    events, updates = _collect(ScriptAgent(script), "scan")

    assert len(events) == 2
    assert updates == [TextDelta("done")]


class BlockingStderr:
    def __init__(self) -> None:
        self.cancelled = False

    async def read(self) -> bytes:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return b""


def test_closing_stream_early_cancels_stderr_reader(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess(
        [
            b'{"type":"assistant","message":{"content":[{"type":"text","text":"one"}]}}\n',
            b'{"type":"assistant","message":{"content":[{"type":"text","text":"two"}]}}\n',
        ]
    )
    stderr = BlockingStderr()
    process.stderr = stderr  # type: ignore[assignment]
    _patch_process(monkeypatch, process, [])

    async def _first_event_then_close() -> dict[str, Any]:
        stream = ClaudeCodeAgent(model="m").submit("scan")
        event = await anext(stream)
        await stream.aclose()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return event

    event = asyncio.run(_first_event_then_close())

    assert event["type"] == "assistant"
    assert stderr.cancelled is True
