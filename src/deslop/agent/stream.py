from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import abstractmethod
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from deslop.agent.base import AgentSession, AgentUpdate, DeltaHandler, TextDelta, ToolCallStarted
from deslop.errors import AgentExecutionError, AgentProcessError

logger = logging.getLogger(__name__)

# One stream-json event can carry a whole file from a tool result.
STREAM_LINE_LIMIT = 32 * 1024 * 1024


class StreamJsonAgent(AgentSession):
    """Agent session backed by a CLI that prints one JSON event per line."""

    backend_name = "agent"
    default_binary = "agent"

    def __init__(
        self,
        *,
        model: str,
        working_directory: Path | None = None,
        binary: str | None = None,
    ) -> None:
        self.model = model
        self.working_directory = working_directory
        self.binary = binary or self.default_binary

    @abstractmethod
    def build_command(self, message: str) -> list[str]:
        """Argument vector for one non-interactive agent invocation."""

    def build_env(self) -> dict[str, str]:
        return os.environ.copy()

    @staticmethod
    def _appears_partial_json(raw: str) -> bool:
        return raw.count("{") > raw.count("}") or raw.count("[") > raw.count("]")

    @staticmethod
    def message_updates(event: dict[str, Any]) -> list[AgentUpdate]:
        message = event.get("message")
        if not isinstance(message, dict):
            return []
        content = message.get("content")
        if isinstance(content, str):
            return [TextDelta(content)] if content else []
        updates: list[AgentUpdate] = []
        if isinstance(content, list):
            for item in content:
                if not isinstance(item, dict):
                    continue
                if item.get("type") == "text" and isinstance(item.get("text"), str):
                    updates.append(TextDelta(item["text"]))
                elif item.get("type") == "tool_use":
                    updates.append(ToolCallStarted(str(item.get("name", "tool"))))
        return updates

    def decode_event(self, event: dict[str, Any]) -> list[AgentUpdate]:
        if event.get("type") == "assistant":
            return self.message_updates(event)
        return []

    @staticmethod
    def event_error(event: dict[str, Any]) -> str | None:
        if event.get("type") == "result" and event.get("is_error"):
            return str(event.get("result") or event.get("error") or "Agent reported an error.")
        return None

    async def submit(
        self,
        message: str,
        on_delta: DeltaHandler | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        command = self.build_command(message)
        logger.debug("Starting %s agent with model %s", self.backend_name, self.model)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.working_directory) if self.working_directory else None,
                env=self.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LINE_LIMIT,
            )
        except FileNotFoundError as exc:
            raise AgentProcessError(
                f"Agent executable not found: {self.binary}",
                backend=self.backend_name,
            ) from exc

        if process.stdout is None:
            raise AgentProcessError(
                f"{self.backend_name} agent did not expose stdout.", backend=self.backend_name
            )

        stderr_task = None
        if process.stderr is not None:
            stderr_task = asyncio.create_task(process.stderr.read())

        reported_error: str | None = None
        parse_buffer = ""
        try:
            async for raw_line in process.stdout:
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                candidate = f"{parse_buffer}{line}" if parse_buffer else line
                try:
                    event = json.loads(candidate)
                    parse_buffer = ""
                except json.JSONDecodeError:
                    if self._appears_partial_json(candidate):
                        parse_buffer = candidate
                        continue
                    parse_buffer = ""
                    logger.debug("Skipping non-JSON agent output: %s", line[:200])
                    continue
                if not isinstance(event, dict):
                    continue

                if on_delta is not None:
                    for update in self.decode_event(event):
                        on_delta(update)
                reported_error = reported_error or self.event_error(event)
                yield event

            if parse_buffer:
                logger.debug("Discarding %d bytes of incomplete agent JSON", len(parse_buffer))

            return_code = await process.wait()
            stderr_output = ""
            if stderr_task is not None:
                stderr_output = (await stderr_task).decode("utf-8", errors="replace").strip()
        finally:
            if stderr_task is not None and not stderr_task.done():
                stderr_task.cancel()

        if return_code != 0:
            raise AgentExecutionError(
                f"{self.backend_name} agent failed with exit code {return_code}: "
                f"{stderr_output or reported_error or 'no output'}",
                backend=self.backend_name,
                exit_code=return_code,
            )
        if reported_error:
            raise AgentExecutionError(reported_error, backend=self.backend_name)
