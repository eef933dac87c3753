from __future__ import annotations

from pathlib import Path
from typing import Any

from deslop.agent.base import AgentUpdate, ToolCallStarted
from deslop.agent.stream import StreamJsonAgent


class CursorAgent(StreamJsonAgent):
    backend_name = "cursor"
    default_binary = "cursor-agent"

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        working_directory: Path | None = None,
        binary: str | None = None,
    ) -> None:
        super().__init__(model=model, working_directory=working_directory, binary=binary)
        self.api_key = api_key

    def build_command(self, message: str) -> list[str]:
        return [
            self.binary,
            "--print",
            "--output-format",
            "stream-json",
            "--force",
            "--model",
            self.model,
            message,
        ]

    def build_env(self) -> dict[str, str]:
        env = super().build_env()
        if self.api_key:
            env["CURSOR_API_KEY"] = self.api_key
        return env

    @staticmethod
    def _tool_name(event: dict[str, Any]) -> str:
        tool_call = event.get("tool_call")
        if isinstance(tool_call, dict) and tool_call:
            raw_name = next(iter(tool_call))
            return raw_name.removesuffix("ToolCall") or raw_name
        return "tool"

    def decode_event(self, event: dict[str, Any]) -> list[AgentUpdate]:
        if event.get("type") == "tool_call" and event.get("subtype") == "started":
            return [ToolCallStarted(self._tool_name(event))]
        return super().decode_event(event)
