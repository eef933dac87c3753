from __future__ import annotations

from deslop.agent.stream import StreamJsonAgent


class ClaudeCodeAgent(StreamJsonAgent):
    backend_name = "claude"
    default_binary = "claude"

    def build_command(self, message: str) -> list[str]:
        return [
            self.binary,
            "-p",
            message,
            "--output-format",
            "stream-json",
            "--verbose",
            "--model",
            self.model,
            "--permission-mode",
            "acceptEdits",
        ]
