from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass(slots=True, frozen=True)
class TextDelta:
    type: ClassVar[str] = "text-delta"
    text: str


@dataclass(slots=True, frozen=True)
class ToolCallStarted:
    type: ClassVar[str] = "tool-call-started"
    name: str


AgentUpdate = TextDelta | ToolCallStarted
DeltaHandler = Callable[[AgentUpdate], None]


class AgentSession(ABC):
    """One conversational agent session bound to a model and a working directory."""

    model: str

    @abstractmethod
    async def submit(
        self,
        message: str,
        on_delta: DeltaHandler | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Submit a prompt and stream raw completion events.

        ``on_delta`` is called synchronously with each typed update before the
        event that carried it is yielded. Once the stream is exhausted, any
        file the prompt asked the agent to write is on disk.
        """


AgentFactory = Callable[[str], AgentSession]
