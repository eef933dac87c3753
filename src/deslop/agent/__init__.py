from deslop.agent.base import (
    AgentFactory,
    AgentSession,
    AgentUpdate,
    DeltaHandler,
    TextDelta,
    ToolCallStarted,
)
from deslop.agent.claude import ClaudeCodeAgent
from deslop.agent.cursor import CursorAgent
from deslop.agent.stream import StreamJsonAgent

__all__ = [
    "AgentFactory",
    "AgentSession",
    "AgentUpdate",
    "ClaudeCodeAgent",
    "CursorAgent",
    "DeltaHandler",
    "StreamJsonAgent",
    "TextDelta",
    "ToolCallStarted",
]
