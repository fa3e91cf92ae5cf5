"""External agent client."""

from brainbot.agent.client import AgentClient, extract_image_prompt
from brainbot.agent.events import (
    AgentError,
    AgentEvent,
    Done,
    Failed,
    ImageAttachment,
    TextChunk,
    ToolResult,
    TurnResult,
)

__all__ = [
    "AgentClient",
    "AgentError",
    "AgentEvent",
    "Done",
    "Failed",
    "ImageAttachment",
    "TextChunk",
    "ToolResult",
    "TurnResult",
    "extract_image_prompt",
]
