"""Agent stream events and turn results."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union


class AgentError(RuntimeError):
    """Raised when the agent fails or produces no usable content."""


@dataclass
class ImageAttachment:
    """An image produced during a turn."""
    image_path: Path
    prompt: str | None = None


@dataclass
class TextChunk:
    """A piece of assistant text."""
    text: str


@dataclass
class ToolResult:
    """Result of a tool the agent invoked."""
    tool_name: str
    data: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False


@dataclass
class Done:
    """Terminal success event."""
    session_id: str | None = None
    text: str = ""


@dataclass
class Failed:
    """Terminal failure event."""
    error: str
    session_id: str | None = None


AgentEvent = Union[TextChunk, ToolResult, Done, Failed]


@dataclass
class TurnResult:
    """Everything a turn produced, ready for dispatch."""

    success: bool
    text: str = ""
    audio_path: Path | None = None
    image_path: Path | None = None
    generated_images: list[ImageAttachment] = field(default_factory=list)
    error: str | None = None
    session_id: str | None = None

    @classmethod
    def failure(cls, error: str, session_id: str | None = None) -> "TurnResult":
        return cls(success=False, error=error, session_id=session_id)

    @property
    def has_media(self) -> bool:
        return bool(self.audio_path or self.image_path or self.generated_images)
