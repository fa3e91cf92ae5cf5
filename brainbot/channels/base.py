"""Base channel interface for chat platforms."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from loguru import logger


class MediaFetchError(Exception):
    """Raised when an inbound attachment cannot be downloaded."""


class DeliveryError(Exception):
    """Raised when an outbound send, edit or delete fails."""


@dataclass
class ChatUser:
    """The sender of an inbound message."""

    id: str
    username: str | None = None
    first_name: str | None = None


@dataclass
class IncomingMessage:
    """A platform-neutral inbound message."""

    chat_id: str
    user: ChatUser
    text: str = ""
    photo_ref: str | None = None  # Platform file id of the largest photo
    message_id: int | None = None

    @property
    def has_media(self) -> bool:
        return bool(self.photo_ref)

    @property
    def is_command(self) -> bool:
        return self.text.startswith("/")


MessageHandler = Callable[[IncomingMessage], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


class BotChannel(ABC):
    """
    Abstract base class for a single bot's connection to a chat platform.

    A channel owns one bot token. The manager binds an inbound message
    handler and an error handler; the channel calls them for every update
    and every polling error respectively.
    """

    name: str = "base"

    def __init__(self, token: str):
        self.token = token
        self._running = False
        self._on_message: MessageHandler | None = None
        self._on_error: ErrorHandler | None = None

    def bind(self, on_message: MessageHandler, on_error: ErrorHandler | None = None) -> None:
        """Attach inbound handlers. Rebinding replaces the previous ones."""
        self._on_message = on_message
        self._on_error = on_error

    @abstractmethod
    async def start(self) -> None:
        """Connect and begin receiving updates. Returns once polling is running."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving updates and release resources."""
        pass

    @abstractmethod
    def is_alive(self) -> bool:
        """Liveness check used by the health monitor."""
        pass

    @abstractmethod
    async def send_text(self, chat_id: str, text: str, link_preview: bool = False) -> int | None:
        """Send a text message. Returns the platform message id."""
        pass

    @abstractmethod
    async def send_voice(self, chat_id: str, audio_path: Path) -> None:
        pass

    @abstractmethod
    async def send_photo(self, chat_id: str, image_path: Path, caption: str | None = None) -> None:
        pass

    @abstractmethod
    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        pass

    @abstractmethod
    async def delete_message(self, chat_id: str, message_id: int) -> None:
        pass

    @abstractmethod
    async def download_media(self, ref: str) -> bytes:
        """Fetch an inbound attachment. Raises MediaFetchError on failure."""
        pass

    async def _dispatch(self, msg: IncomingMessage) -> None:
        """Forward an inbound message to the bound handler."""
        if self._on_message is None:
            logger.warning(f"{self.name} channel received a message with no handler bound")
            return
        await self._on_message(msg)

    def _report_error(self, error: Exception) -> None:
        """Forward a polling error to the bound error handler."""
        if self._on_error is not None:
            self._on_error(error)

    @property
    def is_running(self) -> bool:
        """Check if the channel is running."""
        return self._running
