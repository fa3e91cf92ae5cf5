"""Owned registries for running bots and in-flight streams."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator

from brainbot.brains.schema import BrainConfig
from brainbot.channels.base import BotChannel
from brainbot.config.schema import BotConfig


class BotStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    FAILED = "failed"


@dataclass
class BotInstance:
    """A registered bot and its runtime state."""

    bot_id: str
    config: BotConfig
    channel: BotChannel
    brain: BrainConfig
    status: BotStatus = BotStatus.HEALTHY
    last_health_check: datetime = field(default_factory=datetime.now)
    message_count: int = 0
    error_count: int = 0

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.bot_id,
            "brain": self.config.brain,
            "name": self.brain.name,
            "status": self.status.value,
            "message_count": self.message_count,
            "error_count": self.error_count,
            "last_health_check": self.last_health_check.isoformat(),
        }


class BotRegistry:
    """Registered bots keyed by bot id."""

    def __init__(self) -> None:
        self._bots: dict[str, BotInstance] = {}

    def add(self, instance: BotInstance) -> None:
        self._bots[instance.bot_id] = instance

    def get(self, bot_id: str) -> BotInstance | None:
        return self._bots.get(bot_id)

    def remove(self, bot_id: str) -> BotInstance | None:
        return self._bots.pop(bot_id, None)

    def ids(self) -> list[str]:
        return list(self._bots)

    def all(self) -> list[BotInstance]:
        return list(self._bots.values())

    def clear(self) -> None:
        self._bots.clear()

    def __contains__(self, bot_id: object) -> bool:
        return bot_id in self._bots

    def __iter__(self) -> Iterator[BotInstance]:
        return iter(list(self._bots.values()))

    def __len__(self) -> int:
        return len(self._bots)


@dataclass
class ActiveStreamState:
    """Progress of a streamed reply shown through an editable status message."""

    status_message_id: int | None = None
    text: str = ""
    last_update: float = 0.0


class StreamStateRegistry:
    """In-flight streams keyed by (bot id, chat id)."""

    def __init__(self) -> None:
        self._streams: dict[tuple[str, str], ActiveStreamState] = {}

    def start(self, bot_id: str, chat_id: str, status_message_id: int | None) -> ActiveStreamState:
        state = ActiveStreamState(status_message_id=status_message_id)
        self._streams[(bot_id, chat_id)] = state
        return state

    def get(self, bot_id: str, chat_id: str) -> ActiveStreamState | None:
        return self._streams.get((bot_id, chat_id))

    def finish(
        self, bot_id: str, chat_id: str, state: ActiveStreamState | None = None
    ) -> ActiveStreamState | None:
        """Drop the chat's stream; with `state`, only if it is still the current one."""
        key = (bot_id, chat_id)
        current = self._streams.get(key)
        if current is None or (state is not None and current is not state):
            return None
        return self._streams.pop(key)

    def __len__(self) -> int:
        return len(self._streams)
