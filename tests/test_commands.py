import json
from pathlib import Path

import pytest

from brainbot.agent.client import AgentClient
from brainbot.agent.events import Done
from brainbot.brains.loader import BrainLoader
from brainbot.brains.schema import BrainConfig
from brainbot.channels.base import BotChannel, ChatUser, IncomingMessage
from brainbot.config.loader import ConfigurationError
from brainbot.config.schema import BotConfig
from brainbot.orchestrator.commands import (
    MSG_NO_HISTORY,
    MSG_RESTART_UNAVAILABLE,
    MSG_RESTARTED,
    MSG_SPEECH_OFF,
    MSG_SPEECH_ON,
    MSG_UNKNOWN,
    CommandDispatcher,
    parse_command,
)
from brainbot.orchestrator.manager import BotManager
from brainbot.orchestrator.registry import BotInstance
from brainbot.ratelimit.limiter import DailyRateLimiter
from brainbot.session.store import SessionStore


class _FakeChannel(BotChannel):
    def __init__(self, token: str = "t") -> None:
        super().__init__(token)
        self.texts: list[str] = []

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    def is_alive(self) -> bool:
        return self._running

    async def send_text(self, chat_id: str, text: str, link_preview: bool = False) -> int | None:
        self.texts.append(text)
        return len(self.texts)

    async def send_voice(self, chat_id: str, audio_path: Path) -> None:
        pass

    async def send_photo(self, chat_id: str, image_path: Path, caption: str | None = None) -> None:
        pass

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        pass

    async def delete_message(self, chat_id: str, message_id: int) -> None:
        pass

    async def download_media(self, ref: str) -> bytes:
        return b""


class _ScriptedAgent(AgentClient):
    def __init__(self, *scripts) -> None:
        super().__init__()
        self.scripts = list(scripts)
        self.calls: list[tuple] = []

    async def stream(self, prompt, session_id=None):
        self.calls.append((prompt, session_id))
        for event in self.scripts.pop(0):
            yield event


def _instance(bot_id: str, tts: bool = False) -> BotInstance:
    brain = BrainConfig.model_validate(
        {"name": "Toon", "description": "Draws things", "system_prompt": "x", "tts": {"enabled": tts}}
    )
    return BotInstance(
        bot_id=bot_id,
        config=BotConfig(id=bot_id, token="t", brain="toon"),
        channel=_FakeChannel(),
        brain=brain,
    )


def _message(text: str) -> IncomingMessage:
    return IncomingMessage(chat_id="7", user=ChatUser(id="7", first_name="Bo"), text=text)


def test_parse_command_strips_bot_suffix() -> None:
    assert parse_command("/TTS@MyBot") == "/tts"
    assert parse_command("/stats now") == "/stats"
    assert parse_command("") == ""


async def test_restart_only_for_designated_bots(tmp_path: Path) -> None:
    sessions = SessionStore(tmp_path)
    commands = CommandDispatcher(sessions, restart_bot_ids=["cartooned"])
    sessions.set_current_uuid("cartooned", "7", "old")
    sessions.set_current_uuid("other", "7", "keep")

    cartooned = _instance("cartooned")
    other = _instance("other")
    await commands.handle(cartooned, _message("/restart"))
    await commands.handle(other, _message("/restart"))

    assert cartooned.channel.texts == [MSG_RESTARTED]
    assert sessions.get_current_uuid("cartooned", "7") is None
    assert other.channel.texts == [MSG_RESTART_UNAVAILABLE]
    assert sessions.get_current_uuid("other", "7") == "keep"


async def test_reset_is_silent(tmp_path: Path) -> None:
    sessions = SessionStore(tmp_path)
    sessions.set_current_uuid("bot", "7", "old")
    instance = _instance("bot")

    await CommandDispatcher(sessions).handle(instance, _message("/reset"))

    assert instance.channel.texts == []
    assert sessions.get_current_uuid("bot", "7") is None
    assert sessions.load_session_metadata("bot", "7").uuid_history == ["old"]


async def test_tts_toggle_starts_from_brain_default(tmp_path: Path) -> None:
    sessions = SessionStore(tmp_path)
    commands = CommandDispatcher(sessions)
    instance = _instance("bot", tts=False)

    await commands.handle(instance, _message("/tts"))
    await commands.handle(instance, _message("/tts"))

    assert instance.channel.texts == [MSG_SPEECH_ON, MSG_SPEECH_OFF]
    assert sessions.get_tts_preference("bot", "7") is False

    speaking = _instance("speaker", tts=True)
    assert commands.toggle_tts(speaking, "7") is False


async def test_help_lists_restart_only_when_allowed(tmp_path: Path) -> None:
    commands = CommandDispatcher(SessionStore(tmp_path), restart_bot_ids=["cartooned"])

    assert "/restart" in commands.help_text(_instance("cartooned"))
    text = commands.help_text(_instance("other"))
    assert "/restart" not in text
    assert text.startswith("👋 Hi! I'm Toon.\n\nDraws things")


async def test_stats_with_and_without_history(tmp_path: Path) -> None:
    sessions = SessionStore(tmp_path)
    commands = CommandDispatcher(sessions)
    instance = _instance("bot")

    await commands.handle(instance, _message("/stats"))
    sessions.set_current_uuid("bot", "7", "a")
    sessions.set_current_uuid("bot", "7", "b")
    sessions.increment_message_count("bot", "7")
    await commands.handle(instance, _message("/stats"))

    assert instance.channel.texts[0] == MSG_NO_HISTORY
    assert "Messages: 1" in instance.channel.texts[1]
    assert "Conversations: 2" in instance.channel.texts[1]
    assert "Last message: never" in instance.channel.texts[1]


async def test_unknown_command(tmp_path: Path) -> None:
    instance = _instance("bot")
    await CommandDispatcher(SessionStore(tmp_path)).handle(instance, _message("/dance"))
    assert instance.channel.texts == [MSG_UNKNOWN]


def _manager(tmp_path: Path, agent: AgentClient) -> BotManager:
    brains_dir = tmp_path / "brains"
    brains_dir.mkdir()
    (brains_dir / "toon.json").write_text(
        json.dumps({"name": "Toon", "systemPrompt": "Draw.", "security": False}), encoding="utf-8"
    )
    return BotManager(
        BrainLoader(brains_dir),
        SessionStore(tmp_path / "sessions"),
        DailyRateLimiter(),
        agent,
        channel_factory=lambda token, bot_id: _FakeChannel(token),
    )


async def test_manager_routes_commands_and_turns(tmp_path: Path) -> None:
    agent = _ScriptedAgent([Done(session_id="s1", text="hello Bo")])
    manager = _manager(tmp_path, agent)
    instance = manager.add_bot({"id": "cartooned", "token": "123:abc", "brain": "toon"})

    await manager.handle_message("cartooned", _message("/help@cartooned_bot"))
    await manager.handle_message("cartooned", _message("hi there"))
    await manager.handle_message("cartooned", _message("   "))

    assert instance.channel.texts[0].startswith("👋 Hi! I'm Toon.")
    assert instance.channel.texts[-1] == "hello Bo"
    assert len(agent.calls) == 1
    assert instance.message_count == 2


async def test_channel_dispatch_reaches_manager(tmp_path: Path) -> None:
    manager = _manager(tmp_path, _ScriptedAgent())
    instance = manager.add_bot(BotConfig(id="toon", token="1:x", brain="toon"))

    await instance.channel._dispatch(_message("/stats"))

    assert instance.channel.texts == [MSG_NO_HISTORY]


async def test_manager_add_bot_validation(tmp_path: Path) -> None:
    manager = _manager(tmp_path, _ScriptedAgent())

    assert manager.add_bot({"id": "sleepy", "token": "1:x", "brain": "toon", "active": False}) is None
    with pytest.raises(ConfigurationError):
        manager.add_bot({"id": "broken", "brain": "toon"})

    added = manager.add_bots(
        [
            BotConfig(id="good", token="1:x", brain="toon"),
            BotConfig(id="bad", token="1:y", brain="missing"),
        ]
    )
    assert [b.bot_id for b in added] == ["good"]
    assert manager.list_bots()[0]["name"] == "Toon"


async def test_manager_start_and_stop(tmp_path: Path) -> None:
    manager = _manager(tmp_path, _ScriptedAgent())
    instance = manager.add_bot(BotConfig(id="toon", token="1:x", brain="toon"))

    await manager.start_all()
    assert instance.channel.is_running

    await manager.stop_all()
    assert not instance.channel.is_running
    assert len(manager.bots) == 0
