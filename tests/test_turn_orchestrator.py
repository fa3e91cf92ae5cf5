import asyncio
import json
from datetime import datetime
from pathlib import Path

from brainbot.agent.client import AgentClient
from brainbot.agent.events import Done, Failed, TextChunk
from brainbot.brains.loader import BrainLoader
from brainbot.channels.base import BotChannel, ChatUser, IncomingMessage, MediaFetchError
from brainbot.config.schema import BotConfig
from brainbot.orchestrator.dispatch import ResponseDispatcher
from brainbot.orchestrator.registry import BotInstance, BotRegistry
from brainbot.orchestrator.turn import (
    APOLOGY_AGENT,
    APOLOGY_GENERIC,
    STATUS_DRAWING,
    STATUS_RECORDING,
    STATUS_THINKING,
    TurnOrchestrator,
)
from brainbot.providers.image import ImageResult
from brainbot.providers.tts import SpeechResult
from brainbot.ratelimit.limiter import DailyRateLimiter
from brainbot.session.store import NudgeRecord, SessionStore


class _FakeChannel(BotChannel):
    def __init__(self, token: str = "t") -> None:
        super().__init__(token)
        self.texts: list[tuple[str, str]] = []
        self.voices: list[Path] = []
        self.photos: list[Path] = []
        self.edits: list[tuple[int, str]] = []
        self.deleted: list[int] = []
        self.media: bytes | None = b"jpeg-bytes"
        self.downloads: list[str] = []
        self._next_id = 100

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    def is_alive(self) -> bool:
        return self._running

    async def send_text(self, chat_id: str, text: str, link_preview: bool = False) -> int | None:
        self.texts.append((chat_id, text))
        self._next_id += 1
        return self._next_id

    async def send_voice(self, chat_id: str, audio_path: Path) -> None:
        self.voices.append(audio_path)

    async def send_photo(self, chat_id: str, image_path: Path, caption: str | None = None) -> None:
        self.photos.append(image_path)

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        self.edits.append((message_id, text))

    async def delete_message(self, chat_id: str, message_id: int) -> None:
        self.deleted.append(message_id)

    async def download_media(self, ref: str) -> bytes:
        self.downloads.append(ref)
        if self.media is None:
            raise MediaFetchError("gone")
        return self.media


class _ScriptedAgent(AgentClient):
    def __init__(self, *scripts, **kwargs) -> None:
        super().__init__(**kwargs)
        self.scripts = list(scripts)
        self.calls: list[tuple] = []

    async def stream(self, prompt, session_id=None):
        self.calls.append((prompt, session_id))
        for event in self.scripts.pop(0):
            yield event


class _GatedAgent(AgentClient):
    """Holds the "second" turn open until released, then fails it."""

    def __init__(self) -> None:
        super().__init__()
        self.waiting = asyncio.Event()
        self.release = asyncio.Event()

    async def stream(self, prompt, session_id=None):
        if prompt.endswith("User: second"):
            self.waiting.set()
            await self.release.wait()
            raise RuntimeError("pipe closed")
        yield Done(session_id="s", text="first reply")


class _FakeSpeech:
    async def synthesize(self, text, *, voice="nova", speed=1.0, provider=None):
        return SpeechResult(audio_path=Path("/tmp/reply.ogg"), voice=voice)


class _FakeImages:
    def __init__(self) -> None:
        self.prompts: list[str] = []

    async def generate(self, prompt, profile):
        self.prompts.append(prompt)
        return ImageResult(image_path=Path("/tmp/drawing.png"), model=profile.model)


def _write_brain(brains_dir: Path, brain_id: str, **data) -> None:
    brains_dir.mkdir(parents=True, exist_ok=True)
    payload = {"name": "Pal", "systemPrompt": "Be kind.", "security": "default"}
    payload.update(data)
    (brains_dir / f"{brain_id}.json").write_text(json.dumps(payload), encoding="utf-8")


def _setup(tmp_path: Path, agent: AgentClient, clock=None, **brain):
    brains_dir = tmp_path / "brains"
    _write_brain(brains_dir, "friend", **brain)
    loader = BrainLoader(brains_dir)
    sessions = SessionStore(tmp_path / "sessions")
    limiter = DailyRateLimiter(default_daily_limit=10)
    channel = _FakeChannel()
    bots = BotRegistry()
    bots.add(
        BotInstance(
            bot_id="pal",
            config=BotConfig(id="pal", token="t", brain="friend"),
            channel=channel,
            brain=loader.load("friend"),
        )
    )
    kwargs = {"clock": clock} if clock else {}
    orchestrator = TurnOrchestrator(bots, loader, sessions, limiter, agent, ResponseDispatcher(), **kwargs)
    return orchestrator, channel, sessions, limiter


def _message(text: str = "hello", photo_ref: str | None = None) -> IncomingMessage:
    return IncomingMessage(
        chat_id="42",
        user=ChatUser(id="42", username="ann", first_name="Ann"),
        text=text,
        photo_ref=photo_ref,
    )


async def test_new_session_prompt_and_session_is_resumed_next_turn(tmp_path: Path) -> None:
    agent = _ScriptedAgent(
        [TextChunk("Hi "), TextChunk("Ann"), Done(session_id="sess-1")],
        [Done(session_id="sess-1", text="Good to hear")],
    )
    orchestrator, channel, sessions, limiter = _setup(tmp_path, agent)

    await orchestrator.handle_turn("pal", _message("hello"))

    prompt, session_id = agent.calls[0]
    assert session_id is None
    assert prompt.startswith("=== CRITICAL SECURITY RULES")
    assert "Be kind." in prompt
    assert "[CRITICAL REMINDER: You are Pal." in prompt
    assert prompt.endswith("User: hello")
    assert sessions.get_current_uuid("pal", "42") == "sess-1"
    assert channel.texts == [("42", STATUS_THINKING), ("42", "Hi Ann")]
    assert channel.deleted == [101]
    assert limiter.get_count("pal", "42") == 1

    await orchestrator.handle_turn("pal", _message("all good"))

    prompt, session_id = agent.calls[1]
    assert session_id == "sess-1"
    assert "Be kind." not in prompt
    assert prompt.startswith("[CRITICAL REMINDER: You are Pal.")
    assert channel.texts[-1] == ("42", "Good to hear")
    assert sessions.load_session_metadata("pal", "42").message_count == 2
    assert len(orchestrator.streams) == 0


async def test_blank_message_is_ignored(tmp_path: Path) -> None:
    agent = _ScriptedAgent()
    orchestrator, channel, _, _ = _setup(tmp_path, agent)

    await orchestrator.handle_turn("pal", _message("   "))

    assert agent.calls == []
    assert channel.texts == []


async def test_rate_limited_user_gets_notice_and_no_agent_call(tmp_path: Path) -> None:
    agent = _ScriptedAgent()
    orchestrator, channel, _, limiter = _setup(tmp_path, agent, rateLimits={"free": 1, "paid": 5})
    limiter.increment("pal", "42")

    await orchestrator.handle_turn("pal", _message("hello again"))

    assert agent.calls == []
    assert len(channel.texts) == 1
    assert "daily limit of 1 messages" in channel.texts[0][1]
    assert "Current: 1/1" in channel.texts[0][1]


async def test_agent_failure_apologizes_without_bookkeeping(tmp_path: Path) -> None:
    agent = _ScriptedAgent([Failed(error="boom")])
    orchestrator, channel, sessions, limiter = _setup(tmp_path, agent)

    await orchestrator.handle_turn("pal", _message("hello"))

    assert channel.texts[-1] == ("42", APOLOGY_AGENT)
    assert channel.deleted == [101]
    assert sessions.get_current_uuid("pal", "42") is None
    assert limiter.get_count("pal", "42") == 0


async def test_photo_turn_sends_structured_prompt(tmp_path: Path) -> None:
    agent = _ScriptedAgent([Done(session_id="s", text="Nice dog")])
    orchestrator, channel, _, _ = _setup(tmp_path, agent)

    await orchestrator.handle_turn("pal", _message("", photo_ref="file-1"))

    prompt, _ = agent.calls[0]
    assert isinstance(prompt, list)
    assert prompt[0]["text"].endswith("User says:\n(user sent an image)")
    assert prompt[1]["source"]["media_type"] == "image/jpeg"
    assert prompt[1]["source"]["data"] == "anBlZy1ieXRlcw=="
    assert channel.texts[-1] == ("42", "Nice dog")


async def test_media_download_failure_falls_back_to_text_prompt(tmp_path: Path) -> None:
    agent = _ScriptedAgent([Done(session_id="s", text="What did you send?")])
    orchestrator, channel, _, _ = _setup(tmp_path, agent)
    channel.media = None

    await orchestrator.handle_turn("pal", _message("look at this", photo_ref="file-1"))

    prompt, _ = agent.calls[0]
    assert isinstance(prompt, str)
    assert prompt.endswith("User: look at this")
    assert channel.texts[-1] == ("42", "What did you send?")


async def test_streaming_preview_is_throttled(tmp_path: Path) -> None:
    ticks = iter([0.0, 2.0, 2.5, 5.0])
    agent = _ScriptedAgent(
        [TextChunk("Hel"), TextChunk("lo"), TextChunk(" there"), Done(session_id="s")]
    )
    orchestrator, channel, _, _ = _setup(tmp_path, agent, clock=lambda: next(ticks))

    await orchestrator.handle_turn("pal", _message("hi"))

    assert channel.edits == [(101, "Hel"), (101, "Hello there")]
    assert channel.texts[-1] == ("42", "Hello there")


async def test_voice_turn_edits_status_and_sends_audio_only(tmp_path: Path) -> None:
    agent = _ScriptedAgent([Done(session_id="s", text="Spoken reply")], speech=_FakeSpeech())
    orchestrator, channel, _, _ = _setup(tmp_path, agent, tts={"enabled": True, "voice": "shimmer"})

    await orchestrator.handle_turn("pal", _message("talk to me"))

    assert channel.edits == [(101, STATUS_RECORDING)]
    assert channel.voices == [Path("/tmp/reply.ogg")]
    assert channel.texts == [("42", STATUS_THINKING)]


async def test_image_turn_uses_marker_prompt_and_strips_it(tmp_path: Path) -> None:
    images = _FakeImages()
    agent = _ScriptedAgent(
        [Done(session_id="s", text="got it, drawing [[IMAGE_PROMPT: a grumpy cat]]")],
        images=images,
    )
    orchestrator, channel, _, _ = _setup(
        tmp_path,
        agent,
        imageGen={"enabled": True, "useMarkerDetection": True, "promptContext": "Flat style."},
    )

    await orchestrator.handle_turn("pal", _message("draw a cat"))

    assert images.prompts == ["a grumpy cat"]
    assert channel.edits == [(101, STATUS_DRAWING)]
    assert channel.photos == [Path("/tmp/drawing.png")]
    assert channel.texts == [("42", STATUS_THINKING)]


async def test_reply_marks_pending_nudge_as_answered(tmp_path: Path) -> None:
    agent = _ScriptedAgent([Done(session_id="s", text="welcome back")])
    orchestrator, _, sessions, _ = _setup(tmp_path, agent)
    sessions.set_current_uuid("pal", "42", "s")
    sessions.record_nudge("pal", "42", NudgeRecord(timestamp=datetime.now(), delay_hours=24, message="hey"))

    await orchestrator.handle_turn("pal", _message("I'm back"))

    metadata = sessions.load_session_metadata("pal", "42")
    assert metadata.last_nudge.user_responded is True
    assert metadata.last_nudge_sent == 0


async def test_rate_limited_photo_is_not_downloaded(tmp_path: Path) -> None:
    agent = _ScriptedAgent()
    orchestrator, channel, _, limiter = _setup(tmp_path, agent, rateLimits={"free": 1, "paid": 5})
    limiter.increment("pal", "42")

    await orchestrator.handle_turn("pal", _message("what is this?", photo_ref="file-1"))

    assert channel.downloads == []
    assert agent.calls == []
    assert len(channel.texts) == 1
    assert "daily limit of 1 messages" in channel.texts[0][1]
    assert len(orchestrator.streams) == 0


async def test_overlapping_turns_each_clear_their_own_status(tmp_path: Path) -> None:
    agent = _GatedAgent()
    orchestrator, channel, _, _ = _setup(tmp_path, agent)

    second = asyncio.create_task(orchestrator.handle_turn("pal", _message("second")))
    await agent.waiting.wait()
    await orchestrator.handle_turn("pal", _message("first"))
    agent.release.set()
    await second

    assert channel.deleted == [102, 101]
    assert ("42", "first reply") in channel.texts
    assert channel.texts[-1] == ("42", APOLOGY_GENERIC)
    assert len(orchestrator.streams) == 0
