import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from brainbot.channels.base import DeliveryError, IncomingMessage, MediaFetchError
from brainbot.channels.telegram import TelegramChannel


class _FakeFile:
    def __init__(self, data: bytes) -> None:
        self.data = data

    async def download_as_bytearray(self) -> bytearray:
        return bytearray(self.data)


class _FakeTelegramBot:
    def __init__(self) -> None:
        self.sent_messages: list[dict] = []
        self.edits: list[dict] = []
        self.deleted: list[dict] = []
        self.fail_send = False

    async def send_message(self, **kwargs):
        if self.fail_send:
            raise RuntimeError("Forbidden: bot was blocked by the user")
        self.sent_messages.append(kwargs)
        return SimpleNamespace(message_id=len(self.sent_messages) + 500)

    async def edit_message_text(self, **kwargs):
        self.edits.append(kwargs)

    async def delete_message(self, **kwargs):
        self.deleted.append(kwargs)

    async def get_file(self, file_id):
        if file_id == "missing":
            raise RuntimeError("file not found")
        return _FakeFile(b"\xff\xd8photo")


class _FakeUpdater:
    def __init__(self, running: bool = True) -> None:
        self.running = running


class _FakeTelegramApp:
    def __init__(self) -> None:
        self.bot = _FakeTelegramBot()
        self.updater = _FakeUpdater()


def _channel() -> TelegramChannel:
    channel = TelegramChannel("123:abc", bot_id="therapy")
    channel._app = _FakeTelegramApp()
    channel._running = True
    return channel


def _update(text=None, caption=None, photo=None, user_id=777):
    message = SimpleNamespace(
        text=text,
        caption=caption,
        photo=photo or [],
        chat_id=555,
        message_id=9,
    )
    user = SimpleNamespace(id=user_id, username="sam", first_name="Sam")
    return SimpleNamespace(message=message, effective_user=user)


async def test_telegram_send_text_returns_message_id_and_disables_preview() -> None:
    channel = _channel()

    message_id = await channel.send_text("555", "hello")

    sent = channel._app.bot.sent_messages
    assert message_id == 501
    assert sent[0]["chat_id"] == 555
    assert sent[0]["link_preview_options"].is_disabled is True

    await channel.send_text("555", "https://example.com", link_preview=True)
    assert sent[1]["link_preview_options"].is_disabled is False


async def test_telegram_send_failure_raises_delivery_error() -> None:
    channel = _channel()
    channel._app.bot.fail_send = True

    with pytest.raises(DeliveryError):
        await channel.send_text("555", "hello")
    with pytest.raises(DeliveryError):
        await channel.edit_text("not-a-number", 1, "x")


async def test_telegram_edit_and_delete() -> None:
    channel = _channel()

    await channel.edit_text("555", 501, "⏳ Thinking...")
    await channel.delete_message("555", 501)

    assert channel._app.bot.edits == [{"chat_id": 555, "message_id": 501, "text": "⏳ Thinking..."}]
    assert channel._app.bot.deleted == [{"chat_id": 555, "message_id": 501}]


async def test_telegram_requires_running_app() -> None:
    channel = TelegramChannel("123:abc", bot_id="therapy")

    with pytest.raises(DeliveryError):
        await channel.send_voice("1", Path("/tmp/x.ogg"))
    with pytest.raises(MediaFetchError):
        await channel.download_media("file-1")
    assert channel.is_alive() is False


async def test_telegram_download_media() -> None:
    channel = _channel()

    assert await channel.download_media("file-1") == b"\xff\xd8photo"
    with pytest.raises(MediaFetchError):
        await channel.download_media("missing")


async def test_telegram_liveness_follows_updater() -> None:
    channel = _channel()
    assert channel.is_alive() is True

    channel._app.updater.running = False
    assert channel.is_alive() is False


async def test_telegram_update_is_normalized_and_dispatched() -> None:
    channel = _channel()
    received: list[IncomingMessage] = []

    async def on_message(msg: IncomingMessage) -> None:
        received.append(msg)

    channel.bind(on_message)

    await channel._on_update(_update(text="/Help@therapy_bot now"), None)
    await channel._on_update(
        _update(caption="my dog", photo=[SimpleNamespace(file_id="small"), SimpleNamespace(file_id="large")]),
        None,
    )

    assert received[0].text == "/help now"
    assert received[0].chat_id == "555"
    assert received[0].user.id == "777"
    assert received[0].is_command is True
    assert received[1].text == "my dog"
    assert received[1].photo_ref == "large"
    assert received[1].has_media is True


async def test_telegram_polling_errors_reach_error_handler() -> None:
    channel = _channel()
    errors: list[Exception] = []

    async def on_message(msg: IncomingMessage) -> None:
        pass

    channel.bind(on_message, errors.append)
    channel._on_polling_error(RuntimeError("Conflict: terminated by other getUpdates request"))

    assert len(errors) == 1


async def test_start_without_token_fails() -> None:
    with pytest.raises(RuntimeError, match="token"):
        await TelegramChannel("").start()


async def test_updates_from_different_users_run_concurrently() -> None:
    channel = TelegramChannel("123:abc", bot_id="therapy")
    app = channel._build_application()
    started = {"1": asyncio.Event(), "2": asyncio.Event()}

    async def on_message(msg: IncomingMessage) -> None:
        started[msg.user.id].set()
        other = "2" if msg.user.id == "1" else "1"
        await started[other].wait()

    channel.bind(on_message)
    updates = [_update(text="hi", user_id=1), _update(text="hello", user_id=2)]

    await asyncio.wait_for(
        asyncio.gather(
            *(app.update_processor.process_update(u, channel._on_update(u, None)) for u in updates)
        ),
        timeout=2,
    )

    assert app.update_processor.max_concurrent_updates > 1
    assert all(event.is_set() for event in started.values())
