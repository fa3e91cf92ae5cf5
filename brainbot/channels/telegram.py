"""Telegram channel implementation using python-telegram-bot."""

from pathlib import Path

from loguru import logger
from telegram import LinkPreviewOptions, Update
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from brainbot.channels.base import (
    BotChannel,
    ChatUser,
    DeliveryError,
    IncomingMessage,
    MediaFetchError,
)


class TelegramChannel(BotChannel):
    """
    One Telegram bot using long polling.

    Commands arrive as ordinary text (`/help@my_bot` is normalized to
    `/help`) and are routed by the manager together with regular messages.
    """

    name = "telegram"

    def __init__(self, token: str, bot_id: str = ""):
        super().__init__(token)
        self.bot_id = bot_id
        self._app: Application | None = None

    async def start(self) -> None:
        """Start the Telegram bot with long polling."""
        if not self.token:
            raise RuntimeError("Telegram bot token not configured")

        self._app = self._build_application()

        logger.info(f"Starting Telegram bot {self.bot_id} (polling mode)...")

        await self._app.initialize()
        await self._app.start()

        bot_info = await self._app.bot.get_me()
        logger.info(f"Telegram bot @{bot_info.username} connected as {self.bot_id}")

        await self._app.updater.start_polling(
            allowed_updates=["message"],
            drop_pending_updates=True,
            error_callback=self._on_polling_error,
        )
        self._running = True

    def _build_application(self) -> Application:
        # Turns can take minutes; one user must not hold up the others.
        app = Application.builder().token(self.token).concurrent_updates(True).build()
        app.add_handler(MessageHandler(filters.TEXT | filters.PHOTO, self._on_update))
        return app

    async def stop(self) -> None:
        """Stop the Telegram bot."""
        self._running = False

        if self._app:
            logger.info(f"Stopping Telegram bot {self.bot_id}...")
            app, self._app = self._app, None
            if app.updater and app.updater.running:
                await app.updater.stop()
            if app.running:
                await app.stop()
            await app.shutdown()

    def is_alive(self) -> bool:
        if not self._running or self._app is None or self._app.updater is None:
            return False
        return bool(self._app.updater.running)

    def _require_app(self) -> Application:
        if not self._app:
            raise DeliveryError(f"Telegram bot {self.bot_id} not running")
        return self._app

    @staticmethod
    def _chat(chat_id: str) -> int:
        try:
            return int(chat_id)
        except ValueError as e:
            raise DeliveryError(f"Invalid chat_id: {chat_id}") from e

    async def send_text(self, chat_id: str, text: str, link_preview: bool = False) -> int | None:
        app = self._require_app()
        try:
            sent = await app.bot.send_message(
                chat_id=self._chat(chat_id),
                text=text,
                link_preview_options=LinkPreviewOptions(is_disabled=not link_preview),
            )
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"send_message failed: {e}") from e
        return getattr(sent, "message_id", None)

    async def send_voice(self, chat_id: str, audio_path: Path) -> None:
        app = self._require_app()
        try:
            with open(audio_path, "rb") as f:
                await app.bot.send_voice(chat_id=self._chat(chat_id), voice=f)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"send_voice failed: {e}") from e

    async def send_photo(self, chat_id: str, image_path: Path, caption: str | None = None) -> None:
        app = self._require_app()
        try:
            with open(image_path, "rb") as f:
                await app.bot.send_photo(chat_id=self._chat(chat_id), photo=f, caption=caption)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"send_photo failed: {e}") from e

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        app = self._require_app()
        try:
            await app.bot.edit_message_text(chat_id=self._chat(chat_id), message_id=message_id, text=text)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"edit_message_text failed: {e}") from e

    async def delete_message(self, chat_id: str, message_id: int) -> None:
        app = self._require_app()
        try:
            await app.bot.delete_message(chat_id=self._chat(chat_id), message_id=message_id)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"delete_message failed: {e}") from e

    async def download_media(self, ref: str) -> bytes:
        if not self._app:
            raise MediaFetchError(f"Telegram bot {self.bot_id} not running")
        try:
            file = await self._app.bot.get_file(ref)
            data = await file.download_as_bytearray()
        except Exception as e:
            raise MediaFetchError(f"Failed to download {ref}: {e}") from e
        return bytes(data)

    def _on_polling_error(self, error: TelegramError) -> None:
        logger.warning(f"Telegram polling error on {self.bot_id}: {error}")
        self._report_error(error)

    async def _on_update(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle incoming text and photo messages."""
        if not update.message or not update.effective_user:
            return

        message = update.message
        user = update.effective_user

        text = message.text or message.caption or ""
        if text.startswith("/"):
            text = self._normalize_command_text(text)

        photo_ref = message.photo[-1].file_id if message.photo else None  # Largest size

        logger.debug(f"Telegram message for {self.bot_id} from {user.id}: {text[:50]}")

        await self._dispatch(
            IncomingMessage(
                chat_id=str(message.chat_id),
                user=ChatUser(id=str(user.id), username=user.username, first_name=user.first_name),
                text=text,
                photo_ref=photo_ref,
                message_id=message.message_id,
            )
        )

    @staticmethod
    def _normalize_command_text(text: str) -> str:
        """Strip the `@botname` suffix from a command, keeping any argument."""
        raw = (text or "").strip()
        if not raw.startswith("/"):
            return raw
        parts = raw.split(maxsplit=1)
        command = parts[0].split("@", 1)[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""
        return f"{command} {arg}".strip()
