"""Conversation turn orchestration."""

import base64
import time
from functools import partial
from typing import Callable

from loguru import logger

from brainbot.agent.client import AgentClient
from brainbot.agent.events import AgentError, TurnResult
from brainbot.brains.loader import BrainLoader
from brainbot.channels.base import BotChannel, DeliveryError, IncomingMessage, MediaFetchError
from brainbot.orchestrator.classifier import TurnMode, classify_turn
from brainbot.orchestrator.dispatch import ResponseDispatcher
from brainbot.orchestrator.prompt import build_media_prompt, build_text_prompt
from brainbot.orchestrator.registry import ActiveStreamState, BotInstance, BotRegistry, StreamStateRegistry
from brainbot.ratelimit.limiter import DailyRateLimiter
from brainbot.session.store import SessionStore

STATUS_THINKING = "⏳ Thinking..."
STATUS_DRAWING = "🎨 Drawing..."
STATUS_RECORDING = "🎙️ Recording..."

RATE_LIMIT_NOTICE = (
    "⏸️ You've reached your daily limit of {limit} messages.\n\n"
    "Resets at midnight. Current: {current}/{limit}"
)
APOLOGY_GENERIC = "❌ Sorry, something went wrong. Please try again."
APOLOGY_AGENT = "❌ Sorry, I encountered an error. Please try again."

PREVIEW_CHARS = 400
PREVIEW_INTERVAL_S = 1.0


def preview_text(text: str, limit: int = PREVIEW_CHARS) -> str:
    return text[:limit] + "..." if len(text) > limit else text


class TurnOrchestrator:
    """
    Turns one inbound, non-command message into an agent exchange and a reply.

    Users only ever see short status and apology strings; failures are
    logged with details and never propagate back to the channel.
    """

    def __init__(
        self,
        bots: BotRegistry,
        brains: BrainLoader,
        sessions: SessionStore,
        limiter: DailyRateLimiter,
        agent: AgentClient,
        dispatcher: ResponseDispatcher,
        streams: StreamStateRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bots = bots
        self.brains = brains
        self.sessions = sessions
        self.limiter = limiter
        self.agent = agent
        self.dispatcher = dispatcher
        self.streams = streams or StreamStateRegistry()
        self._clock = clock

    async def handle_turn(self, bot_id: str, message: IncomingMessage) -> None:
        instance = self.bots.get(bot_id)
        if instance is None:
            logger.warning(f"Message for unknown bot {bot_id}")
            return

        text = (message.text or "").strip()
        if not text and not message.has_media:
            return

        channel = instance.channel
        chat_id = message.chat_id
        # Each turn owns its stream state; overlapping turns in one chat
        # must not clean up each other's status message.
        stream: ActiveStreamState | None = None
        try:
            if not await self._within_limit(instance, message):
                return
            status_id = await channel.send_text(chat_id, STATUS_THINKING)
            stream = self.streams.start(bot_id, chat_id, status_id)
            stream.last_update = self._clock()
            await self._run_turn(instance, message, text, stream)
        except AgentError as e:
            logger.error(f"[{bot_id}] Agent error for user {message.user.id}: {e}")
            await self._abort(channel, bot_id, chat_id, stream, APOLOGY_AGENT)
        except Exception as e:
            logger.error(f"[{bot_id}] Error handling message from {message.user.id}: {e}")
            await self._abort(channel, bot_id, chat_id, stream, APOLOGY_GENERIC)
        finally:
            if stream is not None:
                self.streams.finish(bot_id, chat_id, stream)

    async def _within_limit(self, instance: BotInstance, message: IncomingMessage) -> bool:
        bot_id = instance.bot_id
        user_id = message.user.id
        status = self.limiter.check_limit(bot_id, user_id, instance.brain)
        if status.allowed:
            return True
        logger.info(f"[{bot_id}] User {user_id} hit daily limit ({status.current}/{status.limit})")
        await instance.channel.send_text(
            message.chat_id, RATE_LIMIT_NOTICE.format(limit=status.limit, current=status.current)
        )
        return False

    async def _run_turn(
        self, instance: BotInstance, message: IncomingMessage, text: str, stream: ActiveStreamState
    ) -> None:
        bot_id = instance.bot_id
        brain = instance.brain
        channel = instance.channel
        chat_id = message.chat_id
        user_id = message.user.id

        image_b64 = await self._fetch_media(channel, message)

        session_id = self.sessions.get_current_uuid(bot_id, user_id)
        if session_id:
            logger.info(f"[{bot_id}] Resuming session {session_id[:8]}... for user {user_id}")
            system_prompt = None
        else:
            logger.info(f"[{bot_id}] New session for user {user_id}")
            system_prompt = self.brains.build_system_prompt(instance.config.brain, message.user)
        reminder = self.brains.get_security_reminder(instance.config.brain)

        if image_b64:
            prompt = build_media_prompt(text, image_b64, system_prompt, reminder)
        else:
            prompt = build_text_prompt(text, system_prompt, reminder)

        mode = classify_turn(text, message.has_media, brain, self.sessions.get_tts_preference(bot_id, user_id))
        logger.info(f"[{bot_id}] Turn mode {mode.value} for user {user_id}")

        if mode == TurnMode.IMAGE:
            result = await self.agent.exchange_with_image(
                prompt,
                session_id,
                settings=brain.image_gen,
                user_text=text,
                on_step2=partial(self._set_status, channel, chat_id, stream, STATUS_DRAWING),
            )
        elif mode == TurnMode.TTS:
            result = await self.agent.exchange_with_speech(
                prompt,
                session_id,
                voice=brain.tts.voice or "nova",
                speed=brain.tts.speed or 1.0,
                provider=brain.tts.provider,
                on_step2=partial(self._set_status, channel, chat_id, stream, STATUS_RECORDING),
            )
        else:
            result = await self.agent.exchange(
                prompt,
                session_id,
                on_progress=partial(self._preview, channel, chat_id, stream),
            )

        if result.success:
            self._record_success(bot_id, user_id, result)

        await self._clear_status(channel, chat_id, stream)
        await self.dispatcher.dispatch(channel, chat_id, brain, result)

        metadata = self.sessions.load_session_metadata(bot_id, user_id)
        self.dispatcher.maybe_schedule_cta(channel, chat_id, brain, metadata.message_count if metadata else None)

    def _record_success(self, bot_id: str, user_id: str, result: TurnResult) -> None:
        if result.session_id:
            self.sessions.set_current_uuid(bot_id, user_id, result.session_id)
            logger.info(f"[{bot_id}] Saved session {result.session_id[:8]}... for user {user_id}")
        self.sessions.increment_message_count(bot_id, user_id)
        self.sessions.update_last_message_time(bot_id, user_id)
        self.limiter.increment(bot_id, user_id)
        if self.sessions.mark_nudge_responded(bot_id, user_id):
            logger.info(f"[{bot_id}] User {user_id} responded to last nudge")

    async def _fetch_media(self, channel: BotChannel, message: IncomingMessage) -> str | None:
        if not message.photo_ref:
            return None
        try:
            data = await channel.download_media(message.photo_ref)
        except MediaFetchError as e:
            logger.error(f"Failed to process photo: {e}")
            return None
        return base64.b64encode(data).decode("ascii")

    async def _set_status(self, channel: BotChannel, chat_id: str, stream: ActiveStreamState, text: str) -> None:
        if stream.status_message_id is None:
            return
        try:
            await channel.edit_text(chat_id, stream.status_message_id, text)
        except DeliveryError:
            pass

    async def _preview(self, channel: BotChannel, chat_id: str, stream: ActiveStreamState, text: str) -> None:
        stream.text = text
        now = self._clock()
        if now - stream.last_update <= PREVIEW_INTERVAL_S:
            return
        stream.last_update = now
        await self._set_status(channel, chat_id, stream, preview_text(text))

    async def _clear_status(self, channel: BotChannel, chat_id: str, stream: ActiveStreamState) -> None:
        message_id, stream.status_message_id = stream.status_message_id, None
        if message_id is None:
            return
        try:
            await channel.delete_message(chat_id, message_id)
        except DeliveryError:
            pass

    async def _abort(
        self,
        channel: BotChannel,
        bot_id: str,
        chat_id: str,
        stream: ActiveStreamState | None,
        apology: str,
    ) -> None:
        if stream is not None:
            await self._clear_status(channel, chat_id, stream)
        try:
            await channel.send_text(chat_id, apology)
        except DeliveryError as e:
            logger.error(f"[{bot_id}] Failed to send apology to {chat_id}: {e}")
