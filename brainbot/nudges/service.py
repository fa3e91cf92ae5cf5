"""Engagement scheduler - LLM-written follow-ups for silent users."""

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Sequence

from loguru import logger

from brainbot.agent.client import AgentClient
from brainbot.brains.schema import NudgeTrigger
from brainbot.channels.base import DeliveryError
from brainbot.orchestrator.registry import BotInstance, BotRegistry
from brainbot.providers.tts import SpeechSynthesizer, TTSError
from brainbot.session.store import NudgeRecord, SessionStore

DEFAULT_NUDGE_INTERVAL_S = 60 * 60

NO_USER_MESSAGE = "no_user_message"

NUDGE_NOTE_TEMPLATE = (
    '[SYSTEM NOTE: You just sent a follow-up nudge to the user: "{message}"]\n\n'
    "User's response (if any):"
)


def select_nudge_trigger(
    triggers: Sequence[NudgeTrigger],
    hours_since_last_message: float,
    last_nudge_sent: float,
) -> NudgeTrigger | None:
    """
    Pick the trigger that should fire now, if any.

    A trigger is eligible once its delay has elapsed, when it is later than
    the last nudge of this silence period and its condition holds. The
    earliest eligible trigger wins.
    """
    eligible = [
        t for t in triggers
        if hours_since_last_message >= t.delay_hours
        and t.delay_hours > last_nudge_sent
        and t.condition == NO_USER_MESSAGE
    ]
    if not eligible:
        return None
    return min(eligible, key=lambda t: t.delay_hours)


class EngagementScheduler:
    """
    Scans every nudge-enabled bot on a fixed interval.

    For each user whose silence crosses a trigger, the bot's agent writes
    the follow-up in the existing conversation, the message is delivered,
    and the agent is told that it sent it.
    """

    def __init__(
        self,
        bots: BotRegistry,
        sessions: SessionStore,
        agent: AgentClient,
        speech: SpeechSynthesizer | None = None,
        interval_s: int = DEFAULT_NUDGE_INTERVAL_S,
        enabled: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.bots = bots
        self.sessions = sessions
        self.agent = agent
        self.speech = speech
        self.interval_s = interval_s
        self.enabled = enabled
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_run_at: float | None = None
        self.sent_count = 0

    async def start(self) -> None:
        """Start the nudge scan loop."""
        if not self.enabled:
            logger.info("Nudges disabled")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Nudge scheduler started (every {self.interval_s}s)")

    def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    await self.scan()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Nudge check failed: {e}")

    async def scan(self) -> int:
        """Check every user of every nudge-enabled bot. Returns nudges sent."""
        self._last_run_at = time.time()
        sent = 0
        for instance in self.bots:
            nudges = instance.brain.nudges
            if not nudges.enabled or not nudges.triggers:
                continue
            users = self.sessions.get_all_users_for_bot(instance.bot_id)
            logger.debug(f"Checking {len(users)} users for {instance.bot_id} nudges")
            for user_id in users:
                try:
                    if await self.check_user(instance, user_id):
                        sent += 1
                except Exception as e:
                    logger.error(f"Error checking nudges for {instance.bot_id}/{user_id}: {e}")
        return sent

    async def check_user(self, instance: BotInstance, user_id: str) -> bool:
        bot_id = instance.bot_id
        metadata = self.sessions.load_session_metadata(bot_id, user_id)
        if metadata is None or metadata.last_message_time is None:
            return False

        last = metadata.last_nudge
        if last is not None and last.stop_sequence and not last.user_responded:
            return False

        hours = (self._clock() - metadata.last_message_time).total_seconds() / 3600
        trigger = select_nudge_trigger(instance.brain.nudges.triggers, hours, metadata.last_nudge_sent)
        if trigger is None:
            return False

        logger.info(f"Nudge trigger fired for {bot_id}/{user_id}: {trigger.delay_hours}h")

        message = await self.generate(bot_id, user_id, trigger)
        if not message:
            return False

        await self.deliver(instance, user_id, message)
        await self._note_in_session(bot_id, user_id, message)

        self.sessions.record_nudge(
            bot_id,
            user_id,
            NudgeRecord(
                timestamp=self._clock(),
                delay_hours=trigger.delay_hours,
                message=message,
                user_responded=False,
                stop_sequence=trigger.stop_sequence,
            ),
        )
        self.sent_count += 1
        logger.info(f"Nudge complete for {bot_id}/{user_id}")
        return True

    async def generate(self, bot_id: str, user_id: str, trigger: NudgeTrigger) -> str | None:
        """Have the agent write the nudge inside the user's existing conversation."""
        session_id = self.sessions.get_current_uuid(bot_id, user_id)
        if not session_id:
            logger.warning(f"No session found for {bot_id}/{user_id}, skipping nudge")
            return None

        result = await self.agent.exchange(trigger.prompt_template, session_id)
        if not result.success:
            logger.error(f"Failed to generate nudge for {bot_id}/{user_id}: {result.error}")
            return None
        message = result.text.strip()
        if not message:
            logger.warning(f"Empty nudge generated for {bot_id}/{user_id}")
            return None
        return message

    async def deliver(self, instance: BotInstance, user_id: str, message: str) -> None:
        """Voice when the brain speaks by default, otherwise text. Private chat id equals user id."""
        chat_id = str(user_id)
        tts = instance.brain.tts
        if tts.enabled and self.speech is not None:
            try:
                speech = await self.speech.synthesize(
                    message, voice=tts.voice or "nova", speed=tts.speed or 1.0, provider=tts.provider
                )
                await instance.channel.send_voice(chat_id, speech.audio_path)
                logger.info(f"Nudge sent (voice) to {user_id} from {instance.bot_id}")
                return
            except (TTSError, DeliveryError) as e:
                logger.warning(f"Voice nudge failed for {instance.bot_id}/{user_id}, sending text: {e}")

        await instance.channel.send_text(chat_id, message)
        logger.info(f"Nudge sent (text) to {user_id} from {instance.bot_id}")

    async def _note_in_session(self, bot_id: str, user_id: str, message: str) -> None:
        session_id = self.sessions.get_current_uuid(bot_id, user_id)
        if not session_id:
            return
        result = await self.agent.exchange(NUDGE_NOTE_TEMPLATE.format(message=message), session_id)
        if not result.success:
            logger.warning(f"Failed to note nudge in session for {bot_id}/{user_id}: {result.error}")

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self._running,
            "interval_s": self.interval_s,
            "last_run_at_ms": int(self._last_run_at * 1000) if self._last_run_at else None,
            "sent_count": self.sent_count,
        }
