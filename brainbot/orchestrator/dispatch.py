"""Assembles and delivers multi-modal replies."""

import asyncio
from pathlib import Path

from loguru import logger

from brainbot.agent.events import AgentError, TurnResult
from brainbot.brains.schema import BrainConfig, CallToAction
from brainbot.channels.base import BotChannel, DeliveryError

MAX_MESSAGE_LENGTH = 4000


def strip_prompt_echo(text: str) -> str:
    """Drop an echoed prompt: keep what follows the last `User:` when it is not at the start."""
    if not text or "User:" not in text:
        return text
    index = text.rfind("User:")
    if index > 0:
        return text[index + len("User:"):].strip()
    return text


def split_message(text: str, max_len: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split into sequential fixed-size chunks."""
    if len(text) <= max_len:
        return [text]
    return [text[i:i + max_len] for i in range(0, len(text), max_len)]


def should_send_cta(cta: CallToAction, message_count: int | None) -> bool:
    if not cta.enabled or not message_count:
        return False
    if cta.send_on_first_message and message_count == 1:
        return True
    return message_count % cta.trigger_every == 0


class ResponseDispatcher:
    """
    Sends a turn's result to the user under the brain's output policy.

    Media (voice, images) goes first. Text follows when no media was
    produced, or when the matching `send_text_too` flag asks for both.
    """

    def __init__(self, cta_base_dir: Path | None = None):
        self.cta_base_dir = cta_base_dir
        self._cta_tasks: set[asyncio.Task] = set()

    async def _send_text(self, channel: BotChannel, chat_id: str, text: str) -> None:
        for chunk in split_message(text):
            await channel.send_text(chat_id, chunk)

    async def dispatch(self, channel: BotChannel, chat_id: str, brain: BrainConfig, result: TurnResult) -> None:
        """Deliver a result. Raises AgentError when there is nothing usable to send."""
        if not result.success:
            raise AgentError(result.error or "agent reported failure")

        text = strip_prompt_echo(result.text or "").strip()
        if not (text or result.has_media):
            raise AgentError("agent returned an empty response")

        has_audio = bool(result.audio_path)
        images = ([result.image_path] if result.image_path else []) + [
            img.image_path for img in result.generated_images
        ]
        text_sent = False

        if has_audio:
            try:
                await channel.send_voice(chat_id, result.audio_path)
                logger.info(f"Voice message sent to {chat_id}: {result.audio_path}")
            except DeliveryError as e:
                logger.error(f"Failed to send audio to {chat_id}: {e}; falling back to text")
                if text:
                    await self._send_text(channel, chat_id, text)
                    text_sent = True

        for image_path in images:
            try:
                await channel.send_photo(chat_id, image_path)
                logger.info(f"Image sent to {chat_id}: {image_path}")
            except DeliveryError as e:
                logger.error(f"Failed to send image {image_path} to {chat_id}: {e}")

        should_send_text = (
            (not has_audio and not images)
            or (has_audio and brain.tts.send_text_too)
            or (bool(images) and brain.image_gen.send_text_too)
        )
        if should_send_text and text and not text_sent:
            await self._send_text(channel, chat_id, text)

        logger.info(
            f"Response sent to {chat_id} "
            f"(audio={has_audio}, images={len(images)}, text={should_send_text}, {len(text)} chars)"
        )

    def resolve_cta_image(self, image: str) -> Path:
        path = Path(image).expanduser()
        if path.is_absolute():
            return path
        return (self.cta_base_dir or Path.cwd()) / path

    def maybe_schedule_cta(
        self,
        channel: BotChannel,
        chat_id: str,
        brain: BrainConfig,
        message_count: int | None,
    ) -> asyncio.Task | None:
        """Schedule the brain's call-to-action when this message count qualifies."""
        cta = brain.call_to_action
        if not should_send_cta(cta, message_count):
            return None

        task = asyncio.create_task(self._send_cta(channel, chat_id, cta, message_count))
        self._cta_tasks.add(task)
        task.add_done_callback(self._cta_tasks.discard)
        if cta.delay_seconds > 0:
            logger.info(f"CTA scheduled for {chat_id} in {cta.delay_seconds} seconds")
        return task

    async def _send_cta(self, channel: BotChannel, chat_id: str, cta: CallToAction, message_count: int) -> None:
        if cta.delay_seconds > 0:
            await asyncio.sleep(cta.delay_seconds)
        try:
            if cta.image:
                await channel.send_photo(chat_id, self.resolve_cta_image(cta.image), caption=cta.message)
            else:
                await channel.send_text(chat_id, cta.message, link_preview=True)
            logger.info(f"CTA sent to {chat_id} (message #{message_count})")
        except DeliveryError as e:
            logger.error(f"Failed to send CTA to {chat_id}: {e}")

    @property
    def pending_cta(self) -> int:
        return len(self._cta_tasks)

    async def shutdown(self) -> None:
        """Cancel pending call-to-action timers."""
        tasks = list(self._cta_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._cta_tasks.clear()
