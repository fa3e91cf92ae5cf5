"""Slash-command handling."""

from typing import Iterable

from loguru import logger

from brainbot.channels.base import IncomingMessage
from brainbot.orchestrator.registry import BotInstance
from brainbot.session.store import SessionStore

MSG_RESTARTED = "🔄 Conversation restarted!"
MSG_RESTART_UNAVAILABLE = "❓ This command is not available for this bot. Try /help"
MSG_SPEECH_ON = "🎙️ Speech Mode Activated"
MSG_SPEECH_OFF = "💬 Text Mode Activated"
MSG_NO_HISTORY = "📊 No conversation history yet. Send a message to start!"
MSG_UNKNOWN = "❓ Unknown command. Try /help for available commands."


def parse_command(text: str) -> str:
    """Return the lower-cased command word without any `@botname` suffix."""
    word = (text or "").strip().split(maxsplit=1)[0] if (text or "").strip() else ""
    return word.split("@", 1)[0].lower()


class CommandDispatcher:
    """Answers `/start`, `/help`, `/reset`, `/restart`, `/tts` and `/stats`."""

    def __init__(self, sessions: SessionStore, restart_bot_ids: Iterable[str] = ("cartooned",)):
        self.sessions = sessions
        self.restart_bot_ids = set(restart_bot_ids)

    def allows_restart(self, bot_id: str) -> bool:
        return bot_id in self.restart_bot_ids

    def help_text(self, instance: BotInstance) -> str:
        brain = instance.brain
        text = (
            f"👋 Hi! I'm {brain.name or 'a bot'}.\n\n"
            f"{brain.description or 'I am here to chat!'}\n\n"
            "Just send me a message and I'll respond.\n\n"
            "Commands:\n"
            "/help - Show this help message\n"
            "/tts - Toggle voice/text mode\n"
            "/stats - Show conversation stats"
        )
        if self.allows_restart(instance.bot_id):
            text += "\n/restart - Start fresh conversation"
        return text

    def stats_text(self, bot_id: str, user_id: str) -> str:
        metadata = self.sessions.load_session_metadata(bot_id, user_id)
        if metadata is None:
            return MSG_NO_HISTORY
        last = metadata.last_message_time.strftime("%Y-%m-%d %H:%M") if metadata.last_message_time else "never"
        return (
            "📊 Conversation Stats\n\n"
            f"Messages: {metadata.message_count}\n"
            f"Started: {metadata.created_at.strftime('%Y-%m-%d')}\n"
            f"Last message: {last}\n"
            f"Conversations: {len(metadata.uuid_history)}"
        )

    def toggle_tts(self, instance: BotInstance, user_id: str) -> bool:
        """Flip the user's voice preference. Without a stored preference the brain default is flipped."""
        preference = self.sessions.get_tts_preference(instance.bot_id, user_id)
        current = preference if preference is not None else instance.brain.tts.enabled
        self.sessions.set_tts_preference(instance.bot_id, user_id, not current)
        logger.info(f"[{instance.bot_id}] TTS toggled for user {user_id}: {current} -> {not current}")
        return not current

    async def handle(self, instance: BotInstance, message: IncomingMessage) -> None:
        bot_id = instance.bot_id
        channel = instance.channel
        chat_id = message.chat_id
        user_id = message.user.id
        command = parse_command(message.text)

        if command in ("/start", "/help"):
            await channel.send_text(chat_id, self.help_text(instance))
        elif command == "/reset":
            self.sessions.reset_conversation(bot_id, user_id)
            logger.info(f"[{bot_id}] Conversation reset for user {user_id} (silent)")
        elif command == "/restart":
            if not self.allows_restart(bot_id):
                await channel.send_text(chat_id, MSG_RESTART_UNAVAILABLE)
                return
            self.sessions.reset_conversation(bot_id, user_id)
            await channel.send_text(chat_id, MSG_RESTARTED)
            logger.info(f"[{bot_id}] Conversation restarted for user {user_id}")
        elif command == "/tts":
            enabled = self.toggle_tts(instance, user_id)
            await channel.send_text(chat_id, MSG_SPEECH_ON if enabled else MSG_SPEECH_OFF)
        elif command == "/stats":
            await channel.send_text(chat_id, self.stats_text(bot_id, user_id))
        else:
            await channel.send_text(chat_id, MSG_UNKNOWN)
