"""Bot manager: registration, inbound routing and lifecycle."""

from functools import partial
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from brainbot.agent.client import AgentClient
from brainbot.brains.loader import BrainLoader
from brainbot.channels.base import BotChannel, IncomingMessage
from brainbot.config.loader import ConfigurationError, validate_bot_entry
from brainbot.config.schema import BotConfig, Config
from brainbot.health.monitor import HealthMonitor
from brainbot.orchestrator.commands import CommandDispatcher
from brainbot.orchestrator.dispatch import ResponseDispatcher
from brainbot.orchestrator.registry import BotInstance, BotRegistry, StreamStateRegistry
from brainbot.orchestrator.turn import TurnOrchestrator
from brainbot.ratelimit.limiter import DailyRateLimiter
from brainbot.session.store import SessionStore

ChannelFactory = Callable[[str, str], BotChannel]


def telegram_channel_factory(token: str, bot_id: str) -> BotChannel:
    from brainbot.channels.telegram import TelegramChannel

    return TelegramChannel(token, bot_id=bot_id)


class BotManager:
    """
    Owns every running bot.

    Inbound messages from any channel land in `handle_message`, which
    routes commands to the CommandDispatcher and everything else to the
    TurnOrchestrator.
    """

    def __init__(
        self,
        brains: BrainLoader,
        sessions: SessionStore,
        limiter: DailyRateLimiter,
        agent: AgentClient,
        *,
        dispatcher: ResponseDispatcher | None = None,
        restart_bot_ids: tuple[str, ...] | list[str] = ("cartooned",),
        channel_factory: ChannelFactory = telegram_channel_factory,
        health_interval_s: int = 30,
        health_error_threshold: int = 3,
        channel_error_threshold: int = 5,
        recovery_delay_s: float = 2.0,
    ):
        self.bots = BotRegistry()
        self.streams = StreamStateRegistry()
        self.brains = brains
        self.sessions = sessions
        self.limiter = limiter
        self.agent = agent
        self.channel_factory = channel_factory
        self.dispatcher = dispatcher or ResponseDispatcher()
        self.commands = CommandDispatcher(sessions, restart_bot_ids)
        self.turns = TurnOrchestrator(
            self.bots, brains, sessions, limiter, agent, self.dispatcher, streams=self.streams
        )
        self.health = HealthMonitor(
            self.bots,
            channel_factory,
            self.bind_channel,
            interval_s=health_interval_s,
            error_threshold=health_error_threshold,
            channel_error_threshold=channel_error_threshold,
            recovery_delay_s=recovery_delay_s,
        )

    @classmethod
    def from_config(
        cls,
        config: Config,
        agent: AgentClient,
        channel_factory: ChannelFactory = telegram_channel_factory,
    ) -> "BotManager":
        data_path = config.data_path
        base_dir = Path(config.call_to_action.base_dir).expanduser() if config.call_to_action.base_dir else None
        return cls(
            BrainLoader(config.brains_path),
            SessionStore(data_path / "sessions"),
            DailyRateLimiter(
                default_daily_limit=config.rate_limit.default_daily_limit,
                paid_users=config.rate_limit.paid_users,
                store_path=data_path / "ratelimit" / "daily.json",
            ),
            agent,
            dispatcher=ResponseDispatcher(cta_base_dir=base_dir),
            restart_bot_ids=config.commands.restart_bot_ids,
            channel_factory=channel_factory,
            health_interval_s=config.health.interval_s,
            health_error_threshold=config.health.error_threshold,
            channel_error_threshold=config.health.channel_error_threshold,
            recovery_delay_s=config.health.recovery_delay_s,
        )

    def bind_channel(self, instance: BotInstance) -> None:
        instance.channel.bind(
            partial(self.handle_message, instance.bot_id),
            partial(self.health.record_channel_error, instance.bot_id),
        )

    def add_bot(self, config: BotConfig | dict[str, Any]) -> BotInstance | None:
        """
        Register a bot. Inactive bots are skipped and return None.

        Raises ConfigurationError when id, token or brain is missing or the
        brain cannot be loaded.
        """
        bot = config if isinstance(config, BotConfig) else validate_bot_entry(config)
        if not bot.id or not bot.token or not bot.brain:
            raise ConfigurationError("Bot config must include: id, token, brain")

        if not bot.active:
            logger.info(f"Bot {bot.id} is inactive, skipping")
            return None

        brain = self.brains.load(bot.brain)
        instance = BotInstance(
            bot_id=bot.id,
            config=bot,
            channel=self.channel_factory(bot.token, bot.id),
            brain=brain,
        )
        self.bind_channel(instance)
        self.bots.add(instance)
        logger.info(f"[{bot.id}] Bot registered: {brain.name or bot.id}")
        return instance

    def add_bots(self, configs: list[BotConfig]) -> list[BotInstance]:
        """Register several bots; invalid ones are logged and skipped."""
        added = []
        for bot in configs:
            try:
                instance = self.add_bot(bot)
            except ConfigurationError as e:
                logger.error(f"Skipping bot {bot.id or '?'}: {e}")
                continue
            if instance:
                added.append(instance)
        return added

    async def handle_message(self, bot_id: str, message: IncomingMessage) -> None:
        """Entry point for every inbound message."""
        instance = self.bots.get(bot_id)
        if instance is None:
            logger.error(f"Bot {bot_id} not found")
            return

        text = (message.text or "").strip()
        if not text and not message.has_media:
            return

        instance.message_count += 1
        log_text = f"[PHOTO] {text or '(no caption)'}" if message.has_media else text
        logger.info(
            f"[{bot_id}] Message from {message.user.id} "
            f"({message.user.username or message.user.first_name}): {log_text[:100]}"
        )

        if text.startswith("/"):
            try:
                await self.commands.handle(instance, message)
            except Exception as e:
                logger.error(f"[{bot_id}] Command {text.split()[0]} failed: {e}")
            return

        await self.turns.handle_turn(bot_id, message)

    async def start_all(self) -> None:
        """Start every registered channel and the health monitor."""
        for instance in self.bots:
            try:
                await instance.channel.start()
            except Exception as e:
                logger.error(f"[{instance.bot_id}] Failed to start channel: {e}")
        await self.health.start()
        logger.info(f"Bot platform running with {len(self.bots)} bot(s)")
        for instance in self.bots:
            logger.info(f"  - {instance.brain.name or instance.bot_id} (brain {instance.brain.version})")

    async def stop_all(self) -> None:
        """Stop health checks, pending CTAs and every channel."""
        logger.info("Shutting down bots...")
        self.health.stop()
        await self.dispatcher.shutdown()
        for instance in self.bots:
            try:
                await instance.channel.stop()
                logger.info(f"[{instance.bot_id}] Bot stopped")
            except Exception as e:
                logger.error(f"[{instance.bot_id}] Error stopping bot: {e}")
        self.bots.clear()
        logger.info("All bots stopped")

    def list_bots(self) -> list[dict[str, Any]]:
        return [
            {
                "id": instance.bot_id,
                "name": instance.brain.name,
                "version": instance.brain.version,
                "description": instance.brain.description,
                "status": instance.status.value,
                "message_count": instance.message_count,
            }
            for instance in self.bots
        ]
