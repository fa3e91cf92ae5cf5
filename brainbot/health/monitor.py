"""Channel health monitoring and self-healing."""

import asyncio
import time
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from brainbot.channels.base import BotChannel
from brainbot.orchestrator.registry import BotInstance, BotRegistry, BotStatus

DEFAULT_HEALTH_INTERVAL_S = 30

ChannelFactory = Callable[[str, str], BotChannel]
ChannelBinder = Callable[[BotInstance], None]


class RecoveryError(RuntimeError):
    """Raised when a bot's channel cannot be recreated."""


class HealthMonitor:
    """
    Periodically checks every bot's channel and recreates dead ones.

    healthy -> unhealthy -> (recovery) -> healthy, or failed when the
    channel cannot be recreated. Failed bots are left alone.
    """

    def __init__(
        self,
        bots: BotRegistry,
        channel_factory: ChannelFactory,
        bind: ChannelBinder,
        interval_s: int = DEFAULT_HEALTH_INTERVAL_S,
        error_threshold: int = 3,
        channel_error_threshold: int = 5,
        recovery_delay_s: float = 2.0,
    ):
        self.bots = bots
        self.channel_factory = channel_factory
        self.bind = bind
        self.interval_s = interval_s
        self.error_threshold = error_threshold
        self.channel_error_threshold = channel_error_threshold
        self.recovery_delay_s = recovery_delay_s
        self._running = False
        self._task: asyncio.Task | None = None
        self._recovering: dict[str, asyncio.Task] = {}
        self._last_run_at: float | None = None
        self.recovery_count = 0

    async def start(self) -> None:
        """Start the health check loop."""
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Health monitor started (every {self.interval_s}s)")

    def stop(self) -> None:
        """Stop the loop and cancel in-flight recoveries."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None
        for task in self._recovering.values():
            task.cancel()
        self._recovering.clear()

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    self.check_all()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Health check loop error: {e}")

    def check_all(self) -> None:
        """One pass over every registered bot."""
        self._last_run_at = time.time()
        for instance in self.bots:
            self.check_bot(instance)

    def check_bot(self, instance: BotInstance) -> None:
        if instance.status == BotStatus.FAILED:
            return
        bot_id = instance.bot_id
        try:
            alive = instance.channel.is_alive()
            if alive and instance.status != BotStatus.HEALTHY:
                logger.info(
                    f"[{bot_id}] Bot recovered (messages={instance.message_count}, errors={instance.error_count})"
                )
                instance.status = BotStatus.HEALTHY
                instance.error_count = 0
            elif not alive and instance.status != BotStatus.UNHEALTHY:
                logger.warning(f"[{bot_id}] Bot unhealthy - not polling")
                instance.status = BotStatus.UNHEALTHY
                self.trigger_recovery(bot_id)
            instance.last_health_check = datetime.now()
        except Exception as e:
            instance.error_count += 1
            logger.error(f"[{bot_id}] Health check failed ({instance.error_count}): {e}")
            if instance.error_count >= self.error_threshold:
                self.trigger_recovery(bot_id)

    def record_channel_error(self, bot_id: str, error: Exception) -> None:
        """Polling errors reported by a channel."""
        instance = self.bots.get(bot_id)
        if instance is None:
            return
        instance.error_count += 1
        if instance.error_count < self.channel_error_threshold or instance.status == BotStatus.FAILED:
            return
        if instance.status != BotStatus.UNHEALTHY:
            instance.status = BotStatus.UNHEALTHY
            logger.error(f"[{bot_id}] Bot marked unhealthy - too many errors ({instance.error_count}): {error}")
        self.trigger_recovery(bot_id)

    def is_recovering(self, bot_id: str) -> bool:
        return bot_id in self._recovering

    def trigger_recovery(self, bot_id: str) -> asyncio.Task | None:
        """Spawn a recovery unless one is already running for this bot."""
        if bot_id in self._recovering:
            logger.debug(f"[{bot_id}] Recovery already in progress")
            return None
        task = asyncio.create_task(self._recover_safely(bot_id))
        self._recovering[bot_id] = task
        return task

    async def _recover_safely(self, bot_id: str) -> None:
        try:
            await self.recover(bot_id)
        except RecoveryError as e:
            logger.error(f"[{bot_id}] Bot recovery failed: {e}")
        finally:
            self._recovering.pop(bot_id, None)

    async def recover(self, bot_id: str) -> None:
        """Stop the channel, wait, recreate it with the same token and restart it."""
        instance = self.bots.get(bot_id)
        if instance is None:
            return

        logger.warning(f"[{bot_id}] Attempting bot recovery...")
        self.recovery_count += 1

        try:
            await instance.channel.stop()
        except Exception as e:
            logger.warning(f"[{bot_id}] Error stopping channel during recovery: {e}")

        await asyncio.sleep(self.recovery_delay_s)

        try:
            channel = self.channel_factory(instance.config.token, bot_id)
            instance.channel = channel
            self.bind(instance)
            await channel.start()
        except Exception as e:
            instance.status = BotStatus.FAILED
            raise RecoveryError(str(e)) from e

        instance.status = BotStatus.HEALTHY
        instance.error_count = 0
        instance.last_health_check = datetime.now()
        logger.info(f"[{bot_id}] Bot recovered successfully")

    async def drain(self) -> None:
        """Wait for in-flight recoveries."""
        while True:
            pending = [t for t in self._recovering.values() if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self._running,
            "interval_s": self.interval_s,
            "last_run_at_ms": int(self._last_run_at * 1000) if self._last_run_at else None,
            "recovering": sorted(self._recovering),
            "recovery_count": self.recovery_count,
            "bots": {b.bot_id: b.status.value for b in self.bots},
        }
