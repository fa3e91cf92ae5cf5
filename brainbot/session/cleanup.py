"""Periodic removal of stale sessions."""

import asyncio
import time
from typing import Any

from loguru import logger

from brainbot.session.store import SessionStore


class SessionCleanupService:
    """Deletes sessions idle for more than `age_days`, every `interval_hours`."""

    def __init__(
        self,
        sessions: SessionStore,
        interval_hours: int = 24,
        age_days: int = 90,
        enabled: bool = False,
    ):
        self.sessions = sessions
        self.interval_hours = interval_hours
        self.age_days = age_days
        self.enabled = enabled
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_run_at: float | None = None
        self.removed_total = 0

    async def start(self) -> None:
        if not self.enabled:
            logger.info("Session cleanup disabled")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Session cleanup started (every {self.interval_hours}h, age {self.age_days}d)")

    def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_hours * 3600)
                if self._running:
                    self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Session cleanup error: {e}")

    def run_once(self) -> int:
        self._last_run_at = time.time()
        removed = self.sessions.cleanup_old_sessions(self.age_days)
        self.removed_total += removed
        return removed

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "interval_hours": self.interval_hours,
            "age_days": self.age_days,
            "last_run_at_ms": int(self._last_run_at * 1000) if self._last_run_at else None,
            "removed_total": self.removed_total,
        }
