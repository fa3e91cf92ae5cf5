"""Daily per-user message limiter."""

from __future__ import annotations

import json
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any, Iterable

from loguru import logger

from brainbot.utils.helpers import next_midnight

try:
    import fcntl
except ImportError:  # pragma: no cover - unavailable on Windows.
    fcntl = None

if TYPE_CHECKING:
    from brainbot.brains.schema import BrainConfig


@dataclass
class RateLimitStatus:
    """Outcome of a limit check."""

    allowed: bool
    current: int
    limit: int
    tier: str = "free"
    resets_at: datetime | None = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)


@dataclass
class DailyRateLimiter:
    """
    Counts messages per (bot, user) and resets at local midnight.

    `check_limit` never consumes; callers `increment` only after a turn
    succeeds. With `store_path` set, counters are shared across processes
    through a locked JSON file.
    """

    default_daily_limit: int = 100
    paid_users: Iterable[str] = ()
    store_path: Path | str | None = None
    _counts: dict[str, int] = field(default_factory=dict)
    _day: str = field(default_factory=lambda: date.today().isoformat())
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    _lock_path: Path | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.default_daily_limit = max(1, int(self.default_daily_limit))
        self.paid_users = {str(u) for u in self.paid_users}
        if self.store_path is not None:
            path = Path(self.store_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.store_path = path
            self._lock_path = path.with_suffix(f"{path.suffix}.lock")
        else:
            self.store_path = None

    @staticmethod
    def _key(bot_id: str, user_id: str) -> str:
        return f"{bot_id}:{user_id}"

    def tier_for(self, user_id: str) -> str:
        return "paid" if str(user_id) in self.paid_users else "free"

    def limit_for(self, user_id: str, brain: "BrainConfig | None" = None) -> int:
        tier = self.tier_for(user_id)
        if brain is None:
            return self.default_daily_limit
        return brain.rate_limits.paid if tier == "paid" else brain.rate_limits.free

    def _load_state(self) -> dict[str, Any]:
        today = date.today().isoformat()
        if self.store_path is None or not self.store_path.exists():
            return {"day": today, "counts": {}}
        try:
            raw = json.loads(self.store_path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.warning(f"Failed to read rate limit state {self.store_path}: {e}")
            return {"day": today, "counts": {}}
        if not isinstance(raw, dict) or raw.get("day") != today:
            return {"day": today, "counts": {}}
        counts = raw.get("counts")
        return {"day": today, "counts": dict(counts) if isinstance(counts, dict) else {}}

    def _save_state(self, state: dict[str, Any]) -> None:
        if self.store_path is None:
            return
        payload = json.dumps(
            {
                "version": 1,
                "updated_at": int(time.time()),
                "day": state["day"],
                "counts": state["counts"],
            },
            ensure_ascii=False,
            indent=2,
        )
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(self.store_path.parent),
            prefix=f"{self.store_path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp.write(payload)
            tmp_path = Path(tmp.name)
        tmp_path.replace(self.store_path)

    @contextmanager
    def _file_lock(self):
        if self.store_path is None or self._lock_path is None:
            yield
            return
        handle = open(self._lock_path, "a+", encoding="utf-8")
        try:
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            if fcntl is not None:
                try:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                except OSError:
                    pass
            handle.close()

    def _roll_day(self) -> None:
        today = date.today().isoformat()
        if self._day != today:
            self._day = today
            self._counts.clear()

    def get_count(self, bot_id: str, user_id: str) -> int:
        key = self._key(bot_id, str(user_id))
        with self._lock:
            if self.store_path is None:
                self._roll_day()
                return self._counts.get(key, 0)
            with self._file_lock():
                return int(self._load_state()["counts"].get(key, 0))

    def check_limit(self, bot_id: str, user_id: str, brain: "BrainConfig | None" = None) -> RateLimitStatus:
        """Report whether the user may send another message today."""
        current = self.get_count(bot_id, user_id)
        limit = self.limit_for(user_id, brain)
        return RateLimitStatus(
            allowed=current < limit,
            current=current,
            limit=limit,
            tier=self.tier_for(user_id),
            resets_at=next_midnight(),
        )

    def increment(self, bot_id: str, user_id: str) -> int:
        """Count one message. Returns the new total for today."""
        key = self._key(bot_id, str(user_id))
        with self._lock:
            if self.store_path is None:
                self._roll_day()
                self._counts[key] = self._counts.get(key, 0) + 1
                return self._counts[key]
            with self._file_lock():
                state = self._load_state()
                counts = state["counts"]
                counts[key] = int(counts.get(key, 0)) + 1
                self._save_state(state)
                return counts[key]
