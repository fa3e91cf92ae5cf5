"""Per-(bot, user) session metadata persistence."""

import json
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from loguru import logger

from brainbot.utils.helpers import get_sessions_path, safe_filename


def _dt(value: Any) -> datetime | None:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


@dataclass
class NudgeRecord:
    """One proactive follow-up that was delivered to a user."""

    timestamp: datetime
    delay_hours: float
    message: str
    user_responded: bool = False
    stop_sequence: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "delay_hours": self.delay_hours,
            "message": self.message,
            "user_responded": self.user_responded,
            "stop_sequence": self.stop_sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NudgeRecord":
        return cls(
            timestamp=_dt(data.get("timestamp")) or datetime.now(),
            delay_hours=float(data.get("delay_hours") or 0),
            message=str(data.get("message") or ""),
            user_responded=bool(data.get("user_responded", False)),
            stop_sequence=bool(data.get("stop_sequence", False)),
        )


@dataclass
class SessionMetadata:
    """
    Conversation state for one user of one bot.

    `current_uuid` is the external agent's session id; None means the next
    turn starts a fresh agent session.
    """

    current_uuid: str | None = None
    uuid_history: list[str] = field(default_factory=list)
    message_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    last_message_time: datetime | None = None
    tts_preference: bool | None = None
    nudge_history: list[NudgeRecord] = field(default_factory=list)
    last_nudge_sent: float = 0  # delay_hours of the last nudge in the current silence

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_uuid": self.current_uuid,
            "uuid_history": list(self.uuid_history),
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_message_time": self.last_message_time.isoformat() if self.last_message_time else None,
            "tts_preference": self.tts_preference,
            "nudge_history": [n.to_dict() for n in self.nudge_history],
            "last_nudge_sent": self.last_nudge_sent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMetadata":
        tts = data.get("tts_preference")
        return cls(
            current_uuid=data.get("current_uuid") or None,
            uuid_history=[str(u) for u in data.get("uuid_history") or []],
            message_count=int(data.get("message_count") or 0),
            created_at=_dt(data.get("created_at")) or datetime.now(),
            updated_at=_dt(data.get("updated_at")) or datetime.now(),
            last_message_time=_dt(data.get("last_message_time")),
            tts_preference=tts if isinstance(tts, bool) else None,
            nudge_history=[
                NudgeRecord.from_dict(n) for n in data.get("nudge_history") or [] if isinstance(n, dict)
            ],
            last_nudge_sent=float(data.get("last_nudge_sent") or 0),
        )

    @property
    def last_nudge(self) -> NudgeRecord | None:
        return self.nudge_history[-1] if self.nudge_history else None


class SessionStore:
    """
    Stores session metadata as one JSON file per (bot, user).

    Layout: `<sessions_dir>/<bot_id>/<user_id>.json`. Writes go through a
    temp file and keep the previous version as a `.bak` backup.
    """

    def __init__(self, sessions_dir: Path | None = None):
        self.sessions_dir = sessions_dir or get_sessions_path()
        self._cache: dict[tuple[str, str], SessionMetadata] = {}

    def _bot_dir(self, bot_id: str) -> Path:
        return self.sessions_dir / safe_filename(bot_id)

    def _path(self, bot_id: str, user_id: str) -> Path:
        return self._bot_dir(bot_id) / f"{safe_filename(str(user_id))}.json"

    @staticmethod
    def _backup_path(path: Path) -> Path:
        return path.with_suffix(f"{path.suffix}.bak")

    def _read(self, path: Path) -> SessionMetadata:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("session file must hold an object")
        return SessionMetadata.from_dict(data)

    def _write_payload(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        backup_path = self._backup_path(path)
        tmp_path: Path | None = None
        had_existing = path.exists()
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(path.parent),
                prefix=f"{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
                tmp_path = Path(tmp.name)

            if had_existing:
                path.replace(backup_path)
            tmp_path.replace(path)
        except Exception:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
            if had_existing and backup_path.exists() and not path.exists():
                backup_path.replace(path)
            raise

    def load_session_metadata(self, bot_id: str, user_id: str) -> SessionMetadata | None:
        """Load metadata, or None when the user has no session with this bot."""
        key = (bot_id, str(user_id))
        if key in self._cache:
            return self._cache[key]

        path = self._path(bot_id, user_id)
        if not path.exists():
            return None

        try:
            metadata = self._read(path)
        except Exception as e:
            logger.warning(f"Failed to load session {bot_id}/{user_id}: {e}; trying backup")
            backup = self._backup_path(path)
            if not backup.exists():
                return None
            try:
                metadata = self._read(backup)
            except Exception as e2:
                logger.warning(f"Failed to load session backup for {bot_id}/{user_id}: {e2}")
                return None
            logger.warning(f"Recovered session {bot_id}/{user_id} from backup file: {backup}")

        self._cache[key] = metadata
        return metadata

    def save_session_metadata(self, bot_id: str, user_id: str, metadata: SessionMetadata) -> None:
        metadata.updated_at = datetime.now()
        payload = json.dumps(metadata.to_dict(), ensure_ascii=False, indent=2)
        self._write_payload(self._path(bot_id, user_id), payload)
        self._cache[(bot_id, str(user_id))] = metadata

    def _get_or_create(self, bot_id: str, user_id: str) -> SessionMetadata:
        return self.load_session_metadata(bot_id, user_id) or SessionMetadata()

    def get_current_uuid(self, bot_id: str, user_id: str) -> str | None:
        metadata = self.load_session_metadata(bot_id, user_id)
        return metadata.current_uuid if metadata else None

    def set_current_uuid(self, bot_id: str, user_id: str, uuid: str) -> None:
        metadata = self._get_or_create(bot_id, user_id)
        metadata.current_uuid = uuid
        if uuid not in metadata.uuid_history:
            metadata.uuid_history.append(uuid)
        self.save_session_metadata(bot_id, user_id, metadata)

    def increment_message_count(self, bot_id: str, user_id: str) -> int:
        metadata = self._get_or_create(bot_id, user_id)
        metadata.message_count += 1
        self.save_session_metadata(bot_id, user_id, metadata)
        return metadata.message_count

    def update_last_message_time(self, bot_id: str, user_id: str, when: datetime | None = None) -> None:
        metadata = self._get_or_create(bot_id, user_id)
        metadata.last_message_time = when or datetime.now()
        self.save_session_metadata(bot_id, user_id, metadata)

    def reset_conversation(self, bot_id: str, user_id: str) -> None:
        """Forget the current agent session; the next turn starts fresh."""
        metadata = self.load_session_metadata(bot_id, user_id)
        if metadata is None:
            return
        metadata.current_uuid = None
        metadata.last_nudge_sent = 0
        self.save_session_metadata(bot_id, user_id, metadata)
        logger.info(f"Reset conversation for {bot_id}/{user_id}")

    def get_tts_preference(self, bot_id: str, user_id: str) -> bool | None:
        metadata = self.load_session_metadata(bot_id, user_id)
        return metadata.tts_preference if metadata else None

    def set_tts_preference(self, bot_id: str, user_id: str, enabled: bool | None) -> None:
        metadata = self._get_or_create(bot_id, user_id)
        metadata.tts_preference = enabled
        self.save_session_metadata(bot_id, user_id, metadata)

    def record_nudge(self, bot_id: str, user_id: str, record: NudgeRecord) -> None:
        metadata = self._get_or_create(bot_id, user_id)
        metadata.nudge_history.append(record)
        metadata.last_nudge_sent = record.delay_hours
        self.save_session_metadata(bot_id, user_id, metadata)

    def mark_nudge_responded(self, bot_id: str, user_id: str) -> bool:
        """
        Mark the last nudge as answered and restart the nudge cycle.

        Returns True when an unanswered nudge was found.
        """
        metadata = self.load_session_metadata(bot_id, user_id)
        if metadata is None or metadata.last_nudge is None or metadata.last_nudge.user_responded:
            return False
        metadata.last_nudge.user_responded = True
        metadata.last_nudge_sent = 0
        self.save_session_metadata(bot_id, user_id, metadata)
        return True

    def get_all_users_for_bot(self, bot_id: str) -> list[str]:
        bot_dir = self._bot_dir(bot_id)
        if not bot_dir.exists():
            return []
        return sorted(p.stem for p in bot_dir.glob("*.json"))

    def list_sessions(self, bot_id: str) -> list[dict[str, Any]]:
        """Summaries of every user session for a bot, most recent first."""
        sessions = []
        for user_id in self.get_all_users_for_bot(bot_id):
            metadata = self.load_session_metadata(bot_id, user_id)
            if metadata is None:
                continue
            sessions.append({
                "user_id": user_id,
                "message_count": metadata.message_count,
                "conversations": len(metadata.uuid_history),
                "created_at": metadata.created_at.isoformat(),
                "last_message_time": (
                    metadata.last_message_time.isoformat() if metadata.last_message_time else None
                ),
                "nudges": len(metadata.nudge_history),
            })
        return sorted(sessions, key=lambda x: x.get("last_message_time") or "", reverse=True)

    def cleanup_old_sessions(self, age_days: int, now: datetime | None = None) -> int:
        """Delete sessions whose last activity is older than `age_days`. Returns the count."""
        cutoff = (now or datetime.now()) - timedelta(days=age_days)
        removed = 0
        if not self.sessions_dir.exists():
            return 0

        for bot_dir in self.sessions_dir.iterdir():
            if not bot_dir.is_dir():
                continue
            for path in bot_dir.glob("*.json"):
                try:
                    metadata = self._read(path)
                except Exception as e:
                    logger.warning(f"Skipping unreadable session {path}: {e}")
                    continue
                last_active = metadata.last_message_time or metadata.updated_at
                if last_active >= cutoff:
                    continue
                path.unlink(missing_ok=True)
                self._backup_path(path).unlink(missing_ok=True)
                self._cache.pop((bot_dir.name, path.stem), None)
                removed += 1
            if not any(bot_dir.iterdir()):
                shutil.rmtree(bot_dir, ignore_errors=True)

        if removed:
            logger.info(f"Cleaned up {removed} session(s) older than {age_days} days")
        return removed
