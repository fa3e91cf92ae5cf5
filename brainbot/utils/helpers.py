"""Utility functions for brainbot."""

import os
import re
from datetime import datetime, timedelta
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the brainbot data directory (~/.brainbot, or $BRAINBOT_DATA_DIR)."""
    override = os.environ.get("BRAINBOT_DATA_DIR", "").strip()
    if override:
        return ensure_dir(Path(override).expanduser())
    return ensure_dir(Path.home() / ".brainbot")


def get_sessions_path(data_dir: Path | None = None) -> Path:
    """Get the sessions storage directory."""
    return ensure_dir((data_dir or get_data_path()) / "sessions")


def safe_filename(name: str) -> str:
    """Convert a string to a safe filename."""
    unsafe = r'[<>:"/\\|?*\x00-\x1f]'
    return re.sub(unsafe, "_", str(name)).strip() or "_"


def next_midnight(now: datetime | None = None) -> datetime:
    """Return the local midnight that follows `now`."""
    now = now or datetime.now()
    tomorrow = (now + timedelta(days=1)).date()
    return datetime.combine(tomorrow, datetime.min.time())

