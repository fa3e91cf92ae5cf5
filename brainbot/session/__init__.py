"""Session persistence module for brainbot."""

from brainbot.session.cleanup import SessionCleanupService
from brainbot.session.store import NudgeRecord, SessionMetadata, SessionStore

__all__ = ["NudgeRecord", "SessionCleanupService", "SessionMetadata", "SessionStore"]
