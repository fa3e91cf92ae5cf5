"""Brain loader: reads personality files and builds agent prompts."""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from brainbot.brains.context import get_context_strategy
from brainbot.brains.schema import BrainConfig
from brainbot.brains.security import DEFAULT_PROFILE, SecurityProfile, get_security_profile
from brainbot.channels.base import ChatUser
from brainbot.config.loader import ConfigurationError, convert_keys

BUILTIN_BRAINS_DIR = Path(__file__).parent / "builtin"

FALLBACK_BOT_NAME = "the character defined in your system prompt"


class BrainLoadError(ConfigurationError):
    """Raised when a brain file is missing or invalid."""


class BrainLoader:
    """
    Loads brain JSON files from a directory and caches them.

    Files are named `<brain_id>.json` with camelCase keys.
    """

    def __init__(self, brains_dir: Path | None = None):
        self.brains_dir = brains_dir or BUILTIN_BRAINS_DIR
        self._cache: dict[str, BrainConfig] = {}

    def load(self, brain_id: str) -> BrainConfig:
        """Load a brain by id. Raises BrainLoadError when missing or invalid."""
        if brain_id in self._cache:
            return self._cache[brain_id]

        path = self.brains_dir / f"{brain_id}.json"
        if not path.exists():
            raise BrainLoadError(f"Brain not found: {brain_id} ({path})")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise BrainLoadError(f"Invalid JSON in brain {brain_id}: {e}") from e

        if not isinstance(data, dict):
            raise BrainLoadError(f"Brain {brain_id} must be a JSON object")

        try:
            brain = BrainConfig.model_validate(convert_keys(data))
        except ValidationError as e:
            raise BrainLoadError(f"Invalid brain {brain_id}: {e}") from e

        if not brain.name:
            brain.name = brain_id

        self._cache[brain_id] = brain
        logger.info(f"Loaded brain: {brain_id} ({brain.name})")
        return brain

    def security_profile(self, brain: BrainConfig) -> SecurityProfile | None:
        """Resolve the brain's security profile; None when security is disabled."""
        if brain.security is False:
            return None
        profile = get_security_profile(brain.security)
        if profile is None:
            logger.warning(f"Unknown security profile '{brain.security}', using '{DEFAULT_PROFILE}'")
            profile = get_security_profile(DEFAULT_PROFILE)
        return profile

    def build_system_prompt(self, brain_id: str, user: ChatUser) -> str:
        """Security wrapper, then the user-dependent context prefix, then the brain's prompt."""
        brain = self.load(brain_id)
        parts: list[str] = []

        profile = self.security_profile(brain)
        if profile:
            parts.append(profile.wrapper)

        strategy = get_context_strategy(brain.context_prefix)
        if brain.context_prefix and strategy is None:
            logger.warning(f"Unknown context prefix '{brain.context_prefix}' in brain {brain_id}")
        if strategy:
            parts.append(strategy(user) + "\n\n")

        parts.append(brain.system_prompt)
        return "".join(parts)

    def get_security_reminder(self, brain_id: str) -> str | None:
        """Reminder re-sent with every user message, if the profile defines one."""
        brain = self.load(brain_id)
        profile = self.security_profile(brain)
        if profile is None:
            return None
        return profile.reminder(brain.name or FALLBACK_BOT_NAME)

    def list_brains(self) -> list[str]:
        if not self.brains_dir.exists():
            return []
        return sorted(p.stem for p in self.brains_dir.glob("*.json"))

    def reload(self, brain_id: str | None = None) -> None:
        """Drop cached brains so the next load re-reads from disk."""
        if brain_id is None:
            self._cache.clear()
        else:
            self._cache.pop(brain_id, None)
        logger.info(f"Reloaded brain cache: {brain_id or 'all'}")
