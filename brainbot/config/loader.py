"""Configuration loading utilities for brainbot."""

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from brainbot.config.schema import BotConfig, Config


class ConfigurationError(ValueError):
    """Raised when bot or brain configuration is missing or invalid."""


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".brainbot" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}. Using default configuration.")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file in camelCase format."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def validate_bot_entry(entry: Any) -> BotConfig:
    """Validate one bots.json entry. Raises ConfigurationError when incomplete."""
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Bot config must be an object, got {type(entry).__name__}")
    try:
        bot = BotConfig.model_validate(convert_keys(entry))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid bot config: {e}") from e
    if not bot.id or not bot.token or not bot.brain:
        raise ConfigurationError("Bot config must include: id, token, brain")
    return bot


def load_bots(path: Path) -> list[BotConfig]:
    """
    Load bot definitions from a bots.json file.

    The file must hold a non-empty JSON array; every entry needs id, token
    and brain.
    """
    if not path.exists():
        raise ConfigurationError(f"Bots file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(raw, list) or not raw:
        raise ConfigurationError(f"{path} must contain a non-empty array")

    return [validate_bot_entry(entry) for entry in raw]


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
