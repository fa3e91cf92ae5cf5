"""Configuration module for brainbot."""

from brainbot.config.loader import ConfigurationError, get_config_path, load_bots, load_config
from brainbot.config.schema import BotConfig, Config

__all__ = ["Config", "BotConfig", "ConfigurationError", "load_config", "load_bots", "get_config_path"]
