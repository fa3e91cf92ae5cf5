"""Conversation orchestration."""

from brainbot.orchestrator.classifier import TurnMode, classify_turn
from brainbot.orchestrator.manager import BotManager
from brainbot.orchestrator.registry import BotInstance, BotRegistry, BotStatus

__all__ = ["BotInstance", "BotManager", "BotRegistry", "BotStatus", "TurnMode", "classify_turn"]
