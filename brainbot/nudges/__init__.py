"""Proactive follow-up messages."""

from brainbot.nudges.service import EngagementScheduler, select_nudge_trigger

__all__ = ["EngagementScheduler", "select_nudge_trigger"]
