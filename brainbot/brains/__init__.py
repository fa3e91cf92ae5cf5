"""Brains: static bot personalities."""

from brainbot.brains.loader import BrainLoadError, BrainLoader
from brainbot.brains.schema import BrainConfig

__all__ = ["BrainConfig", "BrainLoadError", "BrainLoader"]
