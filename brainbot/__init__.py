"""
brainbot - Multi-personality Telegram bots backed by a resumable agent session.
"""

__version__ = "0.4.0"
__logo__ = "🧠"
