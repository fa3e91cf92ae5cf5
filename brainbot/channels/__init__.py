"""Chat channels."""

from brainbot.channels.base import BotChannel, ChatUser, DeliveryError, IncomingMessage, MediaFetchError

__all__ = ["BotChannel", "ChatUser", "DeliveryError", "IncomingMessage", "MediaFetchError"]
