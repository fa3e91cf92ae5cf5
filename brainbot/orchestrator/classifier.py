"""Turn mode selection."""

from enum import Enum

from brainbot.brains.schema import BrainConfig

IMAGE_KEYWORDS = ("image", "picture", "photo", "draw", "generate", "create a")


class TurnMode(str, Enum):
    IMAGE = "image"
    TTS = "tts"
    TEXT = "text"


def effective_tts(brain: BrainConfig, user_tts_preference: bool | None) -> bool:
    """An explicit per-user preference wins over the brain default."""
    if user_tts_preference is not None:
        return user_tts_preference
    return brain.tts.enabled


def wants_image(text: str) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in IMAGE_KEYWORDS)


def classify_turn(
    text: str,
    has_media: bool,
    brain: BrainConfig,
    user_tts_preference: bool | None,
) -> TurnMode:
    """
    Pick the response modality for a non-command message.

    Image mode needs both an image-enabled brain and one of the image
    keywords in the text. Attached media does not change the mode.
    """
    if brain.image_gen.enabled and wants_image(text):
        return TurnMode.IMAGE
    if effective_tts(brain, user_tts_preference):
        return TurnMode.TTS
    return TurnMode.TEXT
