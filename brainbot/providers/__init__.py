"""Speech and image generation service clients."""

from brainbot.providers.image import ImageGenerationError, ImageGenerator, ImageResult
from brainbot.providers.tts import SpeechResult, SpeechSynthesizer, TTSError

__all__ = [
    "ImageGenerationError",
    "ImageGenerator",
    "ImageResult",
    "SpeechResult",
    "SpeechSynthesizer",
    "TTSError",
]
