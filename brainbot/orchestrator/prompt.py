"""Agent request shaping for a user turn."""

from typing import Any

EMPTY_IMAGE_CAPTION = "(user sent an image)"
JPEG_MEDIA_TYPE = "image/jpeg"


def _prefix(system_prompt: str | None, reminder: str | None) -> str:
    """Leading text for the turn; empty for a resumed session without a reminder."""
    if system_prompt and reminder:
        return f"{system_prompt}\n\n---\n\n{reminder}\n\n"
    if system_prompt:
        return f"{system_prompt}\n\n"
    if reminder:
        return f"{reminder}\n\n"
    return ""


def build_text_prompt(text: str, system_prompt: str | None = None, reminder: str | None = None) -> str:
    """
    Plain-text request.

    `system_prompt` is only passed for a new session; the reminder goes
    out with every turn when the brain's security profile has one.
    """
    return f"{_prefix(system_prompt, reminder)}User: {text}"


def build_media_prompt(
    text: str,
    image_b64: str,
    system_prompt: str | None = None,
    reminder: str | None = None,
    media_type: str = JPEG_MEDIA_TYPE,
) -> list[dict[str, Any]]:
    """Structured request with a text block followed by a base64 image block."""
    caption = text or EMPTY_IMAGE_CAPTION
    return [
        {"type": "text", "text": f"{_prefix(system_prompt, reminder)}User says:\n{caption}"},
        {
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": image_b64},
        },
    ]
