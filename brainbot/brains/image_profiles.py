"""Reusable image-generation style profiles.

Brains reference a profile with `imageGen.profile`. A profile fixes the
generation parameters and a style context that is prepended to the image
prompt in the second step of an image turn.
"""

from dataclasses import dataclass

from loguru import logger

from brainbot.brains.schema import ImageGenSettings


@dataclass(frozen=True)
class ImageGenProfile:
    """Resolved image generation parameters."""

    model: str
    size: str
    quality: str
    style: str
    prompt_context: str = ""

    @classmethod
    def from_settings(cls, settings: ImageGenSettings) -> "ImageGenProfile":
        return cls(
            model=settings.model or "dall-e-2",
            size=settings.size or "256x256",
            quality=settings.quality or "standard",
            style=settings.style or "vivid",
            prompt_context=settings.prompt_context or "",
        )


_TOONR_CONTEXT = """STYLE REQUIREMENTS - follow all of these:

Draw a 2D cartoon in a modern satirical meme style: flat, bold, slightly awkward, frozen mid-reaction.

COLOR: flat solid colors only. No gradients, shading, texture or lighting effects. High contrast against thick black outlines.
LINEWORK: every element outlined in thick, consistent black lines. Slight wonkiness is welcome; no sketchiness.
CHARACTERS: slightly oversized heads, hyper-exaggerated expressions, simplified bodies, recognizable likeness to the subject.
COMPOSITION: front-facing or stiff 3/4 view, static poses, centered figures.
BACKGROUND: minimal flat-color setting in muted tones, no perspective rendering or depth cues.

Avoid polished commercial animation styles, photorealism and 3D rendering."""

IMAGE_PROFILES: dict[str, ImageGenProfile] = {
    "toonr-2d-cartoon": ImageGenProfile(
        model="dall-e-3",
        size="1024x1024",
        quality="standard",
        style="natural",
        prompt_context=_TOONR_CONTEXT,
    ),
    "realistic-photo": ImageGenProfile(
        model="dall-e-3",
        size="1024x1024",
        quality="hd",
        style="vivid",
        prompt_context="Generate a high-quality, photorealistic image with natural lighting and realistic details.",
    ),
    "artistic-painting": ImageGenProfile(
        model="dall-e-3",
        size="1024x1024",
        quality="standard",
        style="natural",
        prompt_context=(
            "Create an artistic illustration in the style of a traditional painting (oil, watercolor, "
            "or acrylic). Use visible brush strokes and painterly techniques. Avoid photorealism."
        ),
    ),
}


class ImageProfileLoader:
    """Looks up image profiles by name."""

    def __init__(self, profiles: dict[str, ImageGenProfile] | None = None):
        self.profiles = dict(IMAGE_PROFILES if profiles is None else profiles)

    def load(self, name: str) -> ImageGenProfile:
        profile = self.profiles.get(name)
        if profile is None:
            available = ", ".join(sorted(self.profiles)) or "none"
            raise KeyError(f"Image profile not found: {name} (available: {available})")
        return profile

    def resolve(self, settings: ImageGenSettings) -> ImageGenProfile:
        """Named profile first; fall back to the brain's inline values when it cannot be loaded."""
        if settings.profile:
            try:
                return self.load(settings.profile)
            except KeyError as e:
                logger.error(f"Failed to load image profile: {e}")
        return ImageGenProfile.from_settings(settings)

    def list_profiles(self) -> list[str]:
        return sorted(self.profiles)
