"""Image generation client for the image HTTP service."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import httpx
from loguru import logger

from brainbot.brains.image_profiles import ImageGenProfile


class ImageGenerationError(RuntimeError):
    """Raised when image generation fails."""


@dataclass
class ImageResult:
    image_path: Path
    revised_prompt: str | None = None
    model: str | None = None


class ImageGenerator:
    """Calls `POST {base_url}/generate_image` with a resolved style profile."""

    def __init__(
        self,
        base_url: str,
        *,
        output_dir: Path | None = None,
        timeout_s: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.output_dir = output_dir
        self.timeout_s = timeout_s
        self._transport = transport

    @staticmethod
    def compose_prompt(prompt: str, profile: ImageGenProfile) -> str:
        """Prepend the profile's style context to the subject prompt."""
        if not profile.prompt_context:
            return prompt
        return f"{profile.prompt_context}\n\n{prompt}"

    async def generate(self, prompt: str, profile: ImageGenProfile) -> ImageResult:
        subject = str(prompt or "").strip()
        if not subject:
            raise ImageGenerationError("prompt is required for image generation.")

        body: dict = {
            "prompt": self.compose_prompt(subject, profile),
            "model": profile.model,
            "size": profile.size,
            "quality": profile.quality,
            "style": profile.style,
        }
        if self.output_dir:
            body["output_dir"] = str(self.output_dir)

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout_s) as client:
                response = await client.post(f"{self.base_url}/generate_image", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise ImageGenerationError(f"Image service request failed: {e}") from e
        except ValueError as e:
            raise ImageGenerationError(f"Image service returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or not data.get("success") or not data.get("image_path"):
            error = data.get("error") if isinstance(data, dict) else None
            raise ImageGenerationError(f"Image service returned no image: {error or 'unknown error'}")

        logger.info(f"Image generated: {data['image_path']} ({profile.model}, {profile.size})")
        return ImageResult(
            image_path=Path(data["image_path"]),
            revised_prompt=data.get("revised_prompt"),
            model=data.get("model_used"),
        )
