"""Speech synthesis client for the text-to-speech HTTP service."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import httpx
from loguru import logger


class TTSError(RuntimeError):
    """Raised when TTS synthesis fails."""


@dataclass
class SpeechResult:
    audio_path: Path
    provider: str | None = None
    voice: str | None = None


class SpeechSynthesizer:
    """
    Calls `POST {base_url}/text_to_speech`.

    The service writes the audio file itself and answers with its path.
    """

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

    async def synthesize(
        self,
        text: str,
        *,
        voice: str = "nova",
        speed: float = 1.0,
        provider: str | None = None,
    ) -> SpeechResult:
        content = str(text or "").strip()
        if not content:
            raise TTSError("input text is required for speech synthesis.")

        body: dict = {"text": content, "voice": voice, "speed": speed}
        if provider:
            body["provider"] = provider
        if self.output_dir:
            body["output_dir"] = str(self.output_dir)

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout_s) as client:
                response = await client.post(f"{self.base_url}/text_to_speech", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise TTSError(f"TTS service request failed: {e}") from e
        except ValueError as e:
            raise TTSError(f"TTS service returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or not data.get("success") or not data.get("audio_path"):
            error = data.get("error") if isinstance(data, dict) else None
            raise TTSError(f"TTS service returned no audio: {error or 'unknown error'}")

        logger.info(f"Audio generated: {data['audio_path']}")
        return SpeechResult(
            audio_path=Path(data["audio_path"]),
            provider=data.get("provider"),
            voice=data.get("voice_used"),
        )
