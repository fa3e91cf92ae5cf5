"""Brain (personality) configuration schema."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RateLimits(BaseModel):
    """Daily message allowance per user tier."""
    free: int = Field(default=100, ge=1)
    paid: int = Field(default=1000, ge=1)


class TTSSettings(BaseModel):
    """Voice replies."""
    enabled: bool = False
    voice: str = "nova"
    speed: float = 1.0
    provider: str | None = None
    send_text_too: bool = False  # False: voice replaces text


class ImageGenSettings(BaseModel):
    """Image replies. A named `profile` takes precedence over the inline values."""
    enabled: bool = False
    profile: str | None = None
    model: str = "dall-e-2"
    size: str = "256x256"
    quality: str = "standard"
    style: str = "vivid"
    prompt_context: str = ""
    send_text_too: bool = False
    use_marker_detection: bool = False


class NudgeTrigger(BaseModel):
    """Inactivity rule for a proactive follow-up."""
    delay_hours: float = Field(gt=0)
    condition: str = "no_user_message"
    prompt_template: str
    stop_sequence: bool = False


class NudgeSettings(BaseModel):
    enabled: bool = False
    triggers: list[NudgeTrigger] = Field(default_factory=list)


class CallToAction(BaseModel):
    """Promotional message sent after qualifying replies."""
    enabled: bool = False
    message: str = ""
    image: str | None = None
    trigger_every: int = Field(default=5, ge=1)
    send_on_first_message: bool = False
    delay_seconds: float = Field(default=0, ge=0)


class BrainConfig(BaseModel):
    """
    Static personality configuration.

    Brains are plain data. Behaviour that depends on the user (the context
    prefix) is referenced by name and resolved from a fixed strategy registry.
    """

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    version: str = "1.0"
    description: str = ""
    system_prompt: str
    context_prefix: str | None = None
    security: str | Literal[False] = "default"
    max_tokens: int | None = None
    temperature: float | None = None
    rate_limits: RateLimits = Field(default_factory=RateLimits)
    tts: TTSSettings = Field(default_factory=TTSSettings)
    image_gen: ImageGenSettings = Field(default_factory=ImageGenSettings)
    nudges: NudgeSettings = Field(default_factory=NudgeSettings)
    call_to_action: CallToAction = Field(default_factory=CallToAction)

    @field_validator("system_prompt")
    @classmethod
    def require_prompt(cls, value: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("systemPrompt must be a non-empty string")
        return value

    @field_validator("security", mode="before")
    @classmethod
    def normalize_security(cls, value):
        if value is None or value is True:
            return "default"
        if isinstance(value, str):
            return value.strip().lower() or "default"
        return value
