"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class BotConfig(BaseModel):
    """One entry of bots.json."""
    id: str = ""
    token: str = ""  # Bot token from @BotFather
    brain: str = ""  # Brain file name without extension
    active: bool = True


class AgentConfig(BaseModel):
    """External agent CLI configuration."""
    command: str = "claude"
    extra_args: list[str] = Field(default_factory=list)
    cwd: str = ""  # Working directory for the agent process (empty = current)


class ServicesConfig(BaseModel):
    """Speech and image generation HTTP services."""
    tts_url: str = "http://127.0.0.1:3001"
    image_url: str = "http://127.0.0.1:3002"
    timeout_s: float = 120.0
    output_dir: str = ""  # Empty = <data_dir>/media


class NudgesConfig(BaseModel):
    """Engagement scheduler configuration."""
    enabled: bool = True
    interval_s: int = Field(default=3600, ge=10)


class HealthConfig(BaseModel):
    """Channel health monitoring configuration."""
    interval_s: int = Field(default=30, ge=1)
    error_threshold: int = Field(default=3, ge=1)
    channel_error_threshold: int = Field(default=5, ge=1)
    recovery_delay_s: float = Field(default=2.0, ge=0)


class RateLimitConfig(BaseModel):
    """Daily per-user message limits."""
    default_daily_limit: int = Field(default=100, ge=1)
    paid_users: list[str] = Field(default_factory=list)

    @field_validator("paid_users", mode="before")
    @classmethod
    def stringify_users(cls, value):
        if isinstance(value, list):
            return [str(item) for item in value]
        return value


class CommandsConfig(BaseModel):
    """Slash-command policy."""
    restart_bot_ids: list[str] = Field(default_factory=lambda: ["cartooned"])


class CallToActionConfig(BaseModel):
    """Call-to-action delivery settings."""
    base_dir: str = ""  # Relative CTA image paths resolve against this (empty = cwd)


class CleanupConfig(BaseModel):
    """Periodic cleanup of stale sessions."""
    enabled: bool = False
    interval_hours: int = Field(default=24, ge=1)
    age_days: int = Field(default=90, ge=1)


class Config(BaseSettings):
    """Root configuration for brainbot."""
    data_dir: str = "~/.brainbot"
    brains_dir: str = ""  # Empty = brains shipped with the package
    bots_file: str = "bots.json"
    log_level: str = "INFO"
    log_retention_days: int = Field(default=14, ge=1)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    nudges: NudgesConfig = Field(default_factory=NudgesConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    call_to_action: CallToActionConfig = Field(default_factory=CallToActionConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)

    @property
    def data_path(self) -> Path:
        """Get expanded data directory path."""
        return Path(self.data_dir).expanduser()

    @property
    def brains_path(self) -> Path | None:
        if not self.brains_dir:
            return None
        return Path(self.brains_dir).expanduser()

    @property
    def media_path(self) -> Path:
        if self.services.output_dir:
            return Path(self.services.output_dir).expanduser()
        return self.data_path / "media"

    class Config:
        env_prefix = "BRAINBOT_"
        env_nested_delimiter = "__"
