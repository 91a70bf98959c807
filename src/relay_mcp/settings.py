"""Runtime settings for the streamable HTTP transport."""

from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_mcp.exceptions import ConfigurationError


class TransportSettings(BaseSettings):
    """Streamable HTTP transport settings.

    All settings can be configured via environment variables with the prefix RELAY_.
    For example, RELAY_PORT=8080 will set port=8080.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # HTTP settings
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=0, le=65535)
    path: str = "/mcp"
    health_path: str = "/health"
    max_body_bytes: int = Field(default=4 * 1024 * 1024, gt=0)

    # Event store bounds
    max_events_per_stream: int | None = Field(default=1000, gt=0)
    event_ttl: float | None = Field(default=3600.0, gt=0)
    """Seconds an undelivered event stays replayable."""

    # Session lifecycle
    session_idle_timeout: float | None = Field(default=1800.0, gt=0)
    """Seconds a session without an open push stream may stay idle before it is closed."""
    reap_interval: float = Field(default=60.0, gt=0)
    close_on_disconnect: bool = False
    """Close the session as soon as its push stream disconnects (disables resumption)."""
    push_buffer_size: int = Field(default=64, gt=0)

    @field_validator("path", "health_path")
    @classmethod
    def _validate_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value


def load_settings(**overrides: object) -> TransportSettings:
    """Load settings from the environment, raising ConfigurationError on invalid values."""
    try:
        return TransportSettings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigurationError(f"Configuration validation failed: {messages}") from exc
