"""Configuration management for DevTunnel."""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_HTTP_PORT,
    DEFAULT_PERMISSIONS,
    DEFAULT_PUBLIC_DOMAIN,
    DEFAULT_RATE_LIMIT,
    DEFAULT_STREAM_THRESHOLD,
    DEV_KEY_RATE_LIMIT,
    MAX_CHUNK_SIZE,
)


class ProtocolConfig(BaseModel):
    """Wire protocol settings."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    stream_threshold: int = DEFAULT_STREAM_THRESHOLD
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Chunks must be non-empty and within the protocol maximum."""
        if v <= 0 or v > MAX_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be between 1 and {MAX_CHUNK_SIZE}")
        return v

    @field_validator("stream_threshold")
    @classmethod
    def validate_stream_threshold(cls, v: int) -> int:
        """Validate stream threshold."""
        if v < 0:
            raise ValueError("stream_threshold must not be negative")
        return v


class AuthConfig(BaseModel):
    """Credential defaults."""

    default_permissions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PERMISSIONS)
    )
    default_rate_limit: int = DEFAULT_RATE_LIMIT
    dev_key_rate_limit: int = DEV_KEY_RATE_LIMIT


class RelayConfig(BaseModel):
    """Public addressing of tunnels."""

    public_domain: str = DEFAULT_PUBLIC_DOMAIN
    http_port: int = DEFAULT_HTTP_PORT
    scheme: str = "http"

    @field_validator("scheme")
    @classmethod
    def validate_scheme(cls, v: str) -> str:
        """Validate URL scheme."""
        if v not in ["http", "https"]:
            raise ValueError("scheme must be one of: http, https")
        return v


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_dir: Path | None = None
    environment: str = "development"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment name."""
        if v not in ["development", "production"]:
            raise ValueError("environment must be one of: development, production")
        return v


class DevTunnelConfig(BaseModel):
    """Main DevTunnel configuration."""

    protocol: ProtocolConfig = Field(default_factory=ProtocolConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LogConfig = Field(default_factory=LogConfig)
    debug: bool = False

    @model_validator(mode="after")
    def apply_debug(self) -> "DevTunnelConfig":
        """Debug mode forces DEBUG logging."""
        if self.debug:
            self.logging.level = "DEBUG"
        return self

    @classmethod
    def from_file(cls, config_file: Path) -> "DevTunnelConfig":
        """Load configuration from TOML file."""
        import rtoml

        with open(config_file, encoding="utf-8") as f:
            config_data = rtoml.load(f)

        return cls(**config_data)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "DevTunnelConfig":
        """Load configuration from dictionary."""
        return cls(**config_dict)

    def save_to_file(self, config_file: Path) -> None:
        """Save configuration to TOML file."""
        import rtoml

        data = self.model_dump(mode="json", exclude_none=True)
        with open(config_file, "w", encoding="utf-8") as f:
            rtoml.dump(data, f)
