"""
Pydantic-based configuration models for the MQTT gateway.

Every section reads from its own environment prefix; AppConfig aggregates them
and additionally reads a local .env file.
"""

import json
import os
from typing import Annotated, Any

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def _parse_env_list(candidate: Any) -> list[str]:
    """Parse a string from the environment as JSON list or CSV."""
    if candidate is None:
        return []
    if isinstance(candidate, list):
        return [str(item).strip() for item in candidate if str(item).strip()]
    s = str(candidate).strip()
    if not s:
        return []
    try:
        loaded = json.loads(s)
        if isinstance(loaded, list):
            return [str(item).strip() for item in loaded if str(item).strip()]
    except json.JSONDecodeError:
        pass
    return [item.strip() for item in s.split(",") if item.strip()]


def _default_cors_origins() -> list[str]:
    """Derive default CORS origins with environment taking precedence."""
    parsed = _parse_env_list(os.getenv("CORS_ALLOW_ORIGINS") or os.getenv("CORS_ORIGINS"))
    if parsed:
        return parsed
    return ["http://localhost:5173", "http://127.0.0.1:5173"]


class ServerConfig(BaseSettings):
    """Server network configuration."""

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=4000, description="Server port")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1024 <= v <= 65535:
            logger.error("Invalid server port", port=v, valid_range="1024-65535")
            raise ValueError("Port must be between 1024 and 65535")
        return v

    model_config = {"env_prefix": "SERVER_", "case_sensitive": False, "extra": "ignore"}


class MQTTConfig(BaseSettings):
    """
    Upstream MQTT broker connection settings.

    Timeouts are in seconds. Retry delays grow as base * 2^n and are capped at
    retry_max_delay.
    """

    connect_timeout: float = Field(default=10.0, description="Connect timeout for a real broker session")
    probe_timeout: float = Field(default=5.0, description="Connect timeout for throwaway test probes")
    keepalive: int = Field(default=60, description="MQTT keepalive interval")
    max_retries: int = Field(default=5, description="Consecutive connect attempts before giving up")
    retry_base_delay: float = Field(default=1.0, description="Base reconnect delay")
    retry_max_delay: float = Field(default=30.0, description="Upper bound for reconnect delay")
    publish_wait_timeout: float = Field(
        default=5.0, description="How long publish/subscribe waits for a connection before failing"
    )
    publish_wait_poll_interval: float = Field(default=0.1, description="Polling interval for the publish wait")
    message_buffer_size: int = Field(default=100, description="Capacity of the inbound message ring buffer")
    client_id_prefix: str = Field(default="server", description="Prefix for generated MQTT client identifiers")

    @field_validator("connect_timeout", "probe_timeout", "publish_wait_timeout", "publish_wait_poll_interval")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        """Validate timeouts are positive."""
        if v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate retry budget."""
        if not 1 <= v <= 100:
            logger.error("Invalid MQTT retry budget", max_retries=v)
            raise ValueError("max_retries must be between 1 and 100")
        return v

    @field_validator("message_buffer_size")
    @classmethod
    def validate_buffer_size(cls, v: int) -> int:
        """Validate ring buffer capacity."""
        if v < 1:
            raise ValueError("message_buffer_size must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_retry_delays(self) -> "MQTTConfig":
        """Ensure the delay cap is not below the base delay."""
        if self.retry_base_delay < 0:
            raise ValueError("retry_base_delay must not be negative")
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("retry_max_delay must be >= retry_base_delay")
        return self

    model_config = {"env_prefix": "MQTT_", "case_sensitive": False, "extra": "ignore"}


class SessionConfig(BaseSettings):
    """Real-time session policy."""

    max_sessions_per_user: int = Field(default=5, description="Concurrent sessions per user before eviction")
    grace_period: float = Field(
        default=10.0, description="Seconds to wait after a user's last session leaves before teardown"
    )
    outbound_queue_size: int = Field(default=1000, description="Per-session outbound queue capacity")

    @field_validator("max_sessions_per_user", "outbound_queue_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counts are positive."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("grace_period")
    @classmethod
    def validate_grace_period(cls, v: float) -> float:
        """Validate grace period is not negative."""
        if v < 0:
            raise ValueError("grace_period must not be negative")
        return v

    model_config = {"env_prefix": "SESSION_", "case_sensitive": False, "extra": "ignore"}


class AuthConfig(BaseSettings):
    """Bearer token verification settings."""

    jwt_secret: str = Field(..., description="Secret used to verify bearer tokens (required)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    token_ttl_minutes: int = Field(default=60, description="Lifetime of tokens issued by helper tooling")
    admin_role: str = Field(default="admin", description="Role name granting broker administration")

    @field_validator("jwt_secret")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        """Reject empty secrets."""
        if not v or not v.strip():
            raise ValueError("jwt_secret must not be empty")
        return v

    model_config = {"env_prefix": "AUTH_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(default="local", description="Logging environment")
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="human", description="Log format")
    disable_logging: bool = Field(default=False, description="Disable all logging")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate logging environment."""
        valid_environments = ["local", "unit_test", "e2e_test", "production"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "human"]
        if v not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}, got '{v}'")
        return v

    model_config = {"env_prefix": "LOGGING_", "case_sensitive": False, "extra": "ignore"}

    def to_dict(self) -> dict[str, Any]:
        """Return the dict shape consumed by setup_enhanced_logging."""
        return {
            "environment": self.environment,
            "level": self.level,
            "format": self.format,
            "disable_logging": self.disable_logging,
        }


class CORSConfig(BaseSettings):
    """Cross-origin resource sharing configuration."""

    allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=_default_cors_origins,
        validation_alias=AliasChoices("allow_origins", "origins"),
        description="Origins permitted to access the gateway API",
    )
    allow_credentials: bool = Field(default=True, description="Whether credentialed requests are accepted")
    allow_methods: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["GET", "POST", "DELETE", "OPTIONS"],
        description="HTTP methods permitted by CORS responses",
    )
    allow_headers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["Content-Type", "Authorization", "Accept"],
        description="Request headers permitted by CORS responses",
    )

    @field_validator("allow_origins", "allow_methods", "allow_headers", mode="before")
    @classmethod
    def parse_list(cls, v: Any) -> list[str]:
        """Accept JSON arrays or comma separated strings."""
        return _parse_env_list(v)

    model_config = {"env_prefix": "CORS_", "case_sensitive": False, "extra": "ignore"}


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    This is the main configuration class that aggregates all other configs.
    Access via get_config() singleton function.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    mqtt: MQTTConfig = Field(default_factory=MQTTConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)  # type: ignore[arg-type]
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}
