"""
Pydantic-based configuration models for the AppSync simulator.

Each section is a BaseSettings model with its own environment prefix, so a
developer can tune the simulator through environment variables or a .env file
without touching code.
"""

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class ServerConfig(BaseSettings):
    """HTTP listener configuration."""

    host: str = Field(default="0.0.0.0", description="Bind address for the shared HTTP listener")
    port: int | None = Field(default=None, description="Preferred port; dynamic allocation when unset")
    graphql_path: str = Field(default="/graphql", description="Path of the GraphQL operation endpoint")
    realtime_path: str = Field(default="/graphql/realtime", description="Path of the realtime WebSocket endpoint")
    startup_timeout: float = Field(default=10.0, description="Seconds to wait for the listener to come up")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int | None) -> int | None:
        """Validate port is in valid range."""
        if v is None:
            return v
        if not 1024 <= v <= 65535:
            logger.error("Invalid simulator port", port=v, valid_range="1024-65535")
            raise ValueError("Port must be between 1024 and 65535")
        return v

    @field_validator("graphql_path", "realtime_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Paths must be absolute."""
        if not v.startswith("/"):
            raise ValueError("Endpoint paths must start with '/'")
        return v

    model_config = {"env_prefix": "SIMULATOR_", "case_sensitive": False, "extra": "ignore"}


class RealtimeConfig(BaseSettings):
    """Realtime subscription protocol timings and limits."""

    init_timeout: float = Field(default=10.0, description="Seconds a new connection has to send connection_init")
    keepalive_interval: float = Field(default=60.0, description="Seconds between server 'ka' frames")
    keepalive_grace: float = Field(
        default=300.0, description="Seconds without any inbound frame before the connection is force-closed"
    )
    connection_timeout_ms: int = Field(
        default=300000, description="connectionTimeoutMs advertised in the connection_ack payload"
    )
    max_outbox_size: int = Field(default=1000, description="Maximum queued outbound frames per connection")

    @field_validator("init_timeout", "keepalive_interval", "keepalive_grace")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Timer values must be positive."""
        if v <= 0:
            raise ValueError("Timer values must be greater than zero")
        return v

    @field_validator("connection_timeout_ms", "max_outbox_size")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Limits must be positive."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_grace_window(self) -> "RealtimeConfig":
        """The grace window must outlast at least one keepalive interval."""
        if self.keepalive_grace < self.keepalive_interval:
            logger.error(
                "Keepalive grace shorter than keepalive interval",
                keepalive_grace=self.keepalive_grace,
                keepalive_interval=self.keepalive_interval,
            )
            raise ValueError("keepalive_grace must be greater than or equal to keepalive_interval")
        return self

    model_config = {"env_prefix": "REALTIME_", "case_sensitive": False, "extra": "ignore"}


class AuthConfig(BaseSettings):
    """Authentication material accepted by the default validator."""

    api_key: str | None = Field(default=None, description="API key clients must present (x-api-key)")
    allow_anonymous: bool = Field(default=True, description="Accept requests without credentials when no key is set")

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
        valid_formats = ["json", "human", "colored"]
        if v not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}, got '{v}'")
        return v

    model_config = {"env_prefix": "LOGGING_", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """Convert to the dict shape consumed by setup_enhanced_logging."""
        return {
            "environment": self.environment,
            "level": self.level,
            "format": self.format,
            "disable_logging": self.disable_logging,
        }


class SimulatorConfig(BaseSettings):
    """Top-level simulator configuration aggregating every section."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """Flatten into the dict layout consumed by the logging setup."""
        return {
            "server": {"host": self.server.host, "port": self.server.port},
            "logging": self.logging.to_legacy_dict(),
        }
