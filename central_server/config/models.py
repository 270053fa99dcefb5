"""
Pydantic-based configuration models for the Louaj central server.

Every interval, timeout and threshold used by the station connectivity
layer is read from here so deployments can tune them through environment
variables without code changes.
"""

import json
import os
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def _parse_env_list(candidate: Any) -> list[str]:
    """Parse a string from the environment as JSON list or CSV."""
    if candidate is None:
        return []
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
    parsed = _parse_env_list(os.getenv("CORS_ALLOW_ORIGINS") or os.getenv("ALLOWED_ORIGINS"))
    if parsed:
        return parsed
    return ["*"]


class ServerConfig(BaseSettings):
    """Server network configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")  # nosec B104
    port: int = Field(default=5000, description="Server port")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1024 <= v <= 65535:
            logger.error("Invalid server port", port=v, valid_range="1024-65535")
            raise ValueError("Port must be between 1024 and 65535")
        return v

    model_config = {"env_prefix": "SERVER_", "case_sensitive": False, "extra": "ignore"}


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    url: str = Field(..., description="Async SQLAlchemy database URL (required)")

    pool_size: int = Field(default=5, description="Number of connections to maintain in pool")
    max_overflow: int = Field(default=10, description="Additional connections that can be created beyond pool_size")
    pool_timeout: int = Field(default=30, description="Seconds to wait for connection from pool")
    create_tables: bool = Field(default=False, description="Create missing tables at startup (local development only)")

    @field_validator("url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL format - PostgreSQL only."""
        if not v:
            logger.error("Database URL validation failed - empty URL")
            raise ValueError("Database URL cannot be empty")
        if not v.startswith("postgresql"):
            logger.error(
                "Database URL validation failed - invalid protocol",
                url_preview=v[:50] if len(v) > 50 else v,
                expected_protocol="postgresql",
            )
            raise ValueError("Database URL must start with 'postgresql'")
        return v

    @field_validator("pool_size", "max_overflow", "pool_timeout")
    @classmethod
    def validate_pool_config(cls, v: int) -> int:
        """Validate pool configuration values are positive."""
        if v < 1:
            raise ValueError("Pool configuration values must be at least 1")
        return v

    model_config = {"env_prefix": "DATABASE_", "case_sensitive": False, "extra": "ignore"}


class RealtimeConfig(BaseSettings):
    """Station session (WebSocket) liveness configuration."""

    heartbeat_interval: float = Field(default=30.0, description="Seconds between liveness sweeps")
    connection_timeout: float = Field(default=60.0, description="Seconds of silence before a session is closed")

    @field_validator("heartbeat_interval", "connection_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Intervals must be positive."""
        if v <= 0:
            raise ValueError("Interval values must be positive")
        return v

    @model_validator(mode="after")
    def validate_timeout_exceeds_interval(self) -> "RealtimeConfig":
        """A session must survive at least one sweep without a heartbeat."""
        if self.connection_timeout <= self.heartbeat_interval:
            raise ValueError("connection_timeout must be greater than heartbeat_interval")
        return self

    model_config = {"env_prefix": "REALTIME_", "case_sensitive": False, "extra": "ignore"}


class SyncConfig(BaseSettings):
    """Instant sync delivery configuration."""

    ack_timeout: float = Field(default=10.0, description="Seconds to wait for an instant_sync_ack")
    max_retries: int = Field(default=3, description="Resends attempted before a push is abandoned")
    auto_resend: bool = Field(default=True, description="Resend unacknowledged pushes automatically")

    @field_validator("ack_timeout")
    @classmethod
    def validate_ack_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("ack_timeout must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be non-negative")
        return v

    model_config = {"env_prefix": "SYNC_", "case_sensitive": False, "extra": "ignore"}


class MonitoringConfig(BaseSettings):
    """Route discovery health monitor configuration."""

    enabled: bool = Field(default=True, description="Run the periodic station health monitor")
    monitoring_interval: float = Field(default=30.0, description="Seconds between health probe rounds")
    probe_timeout: float = Field(default=5.0, description="Timeout for a single health probe")
    max_consecutive_failures: int = Field(default=3, description="Failed probes before a station is marked offline")
    node_port: int = Field(default=3001, description="Port the station local node serves HTTP on")
    health_path: str = Field(default="/api/public/health", description="Health endpoint path on the local node")
    route_data_timeout: float = Field(default=8.0, description="Timeout when fetching queue data from a local node")
    user_agent: str = Field(default="Louaj-Central-Server/1.0", description="User-Agent sent with probes")

    @field_validator("monitoring_interval", "probe_timeout", "route_data_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts and intervals must be positive")
        return v

    @field_validator("max_consecutive_failures")
    @classmethod
    def validate_failure_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_consecutive_failures must be at least 1")
        return v

    @field_validator("health_path")
    @classmethod
    def validate_health_path(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    model_config = {"env_prefix": "MONITORING_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(default="local", description="Logging environment")
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="human", description="Log format")
    log_base: str = Field(default="logs", description="Base log directory")
    rotation_max_size: str = Field(default="100MB", description="Log rotation max size")
    rotation_backup_count: int = Field(default=5, description="Number of backup log files")
    disable_logging: bool = Field(default=False, description="Disable file logging")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate logging environment."""
        valid_environments = ["local", "unit_test", "e2e_test", "production"]
        if v not in valid_environments:
            logger.error("Invalid logging environment", environment=v, valid_environments=valid_environments)
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

    def to_legacy_dict(self) -> dict:
        """Convert to the dict shape consumed by setup_enhanced_logging."""
        return {
            "environment": self.environment,
            "level": self.level,
            "format": self.format,
            "log_base": self.log_base,
            "rotation": {
                "max_size": self.rotation_max_size,
                "backup_count": self.rotation_backup_count,
            },
            "disable_logging": self.disable_logging,
        }


class CORSConfig(BaseSettings):
    """Cross-origin resource sharing configuration."""

    allow_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=_default_cors_origins,
        description="Origins permitted to access the central API",
    )
    allow_credentials: bool = Field(default=False, description="Whether credentialed requests are accepted")
    allow_methods: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        description="HTTP methods permitted by CORS responses",
    )
    allow_headers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["Content-Type", "Authorization", "X-Requested-With", "Accept"],
        description="Request headers permitted by CORS responses",
    )

    model_config = {"env_prefix": "CORS_", "case_sensitive": False, "extra": "ignore"}

    @field_validator("allow_origins", "allow_methods", "allow_headers", mode="before")
    @classmethod
    def parse_csv_lists(cls, value: object) -> object:
        """Accept comma separated strings as well as lists."""
        if isinstance(value, str):
            return _parse_env_list(value)
        return value


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    Aggregates every settings group. Access via get_config().
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)  # type: ignore[arg-type]
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """
        Convert to a plain dict.

        Used for logging setup and for diagnostics endpoints.
        """
        return {
            "host": self.server.host,
            "port": self.server.port,
            "logging": self.logging.to_legacy_dict(),
            "realtime": {
                "heartbeat_interval": self.realtime.heartbeat_interval,
                "connection_timeout": self.realtime.connection_timeout,
            },
            "sync": {
                "ack_timeout": self.sync.ack_timeout,
                "max_retries": self.sync.max_retries,
                "auto_resend": self.sync.auto_resend,
            },
            "monitoring": {
                "enabled": self.monitoring.enabled,
                "monitoring_interval": self.monitoring.monitoring_interval,
                "probe_timeout": self.monitoring.probe_timeout,
                "max_consecutive_failures": self.monitoring.max_consecutive_failures,
            },
        }
