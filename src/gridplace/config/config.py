"""Core configuration management for gridplace.

This module provides the configuration classes and loading functionality
with YAML file and environment variable support.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from gridplace.config.environment import get_environment
from gridplace.core.validation import DEFAULT_PALETTE


class ConfigError(Exception):
    """Configuration-related errors."""

    pass


class CanvasConfig(BaseModel):
    """Grid and placement rules."""

    grid_size: int = 1000
    cooldown_ms: int = 300_000
    palette: list[str] = Field(default_factory=lambda: list(DEFAULT_PALETTE))
    max_region_span: int = 10_000

    @field_validator("palette")
    @classmethod
    def normalize_palette(cls, v: list[str]) -> list[str]:
        """Store palette colors upper-case so matching is case-insensitive."""
        return [c.strip().upper() for c in v]


class BroadcasterConfig(BaseModel):
    """Observer connection limits and liveness."""

    max_connections: int = 1000
    max_per_origin: int = 5
    max_lifetime_seconds: float = 86400
    ping_interval_seconds: float = 30
    queue_size: int = 256


class StorageConfig(BaseModel):
    """Backend selection for the agent directory and grid store."""

    backend: Literal["sqlite", "memory"] = "sqlite"
    path: str = "gridplace.db"


class ActivityConfig(BaseModel):
    """Recent activity log."""

    size: int = 100


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    enable_redaction: bool = True


class MetricsConfig(BaseModel):
    """Metrics configuration."""

    enabled: bool = False
    port: int = 9100


class TracingConfig(BaseModel):
    """Tracing configuration."""

    enabled: bool = False
    otlp_endpoint: str | None = None


class SecurityConfig(BaseModel):
    """Perimeter limits applied by the web adapter."""

    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])
    placement_requests_per_minute: int = 60
    registration_requests_per_hour: int = 10
    auth_failures_per_minute: int = 20
    trust_forwarded_for: bool = False


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class Config(BaseModel):
    """Main configuration class for gridplace.

    This class combines all configuration sections and provides
    validation and environment variable loading.
    """

    canvas: CanvasConfig = Field(default_factory=CanvasConfig)
    broadcaster: BroadcasterConfig = Field(default_factory=BroadcasterConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    activity: ActivityConfig = Field(default_factory=ActivityConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    tracing: TracingConfig = Field(default_factory=TracingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # Environment and deployment
    environment: Literal["development", "staging", "production", "testing"] = (
        "development"
    )
    debug: bool = False


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {config_path}")
    return config_data


def load_config_from_file(config_path: Path) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Loaded configuration

    Raises:
        ConfigError: If configuration is invalid or file cannot be read
    """
    try:
        return Config(**_read_yaml(config_path))
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def _env_int(name: str) -> int | None:
    if env_val := os.getenv(name):
        try:
            return int(env_val)
        except ValueError as e:
            raise ConfigError(f"Invalid {name}: {env_val}") from e
    return None


def _env_float(name: str) -> float | None:
    if env_val := os.getenv(name):
        try:
            return float(env_val)
        except ValueError as e:
            raise ConfigError(f"Invalid {name}: {env_val}") from e
    return None


def _env_bool(name: str) -> bool | None:
    if env_val := os.getenv(name):
        return env_val.lower() in ("true", "1", "yes", "on")
    return None


# (env var, section, key, parser)
_ENV_FIELDS: list[tuple[str, str, str, str]] = [
    ("GRIDPLACE_GRID_SIZE", "canvas", "grid_size", "int"),
    ("GRIDPLACE_COOLDOWN_MS", "canvas", "cooldown_ms", "int"),
    ("GRIDPLACE_MAX_REGION_SPAN", "canvas", "max_region_span", "int"),
    ("GRIDPLACE_MAX_CONNECTIONS", "broadcaster", "max_connections", "int"),
    ("GRIDPLACE_MAX_PER_ORIGIN", "broadcaster", "max_per_origin", "int"),
    ("GRIDPLACE_MAX_LIFETIME_SECONDS", "broadcaster", "max_lifetime_seconds", "float"),
    (
        "GRIDPLACE_PING_INTERVAL_SECONDS",
        "broadcaster",
        "ping_interval_seconds",
        "float",
    ),
    ("GRIDPLACE_STORAGE_BACKEND", "storage", "backend", "str"),
    ("GRIDPLACE_DB_PATH", "storage", "path", "str"),
    ("GRIDPLACE_ACTIVITY_SIZE", "activity", "size", "int"),
    ("GRIDPLACE_LOG_LEVEL", "logging", "level", "upper"),
    ("GRIDPLACE_METRICS_ENABLED", "metrics", "enabled", "bool"),
    ("GRIDPLACE_METRICS_PORT", "metrics", "port", "int"),
    ("GRIDPLACE_OTLP_ENDPOINT", "tracing", "otlp_endpoint", "str"),
    ("GRIDPLACE_HOST", "server", "host", "str"),
    ("GRIDPLACE_PORT", "server", "port", "int"),
]

ENV_VARS: list[str] = [
    "GRIDPLACE_ENVIRONMENT",
    "GRIDPLACE_DEBUG",
    *(name for name, _, _, _ in _ENV_FIELDS),
    "GRIDPLACE_ALLOWED_ORIGINS",
]


def _env_overrides() -> dict[str, Any]:
    config_data: dict[str, Any] = {}

    if env_val := os.getenv("GRIDPLACE_ENVIRONMENT"):
        config_data["environment"] = env_val.lower()
    if (debug := _env_bool("GRIDPLACE_DEBUG")) is not None:
        config_data["debug"] = debug

    for env_name, section, key, kind in _ENV_FIELDS:
        value: Any
        if kind == "int":
            value = _env_int(env_name)
        elif kind == "float":
            value = _env_float(env_name)
        elif kind == "bool":
            value = _env_bool(env_name)
        elif kind == "upper":
            value = os.getenv(env_name, "").upper() or None
        else:
            value = os.getenv(env_name) or None
        if value is not None:
            config_data.setdefault(section, {})[key] = value

    if env_val := os.getenv("GRIDPLACE_ALLOWED_ORIGINS"):
        config_data.setdefault("security", {})["allowed_origins"] = [
            o.strip() for o in env_val.split(",") if o.strip()
        ]

    return config_data


def load_config_from_env() -> Config:
    """Load configuration from environment variables.

    Environment variables are mapped as follows:
    - GRIDPLACE_ENVIRONMENT: Environment name
    - GRIDPLACE_DEBUG: Enable debug mode (true/false)
    - GRIDPLACE_GRID_SIZE, GRIDPLACE_COOLDOWN_MS, GRIDPLACE_MAX_REGION_SPAN
    - GRIDPLACE_MAX_CONNECTIONS, GRIDPLACE_MAX_PER_ORIGIN,
      GRIDPLACE_MAX_LIFETIME_SECONDS, GRIDPLACE_PING_INTERVAL_SECONDS
    - GRIDPLACE_STORAGE_BACKEND (sqlite/memory), GRIDPLACE_DB_PATH
    - GRIDPLACE_ACTIVITY_SIZE
    - GRIDPLACE_LOG_LEVEL
    - GRIDPLACE_METRICS_ENABLED, GRIDPLACE_METRICS_PORT
    - GRIDPLACE_OTLP_ENDPOINT
    - GRIDPLACE_ALLOWED_ORIGINS: Comma-separated CORS origins
    - GRIDPLACE_HOST, GRIDPLACE_PORT

    Returns:
        Configuration loaded from environment variables
    """
    try:
        return Config(**_env_overrides())
    except ValidationError as e:
        raise ConfigError(f"Environment configuration validation failed: {e}") from e


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment variables.

    Configuration is loaded in the following order (later sources override earlier):
    1. Default values
    2. Configuration file (if provided)
    3. Environment variables

    When neither source names an environment, the detected one is used.
    Sections are merged key by key, so an environment variable only replaces
    the single setting it names.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Merged configuration
    """
    config_data: dict[str, Any] = {}

    if config_path and config_path.exists():
        config_data = _read_yaml(config_path)

    config_data = _merge(config_data, _env_overrides())
    config_data.setdefault("environment", get_environment().value)

    try:
        return Config(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def validate_config(config: Config) -> None:
    """Validate configuration for consistency and correctness.

    Args:
        config: Configuration to validate

    Raises:
        ConfigError: If configuration is invalid
    """
    canvas = config.canvas
    if canvas.grid_size <= 0:
        raise ConfigError("canvas.grid_size must be positive")

    if canvas.cooldown_ms < 0:
        raise ConfigError("canvas.cooldown_ms must be non-negative")

    if not canvas.palette:
        raise ConfigError("canvas.palette must not be empty")

    if len(set(canvas.palette)) != len(canvas.palette):
        raise ConfigError("canvas.palette contains duplicate colors")

    if canvas.max_region_span <= 0:
        raise ConfigError("canvas.max_region_span must be positive")

    broadcaster = config.broadcaster
    if broadcaster.max_connections <= 0:
        raise ConfigError("broadcaster.max_connections must be positive")

    if broadcaster.max_per_origin <= 0:
        raise ConfigError("broadcaster.max_per_origin must be positive")

    if broadcaster.max_per_origin > broadcaster.max_connections:
        raise ConfigError(
            "broadcaster.max_per_origin cannot exceed broadcaster.max_connections"
        )

    if broadcaster.max_lifetime_seconds <= 0:
        raise ConfigError("broadcaster.max_lifetime_seconds must be positive")

    if broadcaster.ping_interval_seconds <= 0:
        raise ConfigError("broadcaster.ping_interval_seconds must be positive")

    if broadcaster.queue_size < 2:
        raise ConfigError("broadcaster.queue_size must be at least 2")

    if config.activity.size <= 0:
        raise ConfigError("activity.size must be positive")

    for name, port in (
        ("metrics.port", config.metrics.port),
        ("server.port", config.server.port),
    ):
        if port <= 0 or port > 65535:
            raise ConfigError(f"{name} must be between 1 and 65535")

    security = config.security
    if security.placement_requests_per_minute <= 0:
        raise ConfigError("security.placement_requests_per_minute must be positive")
    if security.registration_requests_per_hour <= 0:
        raise ConfigError("security.registration_requests_per_hour must be positive")
    if security.auth_failures_per_minute <= 0:
        raise ConfigError("security.auth_failures_per_minute must be positive")

    # Environment-specific validations
    if config.environment == "production":
        if config.debug:
            raise ConfigError("Debug mode should not be enabled in production")

        if config.logging.level == "DEBUG":
            raise ConfigError("DEBUG logging should not be used in production")

        if not config.logging.enable_redaction:
            raise ConfigError("Log redaction should be enabled in production")

        if config.storage.backend == "memory":
            raise ConfigError("The memory storage backend is not durable")
