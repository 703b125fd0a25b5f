"""Configuration management for natupnp.

Loading order: defaults -> TOML config file -> environment -> explicit
overrides (CLI flags, constructor arguments).
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

import toml
from pydantic import BaseModel, Field, ValidationError

from natupnp.exceptions import ConfigurationError
from natupnp.models import DEFAULT_DESCRIPTION

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "natupnp.toml"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(default=LogLevel.WARNING, description="Log level")
    log_file: str | None = Field(default=None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Emit JSON log records instead of colored text"
    )
    log_correlation_id: bool = Field(
        default=True, description="Include correlation IDs"
    )


class NatUpnpConfig(BaseModel):
    """Client configuration."""

    discovery_timeout_ms: int = Field(
        default=3000,
        ge=1,
        le=600000,
        description="SSDP discovery timeout in milliseconds",
    )
    soap_timeout: float | None = Field(
        default=None,
        gt=0.0,
        description="Total SOAP request timeout in seconds (None: HTTP client default)",
    )
    default_description: str = Field(
        default=DEFAULT_DESCRIPTION,
        min_length=1,
        description="Port mapping description used when none is given",
    )
    check_interval: float = Field(
        default=60.0,
        gt=0.0,
        description="CLI external IP re-check interval in seconds",
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Environment variable -> dotted config path
ENV_OVERRIDES = {
    "NATUPNP_TIMEOUT_MS": "discovery_timeout_ms",
    "NATUPNP_SOAP_TIMEOUT": "soap_timeout",
    "NATUPNP_DESCRIPTION": "default_description",
    "NATUPNP_CHECK_INTERVAL": "check_interval",
    "NATUPNP_LOG_LEVEL": "logging.log_level",
    "NATUPNP_LOG_FILE": "logging.log_file",
    "NATUPNP_STRUCTURED_LOGGING": "logging.structured_logging",
}


def _set_nested(data: dict[str, Any], dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    target = data
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _parse_env_value(raw: str) -> Any:
    lowered = raw.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    return raw.strip()


class ConfigManager:
    """Finds, loads and validates configuration."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for natupnp.toml

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()

    def _find_config_file(self, config_file: str | Path | None) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / CONFIG_FILE_NAME,
            Path.home() / ".config" / "natupnp" / CONFIG_FILE_NAME,
            Path.home() / f".{CONFIG_FILE_NAME}",
        ]
        for path in search_paths:
            if path.exists():
                return path
        return None

    def _load_config(self) -> NatUpnpConfig:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file:
            if not self.config_file.exists():
                msg = f"Config file not found: {self.config_file}"
                raise ConfigurationError(msg)
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to read config file {self.config_file}: {e}"
                raise ConfigurationError(msg) from e
            logger.debug("Loaded configuration from %s", self.config_file)

        for key, value in self._get_env_config().items():
            _set_nested(config_data, key, value)

        try:
            return NatUpnpConfig(**config_data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        return {
            path: _parse_env_value(os.environ[name])
            for name, path in ENV_OVERRIDES.items()
            if os.environ.get(name)
        }


def load_config(config_file: str | Path | None = None) -> NatUpnpConfig:
    """Shortcut for ``ConfigManager(config_file).config``."""
    return ConfigManager(config_file).config
