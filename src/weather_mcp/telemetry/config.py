"""
Telemetry configuration.

Settings are loaded once from the environment at process start. Every
invalid value falls back to a safe default and is logged; configuration
problems never stop the host server from starting.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from importlib import metadata
from typing import List, Optional
from urllib.parse import urlparse

from weather_mcp import __version__

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://analytics.weather-mcp.com/v1/events"

try:
    _PACKAGE_VERSION = metadata.version("weather-mcp-analytics")
except metadata.PackageNotFoundError:  # pragma: no cover - fallback when running from source tree
    _PACKAGE_VERSION = __version__


class ConfigurationError(Exception):
    """Base exception for telemetry configuration errors."""

    pass


class ValidationError(ConfigurationError):
    """Raised by strict validation when a setting is malformed."""

    pass


class TelemetryLevel(Enum):
    """Privacy levels, from least to most detail retained."""

    MINIMAL = "minimal"  # Tool, status and hour only
    STANDARD = "standard"  # + performance and service metrics
    DETAILED = "detailed"  # + allowlisted parameters and hashed session

    @classmethod
    def parse(cls, value: Optional[str]) -> "TelemetryLevel":
        """Parse a level name, falling back to MINIMAL on anything unknown."""
        if not value:
            return cls.MINIMAL
        try:
            return cls(value.strip().lower())
        except ValueError:
            logger.warning(f"Invalid telemetry level {value!r}, using minimal")
            return cls.MINIMAL


@dataclass
class ConfigValidationResult:
    """Result of configuration validation with success state and error details."""

    success: bool
    errors: List[str]

    @property
    def is_valid(self) -> bool:
        return self.success

    def add_error(self, error: str) -> None:
        self.errors.append(error)
        self.success = False

    @classmethod
    def success_result(cls) -> "ConfigValidationResult":
        return cls(success=True, errors=[])


def is_valid_endpoint(endpoint: Optional[str]) -> bool:
    """Return True for an absolute http(s) URL with a host."""
    if not endpoint or not isinstance(endpoint, str):
        return False
    try:
        parsed = urlparse(endpoint)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass
class TelemetryConfig:
    """Configuration for telemetry collection."""

    enabled: bool = True
    level: TelemetryLevel = TelemetryLevel.MINIMAL
    endpoint: str = DEFAULT_ENDPOINT
    salt: Optional[str] = None
    version: str = field(default_factory=lambda: _PACKAGE_VERSION)

    # Backpressure and scheduling limits
    buffer_capacity: int = 100
    flush_interval: float = 300.0  # seconds
    min_flush_interval: float = 30.0  # seconds between capacity-triggered flushes
    max_flushes_per_hour: int = 20  # soft cap, logged only
    max_events_per_minute: int = 60

    # Failure handling
    failure_threshold: int = 5  # consecutive send failures before the circuit opens
    circuit_reset_timeout: float = 300.0  # seconds
    error_alert_threshold: int = 10  # consecutive tracking errors before alerting
    request_timeout: float = 5.0  # seconds

    @classmethod
    def from_env(cls) -> "TelemetryConfig":
        """Create config from environment variables."""
        enabled = os.getenv("ANALYTICS_ENABLED", "true").strip().lower() != "false"
        level = TelemetryLevel.parse(os.getenv("ANALYTICS_LEVEL"))

        endpoint = os.getenv("ANALYTICS_ENDPOINT") or DEFAULT_ENDPOINT
        if not is_valid_endpoint(endpoint):
            logger.warning(f"Invalid telemetry endpoint {endpoint!r}, using default {DEFAULT_ENDPOINT}")
            endpoint = DEFAULT_ENDPOINT

        config = cls(
            enabled=enabled,
            level=level,
            endpoint=endpoint,
            salt=os.getenv("ANALYTICS_SALT") or None,
        )

        if enabled:
            logger.info(
                f"Telemetry configuration loaded: level={level.value}, "
                f"endpoint={'default' if endpoint == DEFAULT_ENDPOINT else 'custom'}"
            )
        else:
            logger.info("Telemetry disabled by user preference")

        return config

    def validate(self, strict: bool = False) -> ConfigValidationResult:
        """Validate the configuration.

        Args:
            strict: Raise ValidationError instead of returning a failed result

        Returns:
            ConfigValidationResult describing every problem found
        """
        result = ConfigValidationResult.success_result()

        if not isinstance(self.enabled, bool):
            result.add_error(f"enabled must be a bool: {self.enabled!r}")
        if self.salt is not None and not isinstance(self.salt, str):
            result.add_error("salt must be a string")
        if not isinstance(self.level, TelemetryLevel):
            result.add_error(f"Unknown telemetry level: {self.level!r}")
        if not is_valid_endpoint(self.endpoint):
            result.add_error(f"Endpoint is not a valid http(s) URL: {self.endpoint!r}")
        if not self.version:
            result.add_error("Client version must not be empty")
        if self.buffer_capacity < 1:
            result.add_error("buffer_capacity must be at least 1")
        if self.max_events_per_minute < 1:
            result.add_error("max_events_per_minute must be at least 1")
        if self.failure_threshold < 1:
            result.add_error("failure_threshold must be at least 1")
        if self.flush_interval <= 0 or self.request_timeout <= 0:
            result.add_error("flush_interval and request_timeout must be positive")

        if strict and not result.is_valid:
            raise ValidationError("; ".join(result.errors))
        return result
