"""
Weather MCP Telemetry

Privacy-first usage analytics for MCP tool calls: anonymized events,
bounded in-memory batching and best-effort delivery that never affects
the tools being measured.
"""

from .circuit import CircuitBreaker, CircuitState
from .collector import FlushOutcome, TelemetryCollector, TrackOutcome, create_collector
from .config import DEFAULT_ENDPOINT, TelemetryConfig, TelemetryLevel
from .decorators import classify_error, track_tool, with_telemetry
from .events import DetailedEvent, EventStatus, MinimalEvent, StandardEvent, ToolExecutionMetadata
from .privacy import DataAnonymizer, country_from_coordinates, round_to_hour
from .transport import HTTPTransport, SendResult, TelemetryTransport

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "DEFAULT_ENDPOINT",
    "DataAnonymizer",
    "DetailedEvent",
    "EventStatus",
    "FlushOutcome",
    "HTTPTransport",
    "MinimalEvent",
    "SendResult",
    "StandardEvent",
    "TelemetryCollector",
    "TelemetryConfig",
    "TelemetryLevel",
    "TelemetryTransport",
    "ToolExecutionMetadata",
    "TrackOutcome",
    "classify_error",
    "country_from_coordinates",
    "create_collector",
    "round_to_hour",
    "track_tool",
    "with_telemetry",
]
