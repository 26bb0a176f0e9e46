"""
Privacy Management for Weather MCP Telemetry

This module reduces raw tool-call data to anonymized events. What an event
may contain is decided structurally by the privacy level and by a fixed
allowlist of operational parameters; user-supplied text is never inspected
or scrubbed, it simply has no field to land in.
"""

from __future__ import annotations

import hashlib
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from .config import TelemetryLevel
from .events import (
    AnonymizedEvent,
    DetailedEvent,
    EventStatus,
    MinimalEvent,
    RawEvent,
    StandardEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_SALT = "weather-mcp-default-salt"
SESSION_HASH_LENGTH = 16

# Operational parameters that carry no location or user input.
# Anything not listed here is dropped, whatever its value.
ALLOWED_PARAMETERS = (
    "days",
    "granularity",
    "source",
    "forecast_type",
    "include_normals",
    "include_fire_weather",
    "include_severe_weather",
    "active_only",
    "limit",
    "radius",
    "units",
    "hourly",
    "daily",
)

Primitive = Union[str, int, float, bool]


def round_to_hour(moment: Optional[datetime] = None) -> str:
    """Truncate a timestamp to the top of the hour in UTC.

    Naive datetimes are taken to be UTC already.

    Returns:
        ISO-8601 string such as ``2025-03-01T14:00:00.000Z``
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)
    return moment.strftime("%Y-%m-%dT%H:00:00.000Z")


def country_from_coordinates(lat: float, lon: float) -> str:
    """Map coordinates to a coarse region code.

    The boxes are deliberately rough; anything ambiguous falls through to
    the next region or to ``OTHER``.
    """
    if 24 <= lat <= 50 and -125 <= lon <= -66:
        return "US"
    if 41 <= lat <= 84 and -142 <= lon <= -52:
        return "CA"
    if 35 <= lat <= 72 and -11 <= lon <= 41:
        return "EU"
    if -10 <= lat <= 55 and 60 <= lon <= 180:
        return "AP"
    if -56 <= lat <= 13 and -82 <= lon <= -34:
        return "SA"
    if -35 <= lat <= 38 and -18 <= lon <= 52:
        return "AF"
    if -48 <= lat <= -10 and 112 <= lon <= 180:
        return "OC"
    return "OTHER"


def _is_number(value: Any) -> bool:
    """Finite int or float; bools, NaN and infinities are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


class DataAnonymizer:
    """Reduces raw events to the fields permitted by a privacy level."""

    def __init__(self, salt: Optional[str] = None):
        self.salt = salt or DEFAULT_SALT

    def anonymize(self, raw: RawEvent, level: TelemetryLevel) -> AnonymizedEvent:
        """Build the event variant for ``level`` from ``raw``.

        Each level adds fields on top of the previous one and never copies
        anything the level does not name.
        """
        status = EventStatus(raw.status)
        base = {
            "version": raw.version,
            "tool": raw.tool,
            "status": status.value,
            "timestamp_hour": raw.timestamp_hour,
            "analytics_level": level.value,
        }
        if status is EventStatus.ERROR:
            base["error_type"] = raw.error_type if isinstance(raw.error_type, str) and raw.error_type else "unknown"

        if level is TelemetryLevel.MINIMAL:
            return MinimalEvent(**base)

        standard = dict(base, **self._standard_fields(raw))
        if level is TelemetryLevel.STANDARD:
            return StandardEvent(**standard)

        detailed = dict(standard)
        if raw.parameters is not None:
            detailed["parameters"] = self.sanitize_parameters(raw.parameters)
        if raw.session_id:
            detailed["session_id"] = self.hash_session_id(raw.session_id)
        if _is_number(raw.sequence_number):
            detailed["sequence_number"] = int(raw.sequence_number)
        return DetailedEvent(**detailed)

    def _standard_fields(self, raw: RawEvent) -> Dict[str, Any]:
        """Performance metrics, each only when present and of the expected type."""
        extra: Dict[str, Any] = {}
        if _is_number(raw.response_time_ms):
            extra["response_time_ms"] = raw.response_time_ms
        if isinstance(raw.service, str) and raw.service:
            extra["service"] = raw.service
        if isinstance(raw.cache_hit, bool):
            extra["cache_hit"] = raw.cache_hit
        if isinstance(raw.retry_count, int) and not isinstance(raw.retry_count, bool):
            extra["retry_count"] = raw.retry_count
        if isinstance(raw.country, str) and raw.country:
            extra["country"] = raw.country
        return extra

    @staticmethod
    def sanitize_parameters(params: Mapping[str, Any]) -> Dict[str, Primitive]:
        """Keep only allowlisted keys whose values are primitives."""
        safe: Dict[str, Primitive] = {}
        if not isinstance(params, Mapping):
            return safe
        for key in ALLOWED_PARAMETERS:
            value = params.get(key)
            if isinstance(value, (str, bool)) or _is_number(value):
                safe[key] = value
        return safe

    def hash_session_id(self, session_id: str) -> str:
        """One-way salted digest of a session token, truncated."""
        digest = hashlib.sha256(f"{session_id}{self.salt}".encode()).hexdigest()
        return digest[:SESSION_HASH_LENGTH]
