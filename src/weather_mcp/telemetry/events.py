"""Event data structures for the telemetry pipeline."""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, TypedDict, Union


class EventStatus(str, Enum):
    """Outcome of a single tool invocation."""

    SUCCESS = "success"
    ERROR = "error"


class ToolExecutionMetadata(TypedDict, total=False):
    """Metadata a tool handler may attach to a tracked call."""

    response_time_ms: float
    service: str
    cache_hit: bool
    retry_count: int
    country: str
    parameters: Dict[str, Any]
    error_type: str


@dataclass
class RawEvent:
    """Un-anonymized event. Lives only for the duration of one tracking call."""

    version: str
    tool: str
    status: EventStatus
    timestamp_hour: str
    error_type: Optional[str] = None
    response_time_ms: Optional[float] = None
    service: Optional[str] = None
    cache_hit: Optional[bool] = None
    retry_count: Optional[int] = None
    country: Optional[str] = None
    parameters: Optional[Mapping[str, Any]] = None
    session_id: Optional[str] = None
    sequence_number: Optional[int] = None

    @classmethod
    def from_metadata(
        cls,
        *,
        version: str,
        tool: str,
        status: EventStatus,
        timestamp_hour: str,
        metadata: Mapping[str, Any],
        session_id: Optional[str] = None,
        sequence_number: Optional[int] = None,
    ) -> "RawEvent":
        # Unknown metadata keys are ignored here; nothing outside this list can reach an event.
        return cls(
            version=version,
            tool=tool,
            status=status,
            timestamp_hour=timestamp_hour,
            error_type=metadata.get("error_type"),
            response_time_ms=metadata.get("response_time_ms"),
            service=metadata.get("service"),
            cache_hit=metadata.get("cache_hit"),
            retry_count=metadata.get("retry_count"),
            country=metadata.get("country"),
            parameters=metadata.get("parameters"),
            session_id=session_id,
            sequence_number=sequence_number,
        )


@dataclass(frozen=True)
class MinimalEvent:
    """Event emitted at the minimal level."""

    version: str
    tool: str
    status: str
    timestamp_hour: str
    analytics_level: str
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the wire, omitting absent optional fields."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class StandardEvent(MinimalEvent):
    """Minimal event plus performance and service metrics."""

    response_time_ms: Optional[float] = None
    service: Optional[str] = None
    cache_hit: Optional[bool] = None
    retry_count: Optional[int] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class DetailedEvent(StandardEvent):
    """Standard event plus allowlisted parameters and a hashed session."""

    parameters: Optional[Dict[str, Union[str, int, float, bool]]] = None
    session_id: Optional[str] = None
    sequence_number: Optional[int] = None


AnonymizedEvent = Union[MinimalEvent, StandardEvent, DetailedEvent]


@dataclass
class EventBatch:
    """Group of events delivered in one transport call."""

    events: List[AnonymizedEvent]

    def to_payload(self) -> Dict[str, Any]:
        return {"events": [event.to_dict() for event in self.events]}

    def __len__(self) -> int:
        return len(self.events)
