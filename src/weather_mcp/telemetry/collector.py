"""
Telemetry Collector for Weather MCP Tool Usage Analytics

This module buffers anonymized tool-call events in memory and delivers
them in batches. Tracking is synchronous and never raises; delivery runs
on the event loop, triggered by a full buffer, a periodic timer, or
shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Set

from .circuit import CircuitBreaker
from .config import TelemetryConfig, TelemetryLevel
from .events import AnonymizedEvent, EventStatus, RawEvent, ToolExecutionMetadata
from .privacy import DataAnonymizer, round_to_hour
from .transport import HTTPTransport, TelemetryTransport

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60.0
FLUSH_COUNT_WINDOW_SECONDS = 3600.0


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class TrackOutcome(str, Enum):
    """What happened to a tracked tool call."""

    ACCEPTED = "accepted"
    DISABLED = "disabled"
    RATE_LIMITED = "rate_limited"
    BUFFER_FULL = "buffer_full"
    FAILED = "failed"


class FlushOutcome(str, Enum):
    """What happened to a flush attempt."""

    SENT = "sent"
    FAILED = "failed"
    EMPTY = "empty"
    DISABLED = "disabled"
    CIRCUIT_OPEN = "circuit_open"


class TelemetryCollector:
    """Collects, buffers and ships anonymized tool usage events."""

    def __init__(
        self,
        config: TelemetryConfig,
        transport: Optional[TelemetryTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.transport = transport or HTTPTransport(timeout=config.request_timeout)
        self.anonymizer = DataAnonymizer(config.salt)
        self.circuit = CircuitBreaker(
            failure_threshold=config.failure_threshold,
            reset_timeout=config.circuit_reset_timeout,
            clock=clock,
        )
        self._clock = clock

        self._buffer: List[AnonymizedEvent] = []
        self._session_id = secrets.token_hex(16)
        self._sequence_number = 0
        self._shutting_down = False

        self._recent_events: Deque[float] = deque()
        self._last_flush_time: Optional[float] = None
        self._flush_pending = False
        self._deferral_logged_for: Optional[float] = None
        self._flush_count = 0
        self._flush_count_window_start = clock()

        self._flush_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()

        self._consecutive_errors = 0
        self._stats: Dict[str, int] = {
            "events_tracked": 0,
            "events_rate_limited": 0,
            "events_dropped_buffer_full": 0,
            "events_dropped_circuit_open": 0,
            "events_dropped_send_failed": 0,
            "events_sent": 0,
            "tracking_errors": 0,
            "flushes_attempted": 0,
            "flushes_failed": 0,
        }

        if self.config.enabled:
            logger.debug(f"TelemetryCollector initialized: level={self.config.level.value}")

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return self.config.enabled and not self._shutting_down

    def start(self) -> None:
        """Start the periodic flush task on the running event loop."""
        if not self.is_active or self._flush_task is not None:
            return
        loop = _running_loop()
        if loop is None:
            logger.debug("No running event loop, periodic telemetry flush not started")
            return
        self._flush_task = loop.create_task(self._flush_loop())

    def track_tool_call(
        self,
        tool: str,
        status: str,
        metadata: Optional[ToolExecutionMetadata] = None,
    ) -> TrackOutcome:
        """Record one tool invocation. Never raises."""
        if not self.is_active:
            return TrackOutcome.DISABLED

        try:
            return self._track(tool, status, metadata if metadata is not None else {})
        except Exception as e:
            self._consecutive_errors += 1
            self._stats["tracking_errors"] += 1
            logger.warning(
                f"Telemetry tracking error: {type(e).__name__} (consecutive errors: {self._consecutive_errors})"
            )
            if self._consecutive_errors >= self.config.error_alert_threshold:
                logger.error(
                    f"Telemetry appears to be failing consistently: {self._consecutive_errors} consecutive "
                    f"tracking errors, {self._stats['events_tracked']} events tracked"
                )
            return TrackOutcome.FAILED

    def _track(self, tool: str, status: str, metadata: Mapping[str, Any]) -> TrackOutcome:
        now = self._clock()

        if not self._admit_event(now):
            self._stats["events_rate_limited"] += 1
            logger.warning(
                f"Telemetry rate limit exceeded, dropping event for tool {tool!r} "
                f"({len(self._recent_events)} events in the last minute)"
            )
            return TrackOutcome.RATE_LIMITED

        if len(self._buffer) >= self.config.buffer_capacity:
            self._stats["events_dropped_buffer_full"] += 1
            logger.warning(f"Telemetry buffer full ({len(self._buffer)} events), dropping event")
            self._maybe_schedule_flush(now)
            return TrackOutcome.BUFFER_FULL

        self._recent_events.append(now)

        level = self.config.level
        session_id = None
        sequence_number = None
        if level is TelemetryLevel.DETAILED:
            self._sequence_number += 1
            session_id = self._session_id
            sequence_number = self._sequence_number

        raw = RawEvent.from_metadata(
            version=self.config.version,
            tool=str(tool),
            status=EventStatus(status),
            timestamp_hour=round_to_hour(datetime.fromtimestamp(now, tz=timezone.utc)),
            metadata=metadata,
            session_id=session_id,
            sequence_number=sequence_number,
        )
        event = self.anonymizer.anonymize(raw, level)

        self._buffer.append(event)
        self._stats["events_tracked"] += 1
        self._consecutive_errors = 0

        logger.debug(f"Telemetry event tracked: tool={tool}, status={raw.status.value}, buffer={len(self._buffer)}")

        if self._flush_task is None and _running_loop() is not None:
            self.start()
        if len(self._buffer) >= self.config.buffer_capacity:
            self._maybe_schedule_flush(now)
        return TrackOutcome.ACCEPTED

    def _admit_event(self, now: float) -> bool:
        """Rolling one-minute ingest window."""
        cutoff = now - RATE_WINDOW_SECONDS
        while self._recent_events and self._recent_events[0] <= cutoff:
            self._recent_events.popleft()
        return len(self._recent_events) < self.config.max_events_per_minute

    def _maybe_schedule_flush(self, now: float) -> None:
        """Schedule a capacity-triggered flush without blocking the caller."""
        if self._flush_pending:
            return
        if self._last_flush_time is not None:
            since_last = now - self._last_flush_time
            if since_last < self.config.min_flush_interval:
                if self._deferral_logged_for == self._last_flush_time:
                    return
                self._deferral_logged_for = self._last_flush_time
                logger.warning(
                    f"Telemetry flush rate limit hit ({since_last:.1f}s since last flush), "
                    f"deferring {len(self._buffer)} events to the periodic flush"
                )
                return
        loop = _running_loop()
        if loop is None:
            logger.debug("No running event loop, capacity flush deferred")
            return

        self._flush_pending = True
        task = loop.create_task(self._background_flush())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _background_flush(self) -> None:
        try:
            await self.flush()
        except Exception as e:
            logger.warning(f"Async telemetry flush error: {e}")
        finally:
            self._flush_pending = False

    async def flush(self) -> FlushOutcome:
        """Send buffered events to the collection endpoint."""
        if not self.config.enabled:
            return FlushOutcome.DISABLED
        if not self._buffer:
            return FlushOutcome.EMPTY

        if not self.circuit.allow_request():
            dropped = len(self._buffer)
            self._buffer = []
            self._stats["events_dropped_circuit_open"] += dropped
            logger.debug(f"Telemetry circuit breaker open, dropped {dropped} events")
            return FlushOutcome.CIRCUIT_OPEN

        # Swap before awaiting so events tracked during the send land in a fresh buffer
        events, self._buffer = self._buffer, []

        now = self._clock()
        self._last_flush_time = now
        self._record_flush_attempt(now)

        logger.debug(f"Flushing telemetry batch: {len(events)} events")
        try:
            result = await self.transport.send_batch(events, self.config.endpoint, self.config.version)
        except Exception as e:
            logger.warning(f"Telemetry transport raised: {e}")
            result = None

        if result is not None and result.success:
            self.circuit.record_success()
            self._stats["events_sent"] += len(events)
            logger.debug(f"Telemetry batch sent successfully: {len(events)} events")
            return FlushOutcome.SENT

        # Failed batches are dropped, never requeued
        self._stats["flushes_failed"] += 1
        self._stats["events_dropped_send_failed"] += len(events)
        self.circuit.record_failure()
        logger.warning(
            f"Telemetry batch send failed: {result.error if result else 'transport error'} "
            f"({len(events)} events, consecutive failures: {self.circuit.consecutive_failures})"
        )
        return FlushOutcome.FAILED

    def _record_flush_attempt(self, now: float) -> None:
        if now - self._flush_count_window_start >= FLUSH_COUNT_WINDOW_SECONDS:
            self._flush_count_window_start = now
            self._flush_count = 0
        self._flush_count += 1
        self._stats["flushes_attempted"] += 1
        if self._flush_count > self.config.max_flushes_per_hour:
            logger.warning(f"Telemetry flush count exceeded hourly limit: {self._flush_count} flushes this hour")

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.warning(f"Telemetry flush timer error: {e}")

    async def shutdown(self) -> None:
        """Stop the timer and send whatever is left. Safe to call more than once."""
        if self._shutting_down:
            return
        self._shutting_down = True

        logger.debug(f"Telemetry shutdown initiated, buffer size {len(self._buffer)}")

        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

        if self._buffer:
            try:
                await self.flush()
            except Exception as e:
                logger.warning(f"Final telemetry flush failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Counters and state for health reporting."""
        return {
            **self._stats,
            "enabled": self.config.enabled,
            "level": self.config.level.value,
            "buffer_size": len(self._buffer),
            "circuit": self.circuit.snapshot(),
            "shut_down": self._shutting_down,
        }


def create_collector(
    config: Optional[TelemetryConfig] = None,
    transport: Optional[TelemetryTransport] = None,
) -> TelemetryCollector:
    """Build the process-wide collector. Call once at startup and pass it to tool handlers.

    An injected config that fails validation is replaced by the defaults, keeping
    only its opt-out flag.
    """
    config = config or TelemetryConfig.from_env()
    result = config.validate()
    if not result.is_valid:
        for error in result.errors:
            logger.warning(f"Invalid telemetry configuration: {error}")
        enabled = config.enabled if isinstance(config.enabled, bool) else True
        config = TelemetryConfig(enabled=enabled)
        logger.warning("Falling back to default telemetry configuration")
    collector = TelemetryCollector(config, transport=transport)
    collector.start()
    return collector
