"""
Telemetry Transport Layer

This module delivers event batches to the remote collection endpoint.
Transports are stateless and never retry; retry policy belongs to the
collector's circuit breaker.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from .events import AnonymizedEvent, EventBatch

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


@dataclass(frozen=True)
class SendResult:
    """Outcome of one batch delivery."""

    success: bool
    count: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, count: int, status_code: Optional[int] = None) -> "SendResult":
        return cls(success=True, count=count, status_code=status_code)

    @classmethod
    def failure(cls, count: int, error: str, status_code: Optional[int] = None) -> "SendResult":
        return cls(success=False, count=count, status_code=status_code, error=error)


class TelemetryTransport(ABC):
    """Abstract base class for telemetry transport mechanisms."""

    @abstractmethod
    async def send_batch(self, events: Sequence[AnonymizedEvent], endpoint: str, version: str) -> SendResult:
        """Send a batch of events. Must not raise."""
        pass


class HTTPTransport(TelemetryTransport):
    """HTTP-based telemetry transport.

    Each batch is one ``POST`` of ``{"events": [...]}``. Any 2xx response is
    a success; every other status, network error or timeout is a failure.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        # Injected transport is used by tests (httpx.MockTransport)
        self._transport = transport

    @staticmethod
    def build_headers(version: str) -> dict:
        return {
            "Content-Type": "application/json",
            "User-Agent": f"weather-mcp/{version}",
        }

    async def send_batch(self, events: Sequence[AnonymizedEvent], endpoint: str, version: str) -> SendResult:
        """Send batch data via HTTP."""
        count = len(events)
        if count == 0:
            return SendResult.ok(0)

        try:
            body = json.dumps(EventBatch(list(events)).to_payload())
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
                response = await client.post(endpoint, content=body, headers=self.build_headers(version))
        except httpx.TimeoutException:
            logger.warning(f"Telemetry request timeout ({count} events)")
            return SendResult.failure(count, "Request timeout")
        except httpx.HTTPError as e:
            logger.warning(f"Telemetry request error ({count} events): {e}")
            return SendResult.failure(count, str(e) or type(e).__name__)
        except Exception as e:
            logger.warning(f"Telemetry transport error ({count} events): {e}")
            return SendResult.failure(count, str(e) or type(e).__name__)

        if 200 <= response.status_code < 300:
            logger.debug(f"Telemetry batch sent successfully: {count} events, status {response.status_code}")
            return SendResult.ok(count, response.status_code)

        logger.warning(f"Telemetry batch failed: HTTP {response.status_code} ({count} events)")
        return SendResult.failure(count, f"HTTP {response.status_code}", status_code=response.status_code)
