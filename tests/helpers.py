"""Shared test doubles for telemetry tests."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import List, Sequence

from weather_mcp.telemetry.config import TelemetryConfig, TelemetryLevel
from weather_mcp.telemetry.transport import SendResult, TelemetryTransport


class FakeClock:
    """Manually advanced clock for collector and circuit breaker tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(TelemetryTransport):
    """Transport double that records batches and returns a scripted outcome."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.batches: List[list] = []

    async def send_batch(self, events: Sequence, endpoint: str, version: str) -> SendResult:
        self.batches.append(list(events))
        if self.succeed:
            return SendResult.ok(len(events), 200)
        return SendResult.failure(len(events), "connection refused")

    @property
    def calls(self) -> int:
        return len(self.batches)


class GatedTransport(RecordingTransport):
    """Records each batch on arrival, then holds the send open until released."""

    def __init__(self, succeed: bool = True):
        super().__init__(succeed)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def send_batch(self, events: Sequence, endpoint: str, version: str) -> SendResult:
        self.batches.append(list(events))
        self.started.set()
        await self.release.wait()
        if self.succeed:
            return SendResult.ok(len(events), 200)
        return SendResult.failure(len(events), "connection refused")


def make_config(**overrides) -> TelemetryConfig:
    base = TelemetryConfig(
        enabled=True,
        level=TelemetryLevel.STANDARD,
        endpoint="https://collector.test/v1/events",
        salt="test-salt",
        version="9.9.9",
    )
    return replace(base, **overrides) if overrides else base
