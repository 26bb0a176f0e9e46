"""Test configuration for pytest."""

from __future__ import annotations

import pytest

from tests.helpers import FakeClock, RecordingTransport


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport() -> RecordingTransport:
    return RecordingTransport(succeed=False)
