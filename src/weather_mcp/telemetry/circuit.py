"""Circuit breaker guarding batch delivery."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stops batch sends for a cooldown after repeated consecutive failures.

    Once the cooldown has elapsed, the next call to ``allow_request`` lets a
    single trial send through. A successful trial closes the circuit; a failed one
    re-opens it for another full window.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.open_until: Optional[float] = None

    def allow_request(self) -> bool:
        """Return True if a send may be attempted now.

        While the half-open trial send is in flight every other caller is refused.
        """
        if self.state is CircuitState.CLOSED:
            return True
        if self.state is CircuitState.HALF_OPEN:
            return False
        if self.open_until is not None and self._clock() < self.open_until:
            return False
        self.state = CircuitState.HALF_OPEN
        logger.info("Telemetry circuit breaker attempting reset")
        return True

    def record_success(self) -> None:
        if self.state is not CircuitState.CLOSED:
            logger.info("Telemetry circuit breaker closed")
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.open_until = None

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.state is CircuitState.HALF_OPEN or self.consecutive_failures >= self.failure_threshold:
            self._open()

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.open_until = self._clock() + self.reset_timeout
        reset_at = datetime.fromtimestamp(self.open_until, tz=timezone.utc).isoformat()
        logger.error(
            f"Telemetry circuit breaker opened after {self.consecutive_failures} consecutive failures, "
            f"retry after {reset_at}"
        )

    def snapshot(self) -> Dict[str, object]:
        return {
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "open_until": self.open_until,
        }
