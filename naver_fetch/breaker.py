"""
Circuit Breaker guarding every upstream call.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, all requests rejected immediately
- HALF_OPEN: Cooldown elapsed, trial requests allowed

One breaker instance covers the whole upstream (not per target), so a
failing upstream stops bulk traffic quickly. Half-open trials are not
serialized; concurrent probes are possible when the bulkhead allows them.
"""

import time
import logging
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Trips after `fail_threshold` consecutive failed calls and lets a trial
    through once `open_ms` has passed.

    The fail streak is not reset on OPEN -> HALF_OPEN, so a failure while
    half-open reopens immediately and re-arms the open timer.
    """

    def __init__(self, fail_threshold: int, open_ms: float, clock: Callable[[], float] = time.monotonic):
        if fail_threshold < 1:
            raise ValueError("fail_threshold must be >= 1")
        self.fail_threshold = fail_threshold
        self.open_s = open_ms / 1000.0
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._fail_streak = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def fail_streak(self) -> int:
        return self._fail_streak

    @property
    def opened_at(self) -> float:
        return self._opened_at

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            logger.warning(
                "Circuit %s -> open after %d consecutive failures (cooldown %.1fs)",
                old_state.value, self._fail_streak, self.open_s,
            )
        else:
            logger.info("Circuit %s -> %s", old_state.value, new_state.value)

    def can_attempt(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.open_s:
                self._transition_to(CircuitState.HALF_OPEN)
                return True
            return False
        return True

    def retry_after(self) -> float:
        """Seconds until an open circuit admits a trial (0 when not open)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.open_s - (self._clock() - self._opened_at))

    def on_success(self) -> None:
        self._fail_streak = 0
        if self._state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED)

    def on_failure(self) -> None:
        self._fail_streak += 1
        if self._state != CircuitState.OPEN and self._fail_streak >= self.fail_threshold:
            self._opened_at = self._clock()
            self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Manually force the circuit closed."""
        self._fail_streak = 0
        self._opened_at = 0.0
        if self._state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED)
