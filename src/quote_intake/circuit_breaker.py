"""
Circuit breaker guarding calls to an external service.

State machine:
    CLOSED -> OPEN: failure_count >= failure_threshold
    OPEN -> HALF_OPEN: reset_timeout elapsed (admits one trial call)
    HALF_OPEN -> CLOSED: trial call succeeded, counters zeroed
    HALF_OPEN -> OPEN: trial call failed, next attempt time recomputed

Callers take a CallPermit from admit() and hand it back with the outcome.
Only the TRIAL permit can move a HALF_OPEN breaker.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .clock import Clock, SYSTEM_CLOCK

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CallPermit(str, Enum):
    DENIED = "DENIED"
    NORMAL = "NORMAL"
    TRIAL = "TRIAL"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 300.0

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must not be negative")


@dataclass(frozen=True)
class CircuitBreakerStats:
    """Read-only snapshot of a breaker."""
    service_name: str
    state: CircuitState
    failures: int
    successes: int
    last_failure_time: Optional[float]
    next_attempt_time: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "serviceName": self.service_name,
            "state": self.state.value,
            "failures": self.failures,
            "successes": self.successes,
            "lastFailureTime": self.last_failure_time,
            "nextAttemptTime": self.next_attempt_time,
        }


class CircuitBreaker:
    """Per-service breaker. Every transition happens under the instance lock."""

    def __init__(self, service_name: str, config: CircuitBreakerConfig, clock: Clock = SYSTEM_CLOCK):
        self.service_name = service_name
        self.config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_time: Optional[float] = None
        self._next_attempt_time: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def next_attempt_time(self) -> Optional[float]:
        with self._lock:
            return self._next_attempt_time

    def admit(self) -> CallPermit:
        """Ask to make a call. A TRIAL permit holds the single HALF_OPEN slot."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return CallPermit.NORMAL

            if self._state == CircuitState.OPEN:
                if self._clock.time() >= (self._next_attempt_time or 0.0):
                    self._state = CircuitState.HALF_OPEN
                    self._trial_in_flight = True
                    logger.info(f"Circuit breaker [{self.service_name}]: OPEN -> HALF_OPEN")
                    return CallPermit.TRIAL
                return CallPermit.DENIED

            if self._trial_in_flight:
                return CallPermit.DENIED
            self._trial_in_flight = True
            return CallPermit.TRIAL

    def can_execute(self) -> bool:
        """Whether a call may proceed right now. Takes the trial slot when HALF_OPEN."""
        return self.admit() is not CallPermit.DENIED

    def on_success(self, permit: CallPermit = CallPermit.NORMAL) -> None:
        with self._lock:
            self._successes += 1
            if permit is CallPermit.TRIAL and self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._failures = 0
                self._next_attempt_time = None
                self._trial_in_flight = False
                logger.info(f"Circuit breaker [{self.service_name}]: HALF_OPEN -> CLOSED")

    def on_failure(self, permit: CallPermit = CallPermit.NORMAL) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_time = self._clock.time()
            if permit is CallPermit.TRIAL and self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._open()
            elif self._state == CircuitState.CLOSED and self._failures >= self.config.failure_threshold:
                self._open()

    def abandon(self, permit: CallPermit = CallPermit.TRIAL) -> None:
        """Release a trial slot whose call was cancelled before it produced an outcome."""
        if permit is not CallPermit.TRIAL:
            return
        with self._lock:
            self._trial_in_flight = False

    def _open(self) -> None:
        previous = self._state
        self._state = CircuitState.OPEN
        self._next_attempt_time = self._clock.time() + self.config.reset_timeout
        logger.warning(
            f"Circuit breaker [{self.service_name}]: {previous.value} -> OPEN "
            f"(reset in {self.config.reset_timeout:.0f}s)"
        )

    def reset(self) -> None:
        """Force the breaker CLOSED with zeroed counters."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._successes = 0
            self._next_attempt_time = None
            self._trial_in_flight = False
            logger.info(f"Circuit breaker [{self.service_name}] manually reset to CLOSED")

    def stats(self) -> CircuitBreakerStats:
        with self._lock:
            return CircuitBreakerStats(
                service_name=self.service_name,
                state=self._state,
                failures=self._failures,
                successes=self._successes,
                last_failure_time=self._last_failure_time,
                next_attempt_time=self._next_attempt_time,
            )
