"""
Resilient call execution: circuit breaking, timeouts, retry with exponential
backoff and jitter, plus per-service request metrics.
"""

import asyncio
import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .circuit_breaker import CallPermit, CircuitBreaker, CircuitBreakerConfig, CircuitBreakerStats
from .clock import Clock, SYSTEM_CLOCK
from .error_classifier import ClassifiedError, ErrorKind, classify
from .exceptions import CircuitOpenError, ServiceCallError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for one service. Durations are in seconds."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1
    timeout: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1:
            raise ValueError("exponential_base must be >= 1")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0.0 and 1.0")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    def backoff_delay(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """
        Delay before the attempt following ``attempt`` (1-based).

        delay = min(max_delay, base_delay * exponential_base^(attempt-1) * (1 + jitter_factor * rand()))
        """
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay += delay * self.jitter_factor * rand()
        return min(self.max_delay, delay)


@dataclass
class ServiceMetrics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0
    last_request_time: Optional[float] = None

    def record(self, success: bool, response_time: float, at: float) -> None:
        self.total_requests += 1
        self.last_request_time = at
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1
        # rolling average
        self.average_response_time += (response_time - self.average_response_time) / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "successfulRequests": self.successful_requests,
            "failedRequests": self.failed_requests,
            "averageResponseTime": self.average_response_time,
            "lastRequestTime": self.last_request_time,
        }


class _ServiceEntry:
    """Breaker and metrics of one service, each guarded by its own lock."""

    def __init__(self, breaker: CircuitBreaker):
        self.breaker = breaker
        self.metrics = ServiceMetrics()
        self.metrics_lock = threading.Lock()


class ResilienceRegistry:
    """
    Process-wide registry of circuit breakers and request metrics.

    Entries are created lazily per service name and live until the registry
    is discarded. The registry lock only guards entry creation; state changes
    are serialized per service by the entry's own locks.
    """

    def __init__(self, clock: Clock = SYSTEM_CLOCK):
        self.clock = clock
        self._entries: Dict[str, _ServiceEntry] = {}
        self._lock = threading.Lock()

    def _entry(self, service_name: str, config: CircuitBreakerConfig) -> _ServiceEntry:
        entry = self._entries.get(service_name)
        if entry is not None:
            return entry
        with self._lock:
            entry = self._entries.get(service_name)
            if entry is None:
                entry = _ServiceEntry(CircuitBreaker(service_name, config, self.clock))
                self._entries[service_name] = entry
            return entry

    def circuit_breaker(self, service_name: str, config: CircuitBreakerConfig) -> CircuitBreaker:
        return self._entry(service_name, config).breaker

    def record_request(self, service_name: str, config: CircuitBreakerConfig,
                       success: bool, response_time: float) -> None:
        entry = self._entry(service_name, config)
        with entry.metrics_lock:
            entry.metrics.record(success, response_time, self.clock.time())

    def circuit_breaker_stats(self) -> List[CircuitBreakerStats]:
        return [entry.breaker.stats() for entry in list(self._entries.values())]

    def service_metrics(self) -> Dict[str, ServiceMetrics]:
        snapshot = {}
        for name, entry in list(self._entries.items()):
            with entry.metrics_lock:
                snapshot[name] = ServiceMetrics(**vars(entry.metrics))
        return snapshot

    def reset_circuit_breaker(self, service_name: str) -> bool:
        """Force a breaker CLOSED. Returns False if the service is unknown."""
        entry = self._entries.get(service_name)
        if entry is None:
            logger.warning(f"No circuit breaker registered for [{service_name}]")
            return False
        entry.breaker.reset()
        return True


_default_registry = ResilienceRegistry()


def get_default_registry() -> ResilienceRegistry:
    return _default_registry


def reset_circuit_breaker(service_name: str) -> bool:
    return _default_registry.reset_circuit_breaker(service_name)


def circuit_breaker_stats() -> List[CircuitBreakerStats]:
    return _default_registry.circuit_breaker_stats()


class ResilientExecutor:
    """Runs async calls through a service's breaker with timeout and retry."""

    def __init__(self, registry: Optional[ResilienceRegistry] = None,
                 rand: Callable[[], float] = random.random):
        self.registry = registry or _default_registry
        self.clock = self.registry.clock
        self._rand = rand

    async def execute(
        self,
        service_name: str,
        retry_policy: RetryPolicy,
        breaker_config: CircuitBreakerConfig,
        call_factory: Callable[[], Awaitable[T]],
        deadline: Optional[float] = None,
    ) -> T:
        """
        Execute ``call_factory`` with resilience.

        Args:
            service_name: Breaker and metrics key
            retry_policy: Attempts, backoff and per-attempt timeout
            breaker_config: Used when the breaker is created
            call_factory: Produces a fresh awaitable for every attempt
            deadline: Optional absolute clock time after which no further
                attempt or backoff sleep is started

        Returns:
            The value produced by the first successful attempt

        Raises:
            CircuitOpenError: The breaker refused the call, no I/O attempted
            ServiceCallError: Terminal failure, carrying the classified cause
        """
        breaker = self.registry.circuit_breaker(service_name, breaker_config)
        permit = breaker.admit()
        if permit is CallPermit.DENIED:
            logger.warning(f"[{service_name}] Circuit open, failing fast")
            raise CircuitOpenError(service_name, breaker.next_attempt_time)

        attempt = 0
        while True:
            attempt += 1
            started = self.clock.time()
            logger.info(f"[{service_name}] Attempt {attempt}/{retry_policy.max_attempts}")
            try:
                result = await asyncio.wait_for(call_factory(), timeout=retry_policy.timeout)
            except asyncio.CancelledError:
                breaker.abandon(permit)
                raise
            except Exception as e:
                elapsed = self.clock.time() - started
                self.registry.record_request(service_name, breaker_config, False, elapsed)
                classified = classify(e)
                logger.info(
                    f"[{service_name}] Error: {classified.kind.value} - {classified.message} "
                    f"(retryable: {classified.retryable})"
                )

                if not classified.retryable or attempt >= retry_policy.max_attempts:
                    breaker.on_failure(permit)
                    logger.error(f"[{service_name}] Giving up after {attempt} attempt(s): {classified.kind.value}")
                    raise ServiceCallError(service_name, classified, attempt) from e

                if classified.retry_after is not None:
                    delay = classified.retry_after
                    logger.info(f"[{service_name}] Rate limited, waiting {delay:.2f}s")
                else:
                    delay = retry_policy.backoff_delay(attempt, self._rand)
                    logger.info(f"[{service_name}] Waiting {delay:.2f}s before retry...")

                if deadline is not None and self.clock.time() + delay >= deadline:
                    breaker.on_failure(permit)
                    logger.error(f"[{service_name}] Deadline reached before retry {attempt + 1}")
                    timed_out = ClassifiedError(
                        ErrorKind.TIMEOUT, True, f"deadline reached after: {classified.message}",
                        status_code=classified.status_code,
                    )
                    raise ServiceCallError(service_name, timed_out, attempt) from e

                await self.clock.sleep(delay)
                continue

            elapsed = self.clock.time() - started
            self.registry.record_request(service_name, breaker_config, True, elapsed)
            breaker.on_success(permit)
            logger.info(f"[{service_name}] Success in {elapsed * 1000:.0f}ms")
            return result
