"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are blocked
- HALF_OPEN: Testing if service has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold failures fall within monitoring_period
- OPEN → HALF_OPEN: On the first request after reset_timeout expires
- HALF_OPEN → CLOSED: On successful probe request
- HALF_OPEN → OPEN: On failed probe request
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from tripmate.services.errors import CircuitOpenError, ServiceError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half-open"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: timedelta = timedelta(seconds=60)  # Time before half-open
    monitoring_period: timedelta = timedelta(seconds=30)  # Failure counting window


@dataclass
class CircuitBreakerState:
    """Snapshot of a breaker's state."""

    state: CircuitState
    failure_count: int
    last_failure_time: datetime | None
    last_state_change: datetime
    next_attempt_time: datetime | None
    failure_timestamps: list[datetime] = field(default_factory=list)


class CircuitBreaker:
    """
    Circuit breaker implementation for a single service.

    Usage:
        cb = CircuitBreaker("openweathermap")
        result = await cb.execute(lambda: make_request(), "openweathermap")
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_timestamps: list[datetime] = []
        self._last_failure_time: datetime | None = None
        self._last_state_change = clock()
        self._next_attempt_time: datetime | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return len(self._failure_timestamps)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        service_id: str | None = None,
    ) -> T:
        """
        Run operation if the circuit allows it.

        Raises:
            CircuitOpenError: If the circuit is open (operation not invoked)
        """
        service_id = service_id or self.service_id

        if not self.allow_request():
            wait = self.get_time_until_reset()
            logger.warning(
                f"Circuit breaker '{service_id}' is OPEN, rejecting request "
                f"(retry in {wait:.1f}s)"
            )
            raise CircuitOpenError(service_id, wait)

        is_probe = self._state == CircuitState.HALF_OPEN
        if is_probe:
            self._probe_in_flight = True

        try:
            result = await operation()
        except asyncio.CancelledError:
            # Caller went away; that says nothing about the service
            raise
        except Exception:
            self.record_failure()
            raise
        else:
            self.record_success()
            return result
        finally:
            if is_probe:
                self._probe_in_flight = False

    def allow_request(self) -> bool:
        """Check if a request is allowed, moving OPEN → HALF_OPEN when due."""
        now = self._clock()
        self._prune(now)

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._next_attempt_time and now >= self._next_attempt_time:
                self._transition_to(CircuitState.HALF_OPEN, now)
                return True
            return False

        # HALF_OPEN: a single probe at a time
        return not self._probe_in_flight

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED, self._clock())
        self._failure_timestamps = []

    def record_failure(self) -> None:
        """Record a failed request."""
        now = self._clock()
        self._last_failure_time = now
        self._failure_timestamps.append(now)
        self._prune(now)

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._transition_to(CircuitState.OPEN, now)
        elif self._state == CircuitState.CLOSED:
            if self.failure_count >= self.config.failure_threshold:
                self._transition_to(CircuitState.OPEN, now)
        else:
            # Failure reported while already open (e.g. a late in-flight call)
            self._next_attempt_time = now + self.config.reset_timeout

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_timestamps = []
        self._last_failure_time = None
        self._last_state_change = self._clock()
        self._next_attempt_time = None
        self._probe_in_flight = False
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float:
        """Get seconds until the circuit will admit a probe request."""
        if self._state != CircuitState.OPEN or not self._next_attempt_time:
            if self._state == CircuitState.HALF_OPEN:
                return 0.0
            return self.config.reset_timeout.total_seconds()

        remaining = (self._next_attempt_time - self._clock()).total_seconds()
        return max(0.0, remaining)

    def get_state(self) -> CircuitBreakerState:
        """Get a copy of the current state."""
        return CircuitBreakerState(
            state=self._state,
            failure_count=self.failure_count,
            last_failure_time=self._last_failure_time,
            last_state_change=self._last_state_change,
            next_attempt_time=self._next_attempt_time,
            failure_timestamps=list(self._failure_timestamps),
        )

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "service_id": self.service_id,
            "state": self._state.value,
            "failure_count": self.failure_count,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "last_state_change": self._last_state_change.isoformat(),
            "next_attempt": (
                self._next_attempt_time.isoformat() if self._next_attempt_time else None
            ),
        }

    def _prune(self, now: datetime) -> None:
        window = self.config.monitoring_period
        self._failure_timestamps = [
            ts for ts in self._failure_timestamps if now - ts < window
        ]

    def _transition_to(self, new_state: CircuitState, now: datetime) -> None:
        old_state = self._state
        self._state = new_state
        self._last_state_change = now

        if new_state == CircuitState.OPEN:
            self._next_attempt_time = now + self.config.reset_timeout
            logger.warning(
                f"Circuit breaker '{self.service_id}' OPENED after "
                f"{self.failure_count} failures "
                f"(next attempt in {self.config.reset_timeout.total_seconds():.0f}s)"
            )
        elif new_state == CircuitState.CLOSED:
            self._next_attempt_time = None
            self._failure_timestamps = []
            logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")
        else:
            logger.info(
                f"Circuit breaker '{self.service_id}' transitioned "
                f"{old_state.value} → {new_state.value}"
            )


class CircuitBreakerRegistry:
    """
    Registry for managing one circuit breaker per service.

    Usage:
        registry = CircuitBreakerRegistry()
        registry.register("openweathermap", CircuitBreakerConfig(failure_threshold=5))
        cb = registry.get("openweathermap")
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._clock = clock

    def register(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Create (or replace) the breaker for a service."""
        breaker = CircuitBreaker(service_id, config, clock=self._clock)
        self._breakers[service_id] = breaker
        return breaker

    def get(self, service_id: str) -> CircuitBreaker:
        """Get the circuit breaker for a registered service."""
        breaker = self._breakers.get(service_id)
        if breaker is None:
            raise ServiceError(f"Unknown service ID: {service_id}", service_id=service_id)
        return breaker

    def __contains__(self, service_id: str) -> bool:
        return service_id in self._breakers

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {
            service_id: cb.get_status() for service_id, cb in self._breakers.items()
        }

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        for cb in self._breakers.values():
            cb.reset()
        logger.info(f"Reset {len(self._breakers)} circuit breakers")

    def reset(self, service_id: str) -> bool:
        """Reset a specific circuit breaker."""
        if service_id in self._breakers:
            self._breakers[service_id].reset()
            return True
        return False

    def get_open_circuits(self) -> list[str]:
        """Get list of services with open circuits."""
        return [
            service_id
            for service_id, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
