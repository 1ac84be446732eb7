"""Circuit breaker guarding retry sessions against a failing deploy target."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(ValueError):
    """Raised when circuit breaker thresholds are invalid."""


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    consecutive_failures_threshold: int = 3
    reset_timeout_seconds: float = 60.0
    success_threshold: int = 2


@dataclass(frozen=True)
class CircuitBreakerStats:
    state: CircuitState
    success_count: int
    failure_count: int
    consecutive_failures: int
    total_requests: int
    opened_at: Optional[float]
    last_failure_at: Optional[float]
    last_success_at: Optional[float]


def validate_circuit_config(config: CircuitBreakerConfig) -> CircuitBreakerConfig:
    for name in ("failure_threshold", "consecutive_failures_threshold", "success_threshold"):
        if getattr(config, name) < 1:
            raise CircuitBreakerError(f"{name} must be >= 1")
    if config.reset_timeout_seconds < 0:
        raise CircuitBreakerError("reset_timeout_seconds must be >= 0")
    return config


class CircuitBreaker:
    """Closed/open/half-open breaker counting failed attempts.

    The circuit opens once ``consecutive_failures_threshold`` attempts fail in
    a row, or ``failure_threshold`` attempts fail since it last closed. After
    ``reset_timeout_seconds`` an open circuit lets requests through again as
    half-open; ``success_threshold`` successes close it, one failure reopens it.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = validate_circuit_config(config or CircuitBreakerConfig())
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._success_count = 0
        self._failure_count = 0
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._last_failure_at: Optional[float] = None
        self._last_success_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._reset_elapsed():
            self._to_half_open()
        return self._state

    def can_attempt(self) -> bool:
        return self.state is not CircuitState.OPEN

    def retry_after(self) -> float:
        """Seconds until an open circuit lets a request through; 0 otherwise."""
        if self.state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self._opened_at + self.config.reset_timeout_seconds - self._clock())

    def record_success(self) -> None:
        self._last_success_at = self._clock()
        self._consecutive_failures = 0
        self._success_count += 1
        if self._state is CircuitState.HALF_OPEN and self._success_count >= self.config.success_threshold:
            self._to_closed()

    def record_failure(self) -> None:
        self._last_failure_at = self._clock()
        self._failure_count += 1
        self._consecutive_failures += 1
        if self._state is CircuitState.HALF_OPEN:
            self._to_open()
        elif self._state is CircuitState.CLOSED and (
            self._consecutive_failures >= self.config.consecutive_failures_threshold
            or self._failure_count >= self.config.failure_threshold
        ):
            self._to_open()

    def reset(self) -> None:
        self._to_closed()

    def stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(
            state=self.state,
            success_count=self._success_count,
            failure_count=self._failure_count,
            consecutive_failures=self._consecutive_failures,
            total_requests=self._success_count + self._failure_count,
            opened_at=self._opened_at,
            last_failure_at=self._last_failure_at,
            last_success_at=self._last_success_at,
        )

    def _reset_elapsed(self) -> bool:
        return self._clock() - self._opened_at >= self.config.reset_timeout_seconds

    def _to_closed(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info("Circuit closed")
        self._state = CircuitState.CLOSED
        self._success_count = 0
        self._failure_count = 0
        self._consecutive_failures = 0
        self._opened_at = None

    def _to_open(self) -> None:
        logger.warning(
            "Circuit opened after %d consecutive failure(s); retrying in %.1fs",
            self._consecutive_failures,
            self.config.reset_timeout_seconds,
        )
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._success_count = 0

    def _to_half_open(self) -> None:
        logger.info("Circuit half-open; letting a trial request through")
        self._state = CircuitState.HALF_OPEN
        self._success_count = 0
