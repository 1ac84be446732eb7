"""Retry sessions wrapping a single deployment operation."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
import logging
import random
import time
import uuid
from typing import Awaitable, Callable, Dict, List, Optional

from .cancellation import CancellationToken
from .circuit import CircuitBreaker, CircuitBreakerStats, CircuitState
from .models import ErrorKind, ExecutionOutcome
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, compute_backoff_delay, is_transient, validate_retry_policy

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[ExecutionOutcome]]
StatusListener = Callable[["RetrySession"], None]


class SessionStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RetryAttempt:
    number: int
    started_at: datetime
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    delay_seconds: float = 0.0


@dataclass
class RetrySession:
    session_id: str
    name: str
    started_at: datetime
    status: SessionStatus = SessionStatus.RUNNING
    attempts: List[RetryAttempt] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[ErrorKind] = None
    outcome: Optional[ExecutionOutcome] = None

    @property
    def is_running(self) -> bool:
        return self.status is SessionStatus.RUNNING


@dataclass
class RetryStats:
    """Attempt counters for every session sharing one operation name."""

    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    total_delay_seconds: float = 0.0
    total_response_seconds: float = 0.0
    last_attempt_at: Optional[datetime] = None

    @property
    def average_response_seconds(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.total_response_seconds / self.total_attempts


class RetrySessionStore:
    """In-memory session history keyed by session id, in insertion order."""

    def __init__(self):
        self._sessions: Dict[str, RetrySession] = {}

    def add(self, session: RetrySession) -> None:
        if session.session_id in self._sessions and self._sessions[session.session_id].is_running:
            raise ValueError(f"Retry session '{session.session_id}' is already running")
        self._sessions.pop(session.session_id, None)
        self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[RetrySession]:
        return self._sessions.get(session_id)

    def values(self) -> List[RetrySession]:
        return list(self._sessions.values())

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RetryCoordinator:
    """Runs operations under a backoff policy and keeps their session history.

    Every attempt, scheduled retry and terminal transition is published to
    ``on_status_change`` listeners with the updated session. Sessions can be
    cancelled individually with ``cancel``; cancelling one session never
    affects another.

    When a ``circuit_breaker`` is supplied, every attempt outcome is recorded
    on it and new sessions fail fast with ``circuit_open`` while it is open.
    Attempt counts and timings are aggregated per session name.
    """

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        store: Optional[RetrySessionStore] = None,
        rand: Callable[[], float] = random.random,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.policy = validate_retry_policy(policy)
        self.store = store if store is not None else RetrySessionStore()
        self.circuit_breaker = circuit_breaker
        self._rand = rand
        self._listeners: List[StatusListener] = []
        self._wakeups: Dict[str, asyncio.Event] = {}
        self._stats: Dict[str, RetryStats] = {}

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def get_history(self) -> List[RetrySession]:
        return self.store.values()

    def get_session(self, session_id: str) -> Optional[RetrySession]:
        return self.store.get(session_id)

    def clear_history(self) -> int:
        finished = [session.session_id for session in self.store.values() if not session.is_running]
        for session_id in finished:
            self.store.remove(session_id)
        return len(finished)

    def get_retry_stats(self, name: str) -> Optional[RetryStats]:
        stats = self._stats.get(name)
        return replace(stats) if stats is not None else None

    def get_all_retry_stats(self) -> Dict[str, RetryStats]:
        return {name: replace(stats) for name, stats in self._stats.items()}

    def clear_stats(self) -> None:
        self._stats.clear()

    @property
    def circuit_state(self) -> Optional[CircuitState]:
        if self.circuit_breaker is None:
            return None
        return self.circuit_breaker.state

    def get_circuit_stats(self) -> Optional[CircuitBreakerStats]:
        if self.circuit_breaker is None:
            return None
        return self.circuit_breaker.stats()

    def reset_circuit(self) -> None:
        if self.circuit_breaker is not None:
            self.circuit_breaker.reset()
            logger.info("Circuit breaker reset")

    def cancel(self, session_id: str) -> bool:
        session = self.store.get(session_id)
        if session is None or not session.is_running:
            return False

        logger.info("Retry session %s cancelled after %d attempt(s)", session_id, len(session.attempts))
        self._finish(session, SessionStatus.CANCELLED)
        wakeup = self._wakeups.get(session_id)
        if wakeup is not None:
            wakeup.set()
        return True

    async def deploy(
        self,
        operation: Operation,
        *,
        name: str = "",
        session_id: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> RetrySession:
        policy = validate_retry_policy(policy or self.policy)
        session = RetrySession(
            session_id=session_id or uuid.uuid4().hex,
            name=name,
            started_at=_now(),
        )
        self.store.add(session)
        self._wakeups[session.session_id] = asyncio.Event()
        self._emit(session)

        dispose_token = None
        if cancellation_token is not None:
            dispose_token = cancellation_token.on_cancel(lambda: self.cancel(session.session_id))

        try:
            if session.is_running and not self._circuit_allows(session):
                return session
            await self._run_attempts(session, operation, policy)
        finally:
            if dispose_token is not None:
                dispose_token()
            self._wakeups.pop(session.session_id, None)
        return session

    def _circuit_allows(self, session: RetrySession) -> bool:
        if self.circuit_breaker is None or self.circuit_breaker.can_attempt():
            return True
        retry_after = self.circuit_breaker.retry_after()
        session.last_error = f"Circuit breaker open; target unavailable for another {retry_after:.1f}s"
        session.last_error_kind = ErrorKind.CIRCUIT_OPEN
        session.outcome = ExecutionOutcome.failure(session.last_error, ErrorKind.CIRCUIT_OPEN)
        logger.warning("Session %s rejected: circuit breaker open", session.session_id)
        self._finish(session, SessionStatus.FAILED)
        return False

    async def _attempt(self, operation: Operation, policy: RetryPolicy) -> ExecutionOutcome:
        timeout = policy.attempt_timeout_seconds
        try:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            return ExecutionOutcome.failure(f"Attempt timed out after {timeout}s", ErrorKind.TIMEOUT)
        except Exception as exc:
            logger.debug("Operation raised", exc_info=True)
            return ExecutionOutcome.failure(str(exc) or type(exc).__name__, ErrorKind.UNKNOWN)

    def _record_attempt(self, session: RetrySession, outcome: ExecutionOutcome, elapsed: float) -> None:
        stats = self._stats.setdefault(session.name or session.session_id, RetryStats())
        stats.total_attempts += 1
        stats.total_response_seconds += elapsed
        stats.last_attempt_at = _now()
        if outcome.success:
            stats.successful_attempts += 1
        else:
            stats.failed_attempts += 1

        if self.circuit_breaker is not None:
            if outcome.success:
                self.circuit_breaker.record_success()
            else:
                self.circuit_breaker.record_failure()

    async def _run_attempts(self, session: RetrySession, operation: Operation, policy: RetryPolicy) -> None:
        for number in range(1, policy.max_attempts + 1):
            if not session.is_running:
                return

            attempt = RetryAttempt(number=number, started_at=_now())
            session.attempts.append(attempt)
            self._emit(session)

            started = time.monotonic()
            outcome = await self._attempt(operation, policy)
            self._record_attempt(session, outcome, time.monotonic() - started)

            if not session.is_running:
                # Cancelled while the attempt was in flight; the attempt still ran to completion.
                attempt.error = outcome.error
                attempt.error_kind = outcome.error_kind
                return

            if outcome.success:
                session.outcome = outcome
                self._finish(session, SessionStatus.SUCCEEDED)
                return

            attempt.error = outcome.error or "Deployment failed"
            attempt.error_kind = outcome.error_kind or ErrorKind.UNKNOWN
            session.last_error = attempt.error
            session.last_error_kind = attempt.error_kind
            session.outcome = outcome

            if not is_transient(attempt.error_kind):
                logger.info(
                    "Session %s failed with permanent %s error: %s",
                    session.session_id,
                    attempt.error_kind.value,
                    attempt.error,
                )
                self._finish(session, SessionStatus.FAILED)
                return

            if number == policy.max_attempts:
                logger.info("Session %s exhausted %d attempts", session.session_id, number)
                self._finish(session, SessionStatus.FAILED)
                return

            attempt.delay_seconds = compute_backoff_delay(policy, number, rand=self._rand())
            self._stats[session.name or session.session_id].total_delay_seconds += attempt.delay_seconds
            logger.debug(
                "Session %s attempt %d failed (%s); retrying in %.3fs",
                session.session_id,
                number,
                attempt.error_kind.value,
                attempt.delay_seconds,
            )
            self._emit(session)

            if await self._sleep_unless_cancelled(session.session_id, attempt.delay_seconds):
                return

    async def _sleep_unless_cancelled(self, session_id: str, delay: float) -> bool:
        wakeup = self._wakeups.get(session_id)
        if wakeup is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(wakeup.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _finish(self, session: RetrySession, status: SessionStatus) -> None:
        session.status = status
        session.completed_at = _now()
        self._emit(session)

    def _emit(self, session: RetrySession) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Retry status listener failed for session %s", session.session_id)
