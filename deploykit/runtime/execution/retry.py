"""Retry and backoff policy primitives for deployment attempts."""

from __future__ import annotations

from dataclasses import dataclass
import random
from typing import Any, Mapping, Optional, Tuple

from .models import ErrorKind


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    jitter_seconds: float = 0.0
    attempt_timeout_seconds: Optional[float] = None


DEFAULT_RETRY_POLICY = RetryPolicy()

_FIELD_TYPES = {
    "max_attempts": int,
    "initial_delay_seconds": float,
    "backoff_multiplier": float,
    "max_delay_seconds": float,
    "jitter_seconds": float,
    "attempt_timeout_seconds": float,
}
_OPTIONAL_FIELDS = frozenset({"attempt_timeout_seconds"})

TRANSIENT_ERROR_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.UNKNOWN}
)


class RetryPolicyError(ValueError):
    """Raised when retry policy values are invalid."""


def validate_retry_policy(policy: RetryPolicy) -> RetryPolicy:
    if policy.max_attempts < 1:
        raise RetryPolicyError("max_attempts must be >= 1")
    if policy.initial_delay_seconds < 0:
        raise RetryPolicyError("initial_delay_seconds must be >= 0")
    if policy.backoff_multiplier < 1:
        raise RetryPolicyError("backoff_multiplier must be >= 1")
    if policy.max_delay_seconds < 0:
        raise RetryPolicyError("max_delay_seconds must be >= 0")
    if policy.jitter_seconds < 0:
        raise RetryPolicyError("jitter_seconds must be >= 0")
    if policy.attempt_timeout_seconds is not None and policy.attempt_timeout_seconds <= 0:
        raise RetryPolicyError("attempt_timeout_seconds must be > 0 when set")
    return policy


def retry_policy_from_mapping(
    raw: Optional[Mapping[str, Any]],
    base: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> RetryPolicy:
    if raw is None:
        return base
    if not isinstance(raw, Mapping):
        raise RetryPolicyError("retry policy must be a mapping")

    unknown = sorted(str(key) for key in set(raw) - set(_FIELD_TYPES))
    if unknown:
        raise RetryPolicyError(f"Unknown retry policy fields: {', '.join(unknown)}")

    values = {}
    for name, convert in _FIELD_TYPES.items():
        value = raw.get(name, getattr(base, name))
        if value is None and name in _OPTIONAL_FIELDS:
            values[name] = None
            continue
        if isinstance(value, bool):
            raise RetryPolicyError(f"retry.{name} must be numeric")
        try:
            values[name] = convert(value)
        except (TypeError, ValueError) as exc:
            raise RetryPolicyError(f"retry.{name} must be numeric, got {value!r}") from exc
    return validate_retry_policy(RetryPolicy(**values))


def compute_backoff_delay(policy: RetryPolicy, attempt_number: int, rand: Optional[float] = None) -> float:
    """Delay to wait after attempt ``attempt_number`` (1-based) before the next one."""
    validate_retry_policy(policy)
    if attempt_number < 1:
        raise RetryPolicyError("attempt_number must be >= 1")

    base_delay = policy.initial_delay_seconds * (policy.backoff_multiplier ** (attempt_number - 1))
    capped = min(base_delay, policy.max_delay_seconds)

    if policy.jitter_seconds <= 0:
        return max(0.0, capped)

    noise_seed = random.random() if rand is None else rand
    noise_seed = max(0.0, min(1.0, noise_seed))
    return max(0.0, capped + noise_seed * policy.jitter_seconds)


def build_retry_schedule(policy: RetryPolicy) -> Tuple[float, ...]:
    validate_retry_policy(policy)
    retries = max(0, policy.max_attempts - 1)
    return tuple(compute_backoff_delay(policy, number, rand=0.0) for number in range(1, retries + 1))


def is_transient(error_kind: Optional[ErrorKind]) -> bool:
    """Whether a failure of this kind is worth another attempt.

    Executors that do not classify their errors are treated as ``unknown``,
    which retries.
    """
    if error_kind is None:
        error_kind = ErrorKind.UNKNOWN
    return error_kind in TRANSIENT_ERROR_KINDS
