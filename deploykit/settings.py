"""Environment-driven runtime settings for batch deployments."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Mapping, Optional

from deploykit.runtime.execution.models import BatchMode
from deploykit.runtime.execution.retry import RetryPolicy, RetryPolicyError, validate_retry_policy


ENV_PREFIX = "DEPLOYKIT_"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SettingsError(ValueError):
    """Raised when an environment setting cannot be interpreted."""


@dataclass(frozen=True)
class RuntimeSettings:
    mode: BatchMode = BatchMode.SEQUENTIAL
    concurrency: Optional[int] = None
    retry_policy: RetryPolicy = RetryPolicy()
    log_level: str = "WARNING"

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)


def _read_int(environ: Mapping[str, str], name: str) -> Optional[int]:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise SettingsError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


def _read_float(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise SettingsError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def load_settings(environ: Optional[Mapping[str, str]] = None) -> RuntimeSettings:
    env = os.environ if environ is None else environ
    defaults = RuntimeSettings()

    raw_mode = env.get(ENV_PREFIX + "MODE")
    mode = defaults.mode
    if raw_mode is not None and raw_mode.strip():
        try:
            mode = BatchMode(raw_mode.strip().lower())
        except ValueError as exc:
            allowed = ", ".join(item.value for item in BatchMode)
            raise SettingsError(f"{ENV_PREFIX}MODE must be one of: {allowed}") from exc

    concurrency = _read_int(env, "CONCURRENCY")
    if concurrency is not None and concurrency < 1:
        raise SettingsError(f"{ENV_PREFIX}CONCURRENCY must be >= 1")

    base = defaults.retry_policy
    max_attempts = _read_int(env, "MAX_ATTEMPTS")
    initial_delay = _read_float(env, "INITIAL_DELAY_SECONDS")
    max_delay = _read_float(env, "MAX_DELAY_SECONDS")
    jitter = _read_float(env, "JITTER_SECONDS")
    attempt_timeout = _read_float(env, "ATTEMPT_TIMEOUT_SECONDS")
    policy = RetryPolicy(
        max_attempts=base.max_attempts if max_attempts is None else max_attempts,
        initial_delay_seconds=base.initial_delay_seconds if initial_delay is None else initial_delay,
        backoff_multiplier=base.backoff_multiplier,
        max_delay_seconds=base.max_delay_seconds if max_delay is None else max_delay,
        jitter_seconds=base.jitter_seconds if jitter is None else jitter,
        attempt_timeout_seconds=attempt_timeout,
    )
    try:
        validate_retry_policy(policy)
    except RetryPolicyError as exc:
        raise SettingsError(f"Invalid retry settings: {exc}") from exc

    log_level = env.get(ENV_PREFIX + "LOG_LEVEL", defaults.log_level).strip().upper()
    if log_level not in _LOG_LEVELS:
        raise SettingsError(f"{ENV_PREFIX}LOG_LEVEL must be one of: {', '.join(_LOG_LEVELS)}")

    return RuntimeSettings(
        mode=mode,
        concurrency=concurrency,
        retry_policy=policy,
        log_level=log_level,
    )
