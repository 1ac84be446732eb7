"""Typed batch, item and outcome records shared by the scheduler and executors."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from .cancellation import CancellationToken


class BatchMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ItemStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (ItemStatus.PENDING, ItemStatus.RUNNING)

    @property
    def blocks_dependents(self) -> bool:
        """Terminal states that cause dependents to be skipped."""
        return self in (ItemStatus.FAILED, ItemStatus.SKIPPED, ItemStatus.CANCELLED)


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    EXECUTION = "execution"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BatchItem:
    id: str
    name: str
    contract_dir: str = ""
    depends_on: Tuple[str, ...] = field(default_factory=tuple)
    command: Optional[str] = None


@dataclass(frozen=True)
class ExecutionOutcome:
    success: bool
    contract_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def failure(cls, error: str, error_kind: ErrorKind = ErrorKind.UNKNOWN) -> "ExecutionOutcome":
        return cls(success=False, error=error, error_kind=error_kind)


Executor = Callable[[BatchItem], Awaitable[ExecutionOutcome]]


@dataclass
class ItemResult:
    id: str
    status: ItemStatus = ItemStatus.PENDING
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    contract_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass(frozen=True)
class BatchRequest:
    batch_id: str
    mode: BatchMode
    items: Tuple[BatchItem, ...]
    concurrency: Optional[int] = None
    cancellation_token: Optional[CancellationToken] = None


@dataclass(frozen=True)
class BatchRunResult:
    batch_id: str
    mode: BatchMode
    results: Tuple[ItemResult, ...]
    cancelled: bool
    started_at: datetime
    finished_at: datetime

    def result_for(self, item_id: str) -> Optional[ItemResult]:
        for result in self.results:
            if result.id == item_id:
                return result
        return None

    def count(self, status: ItemStatus) -> int:
        return sum(1 for result in self.results if result.status is status)
