"""Batch scheduling of deployment items with dependency-aware skipping."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Callable, Dict, List, Optional, Sequence

from .cancellation import CancellationToken
from .coordinator import RetryCoordinator, SessionStatus
from .models import (
    BatchItem,
    BatchMode,
    BatchRequest,
    BatchRunResult,
    ErrorKind,
    ExecutionOutcome,
    Executor,
    ItemResult,
    ItemStatus,
)

logger = logging.getLogger(__name__)

ItemListener = Callable[[BatchItem, ItemResult], None]

_SESSION_TO_ITEM_STATUS = {
    SessionStatus.SUCCEEDED: ItemStatus.SUCCEEDED,
    SessionStatus.FAILED: ItemStatus.FAILED,
    SessionStatus.CANCELLED: ItemStatus.CANCELLED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _BatchRun:
    """Mutable state of one ``run_batch`` call."""

    def __init__(self, request: BatchRequest, emit: Callable[[BatchItem, ItemResult], None]):
        self.request = request
        self.token = request.cancellation_token or CancellationToken()
        self.results: Dict[str, ItemResult] = {item.id: ItemResult(id=item.id) for item in request.items}
        self._emit = emit

    def transition(self, item: BatchItem, status: ItemStatus, error: Optional[str] = None) -> ItemResult:
        result = self.results[item.id]
        if result.status.is_terminal:
            raise RuntimeError(f"Item '{item.id}' already finished as {result.status.value}")
        result.status = status
        if status is ItemStatus.RUNNING:
            result.started_at = _now()
        else:
            result.finished_at = _now()
        if error is not None:
            result.error = error
        self._emit(item, result)
        return result

    def failed_dependency(self, item: BatchItem) -> Optional[str]:
        for dependency in item.depends_on:
            result = self.results.get(dependency)
            if result is not None and result.status.blocks_dependents:
                return dependency
        return None

    def dependencies_satisfied(self, item: BatchItem) -> bool:
        for dependency in item.depends_on:
            result = self.results.get(dependency)
            if result is not None and result.status is not ItemStatus.SUCCEEDED:
                return False
        return True

    def skip(self, item: BatchItem, dependency: str) -> None:
        status = self.results[dependency].status.value
        self.transition(item, ItemStatus.SKIPPED, error=f"Dependency '{dependency}' {status}")

    def cancel_pending(self, items: Sequence[BatchItem]) -> None:
        for item in items:
            if self.results[item.id].status is ItemStatus.PENDING:
                self.transition(item, ItemStatus.CANCELLED, error="Batch cancelled before this item started")

    def finish(self, started_at: datetime) -> BatchRunResult:
        results = tuple(self.results[item.id] for item in self.request.items)
        return BatchRunResult(
            batch_id=self.request.batch_id,
            mode=self.request.mode,
            results=results,
            cancelled=any(result.status is ItemStatus.CANCELLED for result in results),
            started_at=started_at,
            finished_at=_now(),
        )


class BatchScheduler:
    """Drives every item of a batch to a terminal status.

    Items run through ``executor`` directly, or through ``coordinator`` when
    one is supplied so transient failures are retried. A failed item only
    affects the items that depend on it; ``run_batch`` itself does not raise
    for item failures.
    """

    def __init__(self, executor: Executor, coordinator: Optional[RetryCoordinator] = None):
        self.executor = executor
        self.coordinator = coordinator
        self._listeners: List[ItemListener] = []

    def on_item_change(self, listener: ItemListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    async def run_batch(self, request: BatchRequest) -> BatchRunResult:
        ids = [item.id for item in request.items]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Batch '{request.batch_id}' contains duplicate item ids")

        started_at = _now()
        run = _BatchRun(request, self._emit)
        logger.info(
            "Starting batch %s: %d item(s), mode=%s",
            request.batch_id,
            len(request.items),
            request.mode.value,
        )

        if request.mode is BatchMode.SEQUENTIAL:
            await self._run_sequential(run)
        else:
            await self._run_parallel(run, self._concurrency_limit(request))

        result = run.finish(started_at)
        logger.info(
            "Batch %s finished: %d succeeded, %d failed, %d skipped, %d cancelled",
            request.batch_id,
            result.count(ItemStatus.SUCCEEDED),
            result.count(ItemStatus.FAILED),
            result.count(ItemStatus.SKIPPED),
            result.count(ItemStatus.CANCELLED),
        )
        return result

    @staticmethod
    def _concurrency_limit(request: BatchRequest) -> int:
        if request.concurrency is None:
            return max(1, len(request.items))
        return max(1, request.concurrency)

    async def _run_sequential(self, run: _BatchRun) -> None:
        items = run.request.items
        for index, item in enumerate(items):
            if run.token.cancelled:
                logger.info("Batch %s cancelled; %d item(s) not started", run.request.batch_id, len(items) - index)
                run.cancel_pending(items[index:])
                return

            dependency = run.failed_dependency(item)
            if dependency is not None:
                run.skip(item, dependency)
                continue

            await self._execute(run, item)

    async def _run_parallel(self, run: _BatchRun, limit: int) -> None:
        pending: List[BatchItem] = list(run.request.items)
        in_flight: Dict[asyncio.Task, BatchItem] = {}
        try:
            await self._dispatch_parallel(run, limit, pending, in_flight)
        finally:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

    async def _dispatch_parallel(
        self,
        run: _BatchRun,
        limit: int,
        pending: List[BatchItem],
        in_flight: Dict[asyncio.Task, BatchItem],
    ) -> None:
        while pending or in_flight:
            if run.token.cancelled:
                if pending:
                    logger.info("Batch %s cancelled; %d item(s) not started", run.request.batch_id, len(pending))
                    run.cancel_pending(pending)
                    pending.clear()
            else:
                pending[:] = self._skip_blocked(run, pending)
                for item in list(pending):
                    if len(in_flight) >= limit:
                        break
                    if run.dependencies_satisfied(item):
                        pending.remove(item)
                        task = asyncio.ensure_future(self._execute(run, item))
                        in_flight[task] = item

            if not in_flight:
                if pending:
                    self._skip_unresolvable(run, pending)
                    pending.clear()
                break

            done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                in_flight.pop(task)
                task.result()

    @staticmethod
    def _skip_blocked(run: _BatchRun, pending: List[BatchItem]) -> List[BatchItem]:
        # Skipping can unblock further skips down the chain, so repeat until stable.
        remaining = list(pending)
        changed = True
        while changed:
            changed = False
            for item in list(remaining):
                dependency = run.failed_dependency(item)
                if dependency is not None:
                    run.skip(item, dependency)
                    remaining.remove(item)
                    changed = True
        return remaining

    @staticmethod
    def _skip_unresolvable(run: _BatchRun, pending: Sequence[BatchItem]) -> None:
        waiting_on = ", ".join(item.id for item in pending)
        logger.warning("Batch %s has items whose dependencies can never complete: %s", run.request.batch_id, waiting_on)
        for item in pending:
            run.transition(
                item,
                ItemStatus.SKIPPED,
                error="Dependencies can never complete (circular depends_on among: " + waiting_on + ")",
            )

    async def _execute(self, run: _BatchRun, item: BatchItem) -> None:
        run.transition(item, ItemStatus.RUNNING)
        logger.debug("Dispatching %s (%s)", item.id, item.name)

        if self.coordinator is not None:
            try:
                session = await self.coordinator.deploy(
                    lambda: self.executor(item),
                    name=item.name,
                    session_id=f"{run.request.batch_id}:{item.id}",
                )
            except ValueError as exc:
                logger.warning("Retry session for %s rejected: %s", item.id, exc)
                self._record(run, item, ExecutionOutcome.failure(str(exc)), ItemStatus.FAILED)
                return
            status = _SESSION_TO_ITEM_STATUS[session.status]
            outcome = session.outcome or ExecutionOutcome.failure(
                session.last_error or "Retry session cancelled", session.last_error_kind or ErrorKind.UNKNOWN
            )
            self._record(run, item, outcome, status)
            return

        try:
            outcome = await self.executor(item)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("Executor raised for %s", item.id, exc_info=True)
            outcome = ExecutionOutcome.failure(str(exc) or type(exc).__name__)

        status = ItemStatus.SUCCEEDED if outcome.success else ItemStatus.FAILED
        self._record(run, item, outcome, status)

    @staticmethod
    def _record(run: _BatchRun, item: BatchItem, outcome: ExecutionOutcome, status: ItemStatus) -> None:
        result = run.results[item.id]
        result.contract_id = outcome.contract_id
        result.transaction_hash = outcome.transaction_hash
        error = None
        if status is not ItemStatus.SUCCEEDED:
            error = outcome.error or "Deployment failed"
        if status is ItemStatus.FAILED:
            result.error_kind = outcome.error_kind or ErrorKind.UNKNOWN
            logger.warning("Item %s failed: %s", item.id, error)
        run.transition(item, status, error=error)

    def _emit(self, item: BatchItem, result: ItemResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(item, result)
            except Exception:
                logger.exception("Batch progress listener failed for item %s", item.id)


async def run_batch(
    executor: Executor,
    request: BatchRequest,
    coordinator: Optional[RetryCoordinator] = None,
) -> BatchRunResult:
    return await BatchScheduler(executor, coordinator=coordinator).run_batch(request)
