"""Cooperative cancellation shared by a batch run and its retry sessions."""

from __future__ import annotations

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class CancellationToken:
    """Poll-based cancellation flag.

    Cancelling never interrupts work that is already running; schedulers
    check ``cancelled`` before each dispatch decision. Listeners registered
    with ``on_cancel`` fire once, synchronously, from ``cancel()``.
    """

    def __init__(self):
        self._cancelled = False
        self._listeners: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            self._notify(listener)

    @staticmethod
    def _notify(listener: Callable[[], None]) -> None:
        try:
            listener()
        except Exception:
            logger.exception("Cancellation listener failed")

    def on_cancel(self, listener: Callable[[], None]) -> Callable[[], None]:
        if self._cancelled:
            self._notify(listener)
            return lambda: None

        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose
