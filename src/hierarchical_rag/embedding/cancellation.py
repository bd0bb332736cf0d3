"""Cooperative cancellation for long-running embedding work."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from hierarchical_rag.exceptions import OperationCancelledError


class CancellationToken:
    """Flag shared between a caller and the work it started.

    Parameters
    ----------
    timeout:
        Optional overall budget in seconds; once it elapses the token
        reports itself cancelled.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def timed_out(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.timed_out

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")
        if self.timed_out:
            raise OperationCancelledError("Operation exceeded its deadline")

