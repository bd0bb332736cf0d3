"""Process-wide minimum spacing between provider calls."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hierarchical_rag.embedding.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def _sleep(seconds: float) -> None:
    time.sleep(seconds)


class RateLimiter:
    """Guarantee at least *min_interval_ms* between consecutive acquisitions.

    The lock is held while waiting, so concurrent callers queue up and are
    released one interval apart.

    Parameters
    ----------
    min_interval_ms:
        Minimum spacing between two provider calls.
    clock, sleep:
        Time source and sleep function, injectable for tests.
    """

    def __init__(
        self,
        min_interval_ms: int = 500,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = _sleep,
    ) -> None:
        if min_interval_ms < 0:
            raise ValueError(f"min_interval_ms must be >= 0, got {min_interval_ms}")
        self.min_interval = min_interval_ms / 1000
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: float | None = None

    def acquire(self, cancel: CancellationToken | None = None) -> float:
        """Block until a call is allowed; return the seconds spent waiting."""
        with self._lock:
            waited = 0.0
            if self._last_call is not None:
                wait = self.min_interval - (self._clock() - self._last_call)
                if wait > 0:
                    logger.debug("Rate limiting: waiting %.0fms", wait * 1000)
                    self._sleep(wait)
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    waited = wait
            self._last_call = self._clock()
            return waited
