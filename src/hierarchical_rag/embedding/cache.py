"""Content-addressed embedding cache."""

from __future__ import annotations

import hashlib
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass


def cache_key(text: str) -> str:
    """SHA-256 hex digest of the trimmed *text*."""
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    evictions: int
    max_entries: int | None

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class EmbeddingCache:
    """Thread-safe mapping from :func:`cache_key` to embedding vector.

    Unbounded by default, so entries live for the life of the process.

    Parameters
    ----------
    max_entries:
        Optional LRU bound; the least recently used entry is evicted once
        the cache is full.
    ttl_seconds:
        Optional time-to-live; expired entries count as misses.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_entries: int | None = None,
        ttl_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries is not None and max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[list[float], float]] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._expired(entry[1])

    def _expired(self, stored_at: float) -> bool:
        return self.ttl_seconds is not None and self._clock() - stored_at > self.ttl_seconds

    def get(self, key: str) -> list[float] | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry[1]):
                if entry is not None:
                    del self._entries[key]
                    self._evictions += 1
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry[0]

    def put(self, key: str, embedding: list[float]) -> None:
        with self._lock:
            self._entries[key] = (list(embedding), self._clock())
            self._entries.move_to_end(key)
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
                    self._evictions += 1

    def clear(self) -> int:
        """Drop every entry and return how many were removed."""
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
            return removed

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                max_entries=self.max_entries,
            )
