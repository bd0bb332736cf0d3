"""Embedding generation with caching, throttling, retries and batching.

:class:`EmbeddingGenerator` is the single entry point the ingestion
pipeline uses to turn chunk texts into vectors. Every provider call goes
through the same path:

1. content-hash cache lookup (hits bypass the limiter entirely),
2. the process-wide :class:`~hierarchical_rag.embedding.rate_limiter.RateLimiter`,
3. the provider, retried with exponential backoff.

Two bulk modes sit on top of that path. :meth:`EmbeddingGenerator.generate_embeddings`
fans sub-batches out to a thread pool and aborts on the first failure,
while :meth:`EmbeddingGenerator.process_chunks_in_queue` walks the input
sequentially and isolates per-item failures.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from hierarchical_rag.config import Settings
from hierarchical_rag.embedding.base import EmbeddingProvider
from hierarchical_rag.embedding.cache import CacheStats, EmbeddingCache, cache_key
from hierarchical_rag.embedding.cancellation import CancellationToken
from hierarchical_rag.embedding.providers import is_transient_error
from hierarchical_rag.embedding.rate_limiter import RateLimiter
from hierarchical_rag.exceptions import (
    EmbeddingBatchError,
    EmbeddingExhaustedError,
    EmbeddingInputError,
    NonRetryableProviderError,
    OperationCancelledError,
)

logger = logging.getLogger(__name__)

_HEALTH_PROBE = "health check"


def _sleep(seconds: float) -> None:
    time.sleep(seconds)


# ── Metrics ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MetricsSnapshot:
    total_requests: int
    successful_requests: int
    failed_requests: int
    cache_hits: int
    cache_misses: int
    retries: int
    average_latency_ms: float

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_requests / self.total_requests if self.total_requests else 0.0

    @property
    def retry_rate(self) -> float:
        return self.retries / self.total_requests if self.total_requests else 0.0


class EmbeddingMetrics:
    """Lock-protected request counters.

    ``average_latency_ms`` is the running mean over successful provider
    calls; cache hits do not contribute.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._total = 0
            self._successful = 0
            self._failed = 0
            self._hits = 0
            self._misses = 0
            self._retries = 0
            self._latency_total_ms = 0.0

    def record_request(self) -> None:
        with self._lock:
            self._total += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self._hits += 1

    def record_cache_miss(self) -> None:
        with self._lock:
            self._misses += 1

    def record_retry(self) -> None:
        with self._lock:
            self._retries += 1

    def record_success(self, latency_ms: float) -> None:
        with self._lock:
            self._successful += 1
            self._latency_total_ms += latency_ms

    def record_failure(self) -> None:
        with self._lock:
            self._failed += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                total_requests=self._total,
                successful_requests=self._successful,
                failed_requests=self._failed,
                cache_hits=self._hits,
                cache_misses=self._misses,
                retries=self._retries,
                average_latency_ms=(
                    self._latency_total_ms / self._successful if self._successful else 0.0
                ),
            )


# ── Queue results ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class QueueFailure:
    index: int
    preview: str
    error: str


@dataclass
class QueueResult:
    """Outcome of :meth:`EmbeddingGenerator.process_chunks_in_queue`.

    ``embeddings[i]`` belongs to input position ``succeeded[i]``; failed
    positions are listed in ``failures`` and absent from ``embeddings``.
    """

    embeddings: list[list[float]] = field(default_factory=list)
    succeeded: list[int] = field(default_factory=list)
    failures: list[QueueFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


# ── Generator ──────────────────────────────────────────────────────────────


class EmbeddingGenerator:
    """Resilient front-end over an :class:`EmbeddingProvider`.

    Parameters
    ----------
    provider:
        Backend that computes vectors.
    cache:
        Shared content-hash cache. A fresh unbounded cache when *None*.
    rate_limiter:
        Shared limiter. A 500 ms limiter when *None*.
    max_retries:
        Total provider attempts per text, including the first.
    initial_retry_delay_ms:
        Backoff before the second attempt; doubled for every later one.
    batch_size:
        Outer batch size for :meth:`generate_embeddings`.
    sub_batch_size:
        Texts embedded concurrently inside an outer batch.
    sub_batch_delay_ms:
        Pause between consecutive sub-batches.
    retry_non_transient:
        When ``False``, errors not classified as transient fail after the
        first attempt. Explicit :class:`NonRetryableProviderError` always
        fails fast.
    sleep, clock:
        Injectable for tests.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: EmbeddingCache | None = None,
        rate_limiter: RateLimiter | None = None,
        *,
        max_retries: int = 5,
        initial_retry_delay_ms: int = 1000,
        batch_size: int = 100,
        sub_batch_size: int = 20,
        sub_batch_delay_ms: int = 200,
        retry_non_transient: bool = True,
        sleep: Callable[[float], None] = _sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        if batch_size < 1 or sub_batch_size < 1:
            raise ValueError("batch_size and sub_batch_size must be >= 1")
        self.provider = provider
        self.cache = cache if cache is not None else EmbeddingCache()
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.max_retries = max_retries
        self.initial_retry_delay_ms = initial_retry_delay_ms
        self.batch_size = batch_size
        self.sub_batch_size = sub_batch_size
        self.sub_batch_delay_ms = sub_batch_delay_ms
        self.retry_non_transient = retry_non_transient
        self.metrics = EmbeddingMetrics()
        self._sleep = sleep
        self._clock = clock
        self._dimension: int | None = None

    @classmethod
    def from_settings(
        cls, config: Settings, provider: EmbeddingProvider | None = None
    ) -> EmbeddingGenerator:
        """Build a generator (and, unless given, its provider) from :class:`Settings`."""
        from hierarchical_rag.embedding.providers import build_provider

        return cls(
            provider or build_provider(config),
            EmbeddingCache(
                max_entries=config.embedding_cache_max_entries,
                ttl_seconds=config.embedding_cache_ttl_seconds,
            ),
            RateLimiter(config.rate_limit_delay_ms),
            max_retries=config.max_retries,
            initial_retry_delay_ms=config.initial_retry_delay_ms,
            batch_size=config.embed_batch_size,
            sub_batch_size=config.embed_sub_batch_size,
            sub_batch_delay_ms=config.sub_batch_delay_ms,
            retry_non_transient=config.retry_non_transient,
        )

    # -- single text ---------------------------------------------------------

    def embed_single_chunk(
        self, text: str, cancel: CancellationToken | None = None
    ) -> list[float]:
        """Return the embedding for *text*, from cache or from the provider."""
        if not text or not text.strip():
            raise EmbeddingInputError("No chunk provided for embedding")
        if cancel is not None:
            cancel.raise_if_cancelled()

        self.metrics.record_request()
        key = cache_key(text)
        cached = self.cache.get(key)
        if cached is not None:
            self.metrics.record_cache_hit()
            logger.debug("Cache hit for chunk %s", key[:8])
            return cached
        self.metrics.record_cache_miss()

        start = self._clock()
        try:
            embedding = self._call_with_retry(text, cancel)
        except Exception:
            self.metrics.record_failure()
            raise
        self.metrics.record_success((self._clock() - start) * 1000)
        self.cache.put(key, embedding)
        return embedding

    def _call_with_retry(self, text: str, cancel: CancellationToken | None) -> list[float]:
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            if cancel is not None:
                cancel.raise_if_cancelled()
            self.rate_limiter.acquire(cancel)
            try:
                embedding = [float(v) for v in self.provider.embed(text)]
                if not embedding:
                    raise NonRetryableProviderError("Provider returned an empty embedding")
                return embedding
            except OperationCancelledError:
                raise
            except Exception as exc:
                last_error = exc
                transient = is_transient_error(exc)
                if isinstance(exc, NonRetryableProviderError) or (
                    not transient and not self.retry_non_transient
                ):
                    logger.error("Embedding failed without retry: %s", exc)
                    raise EmbeddingExhaustedError(attempt, exc) from exc
                if attempt < self.max_retries:
                    delay_ms = self.initial_retry_delay_ms * 2 ** (attempt - 1)
                    logger.warning(
                        "%s, retrying in %dms (attempt %d/%d): %s",
                        "Rate limit hit" if transient else "Provider error",
                        delay_ms, attempt, self.max_retries, exc,
                    )
                    self.metrics.record_retry()
                    self._pause(delay_ms / 1000, cancel)
        raise EmbeddingExhaustedError(self.max_retries, last_error) from last_error

    def _pause(self, seconds: float, cancel: CancellationToken | None) -> None:
        if seconds > 0:
            self._sleep(seconds)
        if cancel is not None:
            cancel.raise_if_cancelled()

    # -- batch path ----------------------------------------------------------

    def generate_embeddings(
        self, texts: Sequence[str], cancel: CancellationToken | None = None
    ) -> list[list[float]]:
        """Embed *texts* in order, aborting on the first failure.

        Outer batches run strictly one after another. Inside a batch,
        sub-batches are embedded concurrently and awaited as a whole, with
        a pacing delay before the next sub-batch.

        Raises
        ------
        EmbeddingBatchError
            When any text in any sub-batch fails.
        """
        if not texts:
            return []
        total_batches = math.ceil(len(texts) / self.batch_size)
        logger.info(
            "Generating embeddings for %d chunks in %d batches", len(texts), total_batches
        )

        results: list[list[float]] = []
        with ThreadPoolExecutor(
            max_workers=self.sub_batch_size, thread_name_prefix="embed"
        ) as pool:
            for batch_number, start in enumerate(range(0, len(texts), self.batch_size), 1):
                batch = texts[start:start + self.batch_size]
                logger.info(
                    "Processing batch %d/%d (%d chunks)", batch_number, total_batches, len(batch)
                )
                for sub_number, sub_start in enumerate(range(0, len(batch), self.sub_batch_size), 1):
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    sub_batch = batch[sub_start:sub_start + self.sub_batch_size]
                    results.extend(
                        self._embed_sub_batch(pool, sub_batch, batch_number, sub_number, cancel)
                    )
                    if len(results) < len(texts):
                        self._pause(self.sub_batch_delay_ms / 1000, cancel)

        logger.info("Generated %d embeddings", len(results))
        return results

    def _embed_sub_batch(
        self,
        pool: ThreadPoolExecutor,
        sub_batch: Sequence[str],
        batch_number: int,
        sub_number: int,
        cancel: CancellationToken | None,
    ) -> list[list[float]]:
        futures = [pool.submit(self.embed_single_chunk, text, cancel) for text in sub_batch]
        embeddings = []
        try:
            for future in futures:
                embeddings.append(future.result())
        except OperationCancelledError:
            for future in futures:
                future.cancel()
            raise
        except Exception as exc:
            for future in futures:
                future.cancel()
            logger.error("Batch %d sub-batch %d failed: %s", batch_number, sub_number, exc)
            raise EmbeddingBatchError(batch_number, sub_number, exc) from exc
        return embeddings

    # -- queue path ----------------------------------------------------------

    def process_chunks_in_queue(
        self, texts: Sequence[str], cancel: CancellationToken | None = None
    ) -> QueueResult:
        """Embed *texts* one at a time, skipping (and recording) failures."""
        result = QueueResult()
        total = len(texts)
        for index, text in enumerate(texts):
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                embedding = self.embed_single_chunk(text, cancel)
            except OperationCancelledError:
                raise
            except Exception as exc:
                logger.error("Failed to process chunk %d/%d: %s", index + 1, total, exc)
                result.failures.append(
                    QueueFailure(index=index, preview=(text or "")[:50], error=str(exc))
                )
                continue
            result.embeddings.append(embedding)
            result.succeeded.append(index)
            if (index + 1) % 10 == 0:
                logger.info("Processed %d/%d chunks", index + 1, total)

        logger.info(
            "Queue processing complete: %d succeeded, %d failed",
            len(result.succeeded), result.failed_count,
        )
        return result

    # -- housekeeping --------------------------------------------------------

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> int:
        removed = self.cache.clear()
        logger.info("Embedding cache cleared (%d entries)", removed)
        return removed

    def health_check(self) -> bool:
        try:
            return self.provider.health_check()
        except Exception as exc:
            logger.warning("Embedding provider health check failed: %s", exc)
            return False

    def embedding_dimension(self) -> int:
        """Vector size reported by the provider, probed once and remembered."""
        if self._dimension is None:
            self._dimension = len(self.embed_single_chunk(_HEALTH_PROBE))
        return self._dimension
