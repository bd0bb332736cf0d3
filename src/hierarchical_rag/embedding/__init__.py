"""
Embedding — resilient text → vector generation.

Public surface
--------------
- :class:`EmbeddingGenerator` — cache, rate limit, retry, batch and queue modes.
- :class:`EmbeddingProvider` — provider ABC; see :mod:`.providers` for implementations.
- :class:`EmbeddingCache`, :class:`RateLimiter`, :class:`CancellationToken` — shared building blocks.
"""

from hierarchical_rag.embedding.base import EmbeddingProvider
from hierarchical_rag.embedding.cache import CacheStats, EmbeddingCache, cache_key
from hierarchical_rag.embedding.cancellation import CancellationToken
from hierarchical_rag.embedding.generator import (
    EmbeddingGenerator,
    EmbeddingMetrics,
    MetricsSnapshot,
    QueueFailure,
    QueueResult,
)
from hierarchical_rag.embedding.providers import (
    HTTPEmbeddingProvider,
    LangChainEmbeddingProvider,
    build_provider,
    is_transient_error,
)
from hierarchical_rag.embedding.rate_limiter import RateLimiter

__all__ = [
    "CacheStats",
    "CancellationToken",
    "EmbeddingCache",
    "EmbeddingGenerator",
    "EmbeddingMetrics",
    "EmbeddingProvider",
    "HTTPEmbeddingProvider",
    "LangChainEmbeddingProvider",
    "MetricsSnapshot",
    "QueueFailure",
    "QueueResult",
    "RateLimiter",
    "build_provider",
    "cache_key",
    "is_transient_error",
]
