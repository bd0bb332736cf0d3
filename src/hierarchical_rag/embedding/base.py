"""Abstract base class for embedding providers.

Adding a provider only requires subclassing :class:`EmbeddingProvider`
and implementing :meth:`~EmbeddingProvider.embed`. Caching, throttling
and retries live in :class:`~hierarchical_rag.embedding.generator.EmbeddingGenerator`,
so providers should make exactly one remote call per invocation and let
errors propagate.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Backend-agnostic text → vector interface.

    Providers signal a retryable failure with
    :class:`~hierarchical_rag.exceptions.TransientProviderError` and a
    hopeless one with
    :class:`~hierarchical_rag.exceptions.NonRetryableProviderError`. Any
    other exception is treated according to the generator's retry policy.
    """

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for a single *text*."""
        ...

    # -- optional overrides ---------------------------------------------------

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts. The default issues one :meth:`embed` per text."""
        return [self.embed(text) for text in texts]

    def health_check(self) -> bool:
        """Return ``True`` when the provider is configured and usable."""
        return True
