"""Error taxonomy shared by chunking, embedding and retrieval."""

from __future__ import annotations


class HierarchicalRAGError(Exception):
    """Base class for every error raised by this package."""


class ChunkingFailure(HierarchicalRAGError):
    """Hierarchical chunking could not produce a complete chunk set.

    Never retried; callers fall back to flat chunking.
    """


class TransientProviderError(HierarchicalRAGError):
    """Rate-limit or transient network failure from the embedding provider."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NonRetryableProviderError(HierarchicalRAGError):
    """Provider failure that will not succeed on retry (auth, malformed input)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmbeddingExhaustedError(HierarchicalRAGError):
    """A provider call failed on every allowed attempt."""

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(
            f"Failed to generate embedding after {attempts} attempts. Last error: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


class EmbeddingBatchError(HierarchicalRAGError):
    """A sub-batch failed, aborting the whole batch generation call."""

    def __init__(self, batch_number: int, sub_batch_number: int, cause: BaseException) -> None:
        super().__init__(f"Batch {batch_number} failed: sub-batch {sub_batch_number} failed: {cause}")
        self.batch_number = batch_number
        self.sub_batch_number = sub_batch_number
        self.cause = cause


class EmbeddingInputError(HierarchicalRAGError, ValueError):
    """Blank or otherwise unusable text handed to the embedding layer."""


class ArityMismatchError(HierarchicalRAGError, ValueError):
    """Parallel arrays of differing length, or a required argument is missing."""


class StoreUnavailableError(HierarchicalRAGError):
    """The vector database is unreachable or was never initialised."""


class OperationCancelledError(HierarchicalRAGError):
    """A long-running operation was cancelled or exceeded its deadline."""


class VersionNotFoundError(HierarchicalRAGError, LookupError):
    """The requested document version has no records."""
