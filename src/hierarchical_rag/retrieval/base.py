"""Abstract base class for vector-store backends.

Adding a new backend (Pinecone, Weaviate, Qdrant …) only requires
subclassing :class:`VectorStoreBase` and implementing the abstract
methods. Backends with their own nearest-neighbour index also override
:meth:`~VectorStoreBase.query` and report
:attr:`~VectorStoreBase.supports_native_search`; everything else is
searched by :class:`~hierarchical_rag.retrieval.index.SimilarityIndex`
over a bounded sample.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Any

from hierarchical_rag.retrieval.models import MetadataFilter, SearchHit, StoredRecord


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def add(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Insert (or overwrite) records. The four lists are parallel."""
        ...

    @abstractmethod
    def get(self, ids: list[str], *, include_embeddings: bool = True) -> list[StoredRecord]:
        """Return the records for *ids* that exist, in the order given."""
        ...

    @abstractmethod
    def list_ids(self, filters: list[MetadataFilter] | None = None) -> list[str]:
        """Return the ids of every record matching *filters*."""
        ...

    @abstractmethod
    def delete(self, ids: list[str]) -> None:
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    @property
    def supports_native_search(self) -> bool:
        return False

    def query(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[SearchHit]:
        """Native nearest-neighbour search. Optional — raises by default.

        Results are ordered by descending similarity.
        """
        raise NotImplementedError(f"{type(self).__name__} has no native vector search")

    def count(self, filters: list[MetadataFilter] | None = None) -> int:
        return len(self.list_ids(filters))

    def sample(
        self,
        filters: list[MetadataFilter] | None,
        limit: int,
        rng: random.Random | None = None,
    ) -> list[StoredRecord]:
        """Return at most *limit* matching records, drawn uniformly when more exist."""
        ids = self.list_ids(filters)
        if len(ids) > limit:
            ids = (rng or random).sample(ids, limit)
        return self.get(ids, include_embeddings=True)
