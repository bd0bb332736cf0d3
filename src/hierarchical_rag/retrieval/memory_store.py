"""In-process vector store without a native similarity index."""

from __future__ import annotations

import threading
from typing import Any

from hierarchical_rag.retrieval.base import VectorStoreBase
from hierarchical_rag.retrieval.models import MetadataFilter, StoredRecord


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed store, searched through the manual sampling path.

    Useful for tests, notebooks and small single-process deployments.
    """

    def __init__(self, collection_name: str = "memory") -> None:
        super().__init__(collection_name)
        self._records: dict[str, StoredRecord] = {}
        self._lock = threading.Lock()

    def add(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> None:
        with self._lock:
            for record_id, embedding, content, meta in zip(ids, embeddings, documents, metadatas):
                self._records[record_id] = StoredRecord(
                    id=record_id,
                    content=content,
                    metadata=dict(meta),
                    embedding=list(embedding),
                )

    def get(self, ids: list[str], *, include_embeddings: bool = True) -> list[StoredRecord]:
        with self._lock:
            records = [self._records[i] for i in ids if i in self._records]
        if include_embeddings:
            return records
        return [r.model_copy(update={"embedding": None}) for r in records]

    def list_ids(self, filters: list[MetadataFilter] | None = None) -> list[str]:
        with self._lock:
            if not filters:
                return list(self._records)
            return [
                record_id
                for record_id, record in self._records.items()
                if all(f.matches(record.metadata) for f in filters)
            ]

    def delete(self, ids: list[str]) -> None:
        with self._lock:
            for record_id in ids:
                self._records.pop(record_id, None)

    def health_check(self) -> bool:
        return True
