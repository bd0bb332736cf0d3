"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from typing import Any

import chromadb

from hierarchical_rag.config import settings
from hierarchical_rag.exceptions import StoreUnavailableError
from hierarchical_rag.retrieval.base import VectorStoreBase
from hierarchical_rag.retrieval.models import MetadataFilter, SearchHit, StoredRecord

logger = logging.getLogger(__name__)

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def build_chroma_where(filters: list[MetadataFilter] | None) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _chroma_metadata(meta: dict[str, Any]) -> dict[str, Any]:
    # Chroma rejects None values.
    return {k: v for k, v in meta.items() if v is not None}


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store using cosine space.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    native_search:
        When ``False`` the collection's own ANN index is ignored and the
        similarity index falls back to sampled manual search.
    client:
        Pre-built Chroma client (e.g. ``chromadb.EphemeralClient()``);
        an ``HttpClient`` for *host*/*port* when *None*.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        native_search: bool = settings.chroma_native_search,
        client: Any = None,
    ) -> None:
        super().__init__(collection_name)
        self._host = host
        self._port = port
        self._native_search = native_search
        try:
            self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
            self._collection = self._client.get_or_create_collection(
                collection_name, metadata={"hnsw:space": "cosine"}
            )
        except Exception as exc:
            raise StoreUnavailableError(
                f"Cannot open Chroma collection {collection_name!r} at {host}:{port}: {exc}"
            ) from exc

    # -- VectorStoreBase overrides --------------------------------------------

    @property
    def supports_native_search(self) -> bool:
        return self._native_search

    def add(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        documents: list[str],
        metadatas: list[dict[str, Any]],
    ) -> None:
        self._collection.upsert(
            ids=ids,
            embeddings=embeddings,
            documents=documents,
            metadatas=[_chroma_metadata(m) for m in metadatas],
        )

    def query(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[SearchHit]:
        results = self._collection.query(
            query_embeddings=[query_embedding],
            n_results=k,
            where=build_chroma_where(filters),
            include=["documents", "metadatas", "distances"],
        )

        hits: list[SearchHit] = []
        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        for doc_id, content, meta, dist in zip(ids, docs, metas, distances):
            # Cosine space: distance = 1 - similarity.
            hits.append(SearchHit.from_score(doc_id, content or "", meta or {}, 1.0 - float(dist)))
        return hits

    def get(self, ids: list[str], *, include_embeddings: bool = True) -> list[StoredRecord]:
        if not ids:
            return []
        include = ["documents", "metadatas"]
        if include_embeddings:
            include.append("embeddings")
        results = self._collection.get(ids=ids, include=include)

        found_ids = results.get("ids") or []
        docs = results.get("documents") or [""] * len(found_ids)
        metas = results.get("metadatas") or [{}] * len(found_ids)
        embeddings = results.get("embeddings")
        if embeddings is None:
            embeddings = [None] * len(found_ids)

        by_id = {
            doc_id: StoredRecord(
                id=doc_id,
                content=content or "",
                metadata=meta or {},
                embedding=[float(v) for v in emb] if emb is not None else None,
            )
            for doc_id, content, meta, emb in zip(found_ids, docs, metas, embeddings)
        }
        return [by_id[i] for i in ids if i in by_id]

    def list_ids(self, filters: list[MetadataFilter] | None = None) -> list[str]:
        results = self._collection.get(where=build_chroma_where(filters), include=[])
        return list(results.get("ids") or [])

    def count(self, filters: list[MetadataFilter] | None = None) -> int:
        if not filters:
            return self._collection.count()
        return len(self.list_ids(filters))

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    def delete(self, ids: list[str]) -> None:
        self._collection.delete(ids=ids)
