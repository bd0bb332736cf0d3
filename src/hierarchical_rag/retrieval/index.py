"""Similarity index — gated writes and cosine search over any backend.

This module is the **primary public interface** for retrieval. It is
intentionally decoupled from any particular vector database so that the
pipeline, evaluation scripts and tests can use it with the in-memory
backend or with Chroma alike.

Usage::

    from hierarchical_rag.retrieval import InMemoryVectorStore, SimilarityIndex

    index = SimilarityIndex(InMemoryVectorStore())
    index.add_documents(texts, embeddings, metadatas, ids)
    for hit in index.search(query_embedding, k=5):
        print(hit.short_ref(), round(hit.score, 3), hit.content[:80])
"""

from __future__ import annotations

import logging
import math
import random
from collections import Counter
from collections.abc import Sequence
from typing import Any

from hierarchical_rag.exceptions import ArityMismatchError, VersionNotFoundError
from hierarchical_rag.retrieval.base import VectorStoreBase
from hierarchical_rag.retrieval.gate import ChunkGate, resolve_chunk_kind, sanitize_metadata
from hierarchical_rag.retrieval.models import AddResult, MetadataFilter, SearchHit, Tenant

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*.

    Returns ``0.0`` for empty or mismatched vectors and when either norm is zero.
    """
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class SimilarityIndex:
    """Gated vector index over any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        Backend holding the records.
    gate:
        Admission check run before every write.
    manual_search_cap:
        Maximum number of candidates scored when the backend has no
        native search.
    tenant_isolation:
        When ``True``, writes are stamped with the tenant and searches are
        restricted to it (global and anonymous tenants are unscoped).
    seed:
        Seed for the candidate sampler, for reproducible manual search.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        gate: ChunkGate | None = None,
        *,
        manual_search_cap: int = 500,
        tenant_isolation: bool = False,
        seed: int | None = None,
    ) -> None:
        if manual_search_cap < 1:
            raise ValueError(f"manual_search_cap must be >= 1, got {manual_search_cap}")
        self.store = store
        self.gate = gate or ChunkGate()
        self.manual_search_cap = manual_search_cap
        self.tenant_isolation = tenant_isolation
        self._rng = random.Random(seed)

    # -- writes ---------------------------------------------------------------

    def add_documents(
        self,
        texts: Sequence[str] | None,
        embeddings: Sequence[Sequence[float]] | None,
        metadatas: Sequence[dict[str, Any]] | None,
        ids: Sequence[str] | None,
        tenant: Tenant | None = None,
    ) -> AddResult:
        """Validate, sanitise and store records.

        Raises
        ------
        ArityMismatchError
            When an argument is missing or the four sequences differ in
            length. Nothing is written in that case.
        """
        if texts is None or embeddings is None or metadatas is None or ids is None:
            raise ArityMismatchError("texts, embeddings, metadatas and ids are all required")
        lengths = {len(texts), len(embeddings), len(metadatas), len(ids)}
        if len(lengths) != 1:
            raise ArityMismatchError(
                "Arrays must have the same length: "
                f"texts={len(texts)}, embeddings={len(embeddings)}, "
                f"metadatas={len(metadatas)}, ids={len(ids)}"
            )

        verdict = self.gate.validate(metadatas)
        result = AddResult(rejections=verdict.rejected)
        if not verdict.accepted:
            if texts:
                logger.warning("No chunks accepted for storage (%d rejected)", len(verdict.rejected))
            return result

        tenant_fields = self._tenant_fields(tenant)
        accepted = verdict.accepted
        store_ids = [ids[i] for i in accepted]
        self.store.add(
            ids=store_ids,
            embeddings=[list(embeddings[i]) for i in accepted],
            documents=[texts[i] for i in accepted],
            metadatas=[{**sanitize_metadata(metadatas[i]), **tenant_fields} for i in accepted],
        )
        result.stored = store_ids
        logger.info(
            "Stored %d chunks in %r (%d rejected)",
            len(store_ids), self.store.collection_name, result.rejected,
        )
        return result

    def _tenant_fields(self, tenant: Tenant | None) -> dict[str, Any]:
        if not self.tenant_isolation or tenant is None or tenant.is_global:
            return {}
        return {"tenant_id": tenant.id, "tenant_type": tenant.type}

    # -- search ---------------------------------------------------------------

    def search(
        self,
        query_embedding: Sequence[float],
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
        tenant: Tenant | None = None,
    ) -> list[SearchHit]:
        """Return up to *k* hits ordered by descending cosine similarity."""
        if k <= 0:
            return []
        scoped = list(filters or [])
        if self.tenant_isolation and tenant is not None:
            scoped.extend(tenant.filters())

        if self.store.supports_native_search:
            return self.store.query(list(query_embedding), k=k, filters=scoped or None)
        return self._manual_search(query_embedding, k, scoped or None)

    def _manual_search(
        self,
        query_embedding: Sequence[float],
        k: int,
        filters: list[MetadataFilter] | None,
    ) -> list[SearchHit]:
        candidates = self.store.sample(filters, self.manual_search_cap, self._rng)
        logger.debug("Manual vector search over %d candidates", len(candidates))

        scored = [
            SearchHit.from_score(
                record.id,
                record.content,
                record.metadata,
                cosine_similarity(query_embedding, record.embedding or []),
            )
            for record in candidates
        ]
        scored.sort(key=lambda hit: hit.score, reverse=True)
        return scored[:k]

    # -- housekeeping ---------------------------------------------------------

    def get(self, ids: list[str]):
        return self.store.get(ids, include_embeddings=False)

    def delete(self, ids: list[str]) -> None:
        self.store.delete(ids)
        logger.info("Deleted %d records from %r", len(ids), self.store.collection_name)

    def count(self, filters: list[MetadataFilter] | None = None) -> int:
        return self.store.count(filters)

    # -- document versions ----------------------------------------------------

    def document_versions(self, source: str) -> dict[int, list[str]]:
        """Map each indexed version of *source* to its record ids, latest first.

        Records written without a ``version`` count as version 1.
        """
        ids = self.store.list_ids([MetadataFilter.equals("source", source)])
        versions: dict[int, list[str]] = {}
        for record in self.store.get(ids, include_embeddings=False):
            version = int(record.metadata.get("version") or 1)
            versions.setdefault(version, []).append(record.id)
        return dict(sorted(versions.items(), reverse=True))

    def delete_document_version(self, source: str, version: int) -> list[str]:
        """Delete every record of *source* at *version* and return their ids.

        Raises
        ------
        VersionNotFoundError
            When no record of that version exists.
        """
        ids = self.document_versions(source).get(version)
        if not ids:
            raise VersionNotFoundError(f"Version {version} not found for document {source}")
        self.store.delete(ids)
        logger.info("Deleted %d chunks for %s version %d", len(ids), source, version)
        return ids

    def chunk_type_stats(self) -> dict[str, int]:
        """Count stored records per chunk kind (``unmarked`` for records without one)."""
        ids = self.store.list_ids()
        counts: Counter[str] = Counter()
        for record in self.store.get(ids, include_embeddings=False):
            kind = resolve_chunk_kind(record.metadata)
            counts[getattr(kind, "value", kind) or "unmarked"] += 1
        return dict(counts)

    def health_check(self) -> bool:
        return self.store.health_check()
