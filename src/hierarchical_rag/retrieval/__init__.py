"""
Retrieval — gated storage and similarity search.

This module wraps the vector store behind a clean interface so that the
pipeline never needs to know which DB is backing retrieval.

Public surface
--------------
- :class:`SimilarityIndex` — main entry point for writes and searches.
- :class:`ChunkGate` / :func:`sanitize_metadata` — admission control for writes.
- :class:`VectorStoreBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`InMemoryVectorStore` — dependency-free backend without native search.
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`SearchHit`, :class:`MetadataFilter`, :class:`Tenant`, … — data models.
"""

from hierarchical_rag.retrieval.base import VectorStoreBase
from hierarchical_rag.retrieval.gate import ChunkGate, resolve_chunk_kind, sanitize_metadata
from hierarchical_rag.retrieval.index import SimilarityIndex, cosine_similarity
from hierarchical_rag.retrieval.memory_store import InMemoryVectorStore
from hierarchical_rag.retrieval.models import (
    AddResult,
    GateRejection,
    GateResult,
    MetadataFilter,
    SearchHit,
    StoredRecord,
    Tenant,
)

__all__ = [
    "AddResult",
    "ChromaVectorStore",
    "ChunkGate",
    "GateRejection",
    "GateResult",
    "InMemoryVectorStore",
    "MetadataFilter",
    "SearchHit",
    "SimilarityIndex",
    "StoredRecord",
    "Tenant",
    "VectorStoreBase",
    "cosine_similarity",
    "resolve_chunk_kind",
    "sanitize_metadata",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from hierarchical_rag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
