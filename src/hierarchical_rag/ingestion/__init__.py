"""
Ingestion — document versioning and hierarchical chunking.

This module turns raw document text into parent/child chunk sets with
deterministic linkage, ready for the embedding layer.

Public surface
--------------
- :class:`HierarchicalChunker` / :class:`FlatChunker` — chunking strategies.
- :func:`chunk_document` — hierarchical chunking with flat fallback.
- :class:`DocumentRegistry` — content-hash based version tracking.
- :class:`ParentChunkStore` — bounded store for parent context chunks.
- :class:`Chunk`, :class:`ChunkKind`, :class:`ChunkSet`, :class:`Document` — data models.
"""

from hierarchical_rag.ingestion.chunker import (
    FlatChunker,
    HierarchicalChunker,
    chunk_document,
    find_parent_chunk_for_child,
    link_chunks,
)
from hierarchical_rag.ingestion.models import Chunk, ChunkKind, ChunkSet, Document
from hierarchical_rag.ingestion.parent_store import ParentChunkStore
from hierarchical_rag.ingestion.registry import DocumentRegistry, Registration

__all__ = [
    "Chunk",
    "ChunkKind",
    "ChunkSet",
    "Document",
    "DocumentRegistry",
    "FlatChunker",
    "HierarchicalChunker",
    "ParentChunkStore",
    "Registration",
    "chunk_document",
    "find_parent_chunk_for_child",
    "link_chunks",
]
