"""Domain models for documents and the chunks cut from them."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def content_hash(text: str) -> str:
    """SHA-256 hex digest of *text*, used for version detection."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ChunkKind(str, Enum):
    """Granularity tag carried by every chunk.

    ``PARENT`` chunks give context and are never indexed. ``CHILD`` chunks
    are retrieved directly. ``BASIC`` chunks come from flat chunking and
    are indexed like children.
    """

    PARENT = "parent"
    CHILD = "child"
    BASIC = "basic"

    @property
    def strategy(self) -> str:
        """Legacy ``chunking_strategy`` label for this kind."""
        return _STRATEGY_LABELS[self]


_STRATEGY_LABELS = {
    ChunkKind.PARENT: "parent_hierarchical",
    ChunkKind.CHILD: "child_hierarchical",
    ChunkKind.BASIC: "basic",
}


class Document(BaseModel):
    """One immutable version of an ingested document.

    Attributes
    ----------
    document_id:
        Stable identifier for this version, ``<name-hash>_v<version>``.
    name:
        Unique source name (usually the original filename).
    content:
        Raw text content.
    content_hash:
        SHA-256 of ``content``; a change produces a new version.
    version:
        Monotonically increasing version number, starting at 1.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    name: str
    content: str
    content_hash: str
    version: int = 1
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        name: str,
        content: str,
        version: int = 1,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        name_hash = hashlib.sha256(name.encode("utf-8")).hexdigest()[:16]
        return cls(
            document_id=f"{name_hash}_v{version}",
            name=name,
            content=content,
            content_hash=content_hash(content),
            version=version,
            metadata=metadata or {},
        )


class Chunk(BaseModel):
    """A bounded span of a document's text.

    Chunks are frozen; a new document version yields a new chunk set.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ChunkKind
    content: str
    document_id: str = ""
    parent_id: str | None = None
    previous_id: str | None = None
    next_id: str | None = None
    position_index: int = 0
    is_first: bool = False
    is_last: bool = False
    start_index: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_metadata(self) -> dict[str, Any]:
        """Flat metadata record persisted alongside the chunk's vector."""
        return {
            **self.metadata,
            "document_id": self.document_id,
            "chunk_id": self.id,
            "parent_id": self.parent_id,
            "chunk_type": self.kind.value,
            "chunking_strategy": self.kind.strategy,
            "chunk_index": self.position_index,
            "previous_id": self.previous_id,
            "next_id": self.next_id,
            "is_first": self.is_first,
            "is_last": self.is_last,
            "char_count": len(self.content),
        }


class ChunkSet(BaseModel):
    """Complete output of chunking one document."""

    parents: list[Chunk] = Field(default_factory=list)
    children: list[Chunk] = Field(default_factory=list)
    strategy: str = "hierarchical"

    @property
    def total(self) -> int:
        return len(self.parents) + len(self.children)

    def parent_by_id(self) -> dict[str, Chunk]:
        return {p.id: p for p in self.parents}
