"""Bounded store for parent chunks, with optional JSON persistence.

Parent chunks never enter the vector index. They are kept here so that a
retrieved child can be expanded into the larger context it came from.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from dataclasses import asdict, dataclass
from pathlib import Path

from hierarchical_rag.ingestion.models import Chunk, ChunkKind

logger = logging.getLogger(__name__)


@dataclass
class ParentStoreStats:
    size: int = 0
    max_size: int = 0
    stored: int = 0
    retrieved: int = 0
    deleted: int = 0
    evicted: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class ParentChunkStore:
    """Parent chunks keyed by id, least-recently-accessed evicted first.

    Parameters
    ----------
    max_size:
        Maximum number of parent chunks held at once.
    persistence_path:
        JSON file to load from on start-up and write on :meth:`save`.
        ``None`` keeps everything in memory.
    """

    def __init__(self, max_size: int = 10000, persistence_path: str | Path | None = None) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.max_size = max_size
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self._chunks: OrderedDict[str, Chunk] = OrderedDict()
        self._stats = ParentStoreStats(max_size=max_size)
        self._lock = threading.RLock()
        if self.persistence_path and self.persistence_path.exists():
            self.load()

    def __len__(self) -> int:
        return len(self._chunks)

    # -- writes ---------------------------------------------------------------

    def store(self, chunk: Chunk) -> None:
        """Store one parent chunk, evicting the stalest entry when full."""
        if chunk.kind is not ChunkKind.PARENT:
            raise ValueError(f"Only parent chunks can be stored, got {chunk.kind.value!r}")
        with self._lock:
            if chunk.id in self._chunks:
                self._chunks.move_to_end(chunk.id)
            elif len(self._chunks) >= self.max_size:
                evicted_id, _ = self._chunks.popitem(last=False)
                self._stats.evicted += 1
                logger.debug("Evicted parent chunk %s", evicted_id)
            self._chunks[chunk.id] = chunk
            self._stats.stored += 1

    def store_batch(self, chunks: list[Chunk]) -> int:
        for chunk in chunks:
            self.store(chunk)
        return len(chunks)

    def delete(self, parent_id: str) -> bool:
        with self._lock:
            removed = self._chunks.pop(parent_id, None) is not None
            if removed:
                self._stats.deleted += 1
            return removed

    def delete_document(self, document_id: str) -> int:
        """Drop every parent chunk of *document_id*; returns how many were removed."""
        with self._lock:
            ids = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
            for parent_id in ids:
                del self._chunks[parent_id]
            self._stats.deleted += len(ids)
        return len(ids)

    def clear(self) -> int:
        with self._lock:
            count = len(self._chunks)
            self._chunks.clear()
        logger.info("Cleared %d parent chunks", count)
        return count

    # -- reads ----------------------------------------------------------------

    def get(self, parent_id: str) -> Chunk | None:
        with self._lock:
            chunk = self._chunks.get(parent_id)
            if chunk is None:
                self._stats.misses += 1
                return None
            self._chunks.move_to_end(parent_id)
            self._stats.hits += 1
            self._stats.retrieved += 1
            return chunk

    def has(self, parent_id: str) -> bool:
        with self._lock:
            return parent_id in self._chunks

    def by_document(self, document_id: str) -> list[Chunk]:
        with self._lock:
            found = [c for c in self._chunks.values() if c.document_id == document_id]
        return sorted(found, key=lambda c: c.position_index)

    def stats(self) -> ParentStoreStats:
        with self._lock:
            return ParentStoreStats(**{**asdict(self._stats), "size": len(self._chunks)})

    # -- persistence ----------------------------------------------------------

    def save(self) -> None:
        if self.persistence_path is None:
            return
        with self._lock:
            payload = [c.model_dump(mode="json") for c in self._chunks.values()]
        self.persistence_path.parent.mkdir(parents=True, exist_ok=True)
        self.persistence_path.write_text(json.dumps(payload, ensure_ascii=False))
        logger.info("Saved %d parent chunks to %s", len(payload), self.persistence_path)

    def load(self) -> int:
        if self.persistence_path is None or not self.persistence_path.exists():
            return 0
        records = json.loads(self.persistence_path.read_text() or "[]")
        with self._lock:
            for record in records:
                self.store(Chunk.model_validate(record))
        logger.info("Loaded %d parent chunks from %s", len(records), self.persistence_path)
        return len(records)
