"""Text chunking strategies.

Two strategies are provided:

* :class:`HierarchicalChunker` cuts large *parent* windows and small
  *child* windows independently, then links every child to the parent it
  shares the most words with.
* :class:`FlatChunker` is the fallback: one sliding window whose size
  adapts to the kind of content it starts on and which prefers to end on
  a sentence boundary.

:func:`chunk_document` tries the first and falls back to the second.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from langchain_text_splitters import RecursiveCharacterTextSplitter

from hierarchical_rag.exceptions import ChunkingFailure
from hierarchical_rag.ingestion.models import Chunk, ChunkKind, ChunkSet

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]


# ---------------------------------------------------------------------------
# Linkage & parent assignment
# ---------------------------------------------------------------------------


def link_chunks(chunks: Sequence[Chunk]) -> list[Chunk]:
    """Return copies of *chunks* with sequential links and boundary flags set.

    ``previous_id`` is ``None`` only on the first chunk and ``next_id`` only
    on the last one.
    """
    last = len(chunks) - 1
    linked: list[Chunk] = []
    for i, chunk in enumerate(chunks):
        linked.append(
            chunk.model_copy(
                update={
                    "position_index": i,
                    "previous_id": chunks[i - 1].id if i > 0 else None,
                    "next_id": chunks[i + 1].id if i < last else None,
                    "is_first": i == 0,
                    "is_last": i == last,
                }
            )
        )
    return linked


def _words(text: str) -> set[str]:
    return set(text.lower().split())


def overlap_score(child_content: str, parent_content: str) -> float:
    """Fraction of the child's distinct words that also occur in the parent."""
    child_words = _words(child_content)
    if not child_words:
        return 0.0
    return len(child_words & _words(parent_content)) / len(child_words)


class _ParentMatcher:
    """Inverted word index over parents for max-overlap lookups.

    Scoring by shared-word count is equivalent to scoring by
    :func:`overlap_score` because the denominator is fixed per child.
    """

    def __init__(self, parents: Sequence[Chunk]) -> None:
        if not parents:
            raise ChunkingFailure("No parent chunks available for child assignment")
        self._parents = list(parents)
        self._index: dict[str, list[int]] = {}
        for i, parent in enumerate(self._parents):
            for word in _words(parent.content):
                self._index.setdefault(word, []).append(i)

    def match(self, child_content: str) -> Chunk:
        counts: Counter[int] = Counter()
        for word in _words(child_content):
            counts.update(self._index.get(word, ()))
        if not counts:
            return self._parents[0]
        best = max(counts.values())
        # lowest index wins ties
        return self._parents[min(i for i, c in counts.items() if c == best)]


def find_parent_chunk_for_child(child_content: str, parents: Sequence[Chunk]) -> Chunk:
    """Pick the parent whose content overlaps *child_content* the most.

    Ties go to the parent that comes first in *parents*.

    Raises
    ------
    ChunkingFailure
        If *parents* is empty.
    """
    return _ParentMatcher(parents).match(child_content)


# ---------------------------------------------------------------------------
# Hierarchical chunking
# ---------------------------------------------------------------------------


def _check_window(size: int, overlap: int, label: str) -> None:
    if size <= 0:
        raise ValueError(f"{label} chunk_size must be positive, got {size}")
    if overlap < 0 or overlap >= size:
        raise ValueError(f"{label} chunk_overlap ({overlap}) must be < chunk_size ({size})")


class HierarchicalChunker:
    """Split text into linked parent and child chunks.

    Parameters
    ----------
    parent_size / parent_overlap:
        Parent window size and overlap, in characters.
    child_size / child_overlap:
        Child window size and overlap, in characters.
    separators:
        Split boundaries for the recursive splitter, in priority order.
    """

    def __init__(
        self,
        parent_size: int = 1024,
        parent_overlap: int = 128,
        child_size: int = 256,
        child_overlap: int = 32,
        separators: list[str] | None = None,
    ) -> None:
        _check_window(parent_size, parent_overlap, "parent")
        _check_window(child_size, child_overlap, "child")
        self.parent_size = parent_size
        self.parent_overlap = parent_overlap
        self.child_size = child_size
        self.child_overlap = child_overlap
        seps = separators or DEFAULT_SEPARATORS
        self._parent_splitter = RecursiveCharacterTextSplitter(
            chunk_size=parent_size,
            chunk_overlap=parent_overlap,
            length_function=len,
            separators=seps,
            add_start_index=True,
        )
        self._child_splitter = RecursiveCharacterTextSplitter(
            chunk_size=child_size,
            chunk_overlap=child_overlap,
            length_function=len,
            separators=seps,
            add_start_index=True,
        )

    def chunk(
        self,
        text: str,
        document_id: str = "doc",
        metadata: dict[str, Any] | None = None,
    ) -> ChunkSet:
        """Chunk *text* into a complete parent/child set.

        Raises
        ------
        ChunkingFailure
            On empty text or when no parent or child window is produced.
            Nothing is returned partially.
        """
        if not text or not text.strip():
            raise ChunkingFailure("Cannot chunk empty text hierarchically")

        base = dict(metadata or {})
        try:
            parent_windows = self._parent_splitter.create_documents([text])
            child_windows = self._child_splitter.create_documents([text])
        except Exception as exc:
            raise ChunkingFailure(f"Text splitting failed: {exc}") from exc

        if not parent_windows:
            raise ChunkingFailure("Hierarchical chunking produced no parent chunks")
        if not child_windows:
            raise ChunkingFailure("Hierarchical chunking produced no child chunks")

        parents = link_chunks(
            [
                Chunk(
                    id=f"{document_id}_parent_{i}",
                    kind=ChunkKind.PARENT,
                    content=w.page_content,
                    document_id=document_id,
                    start_index=w.metadata.get("start_index"),
                    metadata=base,
                )
                for i, w in enumerate(parent_windows)
            ]
        )

        matcher = _ParentMatcher(parents)
        children = link_chunks(
            [
                Chunk(
                    id=f"{document_id}_child_{i}",
                    kind=ChunkKind.CHILD,
                    content=w.page_content,
                    document_id=document_id,
                    parent_id=matcher.match(w.page_content).id,
                    start_index=w.metadata.get("start_index"),
                    metadata=base,
                )
                for i, w in enumerate(child_windows)
            ]
        )

        logger.debug(
            "Chunked %s into %d parents / %d children", document_id, len(parents), len(children)
        )
        return ChunkSet(parents=parents, children=children, strategy="hierarchical")


# ---------------------------------------------------------------------------
# Flat (content-aware sliding window) chunking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkProfile:
    """Window size / overlap pair selected for a kind of content."""

    name: str
    size: int
    overlap: int


SMALL_PROFILE = ChunkProfile("small", 500, 100)
MEDIUM_PROFILE = ChunkProfile("medium", 1000, 200)
LARGE_PROFILE = ChunkProfile("large", 1500, 300)

CONTENT_PROFILES: dict[str, ChunkProfile] = {
    "code": LARGE_PROFILE,
    "table": LARGE_PROFILE,
    "heading": MEDIUM_PROFILE,
    "list": SMALL_PROFILE,
}

LEAD_LENGTH = 500
SENTENCE_DELIMITERS = (". ", "! ", "? ", "\n\n")
MIN_KEEP_RATIO = 0.7

_CODE_LINE = re.compile(
    r"^\s*(def |class |import |from \S+ import|function |const |let |var |public |private |#include)"
    r"|[{};]\s*$"
)
_TABLE_LINE = re.compile(r"^\s*\|.*\|.*\|\s*$|\t.*\t")
_HEADING_LINE = re.compile(r"^#{1,6}\s+\S")
_LIST_LINE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+\S")


def classify_content(text: str) -> str:
    """Coarse content type of *text*'s lead substring.

    Returns one of ``"code"``, ``"table"``, ``"heading"``, ``"list"`` or
    ``"text"``.
    """
    lead = text[:LEAD_LENGTH]
    if "```" in lead:
        return "code"
    lines = lead.splitlines()
    if sum(1 for line in lines if _CODE_LINE.search(line)) >= 2:
        return "code"
    if sum(1 for line in lines if _TABLE_LINE.search(line)) >= 2:
        return "table"
    for line in lines:
        stripped = line.strip()
        if _HEADING_LINE.match(stripped) or (10 < len(stripped) < 100 and stripped.isupper()):
            return "heading"
    if sum(1 for line in lines if _LIST_LINE.match(line)) >= 2:
        return "list"
    return "text"


def _sentence_end(text: str, start: int, end: int, target: int) -> int:
    """Pull *end* back to the last sentence boundary in ``text[start:end]``.

    The adjustment is skipped when it would keep less than
    ``MIN_KEEP_RATIO`` of *target*.
    """
    window = text[start:end]
    best = -1
    for delim in SENTENCE_DELIMITERS:
        pos = window.rfind(delim)
        if pos != -1:
            best = max(best, pos + len(delim))
    if best > 0 and best >= target * MIN_KEEP_RATIO:
        return start + best
    return end


class FlatChunker:
    """Single-granularity sliding-window chunker producing ``BASIC`` chunks.

    Parameters
    ----------
    chunk_size / chunk_overlap:
        Window used for plain text (and for everything when
        *content_aware* is off).
    content_aware:
        Choose the window per position from :data:`CONTENT_PROFILES`.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        content_aware: bool = True,
    ) -> None:
        _check_window(chunk_size, chunk_overlap, "flat")
        self.default_profile = ChunkProfile("default", chunk_size, chunk_overlap)
        self.content_aware = content_aware

    def profile_for(self, text: str) -> ChunkProfile:
        if not self.content_aware:
            return self.default_profile
        return CONTENT_PROFILES.get(classify_content(text), self.default_profile)

    def windows(self, text: str) -> Iterator[tuple[int, str]]:
        """Yield ``(start_index, content)`` for each non-blank window."""
        start = 0
        n = len(text)
        while start < n:
            profile = self.profile_for(text[start : start + LEAD_LENGTH])
            end = min(start + profile.size, n)
            if end < n:
                end = _sentence_end(text, start, end, profile.size)
            piece = text[start:end]
            if piece.strip():
                yield start + len(piece) - len(piece.lstrip()), piece.strip()
            if end >= n:
                break
            start = max(end - profile.overlap, start + 1)

    def chunk(
        self,
        text: str,
        document_id: str = "doc",
        metadata: dict[str, Any] | None = None,
    ) -> ChunkSet:
        """Chunk *text* into linked ``BASIC`` chunks.

        Empty text yields one chunk with empty content.
        """
        base = dict(metadata or {})
        windows = list(self.windows(text)) if text.strip() else [(0, "")]
        chunks = [
            Chunk(
                id=f"{document_id}_basic_{i}",
                kind=ChunkKind.BASIC,
                content=content,
                document_id=document_id,
                start_index=start,
                metadata=base,
            )
            for i, (start, content) in enumerate(windows)
        ]
        return ChunkSet(children=link_chunks(chunks), strategy="flat")


def chunk_document(
    text: str,
    document_id: str = "doc",
    metadata: dict[str, Any] | None = None,
    *,
    hierarchical: HierarchicalChunker | None = None,
    flat: FlatChunker | None = None,
) -> ChunkSet:
    """Chunk hierarchically, falling back to flat chunking on failure."""
    hierarchical = hierarchical or HierarchicalChunker()
    try:
        return hierarchical.chunk(text, document_id, metadata)
    except ChunkingFailure as exc:
        logger.warning("Hierarchical chunking failed for %s (%s); using flat chunking", document_id, exc)
    return (flat or FlatChunker()).chunk(text, document_id, metadata)
