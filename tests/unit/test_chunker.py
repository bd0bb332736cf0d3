"""Unit tests for the chunker module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from hierarchical_rag.exceptions import ChunkingFailure
from hierarchical_rag.ingestion.chunker import (
    FlatChunker,
    HierarchicalChunker,
    chunk_document,
    classify_content,
    find_parent_chunk_for_child,
    link_chunks,
    overlap_score,
)
from hierarchical_rag.ingestion.models import Chunk, ChunkKind, ChunkSet

LONG_TEXT = "\n\n".join(
    " ".join(f"topic{p} term{p}_{w}" for w in range(60)) for p in range(12)
)


def _parent(i: int, content: str) -> Chunk:
    return Chunk(id=f"d_parent_{i}", kind=ChunkKind.PARENT, content=content, document_id="d")


@pytest.fixture()
def chunk_set() -> ChunkSet:
    chunker = HierarchicalChunker(parent_size=1024, parent_overlap=128, child_size=256, child_overlap=32)
    return chunker.chunk(LONG_TEXT, document_id="doc1", metadata={"source": "guide.md"})


# ── Hierarchical chunking ──────────────────────────────────────────────


class TestHierarchicalChunker:
    def test_splits_into_parents_and_children(self, chunk_set: ChunkSet) -> None:
        assert len(chunk_set.parents) > 1
        assert len(chunk_set.children) > len(chunk_set.parents)
        assert chunk_set.strategy == "hierarchical"

    def test_kinds_and_ids(self, chunk_set: ChunkSet) -> None:
        assert all(p.kind is ChunkKind.PARENT for p in chunk_set.parents)
        assert all(c.kind is ChunkKind.CHILD for c in chunk_set.children)
        assert chunk_set.parents[0].id == "doc1_parent_0"
        assert chunk_set.children[0].id == "doc1_child_0"

    def test_every_child_references_existing_parent(self, chunk_set: ChunkSet) -> None:
        parent_ids = set(chunk_set.parent_by_id())
        assert all(c.parent_id in parent_ids for c in chunk_set.children)
        assert all(p.parent_id is None for p in chunk_set.parents)

    def test_parent_assignment_is_max_overlap_lowest_index(self, chunk_set: ChunkSet) -> None:
        parents = chunk_set.parents
        for child in chunk_set.children:
            scores = [overlap_score(child.content, p.content) for p in parents]
            expected = parents[scores.index(max(scores))]
            assert child.parent_id == expected.id

    def test_assignment_is_deterministic(self) -> None:
        chunker = HierarchicalChunker()
        first = chunker.chunk(LONG_TEXT, document_id="x")
        second = chunker.chunk(LONG_TEXT, document_id="x")
        assert [c.parent_id for c in first.children] == [c.parent_id for c in second.children]

    def test_linkage_per_kind(self, chunk_set: ChunkSet) -> None:
        for chunks in (chunk_set.parents, chunk_set.children):
            assert chunks[0].previous_id is None
            assert chunks[0].is_first
            assert chunks[-1].next_id is None
            assert chunks[-1].is_last
            for i, chunk in enumerate(chunks):
                assert chunk.position_index == i
                if i > 0:
                    assert chunk.previous_id == chunks[i - 1].id
                if i < len(chunks) - 1:
                    assert chunk.next_id == chunks[i + 1].id
                    assert not chunk.is_last

    def test_metadata_preserved(self, chunk_set: ChunkSet) -> None:
        assert all(c.metadata.get("source") == "guide.md" for c in chunk_set.children)

    def test_to_metadata_carries_kind_and_linkage(self, chunk_set: ChunkSet) -> None:
        meta = chunk_set.children[1].to_metadata()
        assert meta["chunk_type"] == "child"
        assert meta["chunking_strategy"] == "child_hierarchical"
        assert meta["chunk_id"] == "doc1_child_1"
        assert meta["previous_id"] == "doc1_child_0"
        assert meta["source"] == "guide.md"

    @pytest.mark.parametrize("text", ["", "   \n\t "])
    def test_empty_text_raises(self, text: str) -> None:
        with pytest.raises(ChunkingFailure):
            HierarchicalChunker().chunk(text)

    def test_overlap_gte_size_raises(self) -> None:
        with pytest.raises(ValueError):
            HierarchicalChunker(child_size=100, child_overlap=100)

    def test_short_text_yields_single_parent(self) -> None:
        result = HierarchicalChunker().chunk("Just one short sentence.", document_id="s")
        assert len(result.parents) == 1
        assert len(result.children) == 1
        assert result.children[0].parent_id == "s_parent_0"


# ── Parent assignment helpers ──────────────────────────────────────────


class TestFindParent:
    def test_picks_highest_overlap(self) -> None:
        parents = [_parent(0, "apples and pears"), _parent(1, "kubeflow pipelines on kubernetes")]
        assert find_parent_chunk_for_child("kubeflow pipelines", parents).id == "d_parent_1"

    def test_tie_goes_to_first_parent(self) -> None:
        parents = [_parent(0, "alpha beta"), _parent(1, "alpha beta")]
        assert find_parent_chunk_for_child("alpha", parents).id == "d_parent_0"

    def test_no_overlap_goes_to_first_parent(self) -> None:
        parents = [_parent(0, "alpha"), _parent(1, "beta")]
        assert find_parent_chunk_for_child("gamma", parents).id == "d_parent_0"

    def test_no_parents_raises(self) -> None:
        with pytest.raises(ChunkingFailure):
            find_parent_chunk_for_child("anything", [])

    def test_overlap_score_is_case_insensitive_fraction(self) -> None:
        assert overlap_score("Alpha Beta", "alpha gamma") == 0.5
        assert overlap_score("", "alpha") == 0.0


class TestLinkChunks:
    def test_single_chunk_is_first_and_last(self) -> None:
        [only] = link_chunks([_parent(0, "x")])
        assert only.is_first and only.is_last
        assert only.previous_id is None and only.next_id is None

    def test_returns_copies(self) -> None:
        original = [_parent(0, "a"), _parent(1, "b")]
        linked = link_chunks(original)
        assert linked[0].next_id == "d_parent_1"
        assert original[0].next_id is None


# ── Flat chunking ──────────────────────────────────────────────────────


class TestClassifyContent:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("```python\nprint('hi')\n```", "code"),
            ("def f():\n    pass\nclass A:\n    pass", "code"),
            ("| a | b |\n| 1 | 2 |\n| 3 | 4 |", "table"),
            ("# Introduction\nSome words here.", "heading"),
            ("- first item\n- second item\n- third item", "list"),
            ("Plain prose without any structure at all.", "text"),
        ],
    )
    def test_classification(self, text: str, expected: str) -> None:
        assert classify_content(text) == expected


class TestFlatChunker:
    def test_profile_ignores_content_when_disabled(self) -> None:
        chunker = FlatChunker(chunk_size=300, chunk_overlap=30, content_aware=False)
        assert chunker.profile_for("```code```").size == 300

    def test_content_aware_profile(self) -> None:
        chunker = FlatChunker()
        assert chunker.profile_for("- a item\n- b item\n- c item").size == 500
        assert chunker.profile_for("```\ncode\n```").size == 1500

    def test_chunks_are_basic_and_linked(self) -> None:
        text = "word " * 600
        result = FlatChunker(chunk_size=500, chunk_overlap=50, content_aware=False).chunk(
            text, document_id="f", metadata={"source": "f.txt"}
        )
        assert result.strategy == "flat"
        assert result.parents == []
        assert len(result.children) > 1
        assert all(c.kind is ChunkKind.BASIC for c in result.children)
        assert result.children[0].id == "f_basic_0"
        assert result.children[0].previous_id is None
        assert result.children[-1].next_id is None
        assert all(c.metadata["source"] == "f.txt" for c in result.children)

    def test_prefers_sentence_boundaries(self) -> None:
        text = "".join(f"This is sentence number {i}. " for i in range(50))
        result = FlatChunker(chunk_size=100, chunk_overlap=20, content_aware=False).chunk(text)
        assert all(c.content.endswith(".") for c in result.children)

    def test_empty_text_passes_through(self) -> None:
        result = FlatChunker().chunk("", document_id="e")
        assert len(result.children) == 1
        assert result.children[0].content == ""
        assert result.children[0].kind is ChunkKind.BASIC


# ── Fallback ───────────────────────────────────────────────────────────


class TestChunkDocument:
    def test_uses_hierarchical_when_possible(self) -> None:
        result = chunk_document(LONG_TEXT, "doc")
        assert result.strategy == "hierarchical"

    def test_falls_back_to_flat_on_empty_text(self) -> None:
        result = chunk_document("", "doc")
        assert result.strategy == "flat"
        assert [c.content for c in result.children] == [""]

    def test_falls_back_when_hierarchical_fails(self) -> None:
        failing = MagicMock(spec=HierarchicalChunker)
        failing.chunk.side_effect = ChunkingFailure("boom")
        result = chunk_document("Some text to chunk.", "doc", hierarchical=failing)
        assert result.strategy == "flat"
        assert result.children[0].content == "Some text to chunk."
