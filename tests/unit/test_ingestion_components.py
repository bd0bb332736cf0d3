"""Unit tests for the modular KFP ingestion components.

Each test exercises the *Python function* behind the ``@dsl.component``
decorator (``component.python_func``), so no Kubeflow cluster is needed.

Structured JSON contract flowing between components:

  load   → {document_id, name, source, text, content_hash, loaded_at, char_count}
  chunk  → child:  {chunk_id, document_id, parent_id, chunk_type, text, metadata}
           parent: serialised parent chunk
  embed  → child record + {embedding, embedding_model, embedding_dim}
  store  → reads embed output, upserts children; parents → JSON parent store
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from hierarchical_rag.embedding import EmbeddingProvider
from hierarchical_rag.exceptions import EmbeddingBatchError, NonRetryableProviderError
from hierarchical_rag.ingestion.models import Chunk, ChunkKind


# ──────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────


class _FakeArtifact:
    """Minimal stand-in for ``dsl.Dataset`` / ``dsl.Metrics``."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.metadata: dict = {}
        self._metrics: dict = {}

    def log_metric(self, name: str, value) -> None:
        self._metrics[name] = value


class _FakeProvider(EmbeddingProvider):
    """Three-dimensional embeddings; texts containing ``bad`` are rejected."""

    def embed(self, text: str) -> list[float]:
        if "bad" in text:
            raise NonRetryableProviderError("rejected input", status_code=422)
        return [float(len(text)), 1.0, 0.0]


def _write_jsonl(path: str, records: list[dict]) -> None:
    with open(path, "w") as fh:
        for rec in records:
            fh.write(json.dumps(rec) + "\n")


def _read_jsonl(path: str) -> list[dict]:
    with open(path) as fh:
        return [json.loads(line) for line in fh if line.strip()]


LONG_TEXT = "\n\n".join(
    " ".join(f"Section {p} talks about topic {p} in sentence {s}." for s in range(15))
    for p in range(6)
)


# ──────────────────────────────────────────────────────────────────────
# load_documents
# ──────────────────────────────────────────────────────────────────────


class TestLoadDocuments:
    """Tests for ``pipelines.components.load.load_documents``."""

    def test_load_from_directory(self, tmp_path: Path) -> None:
        """Loading from a local directory emits structured JSON records."""
        src = tmp_path / "docs"
        src.mkdir()
        (src / "a.md").write_text("# Hello\nWorld")
        (src / "b.txt").write_text("Goodbye moon")
        (src / "blank.txt").write_text("   \n")
        (src / "ignored.csv").write_text("x,y")
        out_path = str(tmp_path / "raw.jsonl")
        artifact = _FakeArtifact(out_path)
        metrics = _FakeArtifact(str(tmp_path / "metrics"))

        from pipelines.components.load import load_documents

        result = load_documents.python_func(
            source_dir=str(src),
            raw_documents=artifact,
            metrics=metrics,
        )

        records = _read_jsonl(out_path)
        assert [r["name"] for r in records] == ["a.md", "b.txt"]
        for rec in records:
            assert set(rec) == {
                "document_id", "name", "source", "text",
                "content_hash", "loaded_at", "char_count",
            }
            assert rec["char_count"] == len(rec["text"])
            assert rec["document_id"].endswith("_v1")
        assert "Loaded 2 documents (1 skipped)" in result
        assert artifact.metadata["num_documents"] == 2
        assert metrics._metrics["documents_loaded"] == 2
        assert metrics._metrics["documents_skipped"] == 1

    def test_glob_pattern(self, tmp_path: Path) -> None:
        (tmp_path / "a.md").write_text("alpha")
        (tmp_path / "b.txt").write_text("beta")
        out_path = str(tmp_path / "raw.jsonl")

        from pipelines.components.load import load_documents

        load_documents.python_func(
            source_dir=str(tmp_path),
            raw_documents=_FakeArtifact(out_path),
            metrics=_FakeArtifact(str(tmp_path / "metrics")),
            glob_pattern="*.md",
        )
        assert [r["name"] for r in _read_jsonl(out_path)] == ["a.md"]

    def test_missing_directory_raises(self, tmp_path: Path) -> None:
        from pipelines.components.load import load_documents

        with pytest.raises(FileNotFoundError):
            load_documents.python_func(
                source_dir=str(tmp_path / "nope"),
                raw_documents=_FakeArtifact(str(tmp_path / "raw.jsonl")),
                metrics=_FakeArtifact(str(tmp_path / "metrics")),
            )


# ──────────────────────────────────────────────────────────────────────
# chunk_documents
# ──────────────────────────────────────────────────────────────────────


class TestChunkDocuments:
    """Tests for ``pipelines.components.chunk.chunk_documents``."""

    def _run(self, tmp_path: Path, raw: list[dict], **kwargs):
        in_path = str(tmp_path / "raw.jsonl")
        _write_jsonl(in_path, raw)
        children = _FakeArtifact(str(tmp_path / "children.jsonl"))
        parents = _FakeArtifact(str(tmp_path / "parents.jsonl"))
        metrics = _FakeArtifact(str(tmp_path / "metrics"))

        from pipelines.components.chunk import chunk_documents

        result = chunk_documents.python_func(
            raw_documents=_FakeArtifact(in_path),
            child_chunks=children,
            parent_chunks=parents,
            metrics=metrics,
            **kwargs,
        )
        return result, children, parents, metrics

    def test_parents_and_children(self, tmp_path: Path) -> None:
        raw = [{"document_id": "doc1", "source": "a.md", "text": LONG_TEXT}]
        result, children, parents, metrics = self._run(
            tmp_path, raw, parent_chunk_size=600, parent_chunk_overlap=60,
            child_chunk_size=200, child_chunk_overlap=20,
        )

        child_rows = _read_jsonl(children.path)
        parent_rows = _read_jsonl(parents.path)
        assert len(parent_rows) > 1
        assert len(child_rows) > len(parent_rows)

        parent_ids = {p["id"] for p in parent_rows}
        assert all(p["kind"] == "parent" for p in parent_rows)
        for row in child_rows:
            assert row["chunk_type"] == "child"
            assert row["document_id"] == "doc1"
            assert row["parent_id"] in parent_ids
            assert row["metadata"]["source"] == "a.md"
            assert row["metadata"]["chunk_id"] == row["chunk_id"]

        assert result == (f"Produced {len(child_rows)} child and {len(parent_rows)} "
                          f"parent chunks from 1 documents")
        assert metrics._metrics["flat_fallbacks"] == 0
        assert metrics._metrics["child_chunks_produced"] == len(child_rows)
        assert children.metadata["num_chunks"] == len(child_rows)

    def test_parent_rows_round_trip_to_chunks(self, tmp_path: Path) -> None:
        raw = [{"document_id": "doc1", "text": LONG_TEXT}]
        _, _, parents, _ = self._run(tmp_path, raw)
        for row in _read_jsonl(parents.path):
            assert Chunk.model_validate(row).kind is ChunkKind.PARENT

    def test_empty_document_falls_back_to_flat(self, tmp_path: Path) -> None:
        raw = [{"document_id": "empty", "text": ""}]
        _, children, parents, metrics = self._run(tmp_path, raw)
        rows = _read_jsonl(children.path)
        assert len(rows) == 1
        assert rows[0]["chunk_type"] == "basic"
        assert rows[0]["parent_id"] is None
        assert _read_jsonl(parents.path) == []
        assert metrics._metrics["flat_fallbacks"] == 1

    def test_skips_malformed_lines(self, tmp_path: Path) -> None:
        in_path = tmp_path / "raw.jsonl"
        in_path.write_text('not json\n{"name": "x"}\n{"document_id": "d", "text": "Hi."}\n')
        children = _FakeArtifact(str(tmp_path / "children.jsonl"))

        from pipelines.components.chunk import chunk_documents

        result = chunk_documents.python_func(
            raw_documents=_FakeArtifact(str(in_path)),
            child_chunks=children,
            parent_chunks=_FakeArtifact(str(tmp_path / "parents.jsonl")),
            metrics=_FakeArtifact(str(tmp_path / "metrics")),
        )
        assert result.endswith("from 1 documents")

    def test_overlap_gte_chunk_size_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            self._run(
                tmp_path, [{"text": "x"}], child_chunk_size=100, child_chunk_overlap=100
            )


# ──────────────────────────────────────────────────────────────────────
# generate_embeddings
# ──────────────────────────────────────────────────────────────────────


class TestGenerateEmbeddings:
    """Tests for ``pipelines.components.embed.generate_embeddings``."""

    @staticmethod
    def _child(i: int, text: str) -> dict:
        return {
            "chunk_id": f"doc1_child_{i}",
            "document_id": "doc1",
            "parent_id": "doc1_parent_0",
            "chunk_type": "child",
            "text": text,
            "metadata": {"source": "a.md"},
        }

    def _run(self, tmp_path: Path, records: list[dict], **kwargs):
        in_path = str(tmp_path / "children.jsonl")
        _write_jsonl(in_path, records)
        out_art = _FakeArtifact(str(tmp_path / "embedded.jsonl"))
        metrics = _FakeArtifact(str(tmp_path / "metrics"))

        from pipelines.components.embed import generate_embeddings

        with patch(
            "hierarchical_rag.embedding.providers.build_provider",
            return_value=_FakeProvider(),
        ):
            result = generate_embeddings.python_func(
                child_chunks=_FakeArtifact(in_path),
                embedded_chunks=out_art,
                metrics=metrics,
                embedding_model="test-model",
                rate_limit_delay_ms=0,
                **kwargs,
            )
        return result, out_art, metrics

    def test_produces_embeddings(self, tmp_path: Path) -> None:
        result, out_art, metrics = self._run(
            tmp_path, [self._child(0, "Hello world"), self._child(1, "Goodbye moon")]
        )
        records = _read_jsonl(out_art.path)
        assert [r["chunk_id"] for r in records] == ["doc1_child_0", "doc1_child_1"]
        for rec in records:
            assert rec["embedding"] == [float(len(rec["text"])), 1.0, 0.0]
            assert rec["embedding_model"] == "test-model"
            assert rec["embedding_dim"] == 3
            assert rec["parent_id"] == "doc1_parent_0"
        assert out_art.metadata["num_embedded"] == 2
        assert metrics._metrics["chunks_embedded"] == 2
        assert metrics._metrics["chunks_failed"] == 0
        assert result.startswith("Embedded 2 chunks (dim=3), 0 failed")

    def test_queue_mode_drops_failures(self, tmp_path: Path) -> None:
        _, out_art, metrics = self._run(
            tmp_path,
            [self._child(0, "good one"), self._child(1, "bad one"), self._child(2, "good two")],
        )
        records = _read_jsonl(out_art.path)
        assert [r["chunk_id"] for r in records] == ["doc1_child_0", "doc1_child_2"]
        assert metrics._metrics["chunks_failed"] == 1
        assert out_art.metadata["num_failed"] == 1

    def test_batch_mode_fails_fast(self, tmp_path: Path) -> None:
        with pytest.raises(EmbeddingBatchError):
            self._run(
                tmp_path,
                [self._child(0, "good"), self._child(1, "bad")],
                embedding_mode="batch",
                sub_batch_delay_ms=0,
            )

    def test_batch_mode_success(self, tmp_path: Path) -> None:
        _, out_art, metrics = self._run(
            tmp_path,
            [self._child(i, f"text {i}") for i in range(5)],
            embedding_mode="batch",
            batch_size=2,
            sub_batch_size=1,
            sub_batch_delay_ms=0,
        )
        assert len(_read_jsonl(out_art.path)) == 5
        assert metrics._metrics["chunks_embedded"] == 5

    def test_unknown_mode_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unsupported embedding_mode"):
            self._run(tmp_path, [self._child(0, "x")], embedding_mode="stream")

    def test_empty_input(self, tmp_path: Path) -> None:
        in_path = str(tmp_path / "children.jsonl")
        Path(in_path).write_text("")

        from pipelines.components.embed import generate_embeddings

        result = generate_embeddings.python_func(
            child_chunks=_FakeArtifact(in_path),
            embedded_chunks=_FakeArtifact(str(tmp_path / "embedded.jsonl")),
            metrics=_FakeArtifact(str(tmp_path / "metrics")),
        )
        assert result == "No chunks to embed."


# ──────────────────────────────────────────────────────────────────────
# store_vectors
# ──────────────────────────────────────────────────────────────────────


@pytest.fixture()
def mock_chroma_client():
    """Route ``chromadb.HttpClient`` to a MagicMock client for the test."""
    mock_client = MagicMock()
    mock_chromadb = MagicMock()
    mock_chromadb.HttpClient.return_value = mock_client
    with patch.dict("sys.modules", {"chromadb": mock_chromadb}):
        sys.modules.pop("hierarchical_rag.retrieval.chroma_store", None)
        yield mock_client


class TestStoreVectors:
    """Tests for ``pipelines.components.store.store_vectors``."""

    @staticmethod
    def _embedded(chunk_id: str, chunk_type: str = "child", **meta) -> dict:
        return {
            "chunk_id": chunk_id,
            "document_id": "doc1",
            "parent_id": "doc1_parent_0",
            "chunk_type": chunk_type,
            "text": f"text of {chunk_id}",
            "metadata": {"source": "a.md", "chunk_id": chunk_id, "parent_id": None, **meta},
            "embedding": [0.1, 0.2, 0.3],
            "embedding_model": "test",
            "embedding_dim": 3,
        }

    @staticmethod
    def _parent_row(i: int) -> dict:
        return Chunk(
            id=f"doc1_parent_{i}", kind=ChunkKind.PARENT, content=f"parent {i}",
            document_id="doc1", position_index=i,
        ).model_dump(mode="json")

    def _run(self, tmp_path: Path, records: list[dict], parents: list[dict], **kwargs):
        in_path = str(tmp_path / "embedded.jsonl")
        parents_path = str(tmp_path / "parents.jsonl")
        _write_jsonl(in_path, records)
        _write_jsonl(parents_path, parents)
        parent_store = _FakeArtifact(str(tmp_path / "store" / "parents.json"))
        metrics = _FakeArtifact(str(tmp_path / "metrics"))

        from pipelines.components.store import store_vectors

        result = store_vectors.python_func(
            embedded_chunks=_FakeArtifact(in_path),
            parent_chunks=_FakeArtifact(parents_path),
            chroma_host="localhost",
            chroma_port=8000,
            collection_name="test_collection",
            parent_store=parent_store,
            metrics=metrics,
            **kwargs,
        )
        return result, parent_store, metrics

    def test_index_to_chroma(self, tmp_path: Path, mock_chroma_client: MagicMock) -> None:
        result, parent_store, metrics = self._run(
            tmp_path,
            [self._embedded("doc1_child_0"), self._embedded("doc1_child_1")],
            [self._parent_row(0), self._parent_row(1)],
        )

        assert "Indexed 2 vectors" in result
        mock_chroma_client.get_or_create_collection.assert_called_once_with(
            "test_collection", metadata={"hnsw:space": "cosine"}
        )
        collection = mock_chroma_client.get_or_create_collection.return_value
        collection.upsert.assert_called_once()
        call_kwargs = collection.upsert.call_args.kwargs
        # chunk_id is used as the vector ID
        assert call_kwargs["ids"] == ["doc1_child_0", "doc1_child_1"]
        assert call_kwargs["metadatas"][0]["chunk_type"] == "child"
        assert "parent_id" not in call_kwargs["metadatas"][0]
        assert metrics._metrics["vectors_indexed"] == 2
        assert metrics._metrics["parents_stored"] == 2

        saved = json.loads(Path(parent_store.path).read_text())
        assert [p["id"] for p in saved] == ["doc1_parent_0", "doc1_parent_1"]
        assert parent_store.metadata["num_parents"] == 2

    def test_parent_records_never_indexed(
        self, tmp_path: Path, mock_chroma_client: MagicMock
    ) -> None:
        result, _, metrics = self._run(
            tmp_path,
            [self._embedded("doc1_child_0"), self._embedded("doc1_parent_0", chunk_type="parent")],
            [],
        )
        collection = mock_chroma_client.get_or_create_collection.return_value
        assert collection.upsert.call_args.kwargs["ids"] == ["doc1_child_0"]
        assert metrics._metrics["chunks_rejected"] == 1
        assert "(1 rejected)" in result

    def test_upsert_batches(self, tmp_path: Path, mock_chroma_client: MagicMock) -> None:
        _, _, metrics = self._run(
            tmp_path,
            [self._embedded(f"doc1_child_{i}") for i in range(5)],
            [],
            upsert_batch_size=2,
        )
        collection = mock_chroma_client.get_or_create_collection.return_value
        assert collection.upsert.call_count == 3
        assert metrics._metrics["upsert_batches"] == 3

    def test_tenant_stamped(self, tmp_path: Path, mock_chroma_client: MagicMock) -> None:
        self._run(
            tmp_path, [self._embedded("doc1_child_0")], [],
            tenant_id="acme", tenant_type="org",
        )
        collection = mock_chroma_client.get_or_create_collection.return_value
        meta = collection.upsert.call_args.kwargs["metadatas"][0]
        assert meta["tenant_id"] == "acme"
        assert meta["tenant_type"] == "org"

    def test_index_empty_input(self, tmp_path: Path) -> None:
        result, _, metrics = self._run(tmp_path, [], [])
        assert result == "No records to index."
        assert metrics._metrics["vectors_indexed"] == 0

    def test_parents_persisted_without_records(self, tmp_path: Path) -> None:
        """Parents are written even when no child survived embedding."""
        result, parent_store, metrics = self._run(
            tmp_path, [], [self._parent_row(0), self._parent_row(1)]
        )
        assert result == "No records to index."
        saved = json.loads(Path(parent_store.path).read_text())
        assert [p["id"] for p in saved] == ["doc1_parent_0", "doc1_parent_1"]
        assert parent_store.metadata["num_parents"] == 2
        assert metrics._metrics["parents_stored"] == 2

    def test_index_unsupported_db(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="Unsupported vector_db_type"):
            self._run(
                tmp_path, [self._embedded("doc1_child_0")], [], vector_db_type="pinecone"
            )

    def test_index_missing_embedding_key_raises(self, tmp_path: Path) -> None:
        """Records without 'embedding' should fail validation."""
        with pytest.raises(ValueError, match="missing required keys"):
            self._run(tmp_path, [{"chunk_id": "c", "text": "hello"}], [])


# ──────────────────────────────────────────────────────────────────────
# ingestion_pipeline
# ──────────────────────────────────────────────────────────────────────


class TestIngestionPipeline:
    """The DAG compiles and wires the four components together."""

    def test_compiles(self, tmp_path: Path) -> None:
        from kfp import compiler

        from pipelines.ingestion_pipeline import ingestion_pipeline

        out = tmp_path / "ingestion_pipeline.yaml"
        compiler.Compiler().compile(ingestion_pipeline, str(out))

        spec = out.read_text()
        assert "hierarchical-rag-ingestion-pipeline" in spec
        for component in ("load-documents", "chunk-documents", "generate-embeddings", "store-vectors"):
            assert component in spec
