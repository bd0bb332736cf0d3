"""KFP v2 component — Index embedded child chunks and persist parents.

Step 4 of the hierarchical ingestion pipeline. Writes the embedded
child chunks through the gated
:class:`~hierarchical_rag.retrieval.SimilarityIndex` (so a parent chunk
can never reach the vector database) and serialises the parent chunks
into a parent-store artifact used for context expansion at query time.

The component uses **deterministic IDs** (``chunk_id``) so re-runs are
idempotent — identical content is overwritten, not duplicated.

Local testing
-------------
    from pipelines.components.store import store_vectors
    store_vectors.python_func(
        embedded_chunks=_FakeArtifact("/tmp/embedded.jsonl"),
        parent_chunks=_FakeArtifact("/tmp/parents.jsonl"),
        parent_store=_FakeArtifact("/tmp/parent_store.json"),
        chroma_host="localhost",
        chroma_port=8000,
        collection_name="test",
        metrics=_FakeArtifact("/tmp/metrics"),
    )
"""

from kfp import dsl


@dsl.component(
    base_image="python:3.11-slim",
    target_image="hierarchical-rag-components:0.1.0",
    packages_to_install=[
        "chromadb>=0.5,<1",
        "pydantic>=2,<3",
    ],
)
def store_vectors(
    embedded_chunks: dsl.Input[dsl.Dataset],
    parent_chunks: dsl.Input[dsl.Dataset],
    chroma_host: str,
    chroma_port: int,
    collection_name: str,
    parent_store: dsl.Output[dsl.Artifact],
    metrics: dsl.Output[dsl.Metrics],
    vector_db_type: str = "chroma",
    upsert_batch_size: int = 5000,
    tenant_id: str = "",
    tenant_type: str = "global",
) -> str:
    """Upsert child vectors into the vector database, parents into a JSON store.

    Parameters
    ----------
    embedded_chunks:
        Input Dataset — JSON-Lines produced by ``generate_embeddings`` with
        at minimum ``chunk_id``, ``text`` and ``embedding``.
    parent_chunks:
        Input Dataset — parent chunks produced by ``chunk_documents``.
    chroma_host / chroma_port:
        Vector-store connection details.
    collection_name:
        Target collection name.
    parent_store:
        Output Artifact — JSON parent-chunk store.
    metrics:
        Output Metrics artifact with indexing statistics.
    vector_db_type:
        Backend type (``"chroma"``).
    upsert_batch_size:
        Max records per write call.
    tenant_id / tenant_type:
        Owner stamped on every record; ``global`` leaves records unscoped.

    Returns
    -------
    str
        Summary, e.g. ``"Indexed 256 vectors → collection 'hierarchical_rag'"``.
    """
    import json
    import logging
    import time
    from pathlib import Path

    logging.basicConfig(level=logging.INFO)
    log = logging.getLogger("store_vectors")

    def _read_jsonl(path: str) -> list[dict]:
        rows: list[dict] = []
        with open(path) as fh:
            for lineno, line in enumerate(fh, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    log.warning("Skipping malformed line %d of %s: %s", lineno, path, exc)
        return rows

    def _metadata(rec: dict) -> dict:
        meta = dict(rec.get("metadata") or {})
        if "chunk_type" in rec:
            meta["chunk_type"] = rec["chunk_type"]
        return meta

    from hierarchical_rag.ingestion.models import Chunk
    from hierarchical_rag.ingestion.parent_store import ParentChunkStore

    def _persist_parents(rows: list[dict]) -> int:
        out_path = Path(parent_store.path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        store = ParentChunkStore(max_size=max(len(rows), 1), persistence_path=out_path)
        store.store_batch([Chunk.model_validate(p) for p in rows])
        store.save()
        parent_store.metadata["num_parents"] = len(store)
        metrics.log_metric("parents_stored", len(store))
        return len(store)

    records = _read_jsonl(embedded_chunks.path)
    parents = _read_jsonl(parent_chunks.path)

    if not records:
        # parent_store is a declared output and is always written.
        _persist_parents(parents)
        metrics.log_metric("vectors_indexed", 0)
        return "No records to index."

    log.info("Read %d embedded records and %d parent chunks", len(records), len(parents))

    # ── validate required keys ────────────────────────────────────
    required_keys = {"chunk_id", "text", "embedding"}
    for i, rec in enumerate(records):
        missing = required_keys - rec.keys()
        if missing:
            raise ValueError(f"Record {i} missing required keys: {missing}")

    if vector_db_type != "chroma":
        raise ValueError(
            f"Unsupported vector_db_type={vector_db_type!r}. "
            "Currently only 'chroma' is implemented."
        )

    from hierarchical_rag.retrieval.chroma_store import ChromaVectorStore
    from hierarchical_rag.retrieval.index import SimilarityIndex
    from hierarchical_rag.retrieval.models import Tenant

    tenant = Tenant(id=tenant_id or None, type=tenant_type)
    index = SimilarityIndex(
        ChromaVectorStore(collection_name, host=chroma_host, port=chroma_port),
        tenant_isolation=not tenant.is_global,
    )

    # ── upsert children ───────────────────────────────────────────
    t0 = time.monotonic()
    stored = rejected = batches = 0
    for start in range(0, len(records), upsert_batch_size):
        batch = records[start:start + upsert_batch_size]
        result = index.add_documents(
            [r["text"] for r in batch],
            [r["embedding"] for r in batch],
            [_metadata(r) for r in batch],
            [r["chunk_id"] for r in batch],
            tenant=tenant,
        )
        stored += len(result.stored)
        rejected += result.rejected
        batches += 1
        log.info("  upserted batch %d (%d-%d)", batches, start, start + len(batch))
    elapsed = time.monotonic() - t0

    # ── persist parents ───────────────────────────────────────────
    parents_stored = _persist_parents(parents)

    log.info("Indexed %d vectors (%d rejected) in %.1fs (%d batches), %d parents stored",
             stored, rejected, elapsed, batches, parents_stored)

    # KFP Metrics
    metrics.log_metric("vectors_indexed", stored)
    metrics.log_metric("chunks_rejected", rejected)
    metrics.log_metric("upsert_batches", batches)
    metrics.log_metric("index_elapsed_seconds", round(elapsed, 2))
    metrics.log_metric("collection_name", collection_name)

    msg = (f"Indexed {stored} vectors → collection '{collection_name}' "
           f"in {elapsed:.1f}s ({rejected} rejected)")
    log.info(msg)
    return msg
