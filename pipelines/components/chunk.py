"""KFP v2 component — Hierarchical chunking of loaded documents.

Step 2 of the hierarchical ingestion pipeline. Splits each document into
large parent windows (kept for context) and small child windows (to be
embedded), falling back to flat content-aware chunking when hierarchical
chunking fails.

Structured output contracts (one JSON object per line).

``child_chunks``::

    {
      "chunk_id":    "<document_id>_child_3",
      "document_id": "<document_id>",
      "parent_id":   "<document_id>_parent_0" | null,
      "chunk_type":  "child" | "basic",
      "text":        "<chunk text>",
      "metadata":    {... flat metadata incl. linkage ...}
    }

``parent_chunks``: one serialised parent chunk per line.

Local testing
-------------
    from pipelines.components.chunk import chunk_documents
    chunk_documents.python_func(
        raw_documents=_FakeArtifact("/tmp/raw.jsonl"),
        child_chunks=_FakeArtifact("/tmp/children.jsonl"),
        parent_chunks=_FakeArtifact("/tmp/parents.jsonl"),
        metrics=_FakeArtifact("/tmp/metrics"),
    )
"""

from kfp import dsl


@dsl.component(
    base_image="python:3.11-slim",
    target_image="hierarchical-rag-components:0.1.0",
    packages_to_install=[
        "langchain-text-splitters>=0.2,<1",
        "pydantic>=2,<3",
    ],
)
def chunk_documents(
    raw_documents: dsl.Input[dsl.Dataset],
    child_chunks: dsl.Output[dsl.Dataset],
    parent_chunks: dsl.Output[dsl.Dataset],
    metrics: dsl.Output[dsl.Metrics],
    parent_chunk_size: int = 1024,
    parent_chunk_overlap: int = 128,
    child_chunk_size: int = 256,
    child_chunk_overlap: int = 32,
    flat_chunk_size: int = 1000,
    flat_chunk_overlap: int = 200,
    content_aware: bool = True,
) -> str:
    """Chunk every document into linked parent / child windows.

    Parameters
    ----------
    raw_documents:
        Input Dataset — JSON-Lines produced by ``load_documents`` with at
        minimum ``document_id`` and ``text`` keys.
    child_chunks:
        Output Dataset — embeddable chunks (see module docstring).
    parent_chunks:
        Output Dataset — parent chunks for the parent store.
    metrics:
        Output Metrics artifact with chunking statistics.
    parent_chunk_size / parent_chunk_overlap:
        Parent window parameters, in characters.
    child_chunk_size / child_chunk_overlap:
        Child window parameters, in characters.
    flat_chunk_size / flat_chunk_overlap:
        Fallback window for plain text.
    content_aware:
        Adapt the fallback window to code / table / heading / list content.

    Returns
    -------
    str
        Summary, e.g. ``"Produced 256 child and 40 parent chunks from 12 documents"``.
    """
    import json
    import logging
    from pathlib import Path

    from hierarchical_rag.ingestion.chunker import (
        FlatChunker,
        HierarchicalChunker,
        chunk_document,
    )

    logging.basicConfig(level=logging.INFO)
    log = logging.getLogger("chunk_documents")

    # ── validate params (raises ValueError) ───────────────────────
    hierarchical = HierarchicalChunker(
        parent_chunk_size, parent_chunk_overlap, child_chunk_size, child_chunk_overlap
    )
    flat = FlatChunker(flat_chunk_size, flat_chunk_overlap, content_aware=content_aware)

    # ── read documents ────────────────────────────────────────────
    raw_records: list[dict] = []
    with open(raw_documents.path) as fh:
        for lineno, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                log.warning("Skipping malformed line %d: %s", lineno, exc)
                continue
            if "text" not in obj:
                log.warning("Skipping line %d: missing 'text' key", lineno)
                continue
            raw_records.append(obj)

    log.info("Read %d documents from input artifact", len(raw_records))

    # ── chunk each document ───────────────────────────────────────
    children: list[dict] = []
    parents: list[dict] = []
    flat_fallbacks = 0
    for idx, rec in enumerate(raw_records):
        document_id = rec.get("document_id") or f"doc{idx}"
        base_metadata = {"source": rec.get("source") or rec.get("name", "")}
        chunk_set = chunk_document(
            rec["text"], document_id, base_metadata, hierarchical=hierarchical, flat=flat
        )
        if chunk_set.strategy == "flat":
            flat_fallbacks += 1

        parents.extend(p.model_dump(mode="json") for p in chunk_set.parents)
        for child in chunk_set.children:
            children.append({
                "chunk_id": child.id,
                "document_id": document_id,
                "parent_id": child.parent_id,
                "chunk_type": child.kind.value,
                "text": child.content,
                "metadata": child.to_metadata(),
            })

    log.info(
        "Produced %d child and %d parent chunks from %d documents (%d flat)",
        len(children), len(parents), len(raw_records), flat_fallbacks,
    )

    # ── write outputs ─────────────────────────────────────────────
    for artifact, rows in ((child_chunks, children), (parent_chunks, parents)):
        out_path = Path(artifact.path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w") as fh:
            for row in rows:
                fh.write(json.dumps(row, ensure_ascii=False) + "\n")

    child_chunks.metadata["num_chunks"] = len(children)
    child_chunks.metadata["num_documents"] = len(raw_records)
    parent_chunks.metadata["num_chunks"] = len(parents)

    metrics.log_metric("child_chunks_produced", len(children))
    metrics.log_metric("parent_chunks_produced", len(parents))
    metrics.log_metric("documents_processed", len(raw_records))
    metrics.log_metric("flat_fallbacks", flat_fallbacks)
    metrics.log_metric(
        "avg_child_chars",
        sum(len(c["text"]) for c in children) / len(children) if children else 0,
    )

    msg = (f"Produced {len(children)} child and {len(parents)} parent chunks "
           f"from {len(raw_records)} documents")
    log.info(msg)
    return msg
