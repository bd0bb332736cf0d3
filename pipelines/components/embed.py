"""KFP v2 component — Generate embeddings for child chunks.

Step 3 of the hierarchical ingestion pipeline. Reads the child-chunk
JSON-Lines Dataset and embeds every chunk through
:class:`~hierarchical_rag.embedding.EmbeddingGenerator`, so the run gets
the same cache, rate limiting and retry behaviour as the library.

``embedding_mode="queue"`` (default) drops chunks that fail and keeps
going; ``"batch"`` fails the step on the first error.

Structured output contract (one JSON object per line)::

    {
      ... child chunk record ...,
      "embedding":       [0.012, -0.034, ...],
      "embedding_model": "sentence-transformers/all-MiniLM-L6-v2",
      "embedding_dim":   384
    }

Local testing
-------------
    from pipelines.components.embed import generate_embeddings
    generate_embeddings.python_func(
        child_chunks=_FakeArtifact("/tmp/children.jsonl"),
        embedded_chunks=_FakeArtifact("/tmp/embedded.jsonl"),
        metrics=_FakeArtifact("/tmp/metrics"),
    )
"""

from kfp import dsl


@dsl.component(
    base_image="python:3.11-slim",
    target_image="hierarchical-rag-components:0.1.0",
    packages_to_install=[
        "langchain-huggingface>=0.1,<1",
        "sentence-transformers>=3,<4",
        "requests>=2.31,<3",
    ],
)
def generate_embeddings(
    child_chunks: dsl.Input[dsl.Dataset],
    embedded_chunks: dsl.Output[dsl.Dataset],
    metrics: dsl.Output[dsl.Metrics],
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2",
    embedding_api_url: str = "",
    embedding_mode: str = "queue",
    rate_limit_delay_ms: int = 500,
    max_retries: int = 5,
    initial_retry_delay_ms: int = 1000,
    batch_size: int = 100,
    sub_batch_size: int = 20,
    sub_batch_delay_ms: int = 200,
) -> str:
    """Embed every child chunk and persist vectors alongside content.

    Parameters
    ----------
    child_chunks:
        Input Dataset — JSON-Lines produced by ``chunk_documents`` with at
        minimum ``chunk_id`` and ``text`` keys.
    embedded_chunks:
        Output Dataset — each successfully embedded record enriched with
        ``embedding``, ``embedding_model`` and ``embedding_dim``.
    metrics:
        Output Metrics artifact with embedding statistics.
    embedding_model:
        HuggingFace sentence-transformer model identifier.
    embedding_api_url:
        Remote feature-extraction endpoint; empty to embed locally.
    embedding_mode:
        ``"queue"`` or ``"batch"``.
    rate_limit_delay_ms / max_retries / initial_retry_delay_ms:
        Provider throttling and retry policy.
    batch_size / sub_batch_size / sub_batch_delay_ms:
        Batch-mode sizing and pacing.

    Returns
    -------
    str
        Summary, e.g. ``"Embedded 256 chunks (dim=384), 0 failed"``.
    """
    import json
    import logging
    import os
    import time
    from pathlib import Path

    from hierarchical_rag.config import Settings
    from hierarchical_rag.embedding import EmbeddingGenerator
    from hierarchical_rag.embedding.providers import build_provider

    logging.basicConfig(level=logging.INFO)
    log = logging.getLogger("generate_embeddings")

    if embedding_mode not in ("queue", "batch"):
        raise ValueError(f"Unsupported embedding_mode={embedding_mode!r}. Choose queue or batch.")

    # ── read chunks ───────────────────────────────────────────────
    records: list[dict] = []
    with open(child_chunks.path) as fh:
        for lineno, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as exc:
                log.warning("Skipping malformed line %d: %s", lineno, exc)

    out_path = Path(embedded_chunks.path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    if not records:
        # Write empty file and return early
        out_path.write_text("")
        embedded_chunks.metadata["num_embedded"] = 0
        embedded_chunks.metadata["embedding_dim"] = 0
        metrics.log_metric("chunks_embedded", 0)
        return "No chunks to embed."

    config = Settings(
        embedding_model=embedding_model,
        embedding_api_url=embedding_api_url,
        embedding_api_key=os.environ.get("EMBEDDING_API_KEY", ""),
        rate_limit_delay_ms=rate_limit_delay_ms,
        max_retries=max_retries,
        initial_retry_delay_ms=initial_retry_delay_ms,
        embed_batch_size=batch_size,
        embed_sub_batch_size=sub_batch_size,
        sub_batch_delay_ms=sub_batch_delay_ms,
    )
    generator = EmbeddingGenerator.from_settings(config, build_provider(config))

    texts = [r.get("text", "") for r in records]
    log.info("Embedding %d chunks with model=%s, mode=%s", len(texts), embedding_model, embedding_mode)

    # ── embed ─────────────────────────────────────────────────────
    t0 = time.monotonic()
    if embedding_mode == "batch":
        vectors = generator.generate_embeddings(texts)
        succeeded = list(range(len(records)))
        failed = 0
    else:
        queued = generator.process_chunks_in_queue(texts)
        vectors, succeeded, failed = queued.embeddings, queued.succeeded, queued.failed_count
    elapsed = time.monotonic() - t0

    dim = len(vectors[0]) if vectors else 0
    log.info("Embedding complete: %d vectors (dim=%d), %d failed in %.1fs",
             len(vectors), dim, failed, elapsed)

    # ── write output ──────────────────────────────────────────────
    with open(out_path, "w") as fh:
        for index, emb in zip(succeeded, vectors):
            rec = records[index]
            rec["embedding"] = emb
            rec["embedding_model"] = embedding_model
            rec["embedding_dim"] = dim
            fh.write(json.dumps(rec, ensure_ascii=False) + "\n")

    snapshot = generator.metrics.snapshot()

    # artifact metadata
    embedded_chunks.metadata["num_embedded"] = len(vectors)
    embedded_chunks.metadata["num_failed"] = failed
    embedded_chunks.metadata["embedding_dim"] = dim
    embedded_chunks.metadata["embedding_model"] = embedding_model
    embedded_chunks.metadata["elapsed_seconds"] = round(elapsed, 2)

    # KFP Metrics
    metrics.log_metric("chunks_embedded", len(vectors))
    metrics.log_metric("chunks_failed", failed)
    metrics.log_metric("embedding_dim", dim)
    metrics.log_metric("cache_hit_rate", round(snapshot.cache_hit_rate, 4))
    metrics.log_metric("retries", snapshot.retries)
    metrics.log_metric("avg_latency_ms", round(snapshot.average_latency_ms, 1))
    metrics.log_metric("embed_elapsed_seconds", round(elapsed, 2))

    msg = f"Embedded {len(vectors)} chunks (dim={dim}), {failed} failed in {elapsed:.1f}s"
    log.info(msg)
    return msg
