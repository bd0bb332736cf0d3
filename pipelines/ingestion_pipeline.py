"""KFP v2 pipeline — Hierarchical RAG ingestion workflow.

Documents flow through four containerised steps, handing JSON-Lines
Dataset artifacts from one to the next:

    load → chunk (parents + children) → embed children → index

Parent chunks bypass the embedding step and travel straight to the
indexing step, which writes them to a parent-store artifact instead of
the vector database.

Compile
-------
    python -m pipelines.ingestion_pipeline --compile

Build the component image first (components import ``hierarchical_rag``)
-----------------------------------------------------------------------
    kfp component build . --component-filepattern "pipelines/components/*.py"
"""

from kfp import compiler, dsl

from pipelines.components.chunk import chunk_documents
from pipelines.components.embed import generate_embeddings
from pipelines.components.load import load_documents
from pipelines.components.store import store_vectors


# ──────────────────────────────────────────────────────────────────────
# Pipeline definition
# ──────────────────────────────────────────────────────────────────────


@dsl.pipeline(
    name="hierarchical-rag-ingestion-pipeline",
    description=(
        "Hierarchical RAG ingestion: load documents → parent/child chunking → "
        "rate-limited embedding of child chunks → gated indexing, with parent "
        "chunks persisted for context expansion."
    ),
)
def ingestion_pipeline(
    # ── Source ──────────────────────────────────────────────────────
    source_dir: str = "/data/documents",
    glob_pattern: str = "**/*.*",
    # ── Chunking ───────────────────────────────────────────────────
    parent_chunk_size: int = 1024,
    parent_chunk_overlap: int = 128,
    child_chunk_size: int = 256,
    child_chunk_overlap: int = 32,
    flat_chunk_size: int = 1000,
    flat_chunk_overlap: int = 200,
    content_aware: bool = True,
    # ── Embedding ──────────────────────────────────────────────────
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2",
    embedding_api_url: str = "",
    embedding_mode: str = "queue",
    rate_limit_delay_ms: int = 500,
    max_retries: int = 5,
    initial_retry_delay_ms: int = 1000,
    embed_batch_size: int = 100,
    embed_sub_batch_size: int = 20,
    sub_batch_delay_ms: int = 200,
    # ── Vector DB ──────────────────────────────────────────────────
    chroma_host: str = "chroma.kubeflow.svc.cluster.local",
    chroma_port: int = 8000,
    collection_name: str = "hierarchical_rag",
    vector_db_type: str = "chroma",
    upsert_batch_size: int = 5000,
    tenant_id: str = "",
    tenant_type: str = "global",
) -> None:
    """Four-step ingestion: load → chunk → embed → index.

    Only child (or flat ``basic``) chunks are embedded and indexed; the
    parent chunks produced by the chunking step are handed directly to
    the indexing step for the parent store. Each step logs its counters
    to a ``Metrics`` artifact.

    Parameters
    ----------
    source_dir / glob_pattern:
        Directory of source documents and the file-matching glob.
    parent_chunk_size / parent_chunk_overlap:
        Parent (context) window parameters.
    child_chunk_size / child_chunk_overlap:
        Child (embedded) window parameters.
    flat_chunk_size / flat_chunk_overlap / content_aware:
        Flat fallback chunking parameters.
    embedding_model / embedding_api_url:
        Local HuggingFace model, or remote endpoint when the URL is set.
    embedding_mode:
        ``"queue"`` (skip failing chunks) or ``"batch"`` (fail fast).
    rate_limit_delay_ms / max_retries / initial_retry_delay_ms:
        Provider throttling and retry policy.
    embed_batch_size / embed_sub_batch_size / sub_batch_delay_ms:
        Batch-mode sizing and pacing.
    chroma_host / chroma_port / collection_name:
        Chroma connection details.
    vector_db_type:
        Vector database backend; only ``"chroma"`` is wired up.
    upsert_batch_size:
        Max records per write call.
    tenant_id / tenant_type:
        Owner of the ingested records.
    """
    # Step 1: Load
    load_task = load_documents(
        source_dir=source_dir,
        glob_pattern=glob_pattern,
    )

    # Step 2: Hierarchical chunking
    chunk_task = chunk_documents(
        raw_documents=load_task.outputs["raw_documents"],
        parent_chunk_size=parent_chunk_size,
        parent_chunk_overlap=parent_chunk_overlap,
        child_chunk_size=child_chunk_size,
        child_chunk_overlap=child_chunk_overlap,
        flat_chunk_size=flat_chunk_size,
        flat_chunk_overlap=flat_chunk_overlap,
        content_aware=content_aware,
    )

    # Step 3: Embed child chunks only
    embed_task = generate_embeddings(
        child_chunks=chunk_task.outputs["child_chunks"],
        embedding_model=embedding_model,
        embedding_api_url=embedding_api_url,
        embedding_mode=embedding_mode,
        rate_limit_delay_ms=rate_limit_delay_ms,
        max_retries=max_retries,
        initial_retry_delay_ms=initial_retry_delay_ms,
        batch_size=embed_batch_size,
        sub_batch_size=embed_sub_batch_size,
        sub_batch_delay_ms=sub_batch_delay_ms,
    )

    # Step 4: Gated index + parent store
    store_vectors(
        embedded_chunks=embed_task.outputs["embedded_chunks"],
        parent_chunks=chunk_task.outputs["parent_chunks"],
        chroma_host=chroma_host,
        chroma_port=chroma_port,
        collection_name=collection_name,
        vector_db_type=vector_db_type,
        upsert_batch_size=upsert_batch_size,
        tenant_id=tenant_id,
        tenant_type=tenant_type,
    )


# ──────────────────────────────────────────────────────────────────────
# CLI
# ──────────────────────────────────────────────────────────────────────


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Hierarchical RAG ingestion pipeline")
    parser.add_argument(
        "--compile",
        action="store_true",
        help="Compile pipeline to YAML",
    )
    parser.add_argument(
        "--output",
        default="pipelines/compiled/ingestion_pipeline.yaml",
        help="Output path for compiled YAML",
    )
    args = parser.parse_args()

    if args.compile:
        compiler.Compiler().compile(ingestion_pipeline, args.output)
        print(f"Pipeline compiled → {args.output}")
