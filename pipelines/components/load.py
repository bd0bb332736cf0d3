"""KFP v2 component — Load source documents from a directory.

Step 1 of the hierarchical ingestion pipeline. Walks a directory of
PDF / Markdown / plain-text files and emits a JSON-Lines Dataset artifact
for downstream chunking.

Structured output contract (one JSON object per line)::

    {
      "document_id":  "<sha256(name)[:16]>_v1",
      "name":         "<file name>",
      "source":       "<file path>",
      "text":         "<extracted text>",
      "content_hash": "<sha256 of text>",
      "loaded_at":    "<ISO-8601 timestamp>",
      "char_count":   1234
    }

Local testing
-------------
    from pipelines.components.load import load_documents
    load_documents.python_func(
        source_dir="/data/documents",
        raw_documents=_FakeArtifact("/tmp/raw.jsonl"),
        metrics=_FakeArtifact("/tmp/metrics"),
    )
"""

from kfp import dsl


@dsl.component(
    base_image="python:3.11-slim",
    target_image="hierarchical-rag-components:0.1.0",
    packages_to_install=[
        "langchain-community>=0.2,<1",
        "pypdf>=4,<6",
    ],
)
def load_documents(
    source_dir: str,
    raw_documents: dsl.Output[dsl.Dataset],
    metrics: dsl.Output[dsl.Metrics],
    glob_pattern: str = "**/*.*",
) -> str:
    """Read every supported file under *source_dir* into JSON-Lines.

    Parameters
    ----------
    source_dir:
        Directory holding the source documents.
    raw_documents:
        Output Dataset — one JSON object per line (see module docstring).
    metrics:
        Output Metrics artifact with load statistics.
    glob_pattern:
        File-matching glob, relative to *source_dir*.

    Returns
    -------
    str
        Human-readable summary.
    """
    import json
    import logging
    from datetime import datetime, timezone
    from pathlib import Path

    from hierarchical_rag.ingestion.loader import load_directory
    from hierarchical_rag.ingestion.models import Document

    logging.basicConfig(level=logging.INFO)
    log = logging.getLogger("load_documents")

    loaded = load_directory(source_dir, glob=glob_pattern)
    loaded_at = datetime.now(timezone.utc).isoformat()

    records: list[dict] = []
    skipped = 0
    for item in loaded:
        if not item.text.strip():
            log.warning("Skipping %s: no extractable text", item.source)
            skipped += 1
            continue
        doc = Document.create(item.name, item.text)
        records.append({
            "document_id": doc.document_id,
            "name": item.name,
            "source": item.source,
            "text": item.text,
            "content_hash": doc.content_hash,
            "loaded_at": loaded_at,
            "char_count": len(item.text),
        })

    # ── persist ───────────────────────────────────────────────────
    out_path = Path(raw_documents.path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, "w") as fh:
        for rec in records:
            fh.write(json.dumps(rec, ensure_ascii=False) + "\n")

    total_chars = sum(r["char_count"] for r in records)
    raw_documents.metadata["num_documents"] = len(records)
    raw_documents.metadata["total_chars"] = total_chars

    metrics.log_metric("documents_loaded", len(records))
    metrics.log_metric("documents_skipped", skipped)
    metrics.log_metric("total_chars", total_chars)

    msg = f"Loaded {len(records)} documents ({skipped} skipped) from {source_dir}"
    log.info(msg)
    return msg
