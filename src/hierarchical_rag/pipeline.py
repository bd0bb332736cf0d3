"""End-to-end ingestion and query driver.

Wires the ingestion, embedding and retrieval layers together::

    register version → chunk (hierarchical, flat fallback)
        → keep parents in the parent store
        → embed children → gated write to the similarity index

Queries embed the text, search the index, and attach each hit's parent
context from the parent store.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel

from hierarchical_rag.config import Settings, settings
from hierarchical_rag.embedding import CancellationToken, EmbeddingGenerator
from hierarchical_rag.exceptions import VersionNotFoundError
from hierarchical_rag.ingestion import (
    Document,
    DocumentRegistry,
    FlatChunker,
    HierarchicalChunker,
    ParentChunkStore,
    chunk_document,
)
from hierarchical_rag.retrieval import (
    InMemoryVectorStore,
    MetadataFilter,
    SearchHit,
    SimilarityIndex,
    Tenant,
    VectorStoreBase,
)

logger = logging.getLogger(__name__)

EmbeddingMode = Literal["queue", "batch"]


class IngestionReport(BaseModel):
    """Per-document summary returned by :meth:`IngestionPipeline.ingest`."""

    document_name: str
    document_id: str
    version: int
    version_status: str
    strategy: str | None = None
    chunks_produced: int = 0
    parents_stored: int = 0
    chunks_embedded: int = 0
    chunks_failed: int = 0
    chunks_accepted: int = 0
    chunks_rejected: int = 0


class IngestionPipeline:
    """Ingest documents into, and query, a hierarchical RAG index.

    Parameters
    ----------
    generator:
        Embedding front-end shared by ingestion and queries.
    index:
        Gated similarity index receiving child / basic chunks.
    chunker, flat_chunker:
        Hierarchical chunker and its flat fallback.
    parent_store:
        Holds parent chunks for context expansion.
    registry:
        Document version history.
    embedding_mode:
        ``"queue"`` skips chunks that fail to embed; ``"batch"`` aborts the
        document on the first failure.
    """

    def __init__(
        self,
        generator: EmbeddingGenerator,
        index: SimilarityIndex,
        *,
        chunker: HierarchicalChunker | None = None,
        flat_chunker: FlatChunker | None = None,
        parent_store: ParentChunkStore | None = None,
        registry: DocumentRegistry | None = None,
        embedding_mode: EmbeddingMode = "queue",
    ) -> None:
        if embedding_mode not in ("queue", "batch"):
            raise ValueError(f"embedding_mode must be 'queue' or 'batch', got {embedding_mode!r}")
        self.generator = generator
        self.index = index
        self.chunker = chunker or HierarchicalChunker()
        self.flat_chunker = flat_chunker or FlatChunker()
        self.parent_store = parent_store or ParentChunkStore()
        self.registry = registry or DocumentRegistry()
        self.embedding_mode = embedding_mode

    @classmethod
    def from_settings(cls, config: Settings = settings, **overrides: Any) -> IngestionPipeline:
        """Build every component from *config*; keyword *overrides* win."""
        if "index" not in overrides:
            store: VectorStoreBase
            if config.vector_store_backend == "memory":
                store = InMemoryVectorStore(config.chroma_collection)
            elif config.vector_store_backend == "chroma":
                from hierarchical_rag.retrieval.chroma_store import ChromaVectorStore

                store = ChromaVectorStore(
                    config.chroma_collection,
                    host=config.chroma_host,
                    port=config.chroma_port,
                    native_search=config.chroma_native_search,
                )
            else:
                raise ValueError(f"Unknown vector_store_backend: {config.vector_store_backend!r}")
            overrides["index"] = SimilarityIndex(
                store,
                manual_search_cap=config.manual_search_cap,
                tenant_isolation=config.tenant_isolation,
            )
        if "generator" not in overrides:
            overrides["generator"] = EmbeddingGenerator.from_settings(config)
        overrides.setdefault(
            "chunker",
            HierarchicalChunker(
                config.parent_chunk_size,
                config.parent_chunk_overlap,
                config.child_chunk_size,
                config.child_chunk_overlap,
            ),
        )
        overrides.setdefault(
            "flat_chunker",
            FlatChunker(
                config.flat_chunk_size,
                config.flat_chunk_overlap,
                content_aware=config.content_aware_windowing,
            ),
        )
        overrides.setdefault(
            "parent_store",
            ParentChunkStore(
                config.parent_store_max_size, config.parent_store_path or None
            ),
        )
        generator = overrides.pop("generator")
        index = overrides.pop("index")
        return cls(generator, index, **overrides)

    # -- ingestion ------------------------------------------------------------

    def ingest(
        self,
        name: str,
        text: str,
        *,
        metadata: dict[str, Any] | None = None,
        tenant: Tenant | None = None,
        force_new_version: bool = False,
        cancel: CancellationToken | None = None,
    ) -> IngestionReport:
        """Ingest one document's text under *name*.

        Unchanged content (same hash as the latest version) is skipped
        and reported with zero counts. When chunking, embedding or
        indexing raises, the new version and its parent chunks are rolled
        back before the error propagates, so the same text can be
        ingested again.
        """
        registration = self.registry.register(
            name, text, metadata=metadata, force_new_version=force_new_version
        )
        document = registration.document
        report = IngestionReport(
            document_name=name,
            document_id=document.document_id,
            version=document.version,
            version_status=registration.status,
        )
        if not registration.needs_ingestion:
            logger.info("Skipping %s: unchanged since version %d", name, document.version)
            return report

        try:
            self._index_version(document, text, report, metadata, tenant, cancel)
        except Exception:
            self._roll_back(document)
            raise

        logger.info(
            "Ingested %s v%d (%s): %d chunks, %d parents, %d embedded, %d failed, %d stored",
            name, document.version, report.strategy, report.chunks_produced,
            report.parents_stored, report.chunks_embedded, report.chunks_failed,
            report.chunks_accepted,
        )
        return report

    def _index_version(
        self,
        document: Document,
        text: str,
        report: IngestionReport,
        metadata: dict[str, Any] | None,
        tenant: Tenant | None,
        cancel: CancellationToken | None,
    ) -> None:
        base_metadata = {**(metadata or {}), "source": document.name, "version": document.version}
        chunk_set = chunk_document(
            text,
            document.document_id,
            base_metadata,
            hierarchical=self.chunker,
            flat=self.flat_chunker,
        )
        report.strategy = chunk_set.strategy
        report.chunks_produced = chunk_set.total
        report.parents_stored = self.parent_store.store_batch(chunk_set.parents)

        children = chunk_set.children
        texts = [c.content for c in children]
        if self.embedding_mode == "batch":
            embeddings = self.generator.generate_embeddings(texts, cancel)
            embedded = list(range(len(children)))
        else:
            queued = self.generator.process_chunks_in_queue(texts, cancel)
            embeddings, embedded = queued.embeddings, queued.succeeded
            report.chunks_failed = queued.failed_count
        report.chunks_embedded = len(embedded)

        if embedded:
            added = self.index.add_documents(
                [children[i].content for i in embedded],
                embeddings,
                [children[i].to_metadata() for i in embedded],
                [children[i].id for i in embedded],
                tenant=tenant,
            )
            report.chunks_accepted = len(added.stored)
            report.chunks_rejected = added.rejected

    def _roll_back(self, document: Document) -> None:
        dropped = self.parent_store.delete_document(document.document_id)
        self.registry.discard(document)
        logger.warning(
            "Rolled back %s v%d after a failed ingest (%d parent chunks dropped)",
            document.name, document.version, dropped,
        )

    def ingest_path(
        self,
        path: str | Path,
        *,
        metadata: dict[str, Any] | None = None,
        tenant: Tenant | None = None,
        force_new_version: bool = False,
        cancel: CancellationToken | None = None,
    ) -> list[IngestionReport]:
        """Ingest a single file or every supported file under a directory."""
        from hierarchical_rag.ingestion.loader import load_directory, load_file

        path = Path(path)
        loaded = load_directory(path) if path.is_dir() else [load_file(path)]
        reports = []
        for doc in loaded:
            if cancel is not None:
                cancel.raise_if_cancelled()
            reports.append(
                self.ingest(
                    doc.name,
                    doc.text,
                    metadata={**(metadata or {}), "file_path": doc.source},
                    tenant=tenant,
                    force_new_version=force_new_version,
                    cancel=cancel,
                )
            )
        if self.parent_store.persistence_path is not None:
            self.parent_store.save()
        return reports

    # -- versions -------------------------------------------------------------

    def document_versions(self, name: str) -> dict[int, int]:
        """Indexed chunk count per version of *name*, latest version first."""
        return {v: len(ids) for v, ids in self.index.document_versions(name).items()}

    def delete_document_version(self, name: str, version: int) -> int:
        """Remove one version's chunks, parents and registry entry.

        Returns the number of indexed chunks deleted.

        Raises
        ------
        VersionNotFoundError
            When neither the index nor the registry knows the version.
        """
        document = self.registry.get(name, version)
        try:
            deleted = len(self.index.delete_document_version(name, version))
        except VersionNotFoundError:
            if document is None:
                raise
            deleted = 0
        if document is not None:
            self.parent_store.delete_document(document.document_id)
            self.registry.discard(document)
        return deleted

    def rollback_document_version(self, name: str, target_version: int) -> list[int]:
        """Delete every version of *name* newer than *target_version*.

        Returns the deleted version numbers, newest first.
        """
        known = set(self.index.document_versions(name))
        known.update(d.version for d in self.registry.versions(name))
        if target_version not in known:
            raise VersionNotFoundError(f"Version {target_version} not found for document {name}")
        newer = sorted((v for v in known if v > target_version), reverse=True)
        if not newer:
            raise ValueError(f"Document {name} is already at version {target_version}")
        for version in newer:
            self.delete_document_version(name, version)
        logger.info("Rolled back %s to version %d (deleted %s)", name, target_version, newer)
        return newer

    # -- queries --------------------------------------------------------------

    def query(
        self,
        text: str,
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
        tenant: Tenant | None = None,
        expand_parents: bool = True,
    ) -> list[SearchHit]:
        """Search the index for *text*, optionally attaching parent context."""
        query_embedding = self.generator.embed_single_chunk(text)
        hits = self.index.search(query_embedding, k=k, filters=filters, tenant=tenant)
        if not expand_parents:
            return hits
        return [self._with_parent(hit) for hit in hits]

    def _with_parent(self, hit: SearchHit) -> SearchHit:
        parent_id = hit.metadata.get("parent_id")
        parent = self.parent_store.get(parent_id) if parent_id else None
        if parent is None:
            return hit
        return hit.model_copy(update={"metadata": {**hit.metadata, "parent_content": parent.content}})
