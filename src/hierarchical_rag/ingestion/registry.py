"""Document version tracking keyed on source name and content hash."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Literal

from hierarchical_rag.ingestion.models import Document, content_hash

logger = logging.getLogger(__name__)

VersionStatus = Literal["new", "updated", "unchanged", "forced"]


@dataclass(frozen=True)
class Registration:
    """Outcome of registering a document with :class:`DocumentRegistry`."""

    document: Document
    status: VersionStatus

    @property
    def needs_ingestion(self) -> bool:
        return self.status != "unchanged"


class DocumentRegistry:
    """In-process history of every document version seen so far.

    A document is superseded, never mutated: a changed content hash (or
    ``force_new_version``) appends a new :class:`Document` with the next
    version number.
    """

    def __init__(self) -> None:
        self._versions: dict[str, list[Document]] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        content: str,
        *,
        metadata: dict[str, Any] | None = None,
        force_new_version: bool = False,
    ) -> Registration:
        """Record *content* under *name* and report what changed."""
        with self._lock:
            history = self._versions.setdefault(name, [])
            if history:
                latest = history[-1]
                if force_new_version:
                    status: VersionStatus = "forced"
                elif latest.content_hash != content_hash(content):
                    status = "updated"
                else:
                    logger.info("Document %s is identical to version %d", name, latest.version)
                    return Registration(document=latest, status="unchanged")
            else:
                status = "new"

            version = history[-1].version + 1 if history else 1
            document = Document.create(name, content, version=version, metadata=metadata)
            history.append(document)

        logger.info("Registered %s v%d (%s)", name, document.version, status)
        return Registration(document=document, status=status)

    def latest(self, name: str) -> Document | None:
        with self._lock:
            history = self._versions.get(name)
            return history[-1] if history else None

    def versions(self, name: str) -> list[Document]:
        with self._lock:
            return list(self._versions.get(name, []))

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._versions)

    def get(self, name: str, version: int) -> Document | None:
        with self._lock:
            for document in self._versions.get(name, []):
                if document.version == version:
                    return document
        return None

    def discard(self, document: Document) -> bool:
        """Forget *document*.

        Discarding the latest version makes the one before it current again.
        """
        with self._lock:
            history = self._versions.get(document.name, [])
            kept = [d for d in history if d.version != document.version]
            if len(kept) == len(history):
                return False
            history[:] = kept
            if not history:
                del self._versions[document.name]
        logger.info("Discarded %s v%d", document.name, document.version)
        return True
