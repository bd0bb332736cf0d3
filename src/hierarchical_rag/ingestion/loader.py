"""Document loaders — thin wrappers around LangChain document loaders."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from langchain_community.document_loaders import PyPDFLoader, TextLoader

if TYPE_CHECKING:
    from langchain_core.documents import Document

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".txt", ".md", ".pdf")


@dataclass(frozen=True)
class LoadedDocument:
    """Raw text of one source file plus the name it is registered under."""

    name: str
    text: str
    source: str


def _join_pages(pages: list[Document]) -> str:
    return "\n\n".join(page.page_content for page in pages)


def load_file(path: str | Path) -> LoadedDocument:
    """Load a single PDF, Markdown or plain-text file.

    Raises
    ------
    ValueError
        For unsupported file types.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".pdf":
        pages = PyPDFLoader(str(path)).load()
    elif suffix in (".txt", ".md"):
        pages = TextLoader(str(path), encoding="utf-8").load()
    else:
        raise ValueError(
            f"Unsupported file type {suffix!r}. Supported: {', '.join(SUPPORTED_SUFFIXES)}"
        )
    return LoadedDocument(name=path.name, text=_join_pages(pages), source=str(path))


def load_directory(path: str | Path, glob: str = "**/*.*") -> list[LoadedDocument]:
    """Recursively load every supported file under *path*.

    Unsupported or unreadable files are skipped with a warning.
    """
    root = Path(path)
    if not root.is_dir():
        raise FileNotFoundError(f"Directory not found: {path}")

    documents: list[LoadedDocument] = []
    for fpath in sorted(root.glob(glob)):
        if not fpath.is_file() or fpath.suffix.lower() not in SUPPORTED_SUFFIXES:
            continue
        try:
            documents.append(load_file(fpath))
        except Exception as exc:
            logger.warning("Skipping %s: %s", fpath, exc)
    logger.info("Loaded %d documents from %s", len(documents), root)
    return documents
