"""KFP v2 components — each file exports one @dsl.component."""

from pipelines.components.chunk import chunk_documents
from pipelines.components.embed import generate_embeddings
from pipelines.components.load import load_documents
from pipelines.components.store import store_vectors

__all__ = [
    "chunk_documents",
    "generate_embeddings",
    "load_documents",
    "store_vectors",
]
