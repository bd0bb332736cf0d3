"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Hierarchical chunking
    parent_chunk_size: int = Field(default=1024, description="Parent window size in characters")
    parent_chunk_overlap: int = Field(default=128, description="Overlap between parent windows")
    child_chunk_size: int = Field(default=256, description="Child window size in characters")
    child_chunk_overlap: int = Field(default=32, description="Overlap between child windows")

    # Flat (fallback) chunking
    flat_chunk_size: int = 1000
    flat_chunk_overlap: int = 200
    content_aware_windowing: bool = Field(
        default=True,
        description="Adapt flat window size to code / table / heading / list content",
    )

    # Embedding provider
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_api_url: str = Field(
        default="",
        description=(
            "Remote embedding endpoint. Leave empty to embed locally with "
            "HuggingFaceEmbeddings; set to an HF-Inference style URL, e.g. "
            "'https://api-inference.huggingface.co/pipeline/feature-extraction/<model>'"
        ),
    )
    embedding_api_key: str = ""
    embedding_request_timeout: float = 60.0

    # Embedding throughput / resilience
    rate_limit_delay_ms: int = Field(default=500, description="Minimum gap between provider calls")
    max_retries: int = Field(default=5, description="Provider attempts before giving up")
    initial_retry_delay_ms: int = 1000
    retry_non_transient: bool = Field(
        default=True,
        description="Retry non rate-limit provider errors with the same backoff schedule",
    )
    embed_batch_size: int = 100
    embed_sub_batch_size: int = 20
    sub_batch_delay_ms: int = 200
    embedding_cache_max_entries: int | None = Field(
        default=None, description="LRU bound for the embedding cache (None = unbounded)"
    )
    embedding_cache_ttl_seconds: float | None = None

    # Vector store
    vector_store_backend: str = Field(
        default="chroma", description="'chroma' or 'memory' (in-process, manual search only)"
    )
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "hierarchical_rag"
    chroma_native_search: bool = Field(
        default=True,
        description="Use Chroma's own vector index; False forces the manual cosine fallback",
    )
    manual_search_cap: int = Field(
        default=500, description="Max candidates scored by the manual similarity fallback"
    )

    # Multi-tenancy
    tenant_isolation: bool = False

    # Parent chunk store
    parent_store_max_size: int = 10000
    parent_store_path: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton — import `settings` wherever needed.
settings = Settings()
