"""Concrete embedding providers and error classification."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import requests

from hierarchical_rag.config import Settings, settings
from hierarchical_rag.embedding.base import EmbeddingProvider
from hierarchical_rag.exceptions import NonRetryableProviderError, TransientProviderError

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = ("429", "too many requests")


def is_transient_error(exc: BaseException) -> bool:
    """Return ``True`` for rate-limit style failures worth retrying."""
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, NonRetryableProviderError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class LangChainEmbeddingProvider(EmbeddingProvider):
    """Adapter over any LangChain :class:`~langchain_core.embeddings.Embeddings`.

    Parameters
    ----------
    embeddings:
        A ready LangChain embeddings object. When *None*, a
        ``HuggingFaceEmbeddings`` for *model_name* is created on first use.
    model_name:
        HuggingFace model id used for the default embeddings object.
    """

    def __init__(
        self,
        embeddings: Embeddings | None = None,
        *,
        model_name: str = settings.embedding_model,
    ) -> None:
        self.model_name = model_name
        self._embeddings = embeddings

    @property
    def embeddings(self) -> Embeddings:
        if self._embeddings is None:
            from langchain_huggingface import HuggingFaceEmbeddings

            logger.info("Loading embedding model: %s", self.model_name)
            self._embeddings = HuggingFaceEmbeddings(model_name=self.model_name)
        return self._embeddings

    def embed(self, text: str) -> list[float]:
        return self.embeddings.embed_query(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return self.embeddings.embed_documents(texts)


class HTTPEmbeddingProvider(EmbeddingProvider):
    """Remote feature-extraction endpoint (HuggingFace Inference API style).

    The endpoint receives ``{"inputs": <text>}`` and answers with a list of
    floats (or a one-element list of such lists).

    Parameters
    ----------
    url:
        Full endpoint URL.
    api_key:
        Bearer token; omitted from the request when empty.
    timeout:
        Per-request timeout in seconds.
    session:
        Optional pre-configured ``requests.Session``.
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str = "",
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url:
            raise ValueError("HTTPEmbeddingProvider requires a non-empty url")
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def embed(self, text: str) -> list[float]:
        try:
            resp = self._session.post(
                self.url,
                json={"inputs": text, "options": {"wait_for_model": True}},
                headers=self._headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientProviderError(f"Embedding request failed: {exc}") from exc

        status = resp.status_code
        if status == 429 or status >= 500:
            raise TransientProviderError(
                f"Embedding provider returned {status}: {resp.text[:200]}", status_code=status
            )
        if status >= 400:
            raise NonRetryableProviderError(
                f"Embedding provider rejected request ({status}): {resp.text[:200]}",
                status_code=status,
            )
        return _parse_vector(resp.json())

    def health_check(self) -> bool:
        return bool(self.url)


def _parse_vector(payload: Any) -> list[float]:
    if isinstance(payload, dict) and "embedding" in payload:
        payload = payload["embedding"]
    if isinstance(payload, list) and payload and isinstance(payload[0], list):
        payload = payload[0]
    if not isinstance(payload, list) or not payload:
        raise NonRetryableProviderError(f"Unexpected embedding payload: {str(payload)[:200]}")
    return [float(v) for v in payload]


def build_provider(config: Settings = settings) -> EmbeddingProvider:
    """Return the provider selected by *config*.

    A non-empty ``embedding_api_url`` selects the remote HTTP provider;
    otherwise embeddings are computed locally through LangChain.
    """
    if config.embedding_api_url:
        logger.info("Using remote embedding endpoint: %s", config.embedding_api_url)
        return HTTPEmbeddingProvider(
            config.embedding_api_url,
            api_key=config.embedding_api_key,
            timeout=config.embedding_request_timeout,
        )
    return LangChainEmbeddingProvider(model_name=config.embedding_model)
