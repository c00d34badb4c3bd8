"""OpenAI embedding client with batching, retry and typed failures."""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING, Protocol

from openai import (
    APIConnectionError,
    APIError,
    InternalServerError,
    OpenAI,
    RateLimitError,
)

from catalog_search.config import Settings
from catalog_search.errors import (
    EmbeddingDimensionError,
    ProviderUnavailable,
    RateLimited,
)
from catalog_search.retry import RetryPolicy

if TYPE_CHECKING:
    from catalog_search.cache import RedisCache

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (RateLimitError, APIConnectionError, InternalServerError)


class Embedder(Protocol):
    dimensions: int

    def embed(self, text: str) -> list[float]: ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class EmbeddingClient:
    """Turns text into fixed-length vectors via the OpenAI embeddings API."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        batch_size: int = 100,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        client: OpenAI | None = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> EmbeddingClient:
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            dimensions=settings.openai_embedding_dimensions,
            batch_size=settings.embedding_batch_size,
            retry_policy=RetryPolicy.from_settings(settings),
            timeout=settings.openai_timeout_seconds,
        )

    def get_client(self) -> OpenAI:
        """Get OpenAI client with configured API key.

        Returns a cached client instance. SDK-level retries are disabled;
        the shared retry policy owns backoff.

        Raises:
            ProviderUnavailable: If no API key is configured.
        """
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ProviderUnavailable(
                "OPENAI_API_KEY environment variable is required for embedding "
                "generation. Set it in .env or as an environment variable."
            )
        self._client = OpenAI(
            api_key=self._api_key, timeout=self._timeout, max_retries=0
        )
        return self._client

    def _create(self, texts: list[str]) -> list[list[float]]:
        response = self.get_client().embeddings.create(
            input=texts,
            model=self.model,
            dimensions=self.dimensions,
        )
        return [item.embedding for item in response.data]

    def _check_dimensions(self, vectors: list[list[float]]) -> None:
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingDimensionError(self.dimensions, len(vector))

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for a batch of texts with retry logic.

        Args:
            texts: List of texts to embed. Split into provider-sized batches.

        Returns:
            List of embedding vectors in the same order as input texts.

        Raises:
            RateLimited: Still throttled after all retries.
            ProviderUnavailable: Provider unreachable or rejected the request.
            EmbeddingDimensionError: Provider returned vectors of the wrong size.
        """
        if not texts:
            return []

        embeddings: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            try:
                vectors = self.retry_policy.call(
                    self._create, batch, retry_on=RETRYABLE_ERRORS
                )
            except RateLimitError as exc:
                raise RateLimited(f"Embedding provider rate limited: {exc}") from exc
            except APIError as exc:
                raise ProviderUnavailable(
                    f"Embedding provider unavailable: {exc}"
                ) from exc
            self._check_dimensions(vectors)
            embeddings.extend(vectors)

        return embeddings

    def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        return self.embed_batch([text])[0]


class CachedEmbeddingClient:
    """Memoizes single-text embeddings in the shared cache."""

    def __init__(self, inner: Embedder, cache: RedisCache, ttl_seconds: int, model: str):
        self.inner = inner
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.model = model
        self.dimensions = inner.dimensions

    def cache_key(self, text: str) -> str:
        digest = hashlib.sha256(f"{self.model}:{self.dimensions}:{text}".encode())
        return f"embedding:{digest.hexdigest()[:32]}"

    def embed(self, text: str) -> list[float]:
        key = self.cache_key(text)
        cached = self.cache.get_json(key)
        if isinstance(cached, list) and len(cached) == self.dimensions:
            return cached

        vector = self.inner.embed(text)
        self.cache.set_json(key, vector, self.ttl_seconds)
        return vector

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return self.inner.embed_batch(texts)
