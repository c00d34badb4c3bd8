"""Typed error taxonomy for search and sync.

Callers of the engines only ever see these exceptions (or the typed
``SearchError`` result returned by ``SearchEngine.search_safe``); provider,
transport and database exceptions are translated at the adapter boundary.
"""


class CatalogSearchError(Exception):
    """Base class for all engine errors."""

    code = "catalog_error"


class ValidationError(CatalogSearchError):
    """Bad caller input. Never retried."""

    code = "validation_error"


class EmptyQuery(ValidationError):
    code = "empty_query"

    def __init__(self, message: str = "Search query is empty after normalization"):
        super().__init__(message)


class ProviderDegraded(CatalogSearchError):
    """Embedding provider is down or throttling."""

    code = "provider_degraded"


class RateLimited(ProviderDegraded):
    code = "rate_limited"


class ProviderUnavailable(ProviderDegraded):
    code = "provider_unavailable"


class EmbeddingDimensionError(CatalogSearchError):
    """Provider returned a vector of the wrong length (configuration error)."""

    code = "embedding_dimension_mismatch"

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class StoreUnavailable(CatalogSearchError):
    """Both search primitives failed for a request."""

    code = "store_unavailable"


class SyncRecordError(CatalogSearchError):
    """A single upstream record could not be mapped to a product."""

    code = "sync_record_error"

    def __init__(self, message: str, record_id: str | None = None):
        super().__init__(message)
        self.record_id = record_id


class SyncUnavailable(CatalogSearchError):
    """Upstream endpoint unreachable for a whole page after retries."""

    code = "sync_unavailable"

    def __init__(self, message: str, page: int | None = None):
        super().__init__(message)
        self.page = page
