"""HTTP client for the upstream business system's product listing."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from catalog_search.config import Settings
from catalog_search.errors import SyncUnavailable
from catalog_search.retry import RetryPolicy

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class RetryableUpstreamError(Exception):
    """Transient HTTP status from upstream (rate limit or server error)."""


class UpstreamClient:
    """Paginated product listing parameterized by page, size, dates and store."""

    def __init__(
        self,
        base_url: str,
        store_id: str,
        start_date: str,
        end_date: str,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        api_token: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.store_id = store_id
        self.start_date = start_date
        self.end_date = end_date
        self.retry_policy = retry_policy or RetryPolicy()
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout, headers=headers
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> UpstreamClient:
        return cls(
            base_url=settings.upstream_base_url,
            store_id=settings.upstream_store_id,
            start_date=settings.upstream_start_date,
            end_date=settings.upstream_end_date,
            retry_policy=RetryPolicy.from_settings(settings),
            timeout=settings.upstream_timeout_seconds,
            api_token=settings.upstream_api_token,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def _get(self, params: dict[str, Any]) -> Any:
        response = self._client.get("/products", params=params)
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableUpstreamError(
                f"HTTP {response.status_code} from upstream"
            )
        response.raise_for_status()
        return response.json()

    def fetch_page(self, page: int, size: int) -> Any:
        """Fetch one page of the product listing as decoded JSON.

        Raises:
            SyncUnavailable: The page could not be fetched after retries, or
                upstream answered with a non-retryable error or invalid JSON.
        """
        params = {
            "page": page,
            "size": size,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "storeId": self.store_id,
        }
        try:
            return self.retry_policy.call(
                self._get,
                params,
                retry_on=(httpx.TransportError, RetryableUpstreamError),
            )
        except (httpx.HTTPError, RetryableUpstreamError, ValueError) as exc:
            logger.error(
                "Upstream page unavailable", extra={"page": page, "error": str(exc)}
            )
            raise SyncUnavailable(f"Upstream page {page} unavailable: {exc}", page=page) from exc
