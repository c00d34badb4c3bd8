"""Hybrid product search: vector similarity fused with lexical matching."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PydanticValidationError

from catalog_search.config import Settings
from catalog_search.embeddings.text_prep import normalize_query
from catalog_search.errors import (
    CatalogSearchError,
    EmptyQuery,
    ProviderDegraded,
    StoreUnavailable,
    ValidationError,
)
from catalog_search.inventory import (
    StockStatus,
    format_price,
    stock_label,
    stock_status,
)
from catalog_search.schemas import (
    SearchError,
    SearchHit,
    SearchMetadata,
    SearchOptions,
    SearchResponse,
)
from catalog_search.search.fusion import FusedCandidate, ScoredProducts, fuse_candidates

if TYPE_CHECKING:
    from catalog_search.cache import RedisCache
    from catalog_search.embeddings.client import Embedder
    from catalog_search.store import CatalogStore

logger = logging.getLogger(__name__)


class SearchEngine:
    """Turns a raw query into ranked, availability-filtered results.

    Per request: at most one embedding call and two store queries, the latter
    run concurrently and each bounded by ``search_subquery_timeout_seconds``.
    """

    def __init__(
        self,
        store: CatalogStore,
        embedder: Embedder,
        settings: Settings,
        cache: RedisCache | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.cache = cache
        self.settings = settings

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> SearchResponse:
        """Run a hybrid search.

        Raises:
            EmptyQuery: The query is empty after normalization.
            StoreUnavailable: Neither vector nor lexical search could run.
            EmbeddingDimensionError: The embedding provider is misconfigured.
        """
        start_time = time.perf_counter()
        options = options or SearchOptions()

        normalized = normalize_query(query)
        if not normalized:
            raise EmptyQuery()

        limit = min(
            options.limit or self.settings.search_default_limit,
            self.settings.search_max_limit,
        )
        threshold = (
            options.threshold
            if options.threshold is not None
            else self.settings.search_default_threshold
        )
        include_inactive = options.include_inactive

        cache_key = None
        if self.cache is not None:
            cache_key = self.cache.make_search_key(
                normalized, limit, threshold, include_inactive
            )
            cached = await run_in_threadpool(self.cache.get_json, cache_key)
            if cached is not None:
                try:
                    response = SearchResponse.model_validate(cached)
                except PydanticValidationError:
                    logger.warning("Ignoring unreadable cached search result")
                else:
                    response.metadata.cache_hit = True
                    return response

        vector = await self._embed_query(normalized)
        degraded = vector is None

        candidate_limit = limit * self.settings.search_candidate_multiplier
        signals = [
            self._run_signal(
                "lexical",
                self.store.lexical_search,
                normalized,
                candidate_limit,
                include_inactive,
            )
        ]
        if vector is not None:
            signals.append(
                self._run_signal(
                    "vector",
                    self.store.similarity_search,
                    vector,
                    candidate_limit,
                    self.settings.search_min_similarity,
                    include_inactive,
                )
            )
        results = await asyncio.gather(*signals)
        lexical_results = results[0]
        vector_results = results[1] if vector is not None else None

        if lexical_results is None and vector_results is None:
            raise StoreUnavailable("Both vector and lexical search failed")
        if vector is not None and vector_results is None:
            degraded = True
        if lexical_results is None:
            degraded = True

        fused = fuse_candidates(
            vector_results,
            lexical_results,
            vector_weight=self.settings.vector_weight,
            lexical_weight=self.settings.lexical_weight,
            single_signal_penalty=self.settings.single_signal_penalty,
        )
        kept = self._apply_filters(fused, threshold, include_inactive)

        response = SearchResponse(
            products=[
                self._to_hit(candidate, rank)
                for rank, candidate in enumerate(kept[:limit], start=1)
            ],
            total=len(kept),
            metadata=SearchMetadata(
                degraded=degraded,
                used_vector_search=vector_results is not None,
                used_lexical_search=lexical_results is not None,
                threshold_applied=threshold,
                took_ms=int((time.perf_counter() - start_time) * 1000),
            ),
        )

        # Degraded results are never cached
        if cache_key is not None and not degraded:
            await run_in_threadpool(
                self.cache.set_json,
                cache_key,
                response.model_dump(mode="json", by_alias=True),
                self.settings.search_cache_ttl_seconds,
            )

        return response

    async def search_safe(
        self, query: str, options: SearchOptions | dict | None = None
    ) -> SearchResponse | SearchError:
        """Like ``search`` but returns a typed error instead of raising."""
        try:
            if isinstance(options, dict):
                options = SearchOptions.model_validate(options)
            return await self.search(query, options)
        except PydanticValidationError as exc:
            return SearchError(code=ValidationError.code, message=str(exc))
        except CatalogSearchError as exc:
            logger.warning(
                "Search failed", extra={"code": exc.code, "error": str(exc)}
            )
            return SearchError(code=exc.code, message=str(exc))

    async def _embed_query(self, normalized: str) -> list[float] | None:
        try:
            return await run_in_threadpool(self.embedder.embed, normalized)
        except ProviderDegraded as exc:
            logger.warning(
                "Embedding unavailable; falling back to lexical-only search",
                extra={"code": exc.code, "error": str(exc)},
            )
            return None

    async def _run_signal(
        self, name: str, fn: Callable[..., ScoredProducts], *args: Any
    ) -> ScoredProducts | None:
        """Run one store query with a timeout. None means the signal is unavailable."""
        try:
            # On timeout the worker thread is abandoned, not interrupted
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args),
                timeout=self.settings.search_subquery_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Search signal timed out", extra={"signal": name})
        except StoreUnavailable as exc:
            logger.warning(
                "Search signal failed", extra={"signal": name, "error": str(exc)}
            )
        return None

    def _apply_filters(
        self, fused: list[FusedCandidate], threshold: float, include_inactive: bool
    ) -> list[FusedCandidate]:
        kept = []
        for candidate in fused:
            product = candidate.product
            if candidate.score < threshold:
                continue
            if not product.active and not include_inactive:
                continue
            if self.settings.hide_out_of_stock and product.available == 0:
                continue
            kept.append(candidate)
        return kept

    def _to_hit(self, candidate: FusedCandidate, rank: int) -> SearchHit:
        product = candidate.product
        status = stock_status(product.available, self.settings.low_stock_threshold)
        return SearchHit(
            id=product.id,
            name=product.name,
            generic_name=product.generic_name,
            manufacturer=product.manufacturer,
            category=product.category,
            dosage=product.dosage,
            is_prescription=product.is_prescription,
            price=product.price,
            formatted_price=format_price(product.price, self.settings.currency_symbol),
            currency=self.settings.currency_code,
            available=product.available,
            stock_status=status,
            stock_label=stock_label(status),
            in_stock=product.available > 0,
            low_stock=status is StockStatus.LOW_STOCK,
            active=product.active,
            score=candidate.score,
            vector_score=candidate.vector_score,
            lexical_score=candidate.lexical_score,
            rank=rank,
        )
