"""Catalog store: PostgreSQL rows plus the OpenSearch vector/text index.

PostgreSQL is authoritative. The OpenSearch index mirrors every row and serves
both search primitives, which never write.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from opensearchpy import OpenSearch
from opensearchpy.exceptions import OpenSearchException
from opensearchpy.helpers import bulk
from sqlalchemy.exc import SQLAlchemyError

from catalog_search.config import Settings
from catalog_search.db.database import create_session_factory, create_sync_engine
from catalog_search.db.models import SyncRun
from catalog_search.db.repository import ProductRepository, UpsertOutcome
from catalog_search.errors import StoreUnavailable
from catalog_search.schemas import ProductRecord, SyncSummary
from catalog_search.search.client import create_client
from catalog_search.search.fusion import ScoredProducts
from catalog_search.search.queries import (
    SOURCE_EXCLUDES,
    build_filters,
    build_knn_query,
    build_lexical_query,
    cosine_from_score,
    hit_to_record,
    product_to_doc,
)

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000


class CatalogStore:
    def __init__(
        self,
        repository: ProductRepository,
        client: OpenSearch,
        index_name: str,
        lexical_score_midpoint: float = 5.0,
    ):
        self.repository = repository
        self.client = client
        self.index_name = index_name
        self.lexical_score_midpoint = lexical_score_midpoint

    @classmethod
    def from_settings(cls, settings: Settings) -> CatalogStore:
        session_factory = create_session_factory(create_sync_engine(settings))
        return cls(
            repository=ProductRepository(session_factory),
            client=create_client(settings),
            index_name=settings.opensearch_index,
            lexical_score_midpoint=settings.lexical_score_midpoint,
        )

    # ------------------------------------------------------------------
    # Search primitives (read-only)
    # ------------------------------------------------------------------

    def similarity_search(
        self,
        vector: list[float],
        limit: int,
        min_similarity: float,
        include_inactive: bool = False,
    ) -> ScoredProducts:
        """Nearest products by cosine similarity, descending.

        Only documents with an embedding take part. Scores are cosine
        similarity in [-1, 1]; anything below ``min_similarity`` is dropped.
        """
        body = {
            "size": limit,
            "_source": {"excludes": SOURCE_EXCLUDES},
            "query": build_knn_query(
                vector, k=limit, filters=build_filters(include_inactive)
            ),
        }
        response = self._search(body)

        results: ScoredProducts = []
        for hit in response["hits"]["hits"]:
            similarity = cosine_from_score(hit.get("_score") or 0.0)
            if similarity < min_similarity:
                continue
            results.append((hit_to_record(hit), similarity))

        results.sort(key=lambda item: item[1], reverse=True)
        return results

    def lexical_search(
        self, query: str, limit: int, include_inactive: bool = False
    ) -> ScoredProducts:
        """Fuzzy text matches, descending, scores normalized into [0, 1).

        BM25 scores are unbounded. Each is saturated on its own as
        ``s / (s + midpoint)``, so a raw score equal to the midpoint maps to 0.5
        and a weak lone hit stays low.
        """
        body = {
            "size": limit,
            "_source": {"excludes": SOURCE_EXCLUDES},
            "query": build_lexical_query(query, build_filters(include_inactive)),
        }
        response = self._search(body)

        results: ScoredProducts = []
        for hit in response["hits"]["hits"]:
            score = hit.get("_score") or 0.0
            if score <= 0:
                continue
            results.append((hit_to_record(hit), score / (score + self.lexical_score_midpoint)))

        results.sort(key=lambda item: item[1], reverse=True)
        return results

    def _search(self, body: dict) -> dict:
        try:
            return self.client.search(index=self.index_name, body=body)
        except OpenSearchException as exc:
            raise StoreUnavailable(f"Search index query failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes (sync engine only)
    # ------------------------------------------------------------------

    def upsert(self, product: ProductRecord) -> UpsertOutcome:
        """Persist a product and mirror it into the index.

        The index write happens inside the row's transaction, so a failed
        index write leaves the row unchanged and the next sync retries it.
        """
        try:
            return self.repository.upsert(product, before_commit=self._index_document)
        except (SQLAlchemyError, OpenSearchException) as exc:
            raise StoreUnavailable(f"Upsert of product {product.id} failed: {exc}") from exc

    def _index_document(self, product: ProductRecord) -> None:
        self.client.index(
            index=self.index_name, id=product.id, body=product_to_doc(product)
        )

    def find_by_ids(self, ids: Iterable[str]) -> dict[str, ProductRecord]:
        try:
            return self.repository.find_by_ids(ids)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Product lookup failed: {exc}") from exc

    def active_ids(self) -> set[str]:
        try:
            return self.repository.active_ids()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Active product lookup failed: {exc}") from exc

    def deactivate(self, ids: Iterable[str]) -> int:
        """Mark products inactive in the index, then in the database.

        Returns the number of rows changed.
        """
        ids = list(ids)
        if not ids:
            return 0
        actions = [
            {
                "_op_type": "update",
                "_index": self.index_name,
                "_id": product_id,
                "doc": {"active": False},
            }
            for product_id in ids
        ]
        try:
            _, errors = bulk(self.client, actions, raise_on_error=False)
            if errors:
                logger.warning(
                    "Index deactivation errors",
                    extra={"count": len(errors), "first_error": errors[0]},
                )
            return self.repository.deactivate(ids)
        except (SQLAlchemyError, OpenSearchException) as exc:
            raise StoreUnavailable(f"Deactivation failed: {exc}") from exc

    def refresh(self) -> None:
        """Make recent writes visible to search."""
        try:
            self.client.indices.refresh(index=self.index_name)
        except OpenSearchException as exc:
            logger.warning("Index refresh failed", extra={"error": str(exc)})

    def reindex_all(self) -> int:
        """Rebuild the index from PostgreSQL. Returns documents indexed."""
        count = 0
        for batch in self.repository.iter_all(batch_size=BATCH_SIZE):
            docs = [
                {"_index": self.index_name, "_id": product.id, **product_to_doc(product)}
                for product in batch
            ]
            success, errors = bulk(self.client, docs, raise_on_error=False)
            count += success
            if errors:
                logger.warning(
                    "Errors in reindex batch",
                    extra={"count": len(errors), "first_error": errors[0]},
                )
            logger.info("Reindexed documents", extra={"count": count})

        self.refresh()
        return count

    def record_sync_run(self, summary: SyncSummary) -> None:
        try:
            self.repository.record_sync_run(summary)
        except SQLAlchemyError as exc:
            logger.warning("Failed to record sync run", extra={"error": str(exc)})

    def last_sync_run(self) -> SyncRun | None:
        try:
            return self.repository.last_sync_run()
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Sync run lookup failed: {exc}") from exc
