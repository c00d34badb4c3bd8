"""Periodic catalog sync from the upstream business system."""

from __future__ import annotations

import logging
import sys
import threading
import time
from datetime import datetime
from typing import TYPE_CHECKING

import redis

from catalog_search.config import Settings
from catalog_search.db.models import utc_now
from catalog_search.db.repository import UpsertOutcome
from catalog_search.embeddings.text_prep import prepare_embedding_text_from_record
from catalog_search.errors import (
    EmbeddingDimensionError,
    ProviderDegraded,
    StoreUnavailable,
    SyncRecordError,
    SyncUnavailable,
)
from catalog_search.schemas import ProductRecord, SyncBatch, SyncSummary
from catalog_search.sync.envelope import Envelope, extract_products
from catalog_search.sync.mapper import map_record

if TYPE_CHECKING:
    from catalog_search.cache import RedisCache
    from catalog_search.embeddings.client import Embedder
    from catalog_search.store import CatalogStore
    from catalog_search.sync.upstream import UpstreamClient

logger = logging.getLogger(__name__)

LOCK_NAME = "sync"

COUNTERS = ("created", "updated", "unchanged", "skipped", "failed")


class SyncEngine:
    """Pulls the upstream product listing into the catalog store.

    At most one sync runs at a time: a process-local lock guards threads in
    this process and, when Redis is configured, a lease guards other
    processes. Only this engine writes products.
    """

    def __init__(
        self,
        store: CatalogStore,
        embedder: Embedder,
        upstream: UpstreamClient,
        settings: Settings,
        cache: RedisCache | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.upstream = upstream
        self.settings = settings
        self.cache = cache
        self._lock = threading.Lock()
        self._lease_token: str | None = None

    def trigger_sync(self) -> SyncSummary:
        """Run one sync cycle, or report that one is already in progress."""
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already running in this process")
            return SyncSummary(status="already_running")

        token = None
        try:
            if self.cache is not None:
                try:
                    token = self.cache.acquire_lock(
                        LOCK_NAME, self.settings.sync_lock_ttl_seconds
                    )
                except redis.RedisError as exc:
                    logger.warning(
                        "Sync lease unavailable; relying on the process lock",
                        extra={"error": str(exc)},
                    )
                else:
                    if token is None:
                        logger.info("Sync already running elsewhere")
                        return SyncSummary(status="already_running")
            self._lease_token = token
            return self._run()
        finally:
            if token is not None:
                self.cache.release_lock(LOCK_NAME, token)
            self._lease_token = None
            self._lock.release()

    def _run(self) -> SyncSummary:
        start_time = time.perf_counter()
        synced_at = utc_now()
        source_marker = f"sync-{synced_at:%Y%m%dT%H%M%SZ}"
        summary = SyncSummary(status="completed")
        seen: set[str] = set()

        logger.info("Sync started", extra={"source_marker": source_marker})
        try:
            complete = self._paginate(summary, seen, synced_at, source_marker)
            if complete and seen:
                stale = self.store.active_ids() - seen
                if stale:
                    summary.deactivated = self.store.deactivate(stale)
            elif not complete:
                logger.warning("Sync did not reach the last page; skipping deactivation")
        except (SyncUnavailable, StoreUnavailable, EmbeddingDimensionError) as exc:
            summary.status = "failed"
            summary.error = str(exc)
            logger.error("Sync failed", extra={"code": exc.code, "error": str(exc)})
        except Exception as exc:
            summary.status = "failed"
            summary.error = f"Unexpected {type(exc).__name__}: {exc}"
            logger.exception("Sync aborted by an unexpected error")
        finally:
            summary.duration_ms = int((time.perf_counter() - start_time) * 1000)
            self.store.refresh()
            if summary.created or summary.updated or summary.deactivated:
                if self.cache is not None:
                    removed = self.cache.invalidate_search_cache()
                    logger.info("Invalidated search cache", extra={"keys": removed})
            self.store.record_sync_run(summary)

        logger.info(
            "Sync finished",
            extra={
                "status": summary.status,
                "pages": summary.pages,
                "processed": summary.processed,
                "created": summary.created,
                "updated": summary.updated,
                "unchanged": summary.unchanged,
                "skipped": summary.skipped,
                "failed": summary.failed,
                "deactivated": summary.deactivated,
                "duration_ms": summary.duration_ms,
            },
        )
        return summary

    def _paginate(
        self,
        summary: SyncSummary,
        seen: set[str],
        synced_at: datetime,
        source_marker: str,
    ) -> bool:
        """Fetch and process pages. Returns True when the listing was exhausted."""
        page_size = self.settings.upstream_page_size
        max_pages = self.settings.upstream_max_pages

        for page in range(max_pages):
            payload = self.upstream.fetch_page(page, page_size)
            envelope = extract_products(payload)
            if not envelope.records:
                logger.info("No more products upstream", extra={"page": page})
                return True

            batch = self._process_page(page, envelope, seen, synced_at, source_marker)
            summary.batches.append(batch)
            summary.pages += 1
            for counter in COUNTERS:
                setattr(summary, counter, getattr(summary, counter) + getattr(batch, counter))

            logger.info(
                "Processed page",
                extra={"page": page, "shape": batch.shape, "received": batch.received},
            )

            if batch.skipped == batch.received:
                # Upstream is repeating itself, most likely ignoring the page parameter
                logger.warning(
                    "Every product on page was already seen; stopping",
                    extra={"page": page},
                )
                return False
            self._renew_lease()

            if envelope.total_pages is not None and page + 1 >= envelope.total_pages:
                return True

        logger.warning("Reached the page guard", extra={"max_pages": max_pages})
        return False

    def _renew_lease(self) -> None:
        if self.cache is None or self._lease_token is None:
            return
        try:
            held = self.cache.extend_lock(
                LOCK_NAME, self._lease_token, self.settings.sync_lock_ttl_seconds
            )
        except redis.RedisError as exc:
            logger.warning("Sync lease renewal failed", extra={"error": str(exc)})
            return
        if not held:
            raise SyncUnavailable("Sync lease expired; another sync may have started")

    def _process_page(
        self,
        page: int,
        envelope: Envelope,
        seen: set[str],
        synced_at: datetime,
        source_marker: str,
    ) -> SyncBatch:
        batch = SyncBatch(page=page, shape=envelope.shape, received=len(envelope.records))

        mapped: list[ProductRecord] = []
        for raw in envelope.records:
            try:
                record = map_record(raw, synced_at=synced_at, source_marker=source_marker)
            except SyncRecordError as exc:
                if exc.record_id in seen:
                    batch.skipped += 1
                    continue
                batch.failed += 1
                if exc.record_id:
                    # Still present upstream, so never deactivated
                    seen.add(exc.record_id)
                logger.warning(
                    "Skipping unmappable record",
                    extra={"page": page, "record_id": exc.record_id, "error": str(exc)},
                )
                continue
            if record.id in seen:
                batch.skipped += 1
                continue
            seen.add(record.id)
            mapped.append(record)

        if not mapped:
            return batch

        existing = self.store.find_by_ids(record.id for record in mapped)
        ready, pending = self._reuse_embeddings(mapped, existing)
        ready.extend(self._embed_pending(pending, batch))

        for record in ready:
            try:
                outcome = self.store.upsert(record)
            except StoreUnavailable as exc:
                batch.failed += 1
                logger.warning(
                    "Product upsert failed",
                    extra={"record_id": record.id, "error": str(exc)},
                )
                continue
            if outcome is UpsertOutcome.CREATED:
                batch.created += 1
            elif outcome is UpsertOutcome.UPDATED:
                batch.updated += 1
            else:
                batch.unchanged += 1

        return batch

    def _reuse_embeddings(
        self, records: list[ProductRecord], existing: dict[str, ProductRecord]
    ) -> tuple[list[ProductRecord], list[ProductRecord]]:
        """Split records into those that can keep their stored embedding and
        those that need a new one."""
        ready: list[ProductRecord] = []
        pending: list[ProductRecord] = []
        for record in records:
            record.embedding_text = prepare_embedding_text_from_record(record)
            stored = existing.get(record.id)
            if (
                stored is not None
                and stored.has_embedding
                and stored.embedding_text == record.embedding_text
            ):
                record.embedding = stored.embedding
                record.embedded_at = stored.embedded_at
                ready.append(record)
            else:
                pending.append(record)
        return ready, pending

    def _embed_pending(
        self, records: list[ProductRecord], batch: SyncBatch
    ) -> list[ProductRecord]:
        """Embed records in provider-sized chunks.

        A degraded provider fails only the affected chunk; those records are
        left untouched in the store and picked up by the next cycle.
        """
        embedded: list[ProductRecord] = []
        chunk_size = self.settings.embedding_batch_size
        for start in range(0, len(records), chunk_size):
            chunk = records[start : start + chunk_size]
            try:
                vectors = self.embedder.embed_batch(
                    [record.embedding_text for record in chunk]
                )
            except ProviderDegraded as exc:
                batch.failed += len(chunk)
                logger.warning(
                    "Embedding failed for chunk; records will retry next sync",
                    extra={"count": len(chunk), "code": exc.code, "error": str(exc)},
                )
                continue
            embedded_at = utc_now()
            for record, vector in zip(chunk, vectors):
                record.embedding = vector
                record.embedded_at = embedded_at
                embedded.append(record)
        return embedded


def build_sync_engine(settings: Settings) -> SyncEngine:
    """Wire a SyncEngine from configuration."""
    from catalog_search.cache import RedisCache
    from catalog_search.embeddings.client import EmbeddingClient
    from catalog_search.store import CatalogStore
    from catalog_search.sync.upstream import UpstreamClient

    return SyncEngine(
        store=CatalogStore.from_settings(settings),
        embedder=EmbeddingClient.from_settings(settings),
        upstream=UpstreamClient.from_settings(settings),
        settings=settings,
        cache=RedisCache.from_settings(settings),
    )


def main() -> None:
    """CLI entry point."""
    import argparse

    from catalog_search.config import settings

    parser = argparse.ArgumentParser(description="Sync products from the business system")
    parser.add_argument(
        "--max-pages",
        type=int,
        help="Override the page guard for this run",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    run_settings = settings
    if args.max_pages:
        run_settings = settings.model_copy(update={"upstream_max_pages": args.max_pages})

    engine = build_sync_engine(run_settings)
    print("Starting sync...", file=sys.stderr)
    try:
        summary = engine.trigger_sync()
    finally:
        engine.upstream.close()

    print(
        f"Done. status={summary.status} created={summary.created:,} "
        f"updated={summary.updated:,} unchanged={summary.unchanged:,} "
        f"failed={summary.failed:,} deactivated={summary.deactivated:,}",
        file=sys.stderr,
    )
    if summary.status == "failed":
        sys.exit(1)


if __name__ == "__main__":
    main()
