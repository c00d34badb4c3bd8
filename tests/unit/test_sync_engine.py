"""Unit tests for the sync engine."""

import threading

import pytest

from catalog_search.errors import (
    EmbeddingDimensionError,
    ProviderUnavailable,
    StoreUnavailable,
    SyncUnavailable,
)
from catalog_search.sync.engine import LOCK_NAME, SyncEngine


def record(product_id, name="Product", available=10, **fields):
    return {"PRODUCT_ID": product_id, "PRODUCT_NAME": name, "STOCKS": [{"AVAILABLE": available}], **fields}


def page(*records, total_pages=None):
    body = {"items": list(records)}
    if total_pages is not None:
        body["total_pages"] = total_pages
    return {"data": {"data": body}}


@pytest.fixture
def engine(fake_store, fake_embedder, fake_upstream, settings, cache):
    return SyncEngine(fake_store, fake_embedder, fake_upstream, settings, cache=cache)


@pytest.mark.unit
class TestIngest:
    """Mapping, embedding and upsert counting."""

    def test_nested_envelope_with_three_records(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [
            page(record(1, "Paracetamol 400mg"), record(2, "Ibuprofen 200mg"), record(3, "Vitamin C"))
        ]

        summary = engine.trigger_sync()

        assert summary.status == "completed"
        assert summary.created == 3
        assert summary.failed == 0
        assert set(fake_store.products) == {"1", "2", "3"}
        assert summary.batches[0].shape == "data.data.items"

    def test_record_without_name_is_counted_failed(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [page(record(1, "Aspirin"), {"PRODUCT_ID": 2}, record(3, "Gauze"))]

        summary = engine.trigger_sync()

        assert summary.status == "completed"
        assert summary.failed == 1
        assert summary.created == 2
        assert "2" not in fake_store.products

    def test_second_run_is_idempotent(self, engine, fake_upstream, fake_embedder):
        fake_upstream.pages = [page(record(1, "Aspirin"), record(2, "Gauze"))]

        engine.trigger_sync()
        embed_calls = len(fake_embedder.batch_calls)
        second = engine.trigger_sync()

        assert second.created == 0
        assert second.updated == 0
        assert second.unchanged == 2
        assert len(fake_embedder.batch_calls) == embed_calls

    def test_stock_change_updates_without_reembedding(self, engine, fake_store, fake_upstream, fake_embedder):
        fake_upstream.pages = [page(record(1, "Aspirin", available=10))]
        engine.trigger_sync()
        embed_calls = len(fake_embedder.batch_calls)

        fake_upstream.pages = [page(record(1, "Aspirin", available=0))]
        summary = engine.trigger_sync()

        assert summary.updated == 1
        assert fake_store.products["1"].available == 0
        assert len(fake_embedder.batch_calls) == embed_calls

    def test_text_change_reembeds(self, engine, fake_upstream, fake_embedder):
        fake_upstream.pages = [page(record(1, "Aspirin"))]
        engine.trigger_sync()

        fake_upstream.pages = [page(record(1, "Aspirin 100mg"))]
        summary = engine.trigger_sync()

        assert summary.updated == 1
        assert fake_embedder.batch_calls[-1] == ["Aspirin 100mg. Category: general"]

    def test_embeddings_stored_with_text(self, engine, fake_store, fake_upstream, fake_embedder):
        fake_upstream.pages = [page(record(1, "Aspirin", MANUFACTURE_NAME="Bayer"))]

        engine.trigger_sync()

        product = fake_store.products["1"]
        assert product.embedding == fake_embedder.vector
        assert product.embedding_text == "Aspirin. Manufacturer: Bayer. Category: general"
        assert product.embedded_at is not None
        assert product.source_marker.startswith("sync-")

    def test_embedding_batches_respect_size(self, engine, fake_upstream, fake_embedder, settings):
        settings.embedding_batch_size = 2
        fake_upstream.pages = [page(*(record(i, f"Product {i}") for i in range(5)))]

        engine.trigger_sync()

        assert [len(batch) for batch in fake_embedder.batch_calls] == [2, 2, 1]

    def test_degraded_embedding_fails_records_and_continues(self, engine, fake_store, fake_upstream, fake_embedder):
        fake_embedder.error = ProviderUnavailable("down")
        fake_upstream.pages = [page(record(1, "Aspirin"), record(2, "Gauze"))]

        summary = engine.trigger_sync()

        assert summary.status == "completed"
        assert summary.failed == 2
        assert fake_store.products == {}

        fake_embedder.error = None
        retry = engine.trigger_sync()
        assert retry.created == 2

    def test_dimension_mismatch_aborts(self, engine, fake_upstream, fake_embedder):
        fake_embedder.error = EmbeddingDimensionError(8, 3)
        fake_upstream.pages = [page(record(1, "Aspirin"))]

        summary = engine.trigger_sync()

        assert summary.status == "failed"
        assert "dimension" in summary.error

    @pytest.mark.parametrize(
        "bad_fields",
        [
            {"PRODUCT_NAME": 911},
            {"DESCRIPTION": 5},
            {"BASE_PRICE": "NaN"},
            {"STOCKS": [{"AVAILABLE": "Infinity"}]},
        ],
    )
    def test_malformed_record_counted_failed(self, engine, fake_store, fake_upstream, bad_fields):
        fake_upstream.pages = [page(record(1, "Aspirin"), {**record(2, "Gauze"), **bad_fields})]

        summary = engine.trigger_sync()

        assert summary.status == "completed"
        assert summary.created == 1
        assert summary.failed == 1
        assert "2" not in fake_store.products
        assert fake_store.sync_runs[-1].status == "completed"

    def test_alias_fields_reach_store_and_embedding(self, engine, fake_store, fake_upstream, fake_embedder):
        fake_upstream.pages = [page(record(1, "Цитрамон П", ENG_NAME="Citramon P"))]

        engine.trigger_sync()

        assert fake_store.products["1"].english_name == "Citramon P"
        assert fake_embedder.batch_calls[-1] == ["Цитрамон П. Citramon P. Category: general"]

    def test_single_upsert_failure_counted(self, engine, fake_store, fake_upstream):
        fake_store.upsert_error_ids = {"2"}
        fake_upstream.pages = [page(record(1, "Aspirin"), record(2, "Gauze"))]

        summary = engine.trigger_sync()

        assert summary.status == "completed"
        assert summary.created == 1
        assert summary.failed == 1


@pytest.mark.unit
class TestPagination:
    """Page loop termination and duplicates."""

    def test_stops_at_empty_page(self, engine, fake_upstream):
        fake_upstream.pages = [page(record(1, "A")), page(record(2, "B"))]

        summary = engine.trigger_sync()

        assert summary.pages == 2
        assert fake_upstream.requested == [0, 1, 2]

    def test_stops_at_reported_total_pages(self, engine, fake_upstream):
        fake_upstream.pages = [
            page(record(1, "A"), total_pages=2),
            page(record(2, "B"), total_pages=2),
            page(record(3, "C"), total_pages=2),
        ]

        summary = engine.trigger_sync()

        assert fake_upstream.requested == [0, 1]
        assert summary.created == 2

    def test_page_guard(self, engine, fake_upstream, settings):
        settings.upstream_max_pages = 2
        fake_upstream.pages = [page(record(i, f"P{i}")) for i in range(5)]

        summary = engine.trigger_sync()

        assert fake_upstream.requested == [0, 1]
        assert summary.created == 2

    def test_duplicates_within_run_skipped(self, engine, fake_upstream):
        fake_upstream.pages = [page(record(1, "A"), record(2, "B")), page(record(2, "B"), record(3, "C"))]

        summary = engine.trigger_sync()

        assert summary.created == 3
        assert summary.skipped == 1

    def test_repeated_page_stops_loop(self, engine, fake_upstream):
        same = page(record(1, "A"), record(2, "B"))
        fake_upstream.pages = [same, same, same]

        summary = engine.trigger_sync()

        assert fake_upstream.requested == [0, 1]
        assert summary.created == 2
        assert summary.skipped == 2


@pytest.mark.unit
class TestDeactivation:
    """Products that disappear upstream."""

    def test_missing_products_deactivated_after_complete_run(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [page(record(1, "A"), record(2, "B"))]
        engine.trigger_sync()

        fake_upstream.pages = [page(record(1, "A"))]
        summary = engine.trigger_sync()

        assert summary.deactivated == 1
        assert fake_store.products["2"].active is False

    def test_returning_product_reactivated(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [page(record(1, "A"), record(2, "B"))]
        engine.trigger_sync()
        fake_upstream.pages = [page(record(1, "A"))]
        engine.trigger_sync()

        fake_upstream.pages = [page(record(1, "A"), record(2, "B"))]
        summary = engine.trigger_sync()

        assert summary.updated == 1
        assert fake_store.products["2"].active is True

    def test_unmappable_record_not_deactivated(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [page(record(1, "A"), record(2, "B"))]
        engine.trigger_sync()

        fake_upstream.pages = [page(record(1, "A"), {"PRODUCT_ID": 2, "BASE_PRICE": "-5", "NAME": "B"})]
        summary = engine.trigger_sync()

        assert summary.failed == 1
        assert summary.deactivated == 0
        assert fake_store.products["2"].active is True

    def test_no_deactivation_after_page_guard(self, engine, fake_store, fake_upstream, settings):
        fake_upstream.pages = [page(record(1, "A")), page(record(2, "B"))]
        engine.trigger_sync()

        settings.upstream_max_pages = 1
        summary = engine.trigger_sync()

        assert summary.deactivated == 0
        assert fake_store.products["2"].active is True

    def test_empty_upstream_deactivates_nothing(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [page(record(1, "A"))]
        engine.trigger_sync()

        fake_upstream.pages = []
        summary = engine.trigger_sync()

        assert summary.deactivated == 0
        assert fake_store.products["1"].active is True


@pytest.mark.unit
class TestRunControl:
    """Locking, failures and bookkeeping."""

    def test_upstream_unavailable_fails_run_and_keeps_data(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [page(record(1, "A")), page(record(2, "B"))]
        engine.trigger_sync()

        fake_upstream.errors = {1: SyncUnavailable("timeout", page=1)}
        summary = engine.trigger_sync()

        assert summary.status == "failed"
        assert summary.deactivated == 0
        assert fake_store.products["2"].active is True
        assert fake_store.sync_runs[-1].status == "failed"

    def test_store_failure_fails_run(self, engine, fake_store, fake_upstream, monkeypatch):
        def broken(ids):
            raise StoreUnavailable("db down")

        monkeypatch.setattr(fake_store, "find_by_ids", broken)
        fake_upstream.pages = [page(record(1, "A"))]

        summary = engine.trigger_sync()

        assert summary.status == "failed"
        assert "db down" in summary.error

    def test_unexpected_error_recorded_as_failed(self, engine, fake_store, fake_upstream, monkeypatch):
        def broken():
            raise RuntimeError("boom")

        monkeypatch.setattr(fake_store, "active_ids", broken)
        fake_upstream.pages = [page(record(1, "A"))]

        summary = engine.trigger_sync()

        assert summary.status == "failed"
        assert "RuntimeError" in summary.error
        assert fake_store.sync_runs[-1].status == "failed"
        assert engine.trigger_sync().status == "failed"

    def test_lease_held_elsewhere(self, engine, cache, fake_upstream):
        cache.acquire_lock(LOCK_NAME, ttl_seconds=60)

        summary = engine.trigger_sync()

        assert summary.status == "already_running"
        assert fake_upstream.requested == []

    def test_lease_released_after_run(self, engine, cache, fake_upstream):
        engine.trigger_sync()
        assert cache.acquire_lock(LOCK_NAME, ttl_seconds=60) is not None

    def test_lease_renewed_after_each_page(self, engine, fake_redis, fake_upstream, settings):
        key = "test:lock:" + LOCK_NAME
        observed = []
        fetch = fake_upstream.fetch_page

        def fetch_page(number, size):
            if number > 0:
                observed.append(fake_redis.ttls.get(key))
                fake_redis.ttls[key] = 1
            return fetch(number, size)

        fake_upstream.fetch_page = fetch_page
        fake_upstream.pages = [page(record(1, "A")), page(record(2, "B"))]

        engine.trigger_sync()

        assert observed == [settings.sync_lock_ttl_seconds] * 2

    def test_lost_lease_fails_run(self, engine, fake_store, fake_redis, fake_upstream):
        fetch = fake_upstream.fetch_page

        def fetch_page(number, size):
            if number == 1:
                fake_redis.data.pop("test:lock:" + LOCK_NAME, None)
            return fetch(number, size)

        fake_upstream.fetch_page = fetch_page
        fake_upstream.pages = [page(record(1, "A")), page(record(2, "B"))]

        summary = engine.trigger_sync()

        assert summary.status == "failed"
        assert "lease" in summary.error
        assert summary.deactivated == 0
        assert fake_store.sync_runs[-1].status == "failed"

    def test_concurrent_trigger_is_noop(self, fake_store, fake_embedder, settings, cache):
        started = threading.Event()
        release = threading.Event()

        class BlockingUpstream:
            def fetch_page(self, page, size):
                started.set()
                release.wait(timeout=5)
                return {"items": []}

            def close(self):
                pass

        engine = SyncEngine(fake_store, fake_embedder, BlockingUpstream(), settings, cache=cache)
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.trigger_sync()))
        worker.start()
        started.wait(timeout=5)

        second = engine.trigger_sync()
        release.set()
        worker.join(timeout=5)

        assert second.status == "already_running"
        assert results[0].status == "completed"

    def test_redis_outage_falls_back_to_process_lock(self, engine, fake_redis, fake_upstream):
        fake_redis.down = True
        fake_upstream.pages = [page(record(1, "A"))]

        summary = engine.trigger_sync()

        assert summary.status == "completed"
        assert summary.created == 1

    def test_changes_invalidate_search_cache(self, engine, cache, fake_upstream):
        cache.set_json("search:abc", {"products": []}, ttl_seconds=60)
        fake_upstream.pages = [page(record(1, "A"))]

        engine.trigger_sync()

        assert cache.get_json("search:abc") is None

    def test_unchanged_run_keeps_search_cache(self, engine, cache, fake_upstream):
        fake_upstream.pages = [page(record(1, "A"))]
        engine.trigger_sync()
        cache.set_json("search:abc", {"products": []}, ttl_seconds=60)

        engine.trigger_sync()

        assert cache.get_json("search:abc") == {"products": []}

    def test_run_recorded(self, engine, fake_store, fake_upstream):
        fake_upstream.pages = [page(record(1, "A"))]

        summary = engine.trigger_sync()

        assert fake_store.sync_runs == [summary]
        assert fake_store.refreshes == 1
