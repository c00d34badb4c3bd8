"""Unit tests for the HTTP adapter with in-memory engines."""

import pytest
from fastapi.testclient import TestClient

from catalog_search.api.app import create_app
from catalog_search.errors import StoreUnavailable
from catalog_search.search.engine import SearchEngine
from catalog_search.sync.engine import SyncEngine


@pytest.fixture
def client(fake_store, fake_embedder, fake_upstream, settings, cache):
    search_engine = SearchEngine(fake_store, fake_embedder, settings, cache=cache)
    sync_engine = SyncEngine(fake_store, fake_embedder, fake_upstream, settings, cache=cache)
    app = create_app(settings, search_engine=search_engine, sync_engine=sync_engine)
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.unit
class TestSearchEndpoint:
    """Tests for POST /api/v1/search."""

    def test_returns_camel_case_results(self, client, fake_store, product_factory):
        fake_store.lexical_results = [(product_factory("1001"), 1.0)]

        response = client.post("/api/v1/search", json={"query": "paracetamol", "limit": 3})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        hit = data["products"][0]
        assert hit["id"] == "1001"
        assert hit["stockStatus"] == "in_stock"
        assert hit["formattedPrice"] == "₮3,500"
        assert data["metadata"]["usedLexicalSearch"] is True

    def test_empty_query_is_422(self, client):
        response = client.post("/api/v1/search", json={"query": "   "})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "empty_query"

    def test_invalid_threshold_is_422(self, client):
        response = client.post("/api/v1/search", json={"query": "x", "threshold": 2})
        assert response.status_code == 422

    def test_store_unavailable_is_503(self, client, fake_store):
        fake_store.vector_error = StoreUnavailable("down")
        fake_store.lexical_error = StoreUnavailable("down")

        response = client.post("/api/v1/search", json={"query": "paracetamol"})

        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "store_unavailable"


@pytest.mark.unit
class TestSyncEndpoint:
    """Tests for the sync routes."""

    def test_trigger_sync(self, client, fake_upstream):
        fake_upstream.pages = [{"items": [{"PRODUCT_ID": 1, "NAME": "Aspirin"}]}]

        response = client.post("/api/v1/sync")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["created"] == 1

    def test_already_running_is_409(self, client, cache):
        cache.acquire_lock("sync", ttl_seconds=60)

        response = client.post("/api/v1/sync")

        assert response.status_code == 409
        assert response.json()["status"] == "already_running"

    def test_last_sync_not_found(self, client):
        assert client.get("/api/v1/sync/last").status_code == 404


@pytest.mark.unit
def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "cache": True}
