"""Shared test fixtures."""

import fnmatch
from decimal import Decimal

import pytest
import redis
from sqlalchemy import create_engine

from catalog_search.cache import RedisCache
from catalog_search.config import Settings
from catalog_search.db.database import create_session_factory, init_db_sync
from catalog_search.db.repository import TRACKED_FIELDS, ProductRepository, UpsertOutcome
from catalog_search.errors import StoreUnavailable
from catalog_search.schemas import ProductRecord

EMBEDDING_DIMENSIONS = 8


def make_product(
    product_id: str = "1001",
    name: str = "Paracetamol 400mg",
    available: int = 120,
    price: str = "3500.00",
    active: bool = True,
    **fields,
) -> ProductRecord:
    return ProductRecord(
        id=product_id,
        name=name,
        available=available,
        price=Decimal(price),
        active=active,
        **fields,
    )


class FakeEmbedder:
    """Returns a fixed vector, or raises ``error`` when set."""

    def __init__(self, vector: list[float] | None = None):
        self.vector = vector or [0.1] * EMBEDDING_DIMENSIONS
        self.dimensions = len(self.vector)
        self.error: Exception | None = None
        self.calls: list[str] = []
        self.batch_calls: list[list[str]] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [list(self.vector) for _ in texts]


class FakeCatalogStore:
    """In-memory stand-in for CatalogStore.

    Search primitives return the configured result lists; writes go to a dict
    and report outcomes the way the database-backed repository does.
    """

    def __init__(self):
        self.products: dict[str, ProductRecord] = {}
        self.vector_results: list[tuple[ProductRecord, float]] = []
        self.lexical_results: list[tuple[ProductRecord, float]] = []
        self.vector_error: Exception | None = None
        self.lexical_error: Exception | None = None
        self.upsert_error_ids: set[str] = set()
        self.search_calls: list[str] = []
        self.sync_runs = []
        self.refreshes = 0

    def similarity_search(self, vector, limit, min_similarity, include_inactive=False):
        self.search_calls.append("vector")
        if self.vector_error is not None:
            raise self.vector_error
        results = [(p, s) for p, s in self.vector_results if s >= min_similarity]
        return results[:limit]

    def lexical_search(self, query, limit, include_inactive=False):
        self.search_calls.append("lexical")
        if self.lexical_error is not None:
            raise self.lexical_error
        return self.lexical_results[:limit]

    def upsert(self, product: ProductRecord) -> UpsertOutcome:
        if product.id in self.upsert_error_ids:
            raise StoreUnavailable(f"Upsert of product {product.id} failed")
        stored = self.products.get(product.id)
        if stored is None:
            outcome = UpsertOutcome.CREATED
        elif any(getattr(stored, f) != getattr(product, f) for f in TRACKED_FIELDS):
            outcome = UpsertOutcome.UPDATED
        else:
            outcome = UpsertOutcome.UNCHANGED
        self.products[product.id] = product.model_copy(deep=True)
        return outcome

    def find_by_ids(self, ids):
        return {
            product_id: self.products[product_id].model_copy(deep=True)
            for product_id in ids
            if product_id in self.products
        }

    def active_ids(self) -> set[str]:
        return {pid for pid, product in self.products.items() if product.active}

    def deactivate(self, ids) -> int:
        changed = 0
        for product_id in ids:
            product = self.products.get(product_id)
            if product is not None and product.active:
                product.active = False
                changed += 1
        return changed

    def refresh(self) -> None:
        self.refreshes += 1

    def record_sync_run(self, summary) -> None:
        self.sync_runs.append(summary)

    def last_sync_run(self):
        return None


class FakeRedis:
    """The subset of redis.Redis used by RedisCache, kept in a dict."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise redis.ConnectionError("Connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    def set(self, key, value, nx=False, ex=None):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match=None, count=None):
        self._check()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def eval(self, script, numkeys, key, token, *args):
        self._check()
        if self.data.get(key) != token:
            return 0
        if args:
            self.ttls[key] = int(args[0])
            return 1
        return self.delete(key)


class FakeUpstream:
    """Serves canned page payloads by page index."""

    def __init__(self, pages: list | None = None):
        self.pages = pages or []
        self.requested: list[int] = []
        self.errors: dict[int, Exception] = {}
        self.closed = False

    def fetch_page(self, page: int, size: int):
        self.requested.append(page)
        if page in self.errors:
            raise self.errors[page]
        if page < len(self.pages):
            return self.pages[page]
        return {"data": {"data": {"items": []}}}

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        openai_embedding_dimensions=EMBEDDING_DIMENSIONS,
        upstream_base_url="http://upstream.test/api",
        retry_initial_delay=0.0,
        search_subquery_timeout_seconds=1.0,
    )


@pytest.fixture
def fake_store() -> FakeCatalogStore:
    return FakeCatalogStore()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> RedisCache:
    return RedisCache(fake_redis, namespace="test")


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def sample_upstream_record() -> dict:
    """One product as the business API returns it."""
    return {
        "PRODUCT_ID": 1001,
        "PRODUCT_NAME": "Парацетамол 400мг - Цаг бүртгэх",
        "GENERIC_NAME": "Paracetamol",
        "MANUFACTURE_NAME": "Monos Pharm",
        "CATEG_ID": 116,
        "BASE_PRICE": "3500",
        "BARCODE": "8651234567890",
        "DESCRIPTION": "<p>Өвдөлт намдаах, <b>халуун бууруулах</b></p>",
        "STOCKS": [{"AVAILABLE": 120}],
        "ACTIVE": "Y",
    }


@pytest.fixture
def product_factory():
    """Build ProductRecords with sensible defaults."""
    return make_product


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a throwaway SQLite database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    init_db_sync(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory) -> ProductRepository:
    return ProductRepository(session_factory)
