"""FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from catalog_search.api.routes.search import router as search_router
from catalog_search.api.routes.sync import router as sync_router
from catalog_search.api.schemas import HealthResponse
from catalog_search.cache import RedisCache
from catalog_search.config import Settings
from catalog_search.config import settings as default_settings
from catalog_search.embeddings.client import CachedEmbeddingClient, EmbeddingClient
from catalog_search.search.engine import SearchEngine
from catalog_search.store import CatalogStore
from catalog_search.sync.engine import SyncEngine
from catalog_search.sync.upstream import UpstreamClient

logger = logging.getLogger(__name__)

DESCRIPTION = """
## Catalog Search API

Hybrid product search for a pharmacy chat assistant, backed by a locally
synced copy of the business system's catalog.

### Features

* **Hybrid search** - Embedding similarity fused with fuzzy, accent-folded text matching
* **Graceful degradation** - Lexical-only results when the embedding provider is down
* **Live availability** - Stock status and formatted price on every hit
* **Catalog sync** - Paginated pull from the business system with change detection
"""


def build_engines(settings: Settings) -> tuple[SearchEngine, SyncEngine]:
    """Wire both engines over one store, cache and embedding client."""
    store = CatalogStore.from_settings(settings)
    cache = RedisCache.from_settings(settings)
    embedder = EmbeddingClient.from_settings(settings)
    query_embedder = CachedEmbeddingClient(
        embedder,
        cache,
        ttl_seconds=settings.embedding_cache_ttl_seconds,
        model=settings.openai_embedding_model,
    )
    search_engine = SearchEngine(store, query_embedder, settings, cache=cache)
    sync_engine = SyncEngine(
        store, embedder, UpstreamClient.from_settings(settings), settings, cache=cache
    )
    return search_engine, sync_engine


def create_app(
    settings: Settings | None = None,
    search_engine: SearchEngine | None = None,
    sync_engine: SyncEngine | None = None,
) -> FastAPI:
    """Build the application. Engines not passed in are built from settings."""
    settings = settings or default_settings

    if search_engine is None or sync_engine is None:
        built_search, built_sync = build_engines(settings)
        search_engine = search_engine or built_search
        sync_engine = sync_engine or built_sync

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.sync_engine.upstream.close()

    app = FastAPI(
        title="Catalog Search API",
        description=DESCRIPTION,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "search", "description": "Hybrid product search"},
            {"name": "sync", "description": "Catalog sync from the business system"},
        ],
    )
    app.state.settings = settings
    app.state.search_engine = search_engine
    app.state.sync_engine = sync_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(search_router)
    app.include_router(sync_router)

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        cache = app.state.search_engine.cache
        if cache is None:
            return HealthResponse()
        return HealthResponse(cache=await run_in_threadpool(cache.ping))

    return app


def main() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(default_settings),
        host=default_settings.api_host,
        port=default_settings.api_port,
    )


if __name__ == "__main__":
    main()
