"""Request-scoped access to the engines held on ``app.state``."""

from fastapi import Request

from catalog_search.search.engine import SearchEngine
from catalog_search.sync.engine import SyncEngine


def get_search_engine(request: Request) -> SearchEngine:
    return request.app.state.search_engine


def get_sync_engine(request: Request) -> SyncEngine:
    return request.app.state.sync_engine
