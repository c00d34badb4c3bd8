"""Catalog sync from the upstream business system."""

from catalog_search.sync.engine import SyncEngine, build_sync_engine
from catalog_search.sync.envelope import Envelope, extract_products
from catalog_search.sync.mapper import map_record

__all__ = ["Envelope", "SyncEngine", "build_sync_engine", "extract_products", "map_record"]
