"""Rebuild the OpenSearch index from PostgreSQL."""

import logging
import sys

from catalog_search.config import Settings
from catalog_search.search.client import create_index
from catalog_search.store import CatalogStore

logger = logging.getLogger(__name__)


def index_all(settings: Settings, recreate_index: bool = True) -> int:
    """Index every stored product, embeddings included. Returns documents indexed.

    The database is authoritative, so this is safe to run at any time; a
    recreated index is empty for search until the bulk load finishes.
    """
    store = CatalogStore.from_settings(settings)
    create_index(
        store.client,
        settings.opensearch_index,
        settings.openai_embedding_dimensions,
        delete_existing=recreate_index,
    )
    count = store.reindex_all()
    logger.info(
        "Indexed products",
        extra={"index": settings.opensearch_index, "count": count},
    )
    return count


def main() -> None:
    """CLI entry point."""
    import argparse

    from catalog_search.config import settings

    parser = argparse.ArgumentParser(description="Index products to OpenSearch")
    parser.add_argument(
        "--no-recreate",
        action="store_true",
        help="Don't recreate the index (overwrite documents in place)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("Starting indexing...", file=sys.stderr)
    print(f"  Index: {settings.opensearch_index}", file=sys.stderr)

    count = index_all(settings, recreate_index=not args.no_recreate)

    print(f"Done. Indexed {count:,} products.", file=sys.stderr)


if __name__ == "__main__":
    main()
