"""OpenSearch client setup."""

import logging

from opensearchpy import OpenSearch

from catalog_search.config import Settings
from catalog_search.search.mapping import build_index_settings

logger = logging.getLogger(__name__)


def create_client(settings: Settings) -> OpenSearch:
    return OpenSearch(
        hosts=[{"host": settings.opensearch_host, "port": settings.opensearch_port}],
        http_compress=True,
        use_ssl=settings.opensearch_use_ssl,
        verify_certs=settings.opensearch_verify_certs,
        timeout=settings.search_subquery_timeout_seconds,
    )


def create_index(
    client: OpenSearch,
    index_name: str,
    dimensions: int,
    delete_existing: bool = False,
) -> bool:
    """Create the products index with mapping. Returns True if created."""
    if client.indices.exists(index=index_name):
        if delete_existing:
            client.indices.delete(index=index_name)
        else:
            logger.info(
                "Index already exists; skipping create "
                "(set delete_existing=True to recreate)",
                extra={"index": index_name},
            )
            return False

    client.indices.create(index=index_name, body=build_index_settings(dimensions))
    logger.info("Created index", extra={"index": index_name})
    return True


def delete_index(client: OpenSearch, index_name: str) -> None:
    """Delete the products index."""
    if client.indices.exists(index=index_name):
        client.indices.delete(index=index_name)
        logger.info("Deleted index", extra={"index": index_name})
