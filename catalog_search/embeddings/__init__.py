"""Embedding generation module for hybrid search."""

from catalog_search.embeddings.client import (
    CachedEmbeddingClient,
    Embedder,
    EmbeddingClient,
)
from catalog_search.embeddings.text_prep import (
    clean_html,
    clean_product_name,
    extract_dosage,
    normalize_query,
    prepare_embedding_text,
)

__all__ = [
    "CachedEmbeddingClient",
    "Embedder",
    "EmbeddingClient",
    "clean_html",
    "clean_product_name",
    "extract_dosage",
    "normalize_query",
    "prepare_embedding_text",
]
