"""OpenSearch query and document builders."""

from catalog_search.schemas import ProductRecord

# Latin spellings live in english_name and internal_name; the folding
# analyzer does not transliterate Cyrillic
LEXICAL_FIELDS = [
    "name^3",
    "english_name^3",
    "generic_name^2",
    "internal_name^2",
    "manufacturer",
    "tags",
    "ingredients",
    "description",
]

AUTOCOMPLETE_FIELDS = [
    "name.autocomplete^2",
    "english_name.autocomplete^2",
    "generic_name.autocomplete",
]

# Stored in the index but never returned with hits
SOURCE_EXCLUDES = ["embedding", "embedding_text"]


def build_filters(include_inactive: bool) -> list[dict]:
    """Build filter clauses shared by both search primitives.

    Args:
        include_inactive: When False, only active products match.

    Returns:
        List of OpenSearch filter clause dictionaries.
    """
    if include_inactive:
        return []
    return [{"term": {"active": True}}]


def build_knn_query(embedding: list[float], k: int, filters: list[dict]) -> dict:
    """Build k-NN vector search query.

    Args:
        embedding: Query embedding vector.
        k: Number of nearest neighbors to retrieve.
        filters: List of filter clauses to apply.

    Returns:
        OpenSearch kNN query dictionary.
    """
    knn = {
        "embedding": {
            "vector": embedding,
            "k": k,
        }
    }

    # Lucene engine applies the filter during graph traversal
    if filters:
        knn["embedding"]["filter"] = {"bool": {"filter": filters}}

    return {"knn": knn}


def build_lexical_query(q: str, filters: list[dict]) -> dict:
    """Build fuzzy full-text query tolerant of typos and partial tokens.

    Args:
        q: Normalized search query text.
        filters: List of filter clauses to apply.

    Returns:
        OpenSearch bool query.
    """
    should = [
        {
            "multi_match": {
                "query": q,
                "fields": LEXICAL_FIELDS,
                "type": "best_fields",
                "fuzziness": "AUTO",
            }
        },
        {
            "multi_match": {
                "query": q,
                "fields": AUTOCOMPLETE_FIELDS,
                "type": "best_fields",
            }
        },
        {"term": {"barcode": {"value": q, "boost": 5}}},
    ]

    return {"bool": {"should": should, "minimum_should_match": 1, "filter": filters}}


def cosine_from_score(score: float) -> float:
    """Invert the cosinesimil score transform ``(1 + cos) / 2``."""
    return max(-1.0, min(1.0, 2.0 * score - 1.0))


def product_to_doc(product: ProductRecord) -> dict:
    """Convert a ProductRecord to an OpenSearch document body."""
    doc = {
        "id": product.id,
        "name": product.name,
        "generic_name": product.generic_name,
        "internal_name": product.internal_name,
        "english_name": product.english_name,
        "manufacturer": product.manufacturer,
        "category": product.category,
        "tags": product.tags,
        "ingredients": product.ingredients,
        "description": product.description,
        "barcode": product.barcode,
        "dosage": product.dosage,
        "is_prescription": product.is_prescription,
        # Kept as a string in _source so it round-trips without float drift
        "price": str(product.price),
        "available": product.available,
        "active": product.active,
        "source_marker": product.source_marker,
    }

    if product.synced_at:
        doc["synced_at"] = product.synced_at.isoformat()
    if product.embedding:
        doc["embedding"] = product.embedding
        doc["embedding_text"] = product.embedding_text
        if product.embedded_at:
            doc["embedded_at"] = product.embedded_at.isoformat()

    return doc


def hit_to_record(hit: dict) -> ProductRecord:
    """Parse an OpenSearch hit back into a ProductRecord (without embedding)."""
    source = hit["_source"]
    return ProductRecord(
        id=source.get("id") or hit["_id"],
        name=source["name"],
        generic_name=source.get("generic_name"),
        internal_name=source.get("internal_name"),
        english_name=source.get("english_name"),
        manufacturer=source.get("manufacturer"),
        category=source.get("category"),
        tags=source.get("tags") or [],
        ingredients=source.get("ingredients"),
        description=source.get("description"),
        barcode=source.get("barcode"),
        dosage=source.get("dosage"),
        is_prescription=source.get("is_prescription", False),
        price=source.get("price") or "0",
        available=source.get("available") or 0,
        active=source.get("active", True),
        embedded_at=source.get("embedded_at"),
        synced_at=source.get("synced_at"),
        source_marker=source.get("source_marker"),
    )
