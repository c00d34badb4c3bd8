"""OpenSearch index mapping for catalog products with hybrid search support."""


def build_index_settings(dimensions: int) -> dict:
    """Index settings and mapping for the given embedding dimensionality."""
    return {
        "settings": {
            "number_of_shards": 1,
            "number_of_replicas": 0,
            "index": {
                "knn": True,  # Enable k-NN for vector search
            },
            "analysis": {
                "analyzer": {
                    # Case and diacritic insensitive matching for transliterated queries
                    "folding": {
                        "type": "custom",
                        "tokenizer": "standard",
                        "filter": ["lowercase", "asciifolding"],
                    },
                    "autocomplete": {
                        "type": "custom",
                        "tokenizer": "autocomplete_tokenizer",
                        "filter": ["lowercase", "asciifolding"],
                    },
                },
                "tokenizer": {
                    "autocomplete_tokenizer": {
                        "type": "edge_ngram",
                        "min_gram": 2,
                        "max_gram": 20,
                        "token_chars": ["letter", "digit"],
                    }
                },
            },
        },
        "mappings": {
            "properties": {
                "id": {"type": "keyword"},
                "barcode": {"type": "keyword"},
                "name": {
                    "type": "text",
                    "analyzer": "folding",
                    "fields": {
                        "keyword": {"type": "keyword"},
                        "autocomplete": {
                            "type": "text",
                            "analyzer": "autocomplete",
                            "search_analyzer": "folding",
                        },
                    },
                },
                "generic_name": {
                    "type": "text",
                    "analyzer": "folding",
                    "fields": {
                        "autocomplete": {
                            "type": "text",
                            "analyzer": "autocomplete",
                            "search_analyzer": "folding",
                        }
                    },
                },
                "internal_name": {"type": "text", "analyzer": "folding"},
                "english_name": {
                    "type": "text",
                    "analyzer": "folding",
                    "fields": {
                        "autocomplete": {
                            "type": "text",
                            "analyzer": "autocomplete",
                            "search_analyzer": "folding",
                        }
                    },
                },
                "manufacturer": {
                    "type": "text",
                    "analyzer": "folding",
                    "fields": {"keyword": {"type": "keyword"}},
                },
                "category": {"type": "keyword"},
                "tags": {"type": "keyword"},
                "description": {"type": "text", "analyzer": "folding"},
                "ingredients": {"type": "text", "analyzer": "folding"},
                "dosage": {"type": "keyword"},
                "is_prescription": {"type": "boolean"},
                # Inventory
                "price": {"type": "scaled_float", "scaling_factor": 100},
                "available": {"type": "integer"},
                "active": {"type": "boolean"},
                # Provenance
                "synced_at": {"type": "date"},
                "embedded_at": {"type": "date"},
                "source_marker": {"type": "keyword"},
                # Embedding for vector search. Lucene HNSW with cosinesimil
                # scores documents as (1 + cosine) / 2.
                "embedding": {
                    "type": "knn_vector",
                    "dimension": dimensions,
                    "method": {
                        "name": "hnsw",
                        "space_type": "cosinesimil",
                        "engine": "lucene",
                        "parameters": {
                            "ef_construction": 128,
                            "m": 16,
                        },
                    },
                },
                # Text used to generate embedding (for debugging/provenance)
                "embedding_text": {
                    "type": "text",
                    "index": False,  # Not searchable, just stored
                },
            }
        },
    }
