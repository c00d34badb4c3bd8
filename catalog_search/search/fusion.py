"""Score fusion of vector and lexical candidate lists."""

from dataclasses import dataclass

from catalog_search.schemas import ProductRecord

ScoredProducts = list[tuple[ProductRecord, float]]


@dataclass
class FusedCandidate:
    product: ProductRecord
    score: float
    vector_score: float | None = None
    lexical_score: float | None = None


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def fuse_candidates(
    vector_results: ScoredProducts | None,
    lexical_results: ScoredProducts | None,
    vector_weight: float = 0.7,
    lexical_weight: float = 0.3,
    single_signal_penalty: float = 0.8,
) -> list[FusedCandidate]:
    """Merge two ranked candidate lists by product identity.

    A product found by both signals scores the weighted mean of its two
    scores. A product found by one signal keeps that score multiplied by
    ``single_signal_penalty``. Vector similarities below zero count as zero,
    so every fused score lies in [0, 1].

    Returns candidates sorted by score descending, then by available
    quantity descending, shorter name, and product id.
    """
    by_id: dict[str, FusedCandidate] = {}

    for product, score in vector_results or []:
        candidate = by_id.setdefault(product.id, FusedCandidate(product, 0.0))
        # Keep the best score if the store returned duplicates
        candidate.vector_score = max(clamp_unit(score), candidate.vector_score or 0.0)

    for product, score in lexical_results or []:
        candidate = by_id.setdefault(product.id, FusedCandidate(product, 0.0))
        candidate.lexical_score = max(clamp_unit(score), candidate.lexical_score or 0.0)

    total_weight = vector_weight + lexical_weight
    for candidate in by_id.values():
        if candidate.vector_score is not None and candidate.lexical_score is not None:
            combined = (
                vector_weight * candidate.vector_score
                + lexical_weight * candidate.lexical_score
            ) / total_weight
        elif candidate.vector_score is not None:
            combined = candidate.vector_score * single_signal_penalty
        else:
            combined = (candidate.lexical_score or 0.0) * single_signal_penalty
        candidate.score = clamp_unit(combined)

    return sorted(by_id.values(), key=ranking_key)


def ranking_key(candidate: FusedCandidate) -> tuple:
    product = candidate.product
    return (-candidate.score, -product.available, len(product.name), product.id)
