"""Locate the product array inside the upstream response envelope.

The business API has wrapped its product list at different depths over time.
Candidate paths are tried in a fixed priority order; the first one that holds
a non-empty array of objects is the page.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# (shape name, key path from the response root)
ENVELOPE_PATHS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("data.data.items", ("data", "data", "items")),
    ("data.items", ("data", "items")),
    ("items", ("items",)),
    ("data", ("data",)),
    ("root", ()),
)

TOTAL_PAGES_PATHS: tuple[tuple[str, ...], ...] = (
    ("data", "data", "total_pages"),
    ("data", "total_pages"),
    ("total_pages",),
)

EMPTY_SHAPE = "empty"


@dataclass
class Envelope:
    shape: str
    records: list[dict] = field(default_factory=list)
    total_pages: int | None = None


def resolve_path(payload: Any, path: tuple[str, ...]) -> Any:
    """Follow ``path`` through nested dicts. Returns None if any step is missing."""
    node = payload
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def is_record_array(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) > 0
        and all(isinstance(item, dict) for item in value)
    )


def extract_total_pages(payload: Any) -> int | None:
    for path in TOTAL_PAGES_PATHS:
        value = resolve_path(payload, path)
        if value is None or isinstance(value, bool):
            continue
        try:
            pages = int(value)
        except (TypeError, ValueError):
            continue
        if pages > 0:
            return pages
    return None


def extract_products(payload: Any) -> Envelope:
    """Detect the envelope shape and return its product records.

    An unrecognized or empty payload yields an empty envelope, not an error.
    """
    total_pages = extract_total_pages(payload)

    for shape, path in ENVELOPE_PATHS:
        candidate = resolve_path(payload, path)
        if is_record_array(candidate):
            logger.debug(
                "Detected envelope shape",
                extra={"shape": shape, "records": len(candidate)},
            )
            return Envelope(shape=shape, records=candidate, total_pages=total_pages)

    top_level = sorted(payload.keys()) if isinstance(payload, dict) else type(payload).__name__
    logger.warning(
        "No product array found in upstream response; treating page as empty",
        extra={"top_level": top_level},
    )
    return Envelope(shape=EMPTY_SHAPE, total_pages=total_pages)
