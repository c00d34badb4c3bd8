"""Map upstream product records onto ProductRecord."""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from catalog_search.embeddings.text_prep import (
    clean_html,
    clean_product_name,
    extract_dosage,
)
from catalog_search.errors import SyncRecordError
from catalog_search.schemas import ProductRecord

# Upstream CATEG_ID to category slug
CATEGORY_MAP: dict[str, str] = {
    "91": "gynecology",
    "127": "neurology",
    "154": "neurology",
    "116": "pain_relief",
    "55": "vitamins",
    "34": "medical_supplies",
}
DEFAULT_CATEGORY = "general"

TRUE_FLAGS = {"1", "true", "t", "y", "yes"}

# Injectable and solution forms are dispensed on prescription only
PRESCRIPTION_KEYWORDS = ("тарилгын", "injection", "уусмал", "solution", "ампул")

CENTS = Decimal("0.01")


def first_value(raw: dict, *keys: str) -> Any:
    """Return the first non-empty value among ``keys``."""
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in TRUE_FLAGS


def text_value(raw: dict, record_id: str | None, *keys: str) -> str | None:
    """Return the first non-empty value among ``keys``, which must be a string."""
    value = first_value(raw, *keys)
    if value is None or isinstance(value, str):
        return value
    raise SyncRecordError(
        f"Expected text in {keys[0]}, got {type(value).__name__}", record_id
    )


def parse_decimal(value: Any, record_id: str, label: str) -> Decimal:
    if isinstance(value, bool):
        raise SyncRecordError(f"Invalid {label} {value!r}", record_id)
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise SyncRecordError(f"Invalid {label} {value!r}", record_id) from exc
    if not number.is_finite():
        raise SyncRecordError(f"Non-finite {label} {value!r}", record_id)
    return number


def parse_price(value: Any, record_id: str) -> Decimal:
    if value is None:
        return Decimal("0.00")
    price = parse_decimal(value, record_id, "price").quantize(
        CENTS, rounding=ROUND_HALF_UP
    )
    if price < 0:
        raise SyncRecordError(f"Negative price {value!r}", record_id)
    return price


def parse_quantity(value: Any, record_id: str) -> int:
    if value is None:
        return 0
    quantity = int(parse_decimal(value, record_id, "quantity"))
    if quantity < 0:
        raise SyncRecordError(f"Negative quantity {value!r}", record_id)
    return quantity


def parse_tags(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(tag).strip() for tag in value if str(tag).strip()]


def map_category(raw: dict) -> str:
    if category := first_value(raw, "category"):
        return str(category)
    categ_id = first_value(raw, "CATEG_ID", "category_id")
    if categ_id is None:
        return DEFAULT_CATEGORY
    return CATEGORY_MAP.get(str(categ_id), DEFAULT_CATEGORY)


def available_quantity(raw: dict) -> Any:
    stocks = first_value(raw, "STOCKS", "stocks")
    if isinstance(stocks, list) and stocks and isinstance(stocks[0], dict):
        return first_value(stocks[0], "AVAILABLE", "available")
    return first_value(raw, "AVAILABLE", "available")


def is_active(raw: dict) -> bool:
    if parse_flag(first_value(raw, "DELETED", "IS_DELETED", "deleted") or False):
        return False
    flag = first_value(raw, "ACTIVE", "active", "is_active")
    if flag is None:
        return True
    return parse_flag(flag)


def is_prescription_required(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in PRESCRIPTION_KEYWORDS)


def map_record(
    raw: dict,
    synced_at: datetime | None = None,
    source_marker: str | None = None,
) -> ProductRecord:
    """Map one upstream record. The embedding is left for the sync engine.

    Any problem with a single record surfaces as ``SyncRecordError`` so the
    caller can count it and move on.

    Raises:
        SyncRecordError: Missing identifier or name, a text field that is not
            a string, or an invalid, non-finite or negative price or quantity.
    """
    if not isinstance(raw, dict):
        raise SyncRecordError(f"Record is a {type(raw).__name__}, not an object")

    record_id = first_value(raw, "PRODUCT_ID", "product_id", "id")
    if record_id is None:
        raise SyncRecordError("Record has no product identifier")
    if not isinstance(record_id, (str, int)) or isinstance(record_id, bool):
        raise SyncRecordError(f"Invalid product identifier {record_id!r}")
    record_id = str(record_id).strip()

    try:
        return _build_record(raw, record_id, synced_at, source_marker)
    except (PydanticValidationError, TypeError, ValueError, ArithmeticError) as exc:
        raise SyncRecordError(f"Invalid record: {exc}", record_id) from exc


def _build_record(
    raw: dict,
    record_id: str,
    synced_at: datetime | None,
    source_marker: str | None,
) -> ProductRecord:
    name = clean_product_name(text_value(raw, record_id, "PRODUCT_NAME", "NAME", "name"))
    if not name:
        raise SyncRecordError("Record has no product name", record_id)

    generic_name = clean_product_name(
        text_value(raw, record_id, "GENERIC_NAME", "generic_name")
    )
    internal_name = clean_product_name(
        text_value(raw, record_id, "INTERNAL_NAME", "internal_name")
    )
    english_name = clean_product_name(
        text_value(raw, record_id, "ENG_NAME", "english_name")
    )
    ingredients = clean_html(text_value(raw, record_id, "INGREDIENTS", "ingredients"))
    description = clean_html(text_value(raw, record_id, "DESCRIPTION", "description"))
    manufacturer = first_value(raw, "MANUFACTURE_NAME", "MANUFACTURER_NAME", "manufacturer")
    barcode = first_value(raw, "BARCODE", "barcode")
    volume = first_value(raw, "VOLUME", "volume")

    return ProductRecord(
        id=record_id,
        name=name,
        generic_name=generic_name or None,
        internal_name=internal_name or None,
        english_name=english_name or None,
        manufacturer=str(manufacturer) if manufacturer is not None else None,
        category=map_category(raw),
        tags=parse_tags(first_value(raw, "TAGS", "tags")),
        ingredients=ingredients or None,
        description=description or None,
        barcode=str(barcode) if barcode is not None else None,
        dosage=extract_dosage(name) or (str(volume)[:50] if volume is not None else None),
        is_prescription=is_prescription_required(name),
        price=parse_price(first_value(raw, "BASE_PRICE", "price"), record_id),
        available=parse_quantity(available_quantity(raw), record_id),
        active=is_active(raw),
        synced_at=synced_at,
        source_marker=source_marker,
    )
