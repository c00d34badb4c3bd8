"""Product persistence: upsert, lookup and deactivation."""

import logging
from collections.abc import Callable, Iterable, Iterator
from datetime import timedelta
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from catalog_search.db.models import Product, SyncRun, utc_now
from catalog_search.schemas import ProductRecord, SyncSummary

logger = logging.getLogger(__name__)

# Fields that make a stored row differ from an incoming record.
# Sync timestamps and provenance markers are not compared.
TRACKED_FIELDS = (
    "name",
    "generic_name",
    "internal_name",
    "english_name",
    "manufacturer",
    "category",
    "tags",
    "ingredients",
    "description",
    "barcode",
    "dosage",
    "is_prescription",
    "price",
    "available",
    "active",
    "embedding",
    "embedding_text",
)

CHUNK_SIZE = 1000


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def to_record(row: Product) -> ProductRecord:
    """Convert an ORM row to a ProductRecord."""
    return ProductRecord(
        id=row.id,
        name=row.name,
        generic_name=row.generic_name,
        internal_name=row.internal_name,
        english_name=row.english_name,
        manufacturer=row.manufacturer,
        category=row.category,
        tags=list(row.tags or []),
        ingredients=row.ingredients,
        description=row.description,
        barcode=row.barcode,
        dosage=row.dosage,
        is_prescription=row.is_prescription,
        price=row.price,
        available=row.available,
        active=row.active,
        embedding=row.embedding,
        embedding_text=row.embedding_text,
        embedded_at=row.embedded_at,
        synced_at=row.synced_at,
        source_marker=row.source_marker,
    )


def apply_record(row: Product, record: ProductRecord) -> None:
    for field in TRACKED_FIELDS:
        value = getattr(record, field)
        if field == "tags":
            value = list(value)
        setattr(row, field, value)
    row.embedded_at = record.embedded_at
    row.synced_at = record.synced_at
    row.source_marker = record.source_marker


def has_changes(row: Product, record: ProductRecord) -> bool:
    for field in TRACKED_FIELDS:
        stored = getattr(row, field)
        incoming = getattr(record, field)
        if field == "tags":
            stored = list(stored or [])
        if stored != incoming:
            return True
    return False


class ProductRepository:
    """Durable product storage on top of a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def upsert(
        self,
        record: ProductRecord,
        before_commit: Callable[[ProductRecord], None] | None = None,
    ) -> UpsertOutcome:
        """Insert or update a product keyed by its upstream identifier.

        Args:
            record: Incoming product.
            before_commit: Called with the record when a row is created or
                changed, before the transaction commits. If it raises, the
                transaction is rolled back and the exception propagates.
        """
        with self._session_factory() as session:
            row = session.get(Product, record.id)
            if row is None:
                row = Product(id=record.id)
                apply_record(row, record)
                session.add(row)
                outcome = UpsertOutcome.CREATED
            elif has_changes(row, record):
                apply_record(row, record)
                outcome = UpsertOutcome.UPDATED
            else:
                # Only provenance moves forward
                row.synced_at = record.synced_at
                row.source_marker = record.source_marker
                outcome = UpsertOutcome.UNCHANGED
            if before_commit is not None and outcome is not UpsertOutcome.UNCHANGED:
                session.flush()
                before_commit(record)
            session.commit()
        return outcome

    def find_by_ids(self, ids: Iterable[str]) -> dict[str, ProductRecord]:
        """Fetch products by identifier. Unknown ids are absent from the result."""
        wanted = list(dict.fromkeys(ids))
        found: dict[str, ProductRecord] = {}
        if not wanted:
            return found

        with self._session_factory() as session:
            for start in range(0, len(wanted), CHUNK_SIZE):
                chunk = wanted[start : start + CHUNK_SIZE]
                rows = session.scalars(select(Product).where(Product.id.in_(chunk)))
                for row in rows:
                    found[row.id] = to_record(row)
        return found

    def iter_all(self, batch_size: int = CHUNK_SIZE) -> Iterator[list[ProductRecord]]:
        """Yield all products in primary-key order, one batch at a time."""
        last_id = ""
        while True:
            with self._session_factory() as session:
                rows = session.scalars(
                    select(Product)
                    .where(Product.id > last_id)
                    .order_by(Product.id)
                    .limit(batch_size)
                ).all()
                if not rows:
                    return
                last_id = rows[-1].id
                batch = [to_record(row) for row in rows]
            yield batch

    def active_ids(self) -> set[str]:
        with self._session_factory() as session:
            return set(session.scalars(select(Product.id).where(Product.active)))

    def deactivate(self, ids: Iterable[str]) -> int:
        """Mark products inactive. Returns the number of rows changed."""
        ids = list(ids)
        changed = 0
        with self._session_factory() as session:
            for start in range(0, len(ids), CHUNK_SIZE):
                chunk = ids[start : start + CHUNK_SIZE]
                result = session.execute(
                    update(Product)
                    .where(Product.id.in_(chunk), Product.active)
                    .values(active=False, updated_at=utc_now())
                )
                changed += result.rowcount or 0
            session.commit()
        if changed:
            logger.info("Deactivated products", extra={"count": changed})
        return changed

    def record_sync_run(self, summary: SyncSummary) -> int:
        """Persist a finished sync cycle for monitoring."""
        completed_at = utc_now()
        with self._session_factory() as session:
            run = SyncRun(
                status=summary.status,
                started_at=completed_at - timedelta(milliseconds=summary.duration_ms),
                completed_at=completed_at,
                pages=summary.pages,
                created=summary.created,
                updated=summary.updated,
                unchanged=summary.unchanged,
                failed=summary.failed,
                deactivated=summary.deactivated,
                duration_ms=summary.duration_ms,
                error_message=summary.error,
            )
            session.add(run)
            session.commit()
            return run.id

    def last_sync_run(self) -> SyncRun | None:
        with self._session_factory() as session:
            return session.scalar(
                select(SyncRun).order_by(SyncRun.id.desc()).limit(1)
            )
