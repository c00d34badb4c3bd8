"""Pydantic models shared by the search and sync engines."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from catalog_search.inventory import StockStatus

SyncStatus = Literal["completed", "already_running", "failed"]


class CamelModel(BaseModel):
    """Serializes to camelCase for the chat layer, accepts both spellings."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductRecord(BaseModel):
    """A catalog entry as stored locally.

    Created and updated only by the sync engine. Stock status is never stored;
    it is derived from ``available`` on read.
    """

    id: str = Field(..., min_length=1, description="Upstream product identifier")
    name: str = Field(..., min_length=1)
    generic_name: str | None = None
    internal_name: str | None = None
    english_name: str | None = None
    manufacturer: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    ingredients: str | None = None
    description: str | None = None
    barcode: str | None = None
    dosage: str | None = None
    is_prescription: bool = False

    price: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    available: int = Field(0, ge=0)
    active: bool = True

    embedding: list[float] | None = None
    embedding_text: str | None = None
    embedded_at: datetime | None = None

    synced_at: datetime | None = None
    source_marker: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        # Upstream ids arrive as strings or integers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class SearchOptions(CamelModel):
    """Per-call search options. ``None`` means the configured default."""

    limit: int | None = Field(None, gt=0)
    threshold: float | None = Field(None, ge=0.0, le=1.0)
    include_inactive: bool = False


class SearchHit(CamelModel):
    """One ranked product in a search response."""

    id: str
    name: str
    generic_name: str | None = None
    manufacturer: str | None = None
    category: str | None = None
    dosage: str | None = None
    is_prescription: bool = False

    price: Decimal
    formatted_price: str
    currency: str

    available: int
    stock_status: StockStatus
    stock_label: str
    in_stock: bool
    low_stock: bool
    active: bool

    score: float = Field(..., description="Combined relevance in [0, 1]")
    vector_score: float | None = None
    lexical_score: float | None = None
    rank: int


class SearchMetadata(CamelModel):
    degraded: bool = False
    used_vector_search: bool = False
    used_lexical_search: bool = False
    threshold_applied: float
    cache_hit: bool = False
    took_ms: int = 0


class SearchResponse(CamelModel):
    products: list[SearchHit]
    total: int
    metadata: SearchMetadata


class SearchError(CamelModel):
    """Typed failure handed to the chat layer instead of an exception."""

    code: str
    message: str


class SyncBatch(BaseModel):
    """Bookkeeping for one upstream page."""

    page: int
    shape: str
    received: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0


class SyncSummary(BaseModel):
    status: SyncStatus
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    deactivated: int = 0
    pages: int = 0
    duration_ms: int = 0
    error: str | None = None
    batches: list[SyncBatch] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged
