"""Pydantic schemas for API requests and responses."""

from datetime import datetime

from pydantic import Field

from catalog_search.schemas import CamelModel, SearchOptions


class SearchRequest(CamelModel):
    """Search request body."""

    query: str = Field(
        ...,
        max_length=500,
        description="Free-text query from the customer",
        json_schema_extra={"example": "парацетамол 400"},
    )
    limit: int | None = Field(
        None,
        gt=0,
        description="Maximum results to return (capped by configuration)",
        json_schema_extra={"example": 5},
    )
    threshold: float | None = Field(
        None,
        ge=0.0,
        le=1.0,
        description="Minimum combined relevance score",
        json_schema_extra={"example": 0.3},
    )
    include_inactive: bool = Field(
        False, description="Include products no longer listed upstream"
    )

    def to_options(self) -> SearchOptions:
        return SearchOptions(
            limit=self.limit,
            threshold=self.threshold,
            include_inactive=self.include_inactive,
        )


class SyncRunInfo(CamelModel):
    """Last recorded sync cycle."""

    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    pages: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    deactivated: int = 0
    duration_ms: int | None = None
    error_message: str | None = None


class HealthResponse(CamelModel):
    status: str = "ok"
    cache: bool | None = Field(None, description="Redis reachable, if configured")
