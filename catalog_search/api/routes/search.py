"""Product search endpoint for the chat layer."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from catalog_search.api.deps import get_search_engine
from catalog_search.api.schemas import SearchRequest
from catalog_search.errors import CatalogSearchError, StoreUnavailable, ValidationError
from catalog_search.schemas import SearchError, SearchResponse
from catalog_search.search.engine import SearchEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["search"])


def error_detail(exc: CatalogSearchError) -> dict:
    return SearchError(code=exc.code, message=str(exc)).model_dump(by_alias=True)


@router.post(
    "/search",
    response_model=SearchResponse,
    response_model_by_alias=True,
    summary="Hybrid product search",
    responses={
        422: {"description": "Empty or invalid query"},
        503: {"description": "Search store unavailable"},
    },
)
async def search_products(
    request: SearchRequest,
    engine: SearchEngine = Depends(get_search_engine),
) -> SearchResponse:
    """
    Search the catalog with vector similarity fused with fuzzy text matching.

    Results carry price, live stock status and a combined relevance score.
    `metadata.degraded` is true when one of the two signals was unavailable
    and the ranking relies on the other alone.
    """
    try:
        return await engine.search(request.query, request.to_options())
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=error_detail(exc)) from exc
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=error_detail(exc)) from exc
    except CatalogSearchError as exc:
        logger.exception("Search failed", extra={"code": exc.code})
        raise HTTPException(status_code=500, detail=error_detail(exc)) from exc
