"""Sync trigger and status endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.concurrency import run_in_threadpool

from catalog_search.api.deps import get_sync_engine
from catalog_search.api.schemas import SyncRunInfo
from catalog_search.schemas import SyncSummary
from catalog_search.sync.engine import SyncEngine

router = APIRouter(prefix="/api/v1", tags=["sync"])


@router.post("/sync", response_model=SyncSummary, summary="Run a sync cycle")
async def trigger_sync(
    response: Response,
    engine: SyncEngine = Depends(get_sync_engine),
) -> SyncSummary:
    """
    Pull the upstream product listing into the catalog.

    Blocks until the cycle finishes. Answers 409 with
    `status="already_running"` if another cycle holds the lease.
    """
    summary = await run_in_threadpool(engine.trigger_sync)
    if summary.status == "already_running":
        response.status_code = 409
    return summary


@router.get("/sync/last", response_model=SyncRunInfo, summary="Last sync cycle")
async def last_sync(engine: SyncEngine = Depends(get_sync_engine)) -> SyncRunInfo:
    run = await run_in_threadpool(engine.store.last_sync_run)
    if run is None:
        raise HTTPException(status_code=404, detail="No sync has run yet")
    return SyncRunInfo.model_validate(run, from_attributes=True)
