"""Manual sync trigger and sync run audit trail."""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from shopsync.scheduler import SyncScheduler
from shopsync.store import SyncStore
from web.schemas import SyncRunsResponse, SyncTriggerResponse
from ._deps import get_logger, get_scheduler, get_sync_store

router = APIRouter()
logger = get_logger(__name__)


@router.post("/sync", response_model=SyncTriggerResponse, status_code=202)
async def trigger_sync(scheduler: SyncScheduler = Depends(get_scheduler)):
    """
    Start a full Shopify sync in the background.

    Returns 202 once the run is started, or 429 while a run is in progress
    or the cooldown since the last manual trigger has not elapsed. The
    run's outcome is only visible through GET /api/sync/runs.
    """
    result = scheduler.trigger_manual_sync()
    body = SyncTriggerResponse(
        ok=result.accepted,
        message=result.message,
        retry_after_seconds=result.retry_after_seconds,
    )
    if result.accepted:
        return body

    headers = None
    if result.retry_after_seconds is not None:
        headers = {"Retry-After": str(result.retry_after_seconds)}
    return JSONResponse(status_code=429, content=body.model_dump(), headers=headers)


@router.get("/sync/runs", response_model=SyncRunsResponse)
async def list_sync_runs(
    limit: int = Query(20, ge=1, le=200, description="Number of runs to return"),
    store: SyncStore = Depends(get_sync_store),
):
    """Recent sync runs, newest first."""
    runs = await store.list_sync_runs(limit=limit)
    return {"runs": [run.to_dict() for run in runs], "count": len(runs)}
