"""Health check endpoint."""
import time

from fastapi import APIRouter, Request

from shopsync.config import VERSION
from shopsync.observability import get_correlation_id, Timer
from web.schemas import HealthResponse
from ._deps import limiter, get_logger, START_TIME

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint for Docker/load balancer monitoring."""
    uptime_seconds = int(time.time() - START_TIME)

    store = getattr(request.app.state, "store", None)
    store_stats = {"status": "not connected"}
    if store is not None:
        try:
            with Timer("health_check_db") as timer:
                stats = await store.get_stats()
            store_stats = {
                "status": "connected",
                "latency_ms": round(timer.elapsed_ms, 2),
                **{k: v for k, v in stats.items() if k != "db_path"},
            }
        except Exception as e:
            logger.warning(f"Health check store query failed: {e}")
            store_stats = {"status": f"error: {e}"}

    scheduler = getattr(request.app.state, "scheduler", None)

    return {
        "status": "healthy" if store_stats["status"] == "connected" else "degraded",
        "version": VERSION,
        "uptime_seconds": uptime_seconds,
        "correlation_id": get_correlation_id(),
        "store": store_stats,
        "scheduler": scheduler.get_status() if scheduler is not None else None,
    }
