"""Shared dependencies for API route modules."""
import time

from fastapi import HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from shopsync.observability import get_logger
from shopsync.scheduler import SyncScheduler
from shopsync.store import SyncStore

# Shared limiter instance (also registered on app.state)
limiter = Limiter(key_func=get_remote_address)

# Track startup time for uptime calculation
START_TIME = time.time()

__all__ = ["limiter", "START_TIME", "get_logger", "get_scheduler", "get_sync_store"]


def get_scheduler(request: Request) -> SyncScheduler:
    """Scheduler attached to the app at startup."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Sync scheduler is not running")
    return scheduler


def get_sync_store(request: Request) -> SyncStore:
    """Store attached to the app at startup."""
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Store is not connected")
    return store
