"""
FastAPI web application for the Shopify sync engine.

Serves the manual sync trigger, the sync run audit trail, the webhook
receiver and a health check. The lifespan owns the store and the
background scheduler.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, ORJSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from shopsync.config import config, validate_config, ConfigurationError, VERSION
from shopsync.observability import setup_logging, get_logger
from shopsync.scheduler import SyncScheduler
from shopsync.store import get_store, close_store
from shopsync.sync_service import SyncService
from web.middleware import RequestLoggingMiddleware
from web.routes import api
from web.routes.api._deps import limiter

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(level=config.logging.level, json_format=config.logging.json_format)
    logger.info("Shopify sync service starting...")

    # Fail fast with clear errors
    try:
        validate_config()
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    store = await get_store()
    stats = await store.get_stats()
    logger.info(
        f"DuckDB ready: {stats['orders']} orders, {stats['payouts']} payouts, "
        f"{stats['sync_runs']} sync runs"
    )

    scheduler = SyncScheduler(SyncService(store))
    await scheduler.start()

    app.state.store = store
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        await scheduler.shutdown()
        await close_store()
        logger.info("Shopify sync service stopped")


def create_app(with_lifespan: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        with_lifespan: Start the store and scheduler with the app. Tests pass
            False and set app.state.store / app.state.scheduler themselves.
    """
    app = FastAPI(
        title="Shopify Sync",
        description="Shopify orders, payouts and fees synced into DuckDB",
        version=VERSION,
        default_response_class=ORJSONResponse,
        lifespan=lifespan if with_lifespan else None,
    )

    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded",
                "detail": "Too many requests. Please try again later.",
                "retry_after": exc.detail
            }
        )

    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api.router, prefix="/api")
    return app


app = create_app()
