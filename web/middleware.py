"""
FastAPI middleware for request logging.

Every request runs inside its own correlation context, so log lines from a
manual sync trigger or a webhook receipt can be matched to the request that
caused them. The ID is echoed back as X-Request-ID.
"""
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from shopsync.observability import correlation_context, get_logger

logger = get_logger(__name__)

# Polled by uptime checks; logging them drowns out sync activity
QUIET_PATHS = ("/api/health",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with status and duration under a correlation ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with correlation_context(request.headers.get("X-Request-ID")) as correlation_id:
            start_time = time.perf_counter()
            method = request.method
            path = request.url.path
            is_quiet = path in QUIET_PATHS

            try:
                response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"Request failed: {method} {path}",
                    extra={
                        "method": method,
                        "path": path,
                        "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                        "error": str(e),
                    }
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000
            response.headers["X-Request-ID"] = correlation_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            if not is_quiet:
                log = logger.info if response.status_code < 400 else logger.warning
                log(
                    f"{method} {path} -> {response.status_code}",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "duration_ms": round(duration_ms, 2),
                        "client_ip": request.client.host if request.client else "unknown",
                    }
                )

            return response
