"""
FastAPI middleware for observability.

Provides:
- Request correlation ID injection (forwarded to Mercado Libre calls)
- Request/response logging with timing
- Per-route metrics
"""
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from core.observability import (
    clear_log_context,
    correlation_context,
    get_logger,
    metrics,
)

logger = get_logger(__name__)

# Paths not worth a log line per request
QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a correlation ID to each request (reusing an incoming
    X-Request-ID), logs start and completion, and records metrics.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        path = request.url.path
        quiet = path in QUIET_PATHS

        with correlation_context(request.headers.get("X-Request-ID")) as correlation_id:
            start_time = time.perf_counter()

            if not quiet:
                logger.info(
                    f"Request started: {method} {path}",
                    extra={
                        "method": method,
                        "path": path,
                        "client_ip": request.client.host if request.client else "unknown",
                    }
                )

            try:
                response = await call_next(request)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    f"Request failed: {method} {path}",
                    extra={"duration_ms": round(duration_ms, 2), "error": str(e)}
                )
                metrics.record_error(type(e).__name__)
                raise
            finally:
                clear_log_context()

            duration_ms = (time.perf_counter() - start_time) * 1000
            response.headers["X-Request-ID"] = correlation_id
            response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

            if not quiet:
                level_name = "info" if response.status_code < 400 else "warning"
                getattr(logger, level_name)(
                    f"Request completed: {method} {path}",
                    extra={
                        "status_code": response.status_code,
                        "duration_ms": round(duration_ms, 2),
                    }
                )

        endpoint = f"{method} {path}"
        metrics.record_request(endpoint)
        metrics.record_timing(endpoint, duration_ms)
        if response.status_code >= 400:
            metrics.record_error(f"HTTP_{response.status_code}")

        return response
