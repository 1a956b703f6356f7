"""
Health check route.
"""
import time

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.cache import TTLCache
from core.observability import get_correlation_id, metrics
from web.config import HEALTH_RATE_LIMIT, VERSION
from web.dependencies import get_server_cache
from web.schemas import HealthResponse

router = APIRouter(tags=["health"])
limiter = Limiter(key_func=get_remote_address)

_start_time = time.time()


@router.get("/health", response_model=HealthResponse)
@limiter.limit(HEALTH_RATE_LIMIT)
async def health_check(request: Request, cache: TTLCache = Depends(get_server_cache)):
    """Health check endpoint for Docker/load balancer monitoring."""
    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime_seconds=int(time.time() - _start_time),
        correlation_id=get_correlation_id(),
        cache=cache.get_stats(),
        metrics=metrics.get_stats(),
    )
