"""
FastAPI web application for the Mercado Libre seller dashboard backend.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse
from starlette.middleware.gzip import GZipMiddleware

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from core.config import ConfigurationError, validate_config
from core.observability import get_logger, metrics, setup_logging
from core.token_store import SQLiteTokenStore
from web.config import CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, REQUIRE_OAUTH, VERSION, WEB_HOST, WEB_PORT
from web.dependencies import close_client, get_token_store
from web.middleware import RequestLoggingMiddleware
from web.routes import health, meli
from web.schemas import describe_validation_errors
from web.services.meli_data_service import failure_response

# Configure structured logging
# Use JSON format in production (LOG_FORMAT=json), human-readable otherwise
setup_logging(level=LOG_LEVEL, json_format=(LOG_FORMAT == "json"))
logger = get_logger(__name__)

# Rate limiter configuration
limiter = Limiter(key_func=get_remote_address)

# Create FastAPI app
app = FastAPI(
    title="Mercado Libre Dashboard API",
    description="OAuth and sales aggregation functions for Mercado Libre sellers",
    version=VERSION,
    default_response_class=ORJSONResponse
)

# Add rate limiter to app state
app.state.limiter = limiter

RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."


def _is_data_request(request: Request) -> bool:
    # /meli-data reports every failure in a 200 body
    return request.url.path == "/meli-data"


# Custom rate limit exceeded handler
@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
    metrics.record_error("rate_limit")
    if _is_data_request(request):
        content = failure_response(RATE_LIMIT_MESSAGE, "rate_limit")
        content["retry_after"] = exc.detail
        return JSONResponse(status_code=200, content=content)
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error_type": "rate_limit",
            "message": RATE_LIMIT_MESSAGE,
            "retry_after": exc.detail
        }
    )


# Malformed bodies get the functions' error shape instead of FastAPI's {"detail": ...}
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = describe_validation_errors(exc.errors())
    logger.warning(f"Invalid request body for {request.url.path}: {message}")
    metrics.record_error("validation")
    if _is_data_request(request):
        return JSONResponse(status_code=200, content=failure_response(message, "validation"))
    return JSONResponse(
        status_code=400,
        content={"success": False, "error_type": "validation", "message": message}
    )

# Add request logging middleware (adds correlation IDs and timing)
app.add_middleware(RequestLoggingMiddleware)

# Browser dashboard calls from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-request-id"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)

# Add Gzip compression (min 500 bytes to compress)
app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(meli.router)
app.include_router(health.router)


@app.on_event("startup")
async def startup_event():
    logger.info("Mercado Libre dashboard API starting...")

    # Validate configuration early - fail fast with clear errors
    try:
        validate_config(require_oauth=REQUIRE_OAUTH)
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    store = get_token_store()
    if isinstance(store, SQLiteTokenStore):
        store.init_database()

    logger.info("API ready")


@app.on_event("shutdown")
async def shutdown_event():
    await close_client()
    logger.info("Mercado Libre dashboard API stopped")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=WEB_HOST, port=WEB_PORT)
