"""
Mercado Libre function routes.

- /meli-data: aggregation (always HTTP 200, errors in the body)
- /meli-auth: authorization code exchange
- /meli-disconnect: revoke and delete stored tokens
- /meli-notifications: webhook acknowledgement

Rate limit: data endpoint per client IP (see web.config).
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from core.auth import AuthManager
from core.exceptions import AuthError, MeliError, ValidationError
from core.observability import get_logger, metrics
from core.validators import validate_user_id
from web.config import DATA_RATE_LIMIT
from web.dependencies import get_auth_manager, get_meli_data_service
from web.schemas import (
    AuthRequest,
    AuthResponse,
    DisconnectRequest,
    DisconnectResponse,
    MeliDataRequest,
    MeliDataResponse,
)
from web.services.meli_data_service import MeliDataService

router = APIRouter(tags=["meli"])
limiter = Limiter(key_func=get_remote_address)
logger = get_logger(__name__)

# Topics Mercado Libre sends to the webhook
NOTIFICATION_TOPICS = {"orders_v2", "items", "questions", "messages", "shipments"}


def _error_body(message: str, error_type: str) -> dict:
    return {"success": False, "message": message, "error_type": error_type}


@router.post("/meli-data", response_model=MeliDataResponse)
@limiter.limit(DATA_RATE_LIMIT)
async def meli_data(
    request: Request,
    body: MeliDataRequest,
    service: MeliDataService = Depends(get_meli_data_service),
):
    """Aggregate dashboard data and run the requested batch calls."""
    return await service.fetch(
        user_id=body.user_id,
        batch_requests=body.batch_requests,
        date_range=body.date_range.model_dump() if body.date_range else None,
        timezone=body.timezone,
        use_cache=body.use_cache,
        disable_test_data=body.disable_test_data,
        prev_period=body.prev_period,
    )


@router.post("/meli-auth", response_model=AuthResponse)
async def meli_auth(
    body: AuthRequest,
    auth: AuthManager = Depends(get_auth_manager),
):
    """Exchange an authorization code for tokens and store them."""
    try:
        result = await auth.connect(body.code, body.redirect_uri, body.user_id)
    except AuthError as e:
        # Token endpoint answered with an error or an unusable payload
        logger.warning(f"Connect failed: {e}")
        metrics.record_error(e.error_type)
        return ORJSONResponse(status_code=400, content=_error_body(str(e), e.error_type))
    except MeliError as e:
        logger.error(f"Connect failed: {e}")
        metrics.record_error(e.error_type)
        return ORJSONResponse(status_code=502, content=_error_body(str(e), e.error_type))
    except Exception as e:
        logger.exception("Unexpected connect failure")
        return ORJSONResponse(status_code=500, content=_error_body(f"Internal error: {e}", "internal"))

    return {
        "success": True,
        "message": "Authentication successful",
        "meli_user_id": result["meli_user_id"],
    }


@router.post("/meli-disconnect", response_model=DisconnectResponse)
async def meli_disconnect(
    body: DisconnectRequest,
    auth: AuthManager = Depends(get_auth_manager),
):
    """Revoke (best-effort) and delete the stored tokens. Idempotent."""
    try:
        user_id = validate_user_id(body.user_id)
        return await auth.disconnect(user_id)
    except ValidationError as e:
        return ORJSONResponse(status_code=400, content=_error_body(str(e), e.error_type))
    except MeliError as e:
        logger.error(f"Disconnect failed: {e}")
        return ORJSONResponse(status_code=502, content=_error_body(str(e), e.error_type))
    except Exception as e:
        logger.exception("Unexpected disconnect failure")
        return ORJSONResponse(status_code=500, content=_error_body(f"Internal error: {e}", "internal"))


@router.post("/meli-notifications", response_class=PlainTextResponse)
async def meli_notifications(request: Request):
    """
    Acknowledge a marketplace notification.

    Always 200: Mercado Libre retries anything else. Only the topic is
    logged; notifications are not processed.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Notification body is not valid JSON")
        return PlainTextResponse("OK")

    topic = payload.get("topic") if isinstance(payload, dict) else None
    if topic in NOTIFICATION_TOPICS:
        logger.info(f"Notification received: {topic}", extra={"resource": payload.get("resource")})
    else:
        logger.info(f"Notification with unhandled topic: {topic}")

    return PlainTextResponse("OK")
