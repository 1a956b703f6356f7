"""
Pydantic request/response models for the Mercado Libre functions.

Request fields that the handlers must report as domain errors (missing
OAuth parameters, malformed dates) are Optional here so they reach the
validators instead of failing with a framework 422.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def describe_validation_errors(errors: List[Dict[str, Any]]) -> str:
    """Flatten pydantic errors into 'field: problem' text for error bodies."""
    parts = []
    for error in errors:
        # First loc element is the request part ("body", "query", ...)
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "Invalid request: " + ("; ".join(parts) or "malformed body")


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

class DateRangeModel(BaseModel):
    """Requested window; date-only or full ISO-8601 bounds."""
    begin: Optional[str] = None
    end: Optional[str] = None


class MeliDataRequest(BaseModel):
    """Request body for /meli-data."""

    user_id: Optional[str] = Field(None, description="Dashboard user id")
    batch_requests: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Marketplace calls; empty list is a connection-status probe",
    )
    date_range: Optional[DateRangeModel] = Field(None, description="Window (default: last 30 days)")
    timezone: Optional[str] = Field(None, description="IANA timezone for date-only bounds")
    prev_period: bool = Field(True, description="Include previous-period summary")
    use_cache: bool = Field(True, description="Serve from the server cache when fresh")
    disable_test_data: bool = Field(False, description="Never flag the response for sample data")


class BatchResultModel(BaseModel):
    endpoint: str
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class MeliDataResponse(BaseModel):
    """Response body for /meli-data (always HTTP 200)."""
    success: bool
    message: Optional[str] = None
    error_type: Optional[str] = None
    is_connected: bool = False
    meli_user_id: Optional[str] = None
    batch_results: List[BatchResultModel] = Field(default_factory=list)
    dashboard_data: Dict[str, Any]
    is_test_data: bool = False
    has_dashboard_data: bool = False
    prev_window: Optional[Dict[str, str]] = Field(None, description="Comparison window of equal length")
    cached: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# CONNECT / DISCONNECT
# ═══════════════════════════════════════════════════════════════════════════════

class AuthRequest(BaseModel):
    """Request body for /meli-auth."""
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    user_id: Optional[str] = None


class AuthResponse(BaseModel):
    success: bool
    message: str
    meli_user_id: Optional[str] = None
    error_type: Optional[str] = None


class DisconnectRequest(BaseModel):
    """Request body for /meli-disconnect."""
    user_id: Optional[str] = None


class DisconnectResponse(BaseModel):
    success: bool
    message: str
    error_type: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    cache: Dict[str, Any] = Field(default_factory=dict, description="Server cache statistics")
    metrics: Dict[str, Any] = Field(default_factory=dict, description="Request metrics snapshot")
