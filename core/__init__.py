"""
Core shared library for the Mercado Libre seller dashboard.

This package contains shared logic used by both web/ and dashboard/ packages:
- exceptions: Custom exception hierarchy
- validators: Input validation functions
- pagination: Order search pagination
- aggregator: Orders to dashboard metrics
- config: Centralized configuration
"""

# Import in dependency order
from core.exceptions import (
    MeliError,
    AuthError,
    TransientFetchError,
    RateLimitError,
    MeliDataError,
    ValidationError,
)

from core.validators import (
    validate_user_id,
    validate_timezone,
    validate_date_window,
    validate_batch_requests,
)

from core.pagination import (
    OrderPaginator,
    PaginationResult,
)

from core.config import config

__all__ = [
    # Exceptions
    "MeliError",
    "AuthError",
    "TransientFetchError",
    "RateLimitError",
    "MeliDataError",
    "ValidationError",
    # Validators
    "validate_user_id",
    "validate_timezone",
    "validate_date_window",
    "validate_batch_requests",
    # Pagination
    "OrderPaginator",
    "PaginationResult",
    # Config
    "config",
]
