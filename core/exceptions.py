"""
Custom exception hierarchy for Mercado Libre API operations.

Exception Hierarchy:
    MeliError (base)
    ├── AuthError              - OAuth parameters missing, exchange/refresh failed
    ├── TransientFetchError    - Non-2xx or network failure (retried)
    │   └── RateLimitError     - HTTP 429 (retried)
    └── MeliDataError          - Invalid response structure

    ValidationError            - Request validation failed
"""


class MeliError(Exception):
    """Base exception for all Mercado Libre related errors."""

    error_type = "internal"

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class AuthError(MeliError):
    """
    OAuth failure.

    Surfaced to the user as "reconnect your account" when
    reconnect_required is set.
    """

    error_type = "auth"

    def __init__(self, message: str, details: str = None, reconnect_required: bool = True):
        super().__init__(message, details)
        self.reconnect_required = reconnect_required


class TransientFetchError(MeliError):
    """
    HTTP error response or network failure during a marketplace call.

    status_code is None for network-level failures.
    """

    error_type = "transient"

    def __init__(self, message: str, details: str = None, status_code: int = None):
        super().__init__(message, details)
        self.status_code = status_code


class RateLimitError(TransientFetchError):
    """Marketplace answered HTTP 429."""

    error_type = "rate_limit"

    def __init__(self, message: str, details: str = None, retry_after: int = None):
        super().__init__(message, details, status_code=429)
        self.retry_after = retry_after


class MeliDataError(MeliError):
    """
    API response has unexpected structure.

    The marketplace returned something we cannot interpret.
    """

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class ValidationError(Exception):
    """
    Input validation failed.

    Raised before any external call is attempted.
    """

    error_type = "validation"

    def __init__(self, field: str, message: str, value: any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"
