"""
Async HTTP client for the Mercado Libre API.

Provides a single async-first client for the OAuth endpoints and the
marketplace REST API. Every call goes through one retry primitive.

Features:
- Connection pooling with httpx
- Exponential backoff retry (2 ** attempt seconds, 3 retries by default)
- HTTP 429 and other failures distinguished in logs, not in recovery
- Request correlation IDs for tracing
"""
import asyncio
from typing import Any, Dict, Optional

import httpx

from core.config import config
from core.dates import DateWindow
from core.exceptions import MeliDataError, RateLimitError, TransientFetchError
from core.observability import Timer, get_correlation_id, get_logger, metrics
from core.resilience import RetryConfig, Sleep, retry_with_backoff

logger = get_logger(__name__)

MAX_ERROR_TEXT = 500


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return int(value)
    return None


class MeliClient:
    """
    Async HTTP client for the Mercado Libre API.

    Usage:
        async with MeliClient() as client:
            page = await client.search_orders(token, {"seller": seller_id})

        # Or with manual lifecycle:
        client = MeliClient()
        await client.connect()
        try:
            page = await client.search_orders(token, params)
        finally:
            await client.close()
    """

    def __init__(
        self,
        base_url: str = None,
        client_id: str = None,
        client_secret: str = None,
        timeout: float = None,
        max_retries: int = None,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Mercado Libre client.

        Args:
            base_url: API base URL (defaults to MELI_API_BASE_URL)
            client_id: OAuth application id (defaults to MELI_APP_ID)
            client_secret: OAuth application secret (defaults to MELI_CLIENT_SECRET)
            timeout: Request timeout in seconds
            max_retries: Default retry budget for marketplace calls
            sleep: Awaitable used between retries (injectable for tests)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = (base_url or config.meli.api_base_url).rstrip("/")
        self.client_id = client_id if client_id is not None else config.meli.app_id
        self.client_secret = client_secret if client_secret is not None else config.meli.client_secret
        self.timeout = timeout or config.meli.request_timeout
        self.max_retries = config.meli.max_retries if max_retries is None else max_retries
        self._sleep = sleep
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=10,
                    max_connections=20,
                ),
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "MeliClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _url(self, url_or_endpoint: str) -> str:
        if url_or_endpoint.startswith(("http://", "https://")):
            return url_or_endpoint
        return f"{self.base_url}/{url_or_endpoint.lstrip('/')}"

    async def request(
        self,
        method: str,
        url_or_endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        Make an HTTP request with exponential backoff retry.

        HTTP 429, other non-2xx responses and network failures are all
        retried (1s, 2s, 4s, ...) up to max_retries times; the last error
        is raised once the budget is spent.

        Args:
            method: HTTP method
            url_or_endpoint: Absolute URL or path relative to the API base
            params: Query parameters
            data: Form-encoded body (OAuth endpoints)
            token: Bearer access token
            max_retries: Retry budget (defaults to the client's)

        Returns:
            Decoded JSON body

        Raises:
            RateLimitError: 429 after retries
            TransientFetchError: Other failure after retries
            MeliDataError: 2xx response whose body is not JSON
        """
        budget = self.max_retries if max_retries is None else max_retries
        return await retry_with_backoff(
            self._do_request,
            method, url_or_endpoint, params, data, token,
            config=RetryConfig(max_retries=budget),
            retryable_exceptions=(TransientFetchError,),
            sleep=self._sleep,
            description=f"{method} {url_or_endpoint}",
        )

    async def _do_request(
        self,
        method: str,
        url_or_endpoint: str,
        params: Optional[Dict[str, Any]],
        data: Optional[Dict[str, Any]],
        token: Optional[str],
    ) -> Any:
        """Execute a single HTTP request (called by retry wrapper)."""
        if not self._client:
            await self.connect()

        url = self._url(url_or_endpoint)
        if params:
            params = {key: value for key, value in params.items() if value is not None}

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        metrics.record_request(url_or_endpoint.split("?")[0])

        try:
            with Timer(f"meli {method} {url_or_endpoint}", logger) as timer:
                response = await self._client.request(
                    method=method,
                    url=url,
                    params=params,
                    data=data,
                    headers=request_headers or None,
                )
            metrics.record_timing("meli_request", timer.elapsed_ms)
        except httpx.TimeoutException as e:
            metrics.record_error("transient")
            logger.error(
                f"Request timeout: {method} {url_or_endpoint}",
                extra={"endpoint": url_or_endpoint, "timeout": self.timeout}
            )
            raise TransientFetchError(f"Request timeout after {self.timeout}s", str(e)) from e
        except httpx.RequestError as e:
            metrics.record_error("transient")
            logger.error(
                f"Request failed: {method} {url_or_endpoint} - {e}",
                extra={"endpoint": url_or_endpoint, "error": str(e)}
            )
            raise TransientFetchError("Network error", str(e)) from e

        if response.status_code == 429:
            metrics.record_error("rate_limit")
            raise RateLimitError(
                "Mercado Libre rate limit exceeded",
                details=response.text[:MAX_ERROR_TEXT],
                retry_after=_retry_after(response),
            )

        if response.status_code < 200 or response.status_code >= 300:
            metrics.record_error("transient")
            error_text = response.text[:MAX_ERROR_TEXT]
            logger.error(
                f"API error {response.status_code}: {error_text}",
                extra={"endpoint": url_or_endpoint, "status_code": response.status_code}
            )
            raise TransientFetchError(
                f"API returned {response.status_code}",
                details=error_text,
                status_code=response.status_code,
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise MeliDataError(
                "Response is not valid JSON",
                details=response.text[:MAX_ERROR_TEXT],
                expected="JSON",
                got=response.headers.get("Content-Type", "unknown"),
            ) from e

    # ═══════════════════════════════════════════════════════════════════════════
    # OAUTH METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    async def exchange_code(self, code: str, redirect_uri: str) -> Dict[str, Any]:
        """Exchange an authorization code for a token pair (single attempt)."""
        return await self.request(
            "POST",
            config.meli.token_path,
            data={
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            max_retries=0,
        )

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Refresh an access token (single attempt)."""
        return await self.request(
            "POST",
            config.meli.token_path,
            data={
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            },
            max_retries=0,
        )

    async def revoke_token(self, access_token: str) -> Any:
        """Revoke an access token (single attempt)."""
        return await self.request(
            "GET",
            config.meli.revoke_path,
            params={"access_token": access_token},
            max_retries=0,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # MARKETPLACE METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    async def search_orders(self, token: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """One page of /orders/search."""
        return await self.request("GET", "/orders/search", params=params, token=token)

    async def get_user_visits(
        self,
        token: str,
        meli_user_id: str,
        window: DateWindow,
    ) -> Dict[str, Any]:
        """Visits to all of the seller's items within the window."""
        return await self.request(
            "GET",
            f"/users/{meli_user_id}/items_visits",
            params={"date_from": window.from_iso, "date_to": window.to_iso},
            token=token,
        )

    async def get(
        self,
        endpoint: str,
        token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Generic GET for batch pass-through endpoints."""
        return await self.request("GET", endpoint, params=params, token=token)
