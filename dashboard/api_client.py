"""
HTTP client the dashboard uses to call the backend functions.

Transport failures and unparsable bodies raise DashboardFetchError; a
well-formed {success: false} body is returned as-is for the caller to
interpret.
"""
from typing import Any, Dict, Optional

import httpx

from core.config import config
from core.observability import get_correlation_id, get_logger

logger = get_logger(__name__)


class DashboardFetchError(Exception):
    """Backend call failed or returned something that is not a JSON object."""

    def __init__(self, message: str, error_type: Optional[str] = None):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class DashboardAPIClient:
    """
    Async client for /meli-data, /meli-auth and /meli-disconnect.

    Usage:
        async with DashboardAPIClient() as api:
            response = await api.fetch_meli_data(payload)
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.dashboard.api_url).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "DashboardAPIClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self._client:
            await self.connect()

        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Request-ID"] = correlation_id

        try:
            response = await self._client.post(path, json=body, headers=headers or None)
        except httpx.RequestError as e:
            logger.error(f"Backend request failed: {path} - {e}")
            raise DashboardFetchError(f"Error al obtener datos: {e}") from e

        # Backend rate limiter answers 429 before reaching the function
        if response.status_code == 429:
            return {
                "success": False,
                "error_type": "rate_limit",
                "message": "rate limit exceeded (429)",
            }

        try:
            data = response.json()
        except ValueError as e:
            raise DashboardFetchError(
                f"Respuesta inválida del servidor (HTTP {response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise DashboardFetchError("No se recibieron datos de la función meli-data")
        return data

    async def fetch_meli_data(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post("/meli-data", payload)

    async def check_connection(self, user_id: str) -> Dict[str, Any]:
        """Connection status and marketplace user id (empty batch)."""
        return await self._post("/meli-data", {"user_id": user_id, "batch_requests": []})

    async def connect_account(self, code: str, redirect_uri: str, user_id: str) -> Dict[str, Any]:
        return await self._post(
            "/meli-auth",
            {"code": code, "redirect_uri": redirect_uri, "user_id": user_id},
        )

    async def disconnect_account(self, user_id: str) -> Dict[str, Any]:
        return await self._post("/meli-disconnect", {"user_id": user_id})
