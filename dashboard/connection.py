"""
Account connection state for the dashboard: status check, OAuth connect
and disconnect, each reported to the user as a notice.
"""
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from core.observability import get_logger
from dashboard.api_client import DashboardAPIClient, DashboardFetchError
from dashboard.loader import LoaderParams
from dashboard.processor import Notice

logger = get_logger(__name__)


class MeliConnection:
    """
    Tracks whether the dashboard user has a connected Mercado Libre account.

    Usage:
        connection = MeliConnection(api, user_id="u1")
        await connection.check()
        loader = MeliDataLoader(api, connection.loader_params())
    """

    def __init__(
        self,
        api: DashboardAPIClient,
        user_id: str,
        on_notice: Optional[Callable[[Notice], None]] = None,
    ):
        self.api = api
        self.user_id = user_id
        self.is_connected = False
        self.meli_user_id: Optional[str] = None
        self.notices: List[Notice] = []
        self._on_notice = on_notice

    async def check(self) -> bool:
        """Refresh the connection status. Failures leave it disconnected."""
        try:
            response = await self.api.check_connection(self.user_id)
        except DashboardFetchError as e:
            logger.warning(f"Connection check failed: {e.message}")
            self._set_disconnected()
            return False

        if response.get("success") and response.get("is_connected"):
            self.is_connected = True
            self.meli_user_id = response.get("meli_user_id")
        else:
            self._set_disconnected()
        return self.is_connected

    async def connect(self, code: str, redirect_uri: str) -> bool:
        """Finish the OAuth flow with the authorization code from the redirect."""
        try:
            response = await self.api.connect_account(code, redirect_uri, self.user_id)
        except DashboardFetchError as e:
            response = {"success": False, "message": e.message}

        if not response.get("success"):
            self._notify(Notice(
                title="Error de conexión",
                description=_describe(response, "No se pudo conectar la cuenta de Mercado Libre."),
                variant="destructive",
            ))
            return False

        self.is_connected = True
        self.meli_user_id = response.get("meli_user_id")
        self._notify(Notice(
            title="Conexión exitosa",
            description="Tu cuenta de Mercado Libre ha sido conectada correctamente.",
        ))
        return True

    async def disconnect(self) -> bool:
        try:
            response = await self.api.disconnect_account(self.user_id)
        except DashboardFetchError as e:
            response = {"success": False, "message": e.message}

        if not response.get("success"):
            self._notify(Notice(
                title="Error al desconectar",
                description=_describe(response, "No se pudo desconectar la cuenta de Mercado Libre."),
                variant="destructive",
            ))
            return False

        self._set_disconnected()
        self._notify(Notice(
            title="Cuenta desconectada",
            description="Tu cuenta de Mercado Libre ha sido desconectada correctamente.",
        ))
        return True

    def loader_params(self, **overrides: Any) -> LoaderParams:
        """Loader inputs for the current connection state."""
        params = LoaderParams(
            user_id=self.user_id,
            meli_user_id=self.meli_user_id,
            is_connected=self.is_connected,
        )
        return replace(params, **overrides) if overrides else params

    def _set_disconnected(self) -> None:
        self.is_connected = False
        self.meli_user_id = None

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self._on_notice:
            self._on_notice(notice)


def _describe(response: Dict[str, Any], default: str) -> str:
    return response.get("message") or response.get("error") or default
