"""
OAuth token lifecycle for Mercado Libre accounts.

Connect exchanges an authorization code and stores the token pair,
get_valid_token refreshes an expired token before marketplace calls
(at most once per call), and disconnect revokes best-effort and deletes.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from core.exceptions import AuthError, MeliError
from core.meli_client import MeliClient
from core.models import TokenRecord
from core.observability import get_logger
from core.token_store import TokenStore

logger = get_logger(__name__)

# Mercado Libre access tokens live six hours
DEFAULT_EXPIRES_IN = 21600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _expires_in(payload: Dict[str, Any]) -> int:
    try:
        value = int(payload.get("expires_in") or 0)
    except (TypeError, ValueError):
        value = 0
    return value if value > 0 else DEFAULT_EXPIRES_IN


class AuthManager:
    """
    Owns every write to the token store.

    Usage:
        auth = AuthManager(store, client)
        await auth.connect(code, redirect_uri, user_id)
        record = await auth.get_valid_token(user_id)
    """

    def __init__(
        self,
        store: TokenStore,
        client: MeliClient,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.client = client
        self._now = now

    async def connect(self, code: str, redirect_uri: str, user_id: str) -> Dict[str, Any]:
        """
        Exchange an authorization code and upsert the user's token record.

        Returns:
            {"meli_user_id": ...}

        Raises:
            AuthError: Missing parameter, failed exchange or incomplete payload
        """
        missing = [
            name for name, value in (
                ("code", code), ("redirect_uri", redirect_uri), ("user_id", user_id)
            )
            if not value
        ]
        if missing:
            raise AuthError(
                "Missing required parameters",
                details=", ".join(missing),
                reconnect_required=False,
            )

        try:
            payload = await self.client.exchange_code(code, redirect_uri)
        except MeliError as e:
            logger.error("Token exchange failed", extra={"user_id": user_id, "error": str(e)})
            raise AuthError("Error exchanging code for token", details=str(e)) from e

        if not isinstance(payload, dict) or not payload.get("access_token") or not payload.get("refresh_token"):
            raise AuthError(
                "Token response is missing access_token or refresh_token",
                details=str(sorted(payload)) if isinstance(payload, dict) else type(payload).__name__,
            )

        now = self._now()
        meli_user_id = payload.get("user_id")
        record = await self.store.upsert(TokenRecord(
            user_id=user_id,
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            meli_user_id=str(meli_user_id) if meli_user_id is not None else None,
            expires_at=now + timedelta(seconds=_expires_in(payload)),
            created_at=now,
            updated_at=now,
        ))

        logger.info(
            "Mercado Libre account connected",
            extra={"user_id": user_id, "meli_user_id": record.meli_user_id}
        )
        return {"meli_user_id": record.meli_user_id}

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """
        Refresh the access token. One attempt, no silent re-authentication.

        Raises:
            AuthError: Refresh failed (reconnect required)
        """
        try:
            payload = await self.client.refresh_token(record.refresh_token)
        except MeliError as e:
            logger.error(
                "Token refresh failed",
                extra={"user_id": record.user_id, "error": str(e)}
            )
            raise AuthError("Error refreshing Mercado Libre token", details=str(e)) from e

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthError("Refresh response is missing access_token")

        now = self._now()
        updated = await self.store.update_tokens(
            record.user_id,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or record.refresh_token,
            expires_at=now + timedelta(seconds=_expires_in(payload)),
            updated_at=now,
        )
        if updated is None:
            raise AuthError("Mercado Libre account not connected", details="record removed during refresh")

        logger.info("Token refreshed", extra={"user_id": record.user_id})
        return updated

    async def get_record(self, user_id: str) -> Optional[TokenRecord]:
        return await self.store.get(user_id)

    async def get_valid_token(self, user_id: str) -> TokenRecord:
        """
        Return a non-expired token record, refreshing it if needed.

        Raises:
            AuthError: Not connected or refresh failed
        """
        record = await self.store.get(user_id)
        if record is None:
            raise AuthError("Mercado Libre account not connected")

        if record.is_expired(self._now()):
            logger.info("Token expired, refreshing", extra={"user_id": user_id})
            record = await self.refresh(record)

        return record

    async def disconnect(self, user_id: str) -> Dict[str, Any]:
        """
        Revoke (best-effort) and delete the user's token record.

        Idempotent: succeeds when there is nothing to delete.
        """
        record = await self.store.get(user_id)
        if record is None:
            logger.info("No tokens found for user, nothing to revoke", extra={"user_id": user_id})
            return {"success": True, "message": "No tokens found to revoke"}

        try:
            await self.client.revoke_token(record.access_token)
        except MeliError as e:
            logger.warning(
                "Token revocation failed, deleting anyway",
                extra={"user_id": user_id, "error": str(e)}
            )

        await self.store.delete(user_id)
        logger.info("Mercado Libre account disconnected", extra={"user_id": user_id})
        return {"success": True, "message": "Successfully disconnected from Mercado Libre"}
