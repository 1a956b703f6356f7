"""
Process-wide service instances for the web app.

Each getter lazily builds its instance once. Tests replace them with
app.dependency_overrides.
"""
from typing import Optional

from core.auth import AuthManager
from core.cache import TTLCache
from core.config import config
from core.meli_client import MeliClient
from core.observability import get_logger
from core.token_store import SQLiteTokenStore, TokenStore
from web.services.meli_data_service import MeliDataService

logger = get_logger(__name__)

_token_store: Optional[TokenStore] = None
_client: Optional[MeliClient] = None
_server_cache: Optional[TTLCache] = None
_auth_manager: Optional[AuthManager] = None
_data_service: Optional[MeliDataService] = None


def get_token_store() -> TokenStore:
    global _token_store
    if _token_store is None:
        _token_store = SQLiteTokenStore(config.store.db_path)
    return _token_store


def get_meli_client() -> MeliClient:
    global _client
    if _client is None:
        _client = MeliClient()
    return _client


def get_server_cache() -> TTLCache:
    global _server_cache
    if _server_cache is None:
        _server_cache = TTLCache(ttl_seconds=config.cache.server_ttl_seconds)
    return _server_cache


def get_auth_manager() -> AuthManager:
    global _auth_manager
    if _auth_manager is None:
        _auth_manager = AuthManager(get_token_store(), get_meli_client())
    return _auth_manager


def get_meli_data_service() -> MeliDataService:
    global _data_service
    if _data_service is None:
        _data_service = MeliDataService(get_auth_manager(), get_meli_client(), get_server_cache())
    return _data_service


async def close_client() -> None:
    """Close the pooled HTTP client (called on shutdown)."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
        logger.info("Mercado Libre client closed")
