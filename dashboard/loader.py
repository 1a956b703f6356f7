"""
Dashboard data loader: request building, client cache, de-duplication,
rate-limit retry and state propagation.

State machine:
    IDLE -> LOADING -> SUCCESS | ERROR

LOADING is re-entered only through an explicit trigger (load, refresh or
a parameter change). There is no automatic retry beyond the rate-limit
backoff.

Guards, in order:
1. Prerequisites (user, connection, marketplace user, custom range bounds)
2. A request for the same cache key already in flight
3. A fresh client cache entry
4. A payload identical to the last dispatched one within the cache TTL

Every accepted trigger (a dispatch or a cache hit) bumps a generation
number. A response is applied only while its generation is the latest or
its cache key still matches the current parameters; otherwise it is
cached but not applied.
"""
import asyncio
import json
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from core.cache import TTLCache
from core.config import config
from core.observability import get_logger
from core.resilience import Sleep
from dashboard.api_client import DashboardAPIClient, DashboardFetchError
from dashboard.cache import client_cache_key
from dashboard.payload import build_meli_data_payload, resolve_date_range
from dashboard.processor import DashboardState, Notice, process_response

logger = get_logger(__name__)

DEFAULT_ERROR_MESSAGE = "No se pudieron cargar los datos de Mercado Libre."
AUTH_ERROR_MESSAGE = "Error de autenticación con Mercado Libre. Por favor, reconecta tu cuenta."


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class LoaderParams:
    """Inputs whose change re-triggers a load."""
    user_id: Optional[str] = None
    meli_user_id: Optional[str] = None
    is_connected: bool = False
    date_filter: str = "30d"
    from_iso: Optional[str] = None
    to_iso: Optional[str] = None
    disable_test_data: bool = False


def is_rate_limited(response: Dict[str, Any]) -> bool:
    """Rate-limit signal carried in a failed response body."""
    if response.get("error_type") == "rate_limit":
        return True
    text = " ".join(
        str(response.get(name) or "") for name in ("message", "error")
    ).lower()
    return "429" in text or "rate limit" in text or "rate_limit" in text


class MeliDataLoader:
    """
    Client-side orchestration of dashboard loads.

    Usage:
        loader = MeliDataLoader(api, LoaderParams(user_id="u1", meli_user_id="99", is_connected=True))
        await loader.load()
        loader.state.summary.gmv
    """

    def __init__(
        self,
        api: DashboardAPIClient,
        params: LoaderParams,
        cache: Optional[TTLCache] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_notice: Optional[Callable[[Notice], None]] = None,
        tz_name: str = None,
    ):
        self.api = api
        self.params = params
        self.cache = cache or TTLCache(config.cache.client_ttl_seconds, clock=clock)
        self.tz_name = tz_name or config.dashboard.timezone
        self._sleep = sleep
        self._clock = clock
        self._on_notice = on_notice

        self.state = DashboardState()
        self.load_state = LoadState.IDLE
        self.error: Optional[str] = None
        self.notices: List[Notice] = []

        self._in_flight: Set[str] = set()
        self._last_fingerprint: Optional[str] = None
        self._last_dispatch_at: float = 0.0
        self._generation = 0

    # ─── Properties ───────────────────────────────────────────────────────────

    @property
    def is_loading(self) -> bool:
        return self.load_state == LoadState.LOADING

    @property
    def is_test_data(self) -> bool:
        return self.state.is_test_data

    def cache_key(self) -> str:
        p = self.params
        return client_cache_key(p.user_id, p.date_filter, p.from_iso, p.to_iso, p.disable_test_data)

    def prerequisites_met(self) -> bool:
        p = self.params
        if not (p.user_id and p.is_connected and p.meli_user_id):
            return False
        if p.date_filter == "custom" and not (p.from_iso and p.to_iso):
            return False
        return True

    # ─── Triggers ─────────────────────────────────────────────────────────────

    async def update_params(self, **changes) -> bool:
        """
        Apply parameter changes; reload when anything changed.

        Returns:
            True if the parameters changed
        """
        updated = replace(self.params, **changes)
        if updated == self.params:
            return False
        self.params = updated
        await self.load()
        return True

    async def refresh(self) -> None:
        """Drop the cached entry and the last fingerprint, then load."""
        self.cache.invalidate(self.cache_key())
        self._last_fingerprint = None
        self._notify(Notice(
            title="Actualizando datos",
            description="Recuperando datos más recientes de Mercado Libre...",
        ))
        await self.load()

    async def load(self, max_retries: Optional[int] = None) -> None:
        """
        Load dashboard data for the current parameters. Never raises.

        Args:
            max_retries: Rate-limit retry budget (delays 1s, 2s, 4s, ...)
        """
        if not self.prerequisites_met():
            logger.debug("Load prerequisites not met", extra={"params": str(self.params)})
            return

        key = self.cache_key()
        if key in self._in_flight:
            logger.debug(f"Request already in progress for {key}")
            return

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Using cached dashboard for {key}")
            self._generation += 1
            self._apply(cached)
            self.load_state = LoadState.SUCCESS
            return

        params = self.params
        try:
            window = resolve_date_range(
                params.date_filter, params.from_iso, params.to_iso, tz_name=self.tz_name
            )
        except ValueError as e:
            self._fail(f"Rango de fechas inválido: {e}")
            return

        payload = build_meli_data_payload(
            params.user_id, params.meli_user_id, window, params.disable_test_data, self.tz_name
        )
        fingerprint = json.dumps(payload, sort_keys=True)
        if (
            fingerprint == self._last_fingerprint
            and self._clock() - self._last_dispatch_at < self.cache.ttl_seconds
        ):
            logger.debug("Duplicate request detected, skipping")
            return

        self._generation += 1
        generation = self._generation
        self._in_flight.add(key)
        self._last_fingerprint = fingerprint
        self._last_dispatch_at = self._clock()
        self.load_state = LoadState.LOADING
        self.error = None

        budget = config.dashboard.max_rate_limit_retries if max_retries is None else max_retries
        try:
            response = await self._dispatch(payload, budget)
            self.cache.set(key, response)

            if not self._is_current(generation, key):
                logger.info("Discarding stale response", extra={"cache_key": key})
                return

            self._apply(response, window)
            self.load_state = LoadState.SUCCESS

        except DashboardFetchError as e:
            self._last_fingerprint = None
            if self._is_current(generation, key):
                message = AUTH_ERROR_MESSAGE if e.error_type == "auth" else (e.message or DEFAULT_ERROR_MESSAGE)
                self._fail(message)

        except Exception as e:
            logger.exception("Unexpected error loading dashboard data")
            self._last_fingerprint = None
            if self._is_current(generation, key):
                self._fail(str(e) or DEFAULT_ERROR_MESSAGE)

        finally:
            self._in_flight.discard(key)

    # ─── Internals ────────────────────────────────────────────────────────────

    def _is_current(self, generation: int, key: str) -> bool:
        return generation == self._generation or key == self.cache_key()

    async def _dispatch(self, payload: Dict[str, Any], max_retries: int) -> Dict[str, Any]:
        """Call the backend, retrying only on a rate-limit signal."""
        for attempt in range(max_retries + 1):
            response = await self.api.fetch_meli_data(payload)
            if response.get("success"):
                return response

            if is_rate_limited(response) and attempt < max_retries:
                delay = 2 ** attempt
                logger.warning(
                    f"Rate limited, retrying in {delay}s",
                    extra={"attempt": attempt + 1, "max_retries": max_retries}
                )
                await self._sleep(delay)
                continue

            raise DashboardFetchError(
                response.get("message") or response.get("error") or "Error desconocido al obtener datos",
                error_type=response.get("error_type"),
            )

        # Unreachable: the last attempt either returns or raises
        raise DashboardFetchError(DEFAULT_ERROR_MESSAGE)

    def _apply(self, response: Dict[str, Any], window=None) -> None:
        if window is None:
            try:
                window = resolve_date_range(
                    self.params.date_filter, self.params.from_iso, self.params.to_iso,
                    tz_name=self.tz_name,
                )
            except ValueError:
                window = None
        notice = process_response(response, self.state, self.params.disable_test_data, window)
        if notice:
            self._notify(notice)

    def _fail(self, message: str) -> None:
        self.error = message
        self.load_state = LoadState.ERROR
        logger.error(f"Dashboard load failed: {message}")
        self._notify(Notice(title="Error cargando datos", description=message, variant="destructive"))

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self._on_notice:
            self._on_notice(notice)
