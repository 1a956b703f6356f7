"""
Aggregation service behind /meli-data.

Validates the request, resolves a valid token, runs the order aggregation
and the pass-through batch calls, and shapes the always-parseable
response. Every failure becomes {success: false, message, error_type}
with an empty but well-formed dashboard.
"""
from typing import Any, Dict, List, Optional

from core.aggregator import Aggregator
from core.auth import AuthManager
from core.cache import TTLCache, server_cache_key
from core.config import AggregationConfig, config
from core.dates import DateWindow
from core.exceptions import AuthError, MeliError, ValidationError
from core.meli_client import MeliClient
from core.models import BatchErr, BatchOk, BatchRequest, BatchResult, DashboardData
from core.observability import get_logger, metrics
from core.pagination import PaginationResult
from core.resilience import gather_in_groups
from core.validators import (
    validate_batch_requests,
    validate_date_window,
    validate_timezone,
    validate_user_id,
)

logger = get_logger(__name__)


def failure_response(
    message: str,
    error_type: str,
    is_connected: bool = False,
    meli_user_id: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "error_type": error_type,
        "is_connected": is_connected,
        "meli_user_id": meli_user_id,
        "batch_results": [],
        "dashboard_data": DashboardData.empty().to_dict(),
        "is_test_data": False,
        "has_dashboard_data": False,
    }


class MeliDataService:
    """
    Server-side aggregation with a per-instance TTL cache.

    Usage:
        service = MeliDataService(auth, client, TTLCache(600))
        response = await service.fetch(user_id, batch_requests, date_range)
    """

    def __init__(
        self,
        auth: AuthManager,
        client: MeliClient,
        cache: TTLCache,
        settings: AggregationConfig = None,
        aggregator: Aggregator = None,
    ):
        self.auth = auth
        self.client = client
        self.cache = cache
        self.settings = settings or config.aggregation
        self.aggregator = aggregator or Aggregator(client, self.settings)

    async def fetch(
        self,
        user_id: Any,
        batch_requests: Any = None,
        date_range: Optional[Dict[str, Any]] = None,
        timezone: Optional[str] = None,
        use_cache: bool = True,
        disable_test_data: bool = False,
        prev_period: bool = True,
    ) -> Dict[str, Any]:
        """
        Handle one /meli-data request. Never raises.

        An empty batch is a connection-status probe and makes no
        marketplace call. A batch without an order search runs only the
        pass-through calls and carries no dashboard.
        """
        meli_user_id = None
        is_connected = False
        try:
            user_id = validate_user_id(user_id)
            tz_name = validate_timezone(timezone)
            date_range = date_range or {}
            window = validate_date_window(date_range.get("begin"), date_range.get("end"), tz_name)
            requests = validate_batch_requests(batch_requests)

            record = await self.auth.get_record(user_id)
            is_connected = record is not None
            meli_user_id = record.meli_user_id if record else None

            if not requests:
                return self._probe_response(is_connected, meli_user_id)

            if not is_connected:
                raise AuthError("Mercado Libre account not connected")

            # Only dashboard batches share the (user, "batch", window) entry
            cacheable = any(r.is_order_search for r in requests)
            key = server_cache_key(user_id, "batch", window)
            cached = self.cache.get(key) if use_cache and cacheable else None
            if cached is None:
                record = await self.auth.get_valid_token(user_id)
                meli_user_id = record.meli_user_id
                cached = await self._aggregate(record.access_token, meli_user_id, window, requests)
                if cacheable:
                    self.cache.set(key, cached)
                from_cache = False
            else:
                from_cache = True

            has_data = cached["has_dashboard_data"]
            empty_period = cached["dashboard_requested"] and not has_data
            prev_window = None
            if prev_period and cached["dashboard_requested"]:
                prev_window = window.previous().to_dict()
            return {
                "success": True,
                "message": "No orders in this period" if empty_period else None,
                "error_type": None,
                "is_connected": True,
                "meli_user_id": meli_user_id,
                "batch_results": cached["batch_results"],
                "dashboard_data": cached["dashboard_data"],
                "is_test_data": empty_period and not disable_test_data,
                "has_dashboard_data": has_data,
                "prev_window": prev_window,
                "cached": from_cache,
            }

        except ValidationError as e:
            logger.warning(f"Invalid aggregation request: {e}")
            metrics.record_error(e.error_type)
            return failure_response(str(e), e.error_type, is_connected, meli_user_id)

        except AuthError as e:
            logger.warning(f"Auth failure: {e}", extra={"user_id": user_id})
            metrics.record_error(e.error_type)
            return failure_response(e.message, e.error_type, is_connected, meli_user_id)

        except MeliError as e:
            logger.error(f"Marketplace failure: {e}", extra={"user_id": user_id})
            metrics.record_error(e.error_type)
            return failure_response(str(e), e.error_type, is_connected, meli_user_id)

        except Exception as e:
            logger.exception("Unexpected aggregation failure", extra={"user_id": user_id})
            metrics.record_error("internal")
            return failure_response(f"Internal error: {e}", "internal", is_connected, meli_user_id)

    @staticmethod
    def _probe_response(is_connected: bool, meli_user_id: Optional[str]) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Connected" if is_connected else "Mercado Libre account not connected",
            "error_type": None,
            "is_connected": is_connected,
            "meli_user_id": meli_user_id,
            "batch_results": [],
            "dashboard_data": DashboardData.empty().to_dict(),
            "is_test_data": False,
            "has_dashboard_data": False,
        }

    async def _aggregate(
        self,
        access_token: str,
        meli_user_id: str,
        window: DateWindow,
        requests: List[BatchRequest],
    ) -> Dict[str, Any]:
        order_request = next((r for r in requests if r.is_order_search), None)
        others = [r for r in requests if not r.is_order_search]

        results_by_request: Dict[int, BatchResult] = {}
        dashboard = DashboardData.empty()
        has_orders = False
        if order_request is not None:
            result = await self.aggregator.aggregate(
                access_token, meli_user_id, window, extra_params=order_request.params
            )
            dashboard = result.dashboard
            has_orders = result.has_orders
            page = PaginationResult(results=result.orders, total_reported=result.total_reported)
            results_by_request[id(order_request)] = BatchOk(
                endpoint=order_request.endpoint, data=page.to_dict()
            )

        others_results = await gather_in_groups(
            [self._fetch_factory(access_token, request) for request in others],
            group_size=self.settings.fanout_group_size,
            pause=self.settings.fanout_group_pause,
        )
        for request, outcome in zip(others, others_results):
            results_by_request[id(request)] = outcome

        failed = [r for r in results_by_request.values() if not r.success]
        if failed:
            logger.warning(
                f"{len(failed)} batch requests failed",
                extra={"endpoints": [r.endpoint for r in failed]}
            )

        return {
            "batch_results": [results_by_request[id(r)].to_dict() for r in requests],
            "dashboard_data": dashboard.to_dict(),
            "has_dashboard_data": has_orders,
            "dashboard_requested": order_request is not None,
        }

    def _fetch_factory(self, access_token: str, request: BatchRequest):
        async def fetch() -> BatchResult:
            try:
                data = await self.client.get(request.endpoint, token=access_token, params=request.params)
            except MeliError as e:
                return BatchErr(
                    endpoint=request.endpoint,
                    message=str(e),
                    status_code=getattr(e, "status_code", None),
                )
            return BatchOk(endpoint=request.endpoint, data=data)
        return fetch
