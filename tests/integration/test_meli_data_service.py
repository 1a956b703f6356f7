"""
Integration tests for web/services/meli_data_service.py

Real AuthManager, Aggregator and TTLCache; the marketplace client is mocked.
"""
import pytest
import pytest_asyncio
from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from core.auth import AuthManager
from core.cache import TTLCache
from core.config import AggregationConfig
from core.exceptions import MeliDataError, TransientFetchError
from core.validators import validate_date_window
from web.services.meli_data_service import MeliDataService

from conftest import FakeClock, orders_page

ORDER_SEARCH = {"endpoint": "/orders/search", "params": {"seller": "123456"}}
MAY = {"begin": "2024-05-01", "end": "2024-05-31"}


@pytest.fixture
def client(single_order):
    client = MagicMock()
    client.search_orders = AsyncMock(return_value=orders_page([single_order], total=1))
    client.get_user_visits = AsyncMock(return_value={"total_visits": 100})
    client.get = AsyncMock(return_value={"id": 123456, "nickname": "SELLER"})
    client.refresh_token = AsyncMock(return_value={"access_token": "APP_USR-refreshed", "expires_in": 21600})
    return client


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(token_store, client, clock):
    return MeliDataService(
        AuthManager(token_store, client),
        client,
        TTLCache(ttl_seconds=600, clock=clock),
        settings=AggregationConfig(fanout_group_pause=0),
    )


@pytest_asyncio.fixture
async def connected(token_store, token_record):
    await token_store.upsert(token_record)
    return token_record


class TestAggregation:
    """Tests for a normal dashboard load."""

    @pytest.mark.asyncio
    async def test_single_order(self, service, connected):
        response = await service.fetch("u1", [ORDER_SEARCH], MAY)

        assert response["success"] is True
        assert response["is_connected"] is True
        assert response["meli_user_id"] == "123456"
        assert response["has_dashboard_data"] is True
        assert response["is_test_data"] is False
        summary = response["dashboard_data"]["summary"]
        assert summary["gmv"] == 1000
        assert summary["units"] == 2
        assert summary["avgTicket"] == 500
        assert response["dashboard_data"]["topProducts"] == [
            {"id": "A", "name": "Item A", "units": 2, "revenue": 1000.0}
        ]

    @pytest.mark.asyncio
    async def test_order_batch_result(self, service, connected):
        response = await service.fetch("u1", [ORDER_SEARCH], MAY)

        result = response["batch_results"][0]
        assert result["endpoint"] == "/orders/search"
        assert result["success"] is True
        assert len(result["data"]["results"]) == 1
        assert result["data"]["paging"]["total"] == 1

    @pytest.mark.asyncio
    async def test_zero_orders(self, service, client, connected):
        """No orders: empty dashboard flagged for sample data."""
        client.search_orders.return_value = orders_page([], total=0)

        response = await service.fetch("u1", [ORDER_SEARCH], MAY)

        assert response["success"] is True
        assert response["has_dashboard_data"] is False
        assert response["is_test_data"] is True
        assert response["message"] == "No orders in this period"
        assert all(value == 0 for value in response["dashboard_data"]["summary"].values())

    @pytest.mark.asyncio
    async def test_zero_orders_with_sample_data_disabled(self, service, client, connected):
        client.search_orders.return_value = orders_page([], total=0)

        response = await service.fetch("u1", [ORDER_SEARCH], MAY, disable_test_data=True)

        assert response["is_test_data"] is False

    @pytest.mark.asyncio
    async def test_other_requests_keep_order(self, service, client, connected):
        """Batch results follow request order; a failed call does not fail the batch."""
        async def get(endpoint, token=None, params=None):
            if endpoint == "/items/MLA404":
                raise TransientFetchError("API returned 404", status_code=404)
            return {"endpoint": endpoint}

        client.get.side_effect = get
        requests = [
            {"endpoint": "/users/me"},
            ORDER_SEARCH,
            {"endpoint": "/items/MLA404"},
            {"endpoint": "/items/MLA1"},
            {"endpoint": "/items/MLA2"},
        ]

        response = await service.fetch("u1", requests, MAY)

        results = response["batch_results"]
        assert [r["endpoint"] for r in results] == [r["endpoint"] for r in requests]
        assert results[0]["data"] == {"endpoint": "/users/me"}
        assert results[2] == {
            "endpoint": "/items/MLA404",
            "success": False,
            "error": "API returned 404",
            "status_code": 404,
        }
        assert response["success"] is True

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_first(self, service, client, token_store, token_record):
        await token_store.upsert(replace(token_record, expires_at=datetime(2000, 1, 1, tzinfo=timezone.utc)))

        await service.fetch("u1", [ORDER_SEARCH], MAY)

        client.refresh_token.assert_awaited_once()
        assert client.search_orders.await_args.args[0] == "APP_USR-refreshed"


class TestConnectionStatus:
    """Tests for the empty-batch connection-status check."""

    @pytest.mark.asyncio
    async def test_connected(self, service, client, connected):
        response = await service.fetch("u1", [])

        assert response["success"] is True
        assert response["is_connected"] is True
        assert response["meli_user_id"] == "123456"
        client.search_orders.assert_not_awaited()
        client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_connected(self, service):
        response = await service.fetch("u1", [])
        assert response["success"] is True
        assert response["is_connected"] is False


class TestErrorPolicy:
    """Every failure becomes a parseable body with an empty dashboard."""

    @pytest.mark.asyncio
    async def test_not_connected(self, service):
        response = await service.fetch("u1", [ORDER_SEARCH], MAY)

        assert response["success"] is False
        assert response["error_type"] == "auth"
        assert response["is_connected"] is False
        assert response["dashboard_data"]["summary"]["gmv"] == 0

    @pytest.mark.asyncio
    async def test_validation(self, service, connected):
        response = await service.fetch("u1", [ORDER_SEARCH], {"begin": "2024-05-31", "end": "2024-05-01"})
        assert response["success"] is False
        assert response["error_type"] == "validation"

    @pytest.mark.asyncio
    async def test_missing_user(self, service):
        response = await service.fetch(None, [ORDER_SEARCH], MAY)
        assert response["error_type"] == "validation"

    @pytest.mark.asyncio
    async def test_order_search_failure(self, service, client, connected):
        client.search_orders.side_effect = TransientFetchError("API returned 500", status_code=500)

        response = await service.fetch("u1", [ORDER_SEARCH], MAY)

        assert response["success"] is False
        assert response["error_type"] == "transient"
        assert response["is_connected"] is True
        assert response["has_dashboard_data"] is False

    @pytest.mark.asyncio
    async def test_malformed_page(self, service, client, connected):
        client.search_orders.side_effect = MeliDataError("Invalid order page")
        response = await service.fetch("u1", [ORDER_SEARCH], MAY)
        assert response["error_type"] == "internal"

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, service, client, connected):
        client.search_orders.side_effect = RuntimeError("boom")
        response = await service.fetch("u1", [ORDER_SEARCH], MAY)
        assert response["success"] is False
        assert response["error_type"] == "internal"
        assert "boom" in response["message"]


class TestServerCache:
    """Tests for the server-side cache."""

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, service, client, connected):
        first = await service.fetch("u1", [ORDER_SEARCH], MAY)
        second = await service.fetch("u1", [ORDER_SEARCH], MAY)

        assert client.search_orders.await_count == 1
        assert first["cached"] is False
        assert second["cached"] is True
        assert second["dashboard_data"] == first["dashboard_data"]

    @pytest.mark.asyncio
    async def test_expired_entry_refetched(self, service, client, clock, connected):
        await service.fetch("u1", [ORDER_SEARCH], MAY)
        clock.advance(600)
        await service.fetch("u1", [ORDER_SEARCH], MAY)
        assert client.search_orders.await_count == 2

    @pytest.mark.asyncio
    async def test_use_cache_false_bypasses(self, service, client, connected):
        await service.fetch("u1", [ORDER_SEARCH], MAY)
        await service.fetch("u1", [ORDER_SEARCH], MAY, use_cache=False)
        assert client.search_orders.await_count == 2

    @pytest.mark.asyncio
    async def test_window_is_part_of_key(self, service, client, connected):
        await service.fetch("u1", [ORDER_SEARCH], MAY)
        await service.fetch("u1", [ORDER_SEARCH], {"begin": "2024-04-01", "end": "2024-04-30"})
        assert client.search_orders.await_count == 2


class TestPreviousPeriod:
    """Tests for the comparison window returned with a dashboard."""

    @pytest.mark.asyncio
    async def test_previous_window_included(self, service, connected):
        response = await service.fetch("u1", [ORDER_SEARCH], MAY)

        window = validate_date_window(MAY["begin"], MAY["end"])
        assert response["prev_window"] == window.previous().to_dict()

    @pytest.mark.asyncio
    async def test_previous_window_off(self, service, connected):
        response = await service.fetch("u1", [ORDER_SEARCH], MAY, prev_period=False)
        assert response["prev_window"] is None


class TestPassThroughOnly:
    """A batch without an order search carries no dashboard."""

    @pytest.mark.asyncio
    async def test_no_order_search(self, service, client, connected):
        response = await service.fetch("u1", [{"endpoint": "/users/me"}], MAY)

        client.search_orders.assert_not_awaited()
        client.get_user_visits.assert_not_awaited()
        assert response["success"] is True
        assert response["batch_results"][0]["data"] == {"id": 123456, "nickname": "SELLER"}
        assert response["has_dashboard_data"] is False
        assert response["is_test_data"] is False
        assert response["message"] is None
        assert response["prev_window"] is None

    @pytest.mark.asyncio
    async def test_not_cached_and_leaves_dashboard_entry(self, service, client, connected):
        first = await service.fetch("u1", [ORDER_SEARCH], MAY)
        await service.fetch("u1", [{"endpoint": "/users/me"}], MAY)
        await service.fetch("u1", [{"endpoint": "/users/me"}], MAY)
        again = await service.fetch("u1", [ORDER_SEARCH], MAY)

        assert client.get.await_count == 2
        assert again["cached"] is True
        assert again["dashboard_data"] == first["dashboard_data"]
