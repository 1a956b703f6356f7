"""
Pytest configuration and shared fixtures.
"""
import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx

from core.dates import DateWindow, end_of_day, start_of_day
from core.models import TokenRecord
from core.token_store import InMemoryTokenStore

TZ_NAME = "America/Argentina/Buenos_Aires"


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_order(
    order_id: int = 1,
    total_amount: float = 1000.0,
    items: Optional[List[Dict[str, Any]]] = None,
    date_closed: Optional[str] = "2024-05-10T12:00:00.000-03:00",
    province: Optional[str] = "Buenos Aires",
    status: Optional[str] = "paid",
) -> Dict[str, Any]:
    """Build a Mercado Libre order the way /orders/search returns it."""
    order = {
        "id": order_id,
        "total_amount": total_amount,
        "order_items": items if items is not None else [
            {"item": {"id": "MLA1", "title": "Producto 1"}, "quantity": 1, "unit_price": total_amount}
        ],
    }
    if date_closed is not None:
        order["date_closed"] = date_closed
    if status is not None:
        order["status"] = status
    if province is not None:
        order["shipping"] = {"receiver_address": {"state": {"name": province}}}
    return order


def orders_page(results: List[Dict[str, Any]], total: int, offset: int = 0, limit: int = 50) -> Dict[str, Any]:
    return {"results": results, "paging": {"total": total, "offset": offset, "limit": limit}}


def json_transport(handler: Callable[[httpx.Request], Any]) -> httpx.MockTransport:
    """
    MockTransport whose handler returns either an httpx.Response or a
    (status_code, json_body) tuple.
    """
    def _handle(request: httpx.Request) -> httpx.Response:
        result = handler(request)
        if isinstance(result, httpx.Response):
            return result
        status_code, body = result
        return httpx.Response(status_code, json=body)
    return httpx.MockTransport(_handle)


@pytest.fixture
def tz() -> ZoneInfo:
    return ZoneInfo(TZ_NAME)


@pytest.fixture
def may_window(tz) -> DateWindow:
    """Whole of May 2024 in Buenos Aires time."""
    return DateWindow(
        start_of_day(datetime(2024, 5, 1).date(), tz),
        end_of_day(datetime(2024, 5, 31).date(), tz),
    )


@pytest.fixture
def single_order() -> Dict[str, Any]:
    """One order, one line: 2 units of item A at 500."""
    return make_order(
        order_id=1,
        total_amount=1000,
        items=[{"item": {"id": "A", "title": "Item A"}, "quantity": 2, "unit_price": 500}],
    )


@pytest.fixture
def sample_orders() -> List[Dict[str, Any]]:
    """Orders across provinces, products and statuses."""
    return [
        make_order(1, 1000, [
            {"item": {"id": "A", "title": "Item A"}, "quantity": 2, "unit_price": 500},
        ], province="Buenos Aires"),
        make_order(2, 1500, [
            {"item": {"id": "B", "title": "Item B"}, "quantity": 1, "unit_price": 1500},
        ], province="Córdoba", date_closed="2024-05-20T09:00:00.000-03:00"),
        make_order(3, 600, [
            {"item": {"id": "A", "title": "Item A"}, "quantity": 1, "unit_price": 300},
            {"item": {"id": "C", "title": "Item C"}, "quantity": 1, "unit_price": 300},
        ], province=None, status="delivered"),
        # Cancelled (should be excluded)
        make_order(4, 9999, status="cancelled"),
        # Outside the window (should be excluded)
        make_order(5, 7777, date_closed="2024-04-15T12:00:00.000-03:00"),
    ]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def token_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def token_record() -> TokenRecord:
    """Valid (unexpired) record for user u1."""
    now = datetime.now(timezone.utc)
    return TokenRecord(
        user_id="u1",
        access_token="APP_USR-access",
        refresh_token="TG-refresh",
        meli_user_id="123456",
        expires_at=now + timedelta(hours=6),
        created_at=now,
        updated_at=now,
    )
