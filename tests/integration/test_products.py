"""
Integration tests for dashboard/products.py

The backend client is mocked; the product store is the in-memory one.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.models import ProductRecord
from core.product_store import InMemoryProductStore
from dashboard.api_client import DashboardFetchError
from dashboard.products import ProductLoader, calculate_sold_products_cost

from conftest import make_order


def item(item_id: str, price: float = 1000.0) -> dict:
    return {
        "id": item_id,
        "title": f"Producto {item_id}",
        "price": price,
        "available_quantity": 3,
        "sold_quantity": 7,
        "thumbnail": f"https://http2.mlstatic.com/{item_id}.jpg",
        "permalink": f"https://articulo.mercadolibre.com.ar/{item_id}",
    }


def search_page(ids, total) -> dict:
    return {
        "success": True,
        "batch_results": [{
            "endpoint": "/users/123456/items/search",
            "success": True,
            "data": {"results": ids, "paging": {"total": total}},
        }],
    }


def items_response(items) -> dict:
    return {
        "success": True,
        "batch_results": [
            {"endpoint": f"/items/{i['id']}", "success": True, "data": i} for i in items
        ],
    }


class FakeBackend:
    """Answers /meli-data payloads from a fixed listing."""

    def __init__(self, ids, page_size=2):
        self.ids = ids
        self.page_size = page_size
        self.payloads = []

    def __call__(self, payload):
        self.payloads.append(payload)
        requests = payload["batch_requests"]
        if requests[0]["endpoint"].endswith("/items/search"):
            offset = requests[0]["params"]["offset"]
            return search_page(self.ids[offset:offset + self.page_size], len(self.ids))
        return items_response([item(r["endpoint"].rsplit("/", 1)[1]) for r in requests])


@pytest.fixture
def store():
    return InMemoryProductStore()


def _loader(api, store, **kwargs) -> ProductLoader:
    return ProductLoader(api, store, user_id="u1", meli_user_id="123456", **kwargs)


def _api(side_effect) -> MagicMock:
    api = MagicMock()
    api.fetch_meli_data = AsyncMock(side_effect=side_effect)
    return api


class TestSync:
    """Tests for ProductLoader.sync."""

    @pytest.mark.asyncio
    async def test_pages_and_chunks(self, store):
        """Five listings: three search pages of two, then item batches of at most two."""
        backend = FakeBackend(["MLA1", "MLA2", "MLA3", "MLA4", "MLA5"], page_size=2)
        loader = _loader(_api(backend), store, page_size=2, chunk_size=2)

        count = await loader.sync()

        assert count == 5
        searches = [p for p in backend.payloads if p["batch_requests"][0]["endpoint"].endswith("/items/search")]
        assert [p["batch_requests"][0]["params"]["offset"] for p in searches] == [0, 2, 4]
        assert searches[0]["batch_requests"][0]["endpoint"] == "/users/123456/items/search"
        batches = [p["batch_requests"] for p in backend.payloads if p not in searches]
        assert [len(b) for b in batches] == [2, 2, 1]
        assert all(p["use_cache"] is False for p in backend.payloads)
        assert [p.item_id for p in loader.products] == ["MLA1", "MLA2", "MLA3", "MLA4", "MLA5"]
        notice = loader.notices[-1]
        assert notice.title == "Productos sincronizados"
        assert notice.description == "Se han sincronizado 5 productos desde Mercado Libre"

    @pytest.mark.asyncio
    async def test_default_batches_fit_backend_limit(self, store):
        backend = FakeBackend([f"MLA{i}" for i in range(25)], page_size=100)
        loader = _loader(_api(backend), store)

        await loader.sync()

        sizes = [len(p["batch_requests"]) for p in backend.payloads[1:]]
        assert sizes == [10, 10, 5]
        assert backend.payloads[0]["batch_requests"][0]["params"]["limit"] == 100

    @pytest.mark.asyncio
    async def test_page_cap(self, store):
        backend = FakeBackend([f"MLA{i}" for i in range(10)], page_size=2)
        loader = _loader(_api(backend), store, page_size=2, max_pages=2)

        assert await loader.sync() == 4

    @pytest.mark.asyncio
    async def test_resync_keeps_costs(self, store):
        backend = FakeBackend(["MLA1"])
        loader = _loader(_api(backend), store)
        await loader.sync()
        await loader.update_product_cost("MLA1", 450.0)

        await loader.sync()

        assert loader.products[0].cost == 450.0

    @pytest.mark.asyncio
    async def test_failed_item_skipped(self, store):
        responses = [
            search_page(["MLA1", "MLA2"], 2),
            {
                "success": True,
                "batch_results": [
                    {"endpoint": "/items/MLA1", "success": True, "data": item("MLA1")},
                    {"endpoint": "/items/MLA2", "success": False, "error": "API returned 404", "status_code": 404},
                ],
            },
        ]
        loader = _loader(_api(responses), store)

        assert await loader.sync() == 1
        assert [p.item_id for p in loader.products] == ["MLA1"]

    @pytest.mark.asyncio
    async def test_search_failure(self, store):
        loader = _loader(_api([{
            "success": False, "error_type": "auth", "message": "Mercado Libre account not connected",
        }]), store)

        assert await loader.sync() == 0
        notice = loader.notices[-1]
        assert notice.title == "Error al obtener productos"
        assert notice.description == "Mercado Libre account not connected"
        assert notice.is_destructive
        assert loader.is_loading is False

    @pytest.mark.asyncio
    async def test_transport_failure(self, store):
        loader = _loader(_api(DashboardFetchError("Error al obtener datos: timeout")), store)

        assert await loader.sync() == 0
        assert "timeout" in loader.notices[-1].description

    @pytest.mark.asyncio
    async def test_prerequisites_not_met(self, store):
        api = _api(None)
        loader = ProductLoader(api, store, user_id="u1", meli_user_id=None)

        assert await loader.sync() == 0
        api.fetch_meli_data.assert_not_awaited()
        assert loader.notices == []


class TestUpdateCost:
    """Tests for ProductLoader.update_product_cost."""

    @pytest.mark.asyncio
    async def test_updates_store_and_list(self, store):
        await store.upsert_many("u1", [ProductRecord.from_item("u1", item("MLA1"))])
        loader = _loader(_api(None), store)
        await loader.load()

        assert await loader.update_product_cost("MLA1", 450.0) is True

        assert loader.products[0].cost == 450.0
        assert (await store.list("u1"))[0].cost == 450.0
        assert loader.notices[-1].title == "Costo actualizado"

    @pytest.mark.asyncio
    async def test_unknown_product(self, store):
        loader = _loader(_api(None), store)

        assert await loader.update_product_cost("MLA404", 10.0) is False
        notice = loader.notices[-1]
        assert notice.title == "Error al actualizar costo"
        assert notice.is_destructive

    @pytest.mark.asyncio
    async def test_negative_cost_rejected(self, store):
        await store.upsert_many("u1", [ProductRecord.from_item("u1", item("MLA1"))])
        loader = _loader(_api(None), store)

        assert await loader.update_product_cost("MLA1", -1.0) is False
        assert (await store.list("u1"))[0].cost is None


class TestSoldProductsCost:
    """Tests for calculate_sold_products_cost."""

    def test_sums_known_costs(self):
        products = [
            ProductRecord(user_id="u1", item_id="A", cost=100.0),
            ProductRecord(user_id="u1", item_id="B", cost=None),
        ]
        orders = [
            make_order(1, items=[
                {"item": {"id": "A"}, "quantity": 2, "unit_price": 500},
                {"item": {"id": "B"}, "quantity": 1, "unit_price": 300},
            ]),
            make_order(2, items=[{"item": {"id": "A"}, "quantity": 1, "unit_price": 500}]),
            make_order(3, items=[{"item": {"id": "Z"}, "quantity": 4, "unit_price": 50}]),
        ]

        assert calculate_sold_products_cost(orders, products) == 300.0

    def test_no_orders(self):
        assert calculate_sold_products_cost([], [ProductRecord(user_id="u1", item_id="A", cost=1.0)]) == 0.0

    @pytest.mark.asyncio
    async def test_loader_uses_its_catalog(self, store):
        await store.upsert_many("u1", [ProductRecord.from_item("u1", item("MLA1"))])
        await store.update_cost("u1", "MLA1", 200.0)
        loader = _loader(_api(None), store)
        await loader.load()

        assert loader.sold_products_cost([make_order(1)]) == 200.0
