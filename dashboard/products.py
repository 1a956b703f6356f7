"""
Product catalog: sync the seller's listings from Mercado Libre into the
product store and keep the unit costs the seller enters.

Sync goes through /meli-data like every other marketplace read:
1. Page /users/{meli_user_id}/items/search for listing ids
2. Fetch /items/{id} in batches no larger than the backend allows
3. Upsert the listings; stored costs are kept
"""
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.config import config
from core.models import ProductRecord
from core.observability import get_logger
from core.product_store import ProductStore
from dashboard.api_client import DashboardAPIClient, DashboardFetchError
from dashboard.payload import build_items_payload, build_items_search_payload
from dashboard.processor import Notice

logger = get_logger(__name__)

SYNC_ERROR_TITLE = "Error al obtener productos"
COST_ERROR_TITLE = "Error al actualizar costo"


class ProductSyncError(Exception):
    """A catalog page could not be read."""


def calculate_sold_products_cost(
    orders: Iterable[Dict[str, Any]],
    products: Iterable[ProductRecord],
) -> float:
    """
    Cost of goods sold: unit cost times quantity for every order line
    whose listing has a cost. Lines without a known cost add nothing.
    """
    costs = {p.item_id: p.cost for p in products if p.cost is not None}
    total = 0.0
    for order in orders:
        for line in order.get("order_items") or []:
            item_id = str((line.get("item") or {}).get("id") or "")
            if item_id in costs:
                total += costs[item_id] * (line.get("quantity") or 0)
    return total


def _first_result(response: Dict[str, Any]) -> Dict[str, Any]:
    if not response.get("success"):
        raise ProductSyncError(response.get("message") or "No se pudieron obtener los productos")
    results = response.get("batch_results") or []
    if not results or not results[0].get("success"):
        error = results[0].get("error") if results else None
        raise ProductSyncError(error or "No se pudieron obtener los productos")
    return results[0].get("data") or {}


class ProductLoader:
    """
    Seller catalog with per-listing unit costs.

    Usage:
        products = ProductLoader(api, store, user_id="u1", meli_user_id="123456")
        await products.sync()
        await products.update_product_cost("MLA1", 450.0)
        products.sold_products_cost(orders)
    """

    def __init__(
        self,
        api: DashboardAPIClient,
        store: ProductStore,
        user_id: Optional[str],
        meli_user_id: Optional[str],
        on_notice: Optional[Callable[[Notice], None]] = None,
        page_size: int = None,
        max_pages: int = None,
        chunk_size: int = None,
    ):
        self.api = api
        self.store = store
        self.user_id = user_id
        self.meli_user_id = meli_user_id
        self.page_size = page_size or config.dashboard.product_page_size
        self.max_pages = max_pages or config.dashboard.product_max_pages
        self.chunk_size = chunk_size or config.dashboard.product_chunk_size
        self._on_notice = on_notice

        self.products: List[ProductRecord] = []
        self.is_loading = False
        self.notices: List[Notice] = []

    def prerequisites_met(self) -> bool:
        return bool(self.user_id and self.meli_user_id)

    async def load(self) -> List[ProductRecord]:
        """Read the stored catalog without calling the marketplace."""
        if not self.user_id:
            return self.products
        self.products = await self.store.list(self.user_id)
        return self.products

    async def sync(self) -> int:
        """
        Refresh the catalog from Mercado Libre.

        Returns:
            Number of listings written (0 on failure or unmet prerequisites)
        """
        if not self.prerequisites_met():
            logger.debug("Product sync skipped: user or marketplace account missing")
            return 0

        self.is_loading = True
        try:
            item_ids = await self._fetch_item_ids()
            records = await self._fetch_items(item_ids)
            count = await self.store.upsert_many(self.user_id, records)
            await self.load()
        except (DashboardFetchError, ProductSyncError) as e:
            logger.warning(f"Product sync failed: {e}")
            self._notify(Notice(title=SYNC_ERROR_TITLE, description=str(e), variant="destructive"))
            return 0
        finally:
            self.is_loading = False

        logger.info(f"Synced {count} products", extra={"user_id": self.user_id})
        self._notify(Notice(
            title="Productos sincronizados",
            description=f"Se han sincronizado {count} productos desde Mercado Libre",
        ))
        return count

    async def update_product_cost(self, item_id: str, cost: Optional[float]) -> bool:
        """Set or clear the unit cost of one listing."""
        if cost is not None and cost < 0:
            self._notify(Notice(
                title=COST_ERROR_TITLE,
                description="El costo no puede ser negativo",
                variant="destructive",
            ))
            return False

        updated = await self.store.update_cost(self.user_id, item_id, cost)
        if updated is None:
            self._notify(Notice(
                title=COST_ERROR_TITLE,
                description=f"Producto {item_id} no encontrado",
                variant="destructive",
            ))
            return False

        self.products = [updated if p.item_id == item_id else p for p in self.products]
        self._notify(Notice(
            title="Costo actualizado",
            description="El costo del producto ha sido actualizado correctamente",
        ))
        return True

    def sold_products_cost(self, orders: Iterable[Dict[str, Any]]) -> float:
        return calculate_sold_products_cost(orders, self.products)

    # ─── Sync steps ───────────────────────────────────────────────────────────

    async def _fetch_item_ids(self) -> List[str]:
        item_ids: List[str] = []
        offset = 0
        for _ in range(self.max_pages):
            response = await self.api.fetch_meli_data(
                build_items_search_payload(self.user_id, self.meli_user_id, offset, self.page_size)
            )
            data = _first_result(response)
            batch = [str(item_id) for item_id in data.get("results") or []]
            item_ids.extend(batch)
            offset += len(batch)

            total = (data.get("paging") or {}).get("total")
            if len(batch) < self.page_size or (total is not None and offset >= total):
                break
        else:
            logger.warning(f"Product listing truncated at {self.max_pages} pages")

        # Preserve order, drop repeats across pages
        return list(dict.fromkeys(item_ids))

    async def _fetch_items(self, item_ids: List[str]) -> List[ProductRecord]:
        records: List[ProductRecord] = []
        for start in range(0, len(item_ids), self.chunk_size):
            chunk = item_ids[start:start + self.chunk_size]
            response = await self.api.fetch_meli_data(build_items_payload(self.user_id, chunk))
            if not response.get("success"):
                raise ProductSyncError(response.get("message") or "No se pudieron obtener los productos")

            for result in response.get("batch_results") or []:
                item = result.get("data")
                if not result.get("success") or not isinstance(item, dict) or "id" not in item:
                    logger.warning(f"Skipping listing {result.get('endpoint')}: {result.get('error')}")
                    continue
                records.append(ProductRecord.from_item(self.user_id, item))
        return records

    def _notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self._on_notice:
            self._on_notice(notice)
