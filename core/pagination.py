"""
Offset pagination for Mercado Libre order search.

Pages are fetched strictly sequentially: each offset depends on the
previous page. Collection is capped by pages and by orders, trading
completeness for bounded latency on high-volume sellers.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import config
from core.exceptions import MeliDataError
from core.observability import get_logger

logger = get_logger(__name__)

FetchPage = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass
class PaginationResult:
    """Collected orders plus what the API claimed in paging.total."""
    results: List[Dict[str, Any]] = field(default_factory=list)
    total_reported: int = 0
    pages_fetched: int = 0
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": self.results,
            "paging": {
                "total": self.total_reported,
                "offset": 0,
                "limit": len(self.results),
            },
        }


class OrderPaginator:
    """
    Paginator for /orders/search.

    Stops at whichever comes first:
    - a page shorter than page_size
    - the API-reported paging.total
    - max_pages pages
    - max_orders accumulated orders (the result is cut to exactly max_orders)

    Usage:
        paginator = OrderPaginator(lambda params: client.search_orders(token, params))
        result = await paginator.fetch_all(params)
    """

    def __init__(
        self,
        fetch_func: FetchPage,
        page_size: int = None,
        max_pages: int = None,
        max_orders: int = None,
    ):
        """
        Initialize paginator.

        Args:
            fetch_func: Coroutine that fetches one page for the given params
            page_size: Orders per page (limit)
            max_pages: Hard cap on pages fetched
            max_orders: Hard cap on accumulated orders
        """
        self.fetch_func = fetch_func
        self.page_size = page_size or config.aggregation.page_size
        self.max_pages = max_pages or config.aggregation.max_pages
        self.max_orders = max_orders or config.aggregation.max_orders

    @staticmethod
    def _parse_page(response: Any, offset: int) -> tuple:
        # Validate response structure
        if not isinstance(response, dict):
            raise MeliDataError(
                f"Invalid order page at offset {offset}",
                expected="dict",
                got=type(response).__name__
            )

        batch = response.get("results")
        if batch is None:
            batch = []
        if not isinstance(batch, list):
            raise MeliDataError(
                "Response 'results' field is not a list",
                expected="list",
                got=type(batch).__name__
            )

        paging = response.get("paging") or {}
        total: Optional[int] = paging.get("total")
        return batch, total

    async def _pages(self, params: Dict[str, Any]):
        params = dict(params)  # Don't modify original
        params["limit"] = self.page_size
        offset = 0

        for page in range(self.max_pages):
            params["offset"] = offset
            response = await self.fetch_func(dict(params))
            batch, total = self._parse_page(response, offset)

            yield batch, total

            offset += len(batch)

            # Check if we've reached the end
            if len(batch) < self.page_size:
                break
            if total is not None and offset >= total:
                break

    async def fetch_all(self, params: Dict[str, Any]) -> PaginationResult:
        """
        Fetch pages until a stop condition and return the combined orders.

        Raises:
            TransientFetchError: A page failed after retries
            MeliDataError: A page had an unexpected shape
        """
        result = PaginationResult()

        async for batch, total in self._pages(params):
            result.pages_fetched += 1
            if total is not None:
                result.total_reported = total
            result.results.extend(batch)

            if len(result.results) >= self.max_orders:
                result.truncated = len(result.results) > self.max_orders or (
                    total is not None and total > self.max_orders
                )
                del result.results[self.max_orders:]
                break

        if not result.total_reported:
            result.total_reported = len(result.results)

        logger.info(
            f"Fetched {len(result.results)} orders in {result.pages_fetched} pages",
            extra={
                "total_reported": result.total_reported,
                "truncated": result.truncated,
            }
        )
        return result
