"""
Dashboard aggregation over Mercado Libre orders.

Pipeline:
1. Page through /orders/search for the window (core.pagination)
2. Re-filter each order locally against the window
3. Derive gmv, units, order count, top products, revenue by province and
   revenue by month in one pass
4. Derive cost fields as fixed shares of gmv
5. Attach visits, measured when the visits endpoint answers and estimated
   otherwise
6. Derive the previous-period summary by fixed scale-down ratios

Every figure carries provenance ("measured" or "estimated") so consumers
can tell real data from approximations.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.config import AggregationConfig, config
from core.dates import DateWindow, month_key, parse_datetime
from core.exceptions import MeliError
from core.meli_client import MeliClient
from core.models import (
    COST_FIELDS,
    AggregationResult,
    DashboardData,
    ProductStat,
    Provenance,
    SalesSummary,
    build_provenance,
)
from core.observability import Timer, get_logger
from core.pagination import OrderPaginator

logger = get_logger(__name__)

# Statuses that count as a sale; orders without a status are kept
VALID_STATUSES = {"paid", "delivered"}


# ═══════════════════════════════════════════════════════════════════════════════
# ORDER HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def order_moment(order: Dict[str, Any]) -> Optional[datetime]:
    """
    The moment an order counts as sold.

    date_closed, else the first payment's date_approved, else date_created.
    None when none of them parses.
    """
    payments = order.get("payments") or []
    approved = payments[0].get("date_approved") if payments and isinstance(payments[0], dict) else None

    for value in (order.get("date_closed"), approved, order.get("date_created")):
        if not value:
            continue
        try:
            return parse_datetime(value)
        except (TypeError, ValueError):
            continue
    return None


def filter_orders(orders: List[Dict[str, Any]], window: DateWindow) -> List[Dict[str, Any]]:
    """
    Drop orders outside the window or with a non-sale status.

    Orders with no parseable date are kept.
    """
    kept = []
    for order in orders:
        status = order.get("status")
        if status and status not in VALID_STATUSES:
            logger.debug(f"Order {order.get('id')} ignored: status {status}")
            continue

        moment = order_moment(order)
        if moment is not None and not window.contains(moment):
            logger.debug(f"Order {order.get('id')} ignored: {moment.isoformat()} outside window")
            continue

        kept.append(order)
    return kept


def extract_visits(payload: Any) -> int:
    """Total visits from an items_visits response."""
    if not isinstance(payload, dict):
        return 0
    if payload.get("total_visits") is not None:
        return int(_number(payload["total_visits"]))
    results = payload.get("results")
    if isinstance(results, list):
        return int(sum(_number(day.get("total")) for day in results if isinstance(day, dict)))
    return 0


def derive_costs(gmv: float, rates: Dict[str, float]) -> Dict[str, float]:
    return {name: round(gmv * rates[name], 2) for name in COST_FIELDS}


# ═══════════════════════════════════════════════════════════════════════════════
# ONE-PASS METRICS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class OrderMetrics:
    """Accumulators filled in a single pass over the filtered orders."""
    gmv: float = 0.0
    units: int = 0
    orders: int = 0
    products: Dict[str, ProductStat] = field(default_factory=dict)
    provinces: Dict[str, float] = field(default_factory=dict)
    months: Dict[str, float] = field(default_factory=dict)


def collect_metrics(
    orders: List[Dict[str, Any]],
    window: DateWindow,
    unknown_province: str = "Desconocida",
) -> OrderMetrics:
    metrics = OrderMetrics()

    for order in orders:
        amount = _number(order.get("total_amount"))
        metrics.gmv += amount
        metrics.orders += 1

        for line in order.get("order_items") or []:
            quantity = int(_number(line.get("quantity")))
            metrics.units += quantity

            item = line.get("item") or {}
            item_id = item.get("id")
            if not item_id:
                continue
            item_id = str(item_id)
            stat = metrics.products.get(item_id)
            if stat is None:
                stat = metrics.products[item_id] = ProductStat(
                    id=item_id, name=item.get("title") or item_id
                )
            stat.units += quantity
            stat.revenue += _number(line.get("unit_price")) * quantity

        shipping = order.get("shipping") or {}
        state = ((shipping.get("receiver_address") or {}).get("state") or {})
        province = state.get("name") or unknown_province
        metrics.provinces[province] = metrics.provinces.get(province, 0.0) + amount

        moment = order_moment(order)
        if moment is not None:
            key = month_key(moment, window.tz)
            metrics.months[key] = metrics.months.get(key, 0.0) + amount

    return metrics


# ═══════════════════════════════════════════════════════════════════════════════
# STRATEGIES
# ═══════════════════════════════════════════════════════════════════════════════

class MeasuredStrategy:
    """Visits taken from the marketplace."""

    provenance = Provenance.MEASURED

    def __init__(self, visits: int):
        self.visits = visits

    def apply(self, summary: SalesSummary) -> SalesSummary:
        return replace(
            summary,
            visits=self.visits,
            conversion=SalesSummary.conversion_rate(summary.units, self.visits),
        )


class EstimationStrategy:
    """
    Synthetic figures used when real data is unavailable.

    Visits are estimated from units sold at a fixed conversion. The previous
    period is a fixed-ratio scale-down of the current one rather than a
    second aggregation.
    """

    provenance = Provenance.ESTIMATED

    def __init__(self, settings: AggregationConfig = None):
        self.settings = settings or config.aggregation

    def apply(self, summary: SalesSummary) -> SalesSummary:
        visits = summary.units * self.settings.estimated_visits_per_unit
        return replace(
            summary,
            visits=visits,
            conversion=self.settings.estimated_conversion if visits > 0 else 0.0,
        )

    def previous_summary(self, summary: SalesSummary) -> SalesSummary:
        ratios = self.settings.prev_period_ratios
        gmv = round(summary.gmv * ratios["gmv"], 2)
        units = int(round(summary.units * ratios["units"]))
        visits = int(round(summary.visits * ratios["visits"]))
        return SalesSummary(
            gmv=gmv,
            units=units,
            orders=int(round(summary.orders * ratios["orders"])),
            avg_ticket=SalesSummary.ticket(gmv, units),
            visits=visits,
            conversion=SalesSummary.conversion_rate(units, visits),
            **derive_costs(gmv, self.settings.cost_rates),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATOR
# ═══════════════════════════════════════════════════════════════════════════════

class Aggregator:
    """
    Builds DashboardData for one seller and window.

    Usage:
        aggregator = Aggregator(client)
        result = await aggregator.aggregate(token, meli_user_id, window)
    """

    def __init__(self, client: MeliClient, settings: AggregationConfig = None):
        self.client = client
        self.settings = settings or config.aggregation
        self.estimation = EstimationStrategy(self.settings)

    def order_search_params(
        self,
        meli_user_id: str,
        window: DateWindow,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        params = dict(extra_params or {})
        # Pagination and the window are owned here
        for key in ("limit", "offset"):
            params.pop(key, None)
        params.update({
            "seller": meli_user_id,
            "order.status": "paid",
            "sort": "date_desc",
            "date_from": window.from_iso,
            "date_to": window.to_iso,
        })
        return params

    async def fetch_orders(
        self,
        access_token: str,
        meli_user_id: str,
        window: DateWindow,
        extra_params: Optional[Dict[str, Any]] = None,
    ):
        paginator = OrderPaginator(
            lambda params: self.client.search_orders(access_token, params),
            page_size=self.settings.page_size,
            max_pages=self.settings.max_pages,
            max_orders=self.settings.max_orders,
        )
        return await paginator.fetch_all(
            self.order_search_params(meli_user_id, window, extra_params)
        )

    async def fetch_visits(self, access_token: str, meli_user_id: str, window: DateWindow):
        """Pick the visits strategy: measured when the endpoint answers."""
        try:
            payload = await self.client.get_user_visits(access_token, meli_user_id, window)
        except MeliError as e:
            logger.warning(
                "Visits unavailable, using estimate",
                extra={"meli_user_id": meli_user_id, "error": str(e)}
            )
            return self.estimation
        return MeasuredStrategy(extract_visits(payload))

    def build_dashboard(
        self,
        orders: List[Dict[str, Any]],
        window: DateWindow,
        visits_strategy=None,
    ) -> DashboardData:
        """Derive every dashboard section from already-filtered orders."""
        metrics = collect_metrics(orders, window, self.settings.unknown_province)
        costs = derive_costs(metrics.gmv, self.settings.cost_rates)

        summary = SalesSummary(
            gmv=metrics.gmv,
            units=metrics.units,
            orders=metrics.orders,
            avg_ticket=SalesSummary.ticket(metrics.gmv, metrics.units),
            **costs,
        )
        strategy = visits_strategy or self.estimation
        summary = strategy.apply(summary)

        top_products = sorted(
            metrics.products.values(), key=lambda stat: stat.revenue, reverse=True
        )[:self.settings.top_products]

        provinces = sorted(metrics.provinces.items(), key=lambda item: item[1], reverse=True)

        months = sorted(metrics.months.items())[-self.settings.months_retained:]

        provenance = build_provenance(visits=strategy.provenance)

        return DashboardData(
            summary=summary,
            prev_summary=self.estimation.previous_summary(summary),
            sales_by_month=[{"name": name, "value": value} for name, value in months],
            cost_distribution=[
                {"name": self.settings.cost_labels[name], "value": costs[name]}
                for name in COST_FIELDS
                if costs[name] > 0
            ],
            top_products=[stat.to_dict() for stat in top_products],
            sales_by_province=[{"name": name, "value": value} for name, value in provinces],
            provenance=provenance,
        )

    async def aggregate(
        self,
        access_token: str,
        meli_user_id: str,
        window: DateWindow,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> AggregationResult:
        """
        Run the full aggregation for one seller and window.

        Raises:
            TransientFetchError: Order search failed after retries
            MeliDataError: Order search returned an unexpected shape
        """
        with Timer("aggregate", logger) as timer:
            page_result = await self.fetch_orders(access_token, meli_user_id, window, extra_params)
            orders = filter_orders(page_result.results, window)
            if orders:
                visits_strategy = await self.fetch_visits(access_token, meli_user_id, window)
                dashboard = self.build_dashboard(orders, window, visits_strategy)
            else:
                # Nothing sold: the whole summary stays zero, visits included
                dashboard = DashboardData.empty()

        logger.info(
            f"Aggregated {len(orders)} of {len(page_result.results)} orders",
            extra={
                "meli_user_id": meli_user_id,
                "gmv": dashboard.summary.gmv,
                "duration_ms": round(timer.elapsed_ms, 2),
            }
        )
        return AggregationResult(
            dashboard=dashboard,
            orders=orders,
            total_reported=page_result.total_reported,
        )
