"""
Domain models for Mercado Libre seller analytics.

Provides type-safe dataclasses for OAuth tokens, the product catalog,
dashboard aggregates and batch request/results. These models serve as
the single source of truth for data structures shared by the web service
and the dashboard client.

Wire format keeps the dashboard's camelCase keys (avgTicket, salesByMonth,
...) while attributes stay snake_case.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Provenance(str, Enum):
    """Whether a dashboard figure was measured or estimated."""
    MEASURED = "measured"
    ESTIMATED = "estimated"


# Cost fields derived as fixed shares of GMV
COST_FIELDS = ("commissions", "taxes", "shipping", "discounts", "refunds", "iva")

# Summary figures read straight from orders
ORDER_FIELDS = ("gmv", "units", "orders", "avgTicket")


def build_provenance(
    orders: Provenance = Provenance.MEASURED,
    visits: Provenance = Provenance.MEASURED,
) -> Dict[str, str]:
    """
    Per-field provenance for a dashboard.

    Costs and the previous-period summary are always estimated; conversion
    follows visits.
    """
    provenance = {name: orders.value for name in ORDER_FIELDS}
    provenance.update({name: Provenance.ESTIMATED.value for name in COST_FIELDS})
    provenance["visits"] = visits.value
    provenance["conversion"] = visits.value
    provenance["prev_summary"] = Provenance.ESTIMATED.value
    return provenance


# ═══════════════════════════════════════════════════════════════════════════════
# OAUTH
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class TokenRecord:
    """Persisted OAuth credentials for one dashboard user."""
    user_id: str
    access_token: str
    refresh_token: str
    meli_user_id: Optional[str]
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        """Expired at the exact expiry instant, not one tick after."""
        return now >= self.expires_at


# ═══════════════════════════════════════════════════════════════════════════════
# PRODUCT CATALOG
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class ProductRecord:
    """One listing of the seller, with the unit cost the seller entered."""
    user_id: str
    item_id: str
    title: str = ""
    price: float = 0.0
    available_quantity: int = 0
    sold_quantity: int = 0
    thumbnail: Optional[str] = None
    permalink: Optional[str] = None
    cost: Optional[float] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_item(cls, user_id: str, item: Dict[str, Any]) -> "ProductRecord":
        """Build from an /items/{id} response. Cost is never part of the item."""
        return cls(
            user_id=user_id,
            item_id=str(item["id"]),
            title=item.get("title") or "",
            price=float(item.get("price") or 0),
            available_quantity=int(item.get("available_quantity") or 0),
            sold_quantity=int(item.get("sold_quantity") or 0),
            thumbnail=item.get("thumbnail"),
            permalink=item.get("permalink"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "price": self.price,
            "available_quantity": self.available_quantity,
            "sold_quantity": self.sold_quantity,
            "thumbnail": self.thumbnail,
            "permalink": self.permalink,
            "cost": self.cost,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# DASHBOARD DATA
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SalesSummary:
    """Headline metrics for one period."""
    gmv: float = 0.0
    units: int = 0
    orders: int = 0
    avg_ticket: float = 0.0
    commissions: float = 0.0
    taxes: float = 0.0
    shipping: float = 0.0
    discounts: float = 0.0
    refunds: float = 0.0
    iva: float = 0.0
    visits: int = 0
    conversion: float = 0.0

    @staticmethod
    def ticket(gmv: float, units: int) -> float:
        return gmv / units if units > 0 else 0.0

    @staticmethod
    def conversion_rate(units: int, visits: int) -> float:
        return units / visits * 100 if visits > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gmv": self.gmv,
            "units": self.units,
            "orders": self.orders,
            "avgTicket": self.avg_ticket,
            "commissions": self.commissions,
            "taxes": self.taxes,
            "shipping": self.shipping,
            "discounts": self.discounts,
            "refunds": self.refunds,
            "iva": self.iva,
            "visits": self.visits,
            "conversion": self.conversion,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SalesSummary":
        """Build from the wire format; missing fields default to zero."""
        data = data or {}
        return cls(
            gmv=float(data.get("gmv") or 0),
            units=int(data.get("units") or 0),
            orders=int(data.get("orders") or 0),
            avg_ticket=float(data.get("avgTicket") or 0),
            commissions=float(data.get("commissions") or 0),
            taxes=float(data.get("taxes") or 0),
            shipping=float(data.get("shipping") or 0),
            discounts=float(data.get("discounts") or 0),
            refunds=float(data.get("refunds") or 0),
            iva=float(data.get("iva") or 0),
            visits=int(data.get("visits") or 0),
            conversion=float(data.get("conversion") or 0),
        )


@dataclass
class ProductStat:
    """Per-product accumulation keyed by marketplace item id."""
    id: str
    name: str
    units: int = 0
    revenue: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "units": self.units,
            "revenue": self.revenue,
        }


@dataclass
class DashboardData:
    """
    Derived, cacheable aggregate for the dashboard.

    Every section is always present: empty lists and zero summaries are
    the defaults, never None.
    """
    summary: SalesSummary = field(default_factory=SalesSummary)
    prev_summary: SalesSummary = field(default_factory=SalesSummary)
    sales_by_month: List[Dict[str, Any]] = field(default_factory=list)
    cost_distribution: List[Dict[str, Any]] = field(default_factory=list)
    top_products: List[Dict[str, Any]] = field(default_factory=list)
    sales_by_province: List[Dict[str, Any]] = field(default_factory=list)
    provenance: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "DashboardData":
        """Well-formed all-zero dashboard used for failures and empty periods."""
        return cls(provenance=build_provenance())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "prev_summary": self.prev_summary.to_dict(),
            "salesByMonth": list(self.sales_by_month),
            "costDistribution": list(self.cost_distribution),
            "topProducts": list(self.top_products),
            "salesByProvince": list(self.sales_by_province),
            "provenance": dict(self.provenance),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DashboardData":
        data = data or {}
        return cls(
            summary=SalesSummary.from_dict(data.get("summary")),
            prev_summary=SalesSummary.from_dict(data.get("prev_summary")),
            sales_by_month=list(data.get("salesByMonth") or []),
            cost_distribution=list(data.get("costDistribution") or []),
            top_products=list(data.get("topProducts") or []),
            sales_by_province=list(data.get("salesByProvince") or []),
            provenance=dict(data.get("provenance") or {}),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# BATCH REQUESTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class BatchRequest:
    """One client-specified marketplace call."""
    endpoint: str
    method: str = "GET"
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_order_search(self) -> bool:
        return self.endpoint.rstrip("/").endswith("/orders/search")


@dataclass
class BatchOk:
    """Successful batch sub-request."""
    endpoint: str
    data: Any

    success = True

    def to_dict(self) -> Dict[str, Any]:
        return {"endpoint": self.endpoint, "success": True, "data": self.data}


@dataclass
class BatchErr:
    """Failed batch sub-request."""
    endpoint: str
    message: str
    status_code: Optional[int] = None

    success = False

    def to_dict(self) -> Dict[str, Any]:
        result = {"endpoint": self.endpoint, "success": False, "error": self.message}
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


BatchResult = Union[BatchOk, BatchErr]


@dataclass
class AggregationResult:
    """Output of one aggregation pass."""
    dashboard: DashboardData
    orders: List[Dict[str, Any]] = field(default_factory=list)
    total_reported: int = 0

    @property
    def has_orders(self) -> bool:
        return len(self.orders) > 0
