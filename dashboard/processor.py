"""
Applies /meli-data responses to the dashboard state.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.dates import DateWindow
from core.models import DashboardData, SalesSummary
from core.observability import get_logger
from dashboard.demo_data import generate_demo_data

logger = get_logger(__name__)


@dataclass
class Notice:
    """User-visible toast."""
    title: str
    description: str = ""
    variant: str = "default"  # default | destructive

    @property
    def is_destructive(self) -> bool:
        return self.variant == "destructive"


@dataclass
class DashboardState:
    """What the dashboard renders."""
    summary: SalesSummary = field(default_factory=SalesSummary)
    prev_summary: SalesSummary = field(default_factory=SalesSummary)
    sales_by_month: List[Dict[str, Any]] = field(default_factory=list)
    cost_distribution: List[Dict[str, Any]] = field(default_factory=list)
    top_products: List[Dict[str, Any]] = field(default_factory=list)
    sales_by_province: List[Dict[str, Any]] = field(default_factory=list)
    provenance: Dict[str, str] = field(default_factory=dict)
    is_test_data: bool = False

    def reset(self) -> None:
        self.apply(DashboardData.empty())
        self.is_test_data = False

    def apply(self, data: DashboardData) -> None:
        self.summary = _with_derived(data.summary)
        self.prev_summary = _with_derived(data.prev_summary)
        self.sales_by_month = list(data.sales_by_month)
        self.cost_distribution = list(data.cost_distribution)
        self.top_products = list(data.top_products)
        self.sales_by_province = list(data.sales_by_province)
        self.provenance = dict(data.provenance)


def _with_derived(summary: SalesSummary) -> SalesSummary:
    # Ratios are recomputed so a stale or hand-built payload cannot divide by zero
    summary.avg_ticket = SalesSummary.ticket(summary.gmv, summary.units)
    summary.conversion = SalesSummary.conversion_rate(summary.units, summary.visits)
    return summary


def process_response(
    response: Dict[str, Any],
    state: DashboardState,
    disable_test_data: bool,
    window: Optional[DateWindow] = None,
) -> Optional[Notice]:
    """
    Apply a successful response to state.

    Returns the notice to show, if any. With no real orders the state is
    filled with sample data (when allowed and flagged) or cleared.
    """
    has_data = response.get("has_dashboard_data")
    dashboard = response.get("dashboard_data")

    if has_data is not False and dashboard:
        state.apply(DashboardData.from_dict(dashboard))
        state.is_test_data = False
        return None

    if not disable_test_data and response.get("is_test_data"):
        state.apply(generate_demo_data(window))
        state.is_test_data = True
        logger.info("No real orders, showing sample data")
        return Notice(
            title="Mostrando datos de prueba",
            description="No se encontraron órdenes reales para el período seleccionado",
        )

    state.reset()
    return Notice(
        title="Sin datos del dashboard",
        description="No se encontraron órdenes para el período seleccionado",
    )
