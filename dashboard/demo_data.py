"""
Deterministic sample dashboard shown when a period has no real orders.

Figures are seeded from the window so the same period always renders the
same sample.
"""
import random
from typing import Optional

from core.aggregator import EstimationStrategy, derive_costs
from core.config import config
from core.dates import DateWindow, month_key
from core.models import COST_FIELDS, DashboardData, Provenance, SalesSummary, build_provenance

SAMPLE_PRODUCTS = (
    ("MLA-DEMO-1", "Smartphone Galaxy S21"),
    ("MLA-DEMO-2", 'Notebook HP 15"'),
    ("MLA-DEMO-3", "Auriculares Sony WH-1000XM4"),
    ("MLA-DEMO-4", 'Smart TV Samsung 55"'),
    ("MLA-DEMO-5", 'Tablet iPad 10.2"'),
)

SAMPLE_PROVINCES = (
    ("Buenos Aires", 0.45),
    ("CABA", 0.25),
    ("Córdoba", 0.15),
    ("Santa Fe", 0.08),
    ("Mendoza", 0.07),
)


def _previous_month(year: int, month: int) -> tuple:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def generate_demo_data(window: Optional[DateWindow] = None, seed: Optional[int] = None) -> DashboardData:
    """Build a sample DashboardData; every figure is marked estimated."""
    window = window or DateWindow.last_days()
    settings = config.aggregation
    rng = random.Random(seed if seed is not None else window.from_iso)

    units = rng.randint(7000, 10000)
    orders = int(units * 0.9)
    gmv = float(rng.randint(2_500_000, 4_000_000))
    visits = rng.randint(150_000, 250_000)
    costs = derive_costs(gmv, settings.cost_rates)

    summary = SalesSummary(
        gmv=gmv,
        units=units,
        orders=orders,
        avg_ticket=SalesSummary.ticket(gmv, units),
        visits=visits,
        conversion=SalesSummary.conversion_rate(units, visits),
        **costs,
    )

    end_month = month_key(window.end, window.tz)
    year, month = int(end_month[:4]), int(end_month[5:])
    months = []
    for _ in range(settings.months_retained):
        months.append({"name": f"{year:04d}-{month:02d}", "value": float(rng.randint(800_000, 1_200_000))})
        year, month = _previous_month(year, month)
    months.reverse()

    products = [
        {
            "id": item_id,
            "name": name,
            "units": rng.randint(100, 250),
            "revenue": float(rng.randint(90_000, 200_000)),
        }
        for item_id, name in SAMPLE_PRODUCTS
    ]
    products.sort(key=lambda product: product["revenue"], reverse=True)

    provenance = build_provenance(Provenance.ESTIMATED, Provenance.ESTIMATED)

    return DashboardData(
        summary=summary,
        prev_summary=EstimationStrategy(settings).previous_summary(summary),
        sales_by_month=months,
        cost_distribution=[
            {"name": settings.cost_labels[name], "value": costs[name]} for name in COST_FIELDS
        ],
        top_products=products,
        sales_by_province=[
            {"name": name, "value": round(gmv * share, 2)} for name, share in SAMPLE_PROVINCES
        ],
        provenance=provenance,
    )
