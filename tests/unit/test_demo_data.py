"""
Tests for dashboard.demo_data module.
"""
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from core.dates import resolve_preset
from core.models import SalesSummary
from dashboard.demo_data import generate_demo_data

NOW = datetime(2024, 5, 15, 10, 0, tzinfo=ZoneInfo("America/Argentina/Buenos_Aires"))


class TestGenerateDemoData:
    """Tests for generate_demo_data."""

    def test_deterministic_per_window(self):
        """Same window, same sample."""
        window = resolve_preset("30d", now=NOW)
        assert generate_demo_data(window) == generate_demo_data(window)

    def test_seed_changes_output(self):
        window = resolve_preset("30d", now=NOW)
        assert generate_demo_data(window, seed=1) != generate_demo_data(window, seed=2)

    def test_summary_is_consistent(self):
        data = generate_demo_data(resolve_preset("30d", now=NOW), seed=7)
        summary = data.summary
        assert summary.avg_ticket == pytest.approx(SalesSummary.ticket(summary.gmv, summary.units))
        assert summary.conversion == pytest.approx(SalesSummary.conversion_rate(summary.units, summary.visits))
        assert summary.orders <= summary.units

    def test_six_months_ending_at_window(self):
        data = generate_demo_data(resolve_preset("30d", now=NOW), seed=7)
        assert [row["name"] for row in data.sales_by_month] == [
            "2023-12", "2024-01", "2024-02", "2024-03", "2024-04", "2024-05",
        ]

    def test_everything_estimated(self):
        data = generate_demo_data(resolve_preset("today", now=NOW), seed=3)
        assert set(data.provenance.values()) == {"estimated"}
        assert len(data.top_products) == 5
        revenues = [product["revenue"] for product in data.top_products]
        assert revenues == sorted(revenues, reverse=True)
