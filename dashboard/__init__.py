"""
Client data tier for the seller dashboard.

- api_client: HTTP calls to the backend functions
- connection: account connection status, connect and disconnect
- loader: load orchestration (cache, de-duplication, rate-limit retry)
- processor: response to dashboard state
- products: product catalog sync and unit costs
- demo_data: sample dashboard for empty periods
"""

from dashboard.api_client import DashboardAPIClient, DashboardFetchError
from dashboard.connection import MeliConnection
from dashboard.loader import LoaderParams, LoadState, MeliDataLoader
from dashboard.processor import DashboardState, Notice, process_response
from dashboard.products import ProductLoader, calculate_sold_products_cost

__all__ = [
    "DashboardAPIClient",
    "DashboardFetchError",
    "MeliConnection",
    "LoaderParams",
    "LoadState",
    "MeliDataLoader",
    "DashboardState",
    "Notice",
    "process_response",
    "ProductLoader",
    "calculate_sold_products_cost",
]
