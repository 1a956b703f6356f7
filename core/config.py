"""
Centralized configuration for the Mercado Libre seller dashboard.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from core.config import config

    client_id = config.meli.app_id
    ttl = config.cache.server_ttl_seconds
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass(frozen=True)
class MeliConfig:
    """Mercado Libre API and OAuth application configuration."""

    api_base_url: str = field(
        default_factory=lambda: os.getenv("MELI_API_BASE_URL", "https://api.mercadolibre.com")
    )
    app_id: str = field(default_factory=lambda: os.getenv("MELI_APP_ID", ""))
    client_secret: str = field(default_factory=lambda: os.getenv("MELI_CLIENT_SECRET", ""))
    token_path: str = "/oauth/token"
    revoke_path: str = "/oauth/revoke"
    request_timeout: float = 30.0
    max_retries: int = 3


@dataclass(frozen=True)
class AggregationConfig:
    """Order pagination and metric derivation settings."""

    page_size: int = 50
    max_pages: int = 20
    max_orders: int = 500
    top_products: int = 5
    months_retained: int = 6
    unknown_province: str = "Desconocida"

    # Fixed shares of GMV used in place of per-order fee data
    cost_rates: Dict[str, float] = field(default_factory=lambda: {
        "commissions": 0.07,
        "taxes": 0.17,
        "shipping": 0.03,
        "discounts": 0.05,
        "refunds": 0.02,
        "iva": 0.21,
    })

    # Chart labels for the cost distribution
    cost_labels: Dict[str, str] = field(default_factory=lambda: {
        "commissions": "Comisiones",
        "taxes": "Impuestos",
        "shipping": "Envíos",
        "discounts": "Descuentos",
        "refunds": "Reembolsos",
        "iva": "IVA",
    })

    # Synthetic visits when the visits endpoint fails
    estimated_visits_per_unit: int = 25
    estimated_conversion: float = 4.0

    # Previous period scale-down ratios
    prev_period_ratios: Dict[str, float] = field(default_factory=lambda: {
        "gmv": 0.90,
        "units": 0.85,
        "orders": 0.90,
        "visits": 0.88,
    })

    # Batch fan-out
    fanout_group_size: int = 3
    fanout_group_pause: float = 0.5


@dataclass(frozen=True)
class CacheConfig:
    """Caching configuration."""

    server_ttl_seconds: int = 600  # 10 minutes
    client_ttl_seconds: int = 300  # 5 minutes


@dataclass(frozen=True)
class StoreConfig:
    """Token store configuration."""

    db_path: str = field(default_factory=lambda: os.getenv("MELI_TOKEN_DB", "data/meli_tokens.db"))


@dataclass(frozen=True)
class WebConfig:
    """Backend web service configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("WEB_PORT", "8080")))
    cors_origins: List[str] = field(default_factory=lambda: [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ])
    rate_limit: str = "60/minute"


@dataclass(frozen=True)
class DashboardConfig:
    """Client data tier configuration."""

    api_url: str = field(
        default_factory=lambda: os.getenv("DASHBOARD_API_URL", "http://localhost:8080")
    )
    timezone: str = "America/Argentina/Buenos_Aires"
    max_rate_limit_retries: int = 3
    # Product catalog sync: /items/search page size, page cap and /items per batch
    product_page_size: int = 100
    product_max_pages: int = 50
    product_chunk_size: int = 10


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    meli: MeliConfig = field(default_factory=MeliConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    web: WebConfig = field(default_factory=WebConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


# Global config instance
config = AppConfig()


# ─── Convenience Exports ──────────────────────────────────────────────────────
VERSION = config.version
DEFAULT_TIMEZONE = config.dashboard.timezone
MELI_API_BASE_URL = config.meli.api_base_url


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(require_oauth: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of failing on the first token exchange.

    Args:
        require_oauth: If True, validate the OAuth application credentials

    Raises:
        ConfigurationError: If required configuration is missing
    """
    errors = []

    if require_oauth and not config.meli.app_id:
        errors.append("MELI_APP_ID is required but not set")

    if require_oauth and not config.meli.client_secret:
        errors.append("MELI_CLIENT_SECRET is required but not set")

    if config.meli.app_id and not config.meli.app_id.isdigit():
        errors.append("MELI_APP_ID appears to be invalid (expected a numeric application id)")

    if not config.meli.api_base_url.startswith(("http://", "https://")):
        errors.append("MELI_API_BASE_URL must be an http(s) URL")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
