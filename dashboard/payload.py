"""
Request payload construction for /meli-data.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from core.config import DEFAULT_TIMEZONE, config
from core.dates import DateWindow, parse_datetime, resolve_preset
from core.validators import MAX_BATCH_REQUESTS


def resolve_date_range(
    date_filter: str,
    from_iso: Optional[str] = None,
    to_iso: Optional[str] = None,
    now: Optional[datetime] = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> DateWindow:
    """
    Window for a dashboard filter.

    An explicit range wins (always for 'custom'); presets resolve to local
    day bounds.

    Raises:
        ValueError: 'custom' without both bounds, or an unknown preset
    """
    if from_iso and to_iso:
        tz = ZoneInfo(tz_name)
        return DateWindow(parse_datetime(from_iso, tz), parse_datetime(to_iso, tz))
    return resolve_preset(date_filter, now=now, tz_name=tz_name)


def build_meli_data_payload(
    user_id: str,
    meli_user_id: str,
    window: DateWindow,
    disable_test_data: bool,
    tz_name: str = DEFAULT_TIMEZONE,
) -> Dict[str, Any]:
    """
    Payload for one dashboard load.

    Dates are not put in the order search params; the backend adds them
    from date_range.
    """
    return {
        "user_id": user_id,
        "batch_requests": [
            {
                "endpoint": "/orders/search",
                "params": {
                    "seller": meli_user_id,
                    "sort": "date_desc",
                    "limit": config.aggregation.page_size,
                },
            }
        ],
        "date_range": {"begin": window.from_iso, "end": window.to_iso},
        "timezone": tz_name,
        "prev_period": True,
        # The client tier caches; the server should compute fresh data
        "use_cache": False,
        "disable_test_data": disable_test_data,
    }


def build_items_search_payload(user_id: str, meli_user_id: str, offset: int, limit: int) -> Dict[str, Any]:
    """One page of the seller's listing ids."""
    return {
        "user_id": user_id,
        "batch_requests": [
            {
                "endpoint": f"/users/{meli_user_id}/items/search",
                "params": {"limit": limit, "offset": offset},
            }
        ],
        "use_cache": False,
        "prev_period": False,
        "disable_test_data": True,
    }


def build_items_payload(user_id: str, item_ids: List[str]) -> Dict[str, Any]:
    """Listing details, one /items/{id} call per id."""
    if len(item_ids) > MAX_BATCH_REQUESTS:
        raise ValueError(f"At most {MAX_BATCH_REQUESTS} items per batch, got {len(item_ids)}")
    return {
        "user_id": user_id,
        "batch_requests": [{"endpoint": f"/items/{item_id}"} for item_id in item_ids],
        "use_cache": False,
        "prev_period": False,
        "disable_test_data": True,
    }
