"""
Client-tier cache key derivation.
"""
from typing import Optional

from core.cache import build_cache_key


def client_cache_key(
    user_id: str,
    date_filter: str,
    from_iso: Optional[str],
    to_iso: Optional[str],
    disable_test_data: bool,
) -> str:
    """Key from (user, filter, range, test-data flag)."""
    return build_cache_key("dashboard", user_id, date_filter, from_iso, to_iso, disable_test_data)
