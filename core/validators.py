"""
Input validation functions for aggregation requests.

All validators raise ValidationError on invalid input, before any
marketplace call is attempted.
"""

import re
from datetime import datetime
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.config import DEFAULT_TIMEZONE
from core.dates import DateWindow, end_of_day, parse_datetime, start_of_day
from core.exceptions import ValidationError
from core.models import BatchRequest

DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ALLOWED_METHODS = {"GET"}
MAX_BATCH_REQUESTS = 10
MAX_USER_ID_LENGTH = 128


def validate_user_id(value: Any, field: str = "user_id") -> str:
    """
    Validate a dashboard user id.

    Raises:
        ValidationError: If missing, not a string or too long
    """
    if value is None or value == "":
        raise ValidationError(field, "User id is required")

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    value = value.strip()
    if not value:
        raise ValidationError(field, "User id is required")

    if len(value) > MAX_USER_ID_LENGTH:
        raise ValidationError(field, f"Cannot exceed {MAX_USER_ID_LENGTH} characters", len(value))

    return value


def validate_timezone(value: Optional[str], field: str = "timezone") -> str:
    """Validate an IANA timezone name (defaults to the seller timezone)."""
    if not value:
        return DEFAULT_TIMEZONE

    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(field, "Unknown timezone", value)
    return value


def _parse_bound(value: Any, field: str, tz: ZoneInfo, is_end: bool) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "Must be an ISO-8601 date or datetime string", value)

    text = value.strip()
    try:
        if DATE_ONLY_PATTERN.match(text):
            day = datetime.strptime(text, "%Y-%m-%d").date()
            return end_of_day(day, tz) if is_end else start_of_day(day, tz)
        return parse_datetime(text, tz)
    except ValueError:
        raise ValidationError(field, "Invalid date format", value)


def validate_date_window(
    begin: Optional[str],
    end: Optional[str],
    tz_name: str = DEFAULT_TIMEZONE,
    now: Optional[datetime] = None,
) -> DateWindow:
    """
    Validate and normalize a date window.

    Date-only bounds expand to local start/end of day; datetimes keep their
    own offset. Both bounds absent means the last 30 days ending now.

    Args:
        begin: Window start (YYYY-MM-DD or ISO-8601 datetime)
        end: Window end (YYYY-MM-DD or ISO-8601 datetime)
        tz_name: Timezone for date-only and naive values
        now: Reference moment for the default window

    Returns:
        DateWindow with start <= end

    Raises:
        ValidationError: If a bound is missing or malformed, or start > end
    """
    if not begin and not end:
        return DateWindow.last_days(now=now, tz_name=tz_name)

    if not begin or not end:
        raise ValidationError(
            "date_range",
            "Both begin and end are required",
            {"begin": begin, "end": end},
        )

    tz = ZoneInfo(tz_name)
    start = _parse_bound(begin, "date_range.begin", tz, is_end=False)
    finish = _parse_bound(end, "date_range.end", tz, is_end=True)

    if start > finish:
        raise ValidationError(
            "date_range",
            "Begin must be before or equal to end",
            f"{begin} to {end}",
        )

    return DateWindow(start=start, end=finish)


def validate_batch_requests(value: Any, field: str = "batch_requests") -> List[BatchRequest]:
    """
    Validate the client-specified list of marketplace calls.

    Returns:
        List of BatchRequest (empty list when value is None)

    Raises:
        ValidationError: If the list or any entry is malformed
    """
    if value is None:
        return []

    if not isinstance(value, list):
        raise ValidationError(field, "Must be a list", type(value).__name__)

    if len(value) > MAX_BATCH_REQUESTS:
        raise ValidationError(field, f"Cannot exceed {MAX_BATCH_REQUESTS} requests", len(value))

    requests = []
    for index, raw in enumerate(value):
        item_field = f"{field}[{index}]"
        if not isinstance(raw, dict):
            raise ValidationError(item_field, "Must be an object", raw)

        endpoint = raw.get("endpoint")
        if not isinstance(endpoint, str) or not endpoint.startswith("/"):
            raise ValidationError(f"{item_field}.endpoint", "Must be a path starting with '/'", endpoint)

        method = (raw.get("method") or "GET").upper()
        if method not in ALLOWED_METHODS:
            raise ValidationError(f"{item_field}.method", "Only GET is supported", method)

        params = raw.get("params") or {}
        if not isinstance(params, dict):
            raise ValidationError(f"{item_field}.params", "Must be an object", params)

        requests.append(BatchRequest(endpoint=endpoint, method=method, params=params))

    return requests
