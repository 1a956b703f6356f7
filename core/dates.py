"""
Date window and period preset utilities.

Shared between the backend (order filtering, marketplace date params) and
the dashboard client (preset resolution, cache keys).
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Dict, Optional, Union
from zoneinfo import ZoneInfo

from core.config import DEFAULT_TIMEZONE

DEFAULT_WINDOW_DAYS = 30

# Presets understood by the dashboard date selector
PRESET_FILTERS = ("today", "yesterday", "7d", "30d", "custom")

_ONE_MS = timedelta(milliseconds=1)


def format_iso(value: datetime) -> str:
    """ISO-8601 with milliseconds and explicit offset, e.g. 2024-05-01T00:00:00.000-03:00."""
    return value.isoformat(timespec="milliseconds")


def parse_datetime(value: Union[str, datetime], tz: Optional[ZoneInfo] = None) -> datetime:
    """
    Parse an ISO-8601 string (or pass a datetime through) into an aware datetime.

    Naive values are interpreted in tz (UTC when tz is None). A trailing
    'Z' is accepted.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or timezone.utc)
    return parsed


def start_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time(23, 59, 59, 999000), tzinfo=tz)


@dataclass(frozen=True)
class DateWindow:
    """
    Closed time window [start, end] with timezone-aware bounds.

    start <= end is enforced by core.validators.validate_date_window; the
    constructors here build valid windows only.
    """
    start: datetime
    end: datetime

    @property
    def from_iso(self) -> str:
        return format_iso(self.start)

    @property
    def to_iso(self) -> str:
        return format_iso(self.end)

    @property
    def tz(self) -> tzinfo:
        return self.start.tzinfo

    def contains(self, moment: datetime) -> bool:
        """Inclusive on both ends."""
        return self.start <= moment <= self.end

    def previous(self) -> "DateWindow":
        """Equivalent span ending one millisecond before this window starts."""
        span = self.end - self.start
        prev_end = self.start - _ONE_MS
        return DateWindow(start=prev_end - span, end=prev_end)

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.from_iso, "to": self.to_iso}

    @classmethod
    def last_days(
        cls,
        days: int = DEFAULT_WINDOW_DAYS,
        now: Optional[datetime] = None,
        tz_name: str = DEFAULT_TIMEZONE,
    ) -> "DateWindow":
        """Window covering the last N days ending now."""
        tz = ZoneInfo(tz_name)
        now = (now or datetime.now(tz)).astimezone(tz)
        return cls(start=now - timedelta(days=days), end=now)


def resolve_preset(
    date_filter: str,
    now: Optional[datetime] = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> DateWindow:
    """
    Resolve a dashboard preset into a window in the seller's timezone.

    Args:
        date_filter: today, yesterday, 7d or 30d
        now: Reference moment (default: now)
        tz_name: IANA timezone name

    Returns:
        DateWindow with local start-of-day / end-of-day bounds

    Raises:
        ValueError: For 'custom' (needs explicit bounds) or unknown presets
    """
    tz = ZoneInfo(tz_name)
    today = (now or datetime.now(tz)).astimezone(tz).date()

    if date_filter == "today":
        return DateWindow(start_of_day(today, tz), end_of_day(today, tz))
    if date_filter == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateWindow(start_of_day(yesterday, tz), end_of_day(yesterday, tz))
    if date_filter == "7d":
        return DateWindow(start_of_day(today - timedelta(days=7), tz), end_of_day(today, tz))
    if date_filter == "30d":
        return DateWindow(start_of_day(today - timedelta(days=30), tz), end_of_day(today, tz))

    raise ValueError(f"Preset {date_filter!r} cannot be resolved without explicit bounds")


def month_key(moment: datetime, tz: tzinfo) -> str:
    """Calendar month bucket (YYYY-MM) of a moment in the given timezone."""
    return moment.astimezone(tz).strftime("%Y-%m")
