"""
Time helpers.

Datetimes are stored as naive UTC; the configured display timezone is only
applied when rendering values for people.
"""
from datetime import datetime, timezone
from typing import Optional

import pytz

from ..core.config import settings


def get_display_timezone():
    return pytz.timezone(settings.default_timezone)


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored column values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def format_display_time(dt: datetime, format_str: Optional[str] = None) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(get_display_timezone()).strftime(format_str or settings.timezone_display_format)


def get_timezone_info() -> dict:
    now = datetime.now(get_display_timezone())
    return {
        "timezone": settings.default_timezone,
        "offset": now.strftime("%z"),
        "current_time": format_display_time(now),
    }
