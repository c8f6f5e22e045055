from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import dateparser

from .errors import InvalidTimeFormat, InvalidTimezone

# Exact formats are tried before falling back to natural-language parsing.
STRICT_FORMATS = (
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y/%m/%d %H:%M",
)


def resolve_zone(name: str) -> ZoneInfo:
    if not name or not name.strip():
        raise InvalidTimezone("No timezone given.")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidTimezone(f"Unknown timezone `{name}`.") from None


def parse_local_time(when_local: str, zone_name: str, now: Optional[datetime] = None) -> datetime:
    """
    Interpret a user-entered local date/time in ``zone_name`` and return the
    absolute instant in UTC.
    """
    zone = resolve_zone(zone_name)
    text = (when_local or "").strip()
    if not text:
        raise InvalidTimeFormat("No time given.")

    for fmt in STRICT_FORMATS:
        try:
            naive = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return naive.replace(tzinfo=zone).astimezone(timezone.utc)

    now = now or datetime.now(timezone.utc)
    settings = {
        "TIMEZONE": zone.key,
        "RETURN_AS_TIMEZONE_AWARE": True,
        "PREFER_DATES_FROM": "future",
        "RELATIVE_BASE": now.astimezone(zone).replace(tzinfo=None),
    }
    dt = dateparser.parse(text, settings=settings)
    if dt is None:
        raise InvalidTimeFormat(f"Couldn't understand the time `{text}`.")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=zone)
    return dt.astimezone(timezone.utc)


def format_local(dt_utc: datetime, zone_name: str) -> str:
    local = dt_utc.astimezone(resolve_zone(zone_name))
    return local.strftime("%Y-%m-%d %H:%M %Z")
