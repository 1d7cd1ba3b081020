"""Tenant-local calendar arithmetic.

Threshold matching compares calendar dates, so every "N days ago" is computed
on the civil calendar of the tenant's zone rather than as N * 24h in UTC.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_FIXED_OFFSET = re.compile(r"^(?:UTC|GMT)\s*([+-])\s*(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_fixed_offset(zone_name: str) -> timezone | None:
    match = _FIXED_OFFSET.match(zone_name)
    if match is None:
        return None
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes or 0))
    if delta > timedelta(hours=14):
        return None
    if sign == "-":
        delta = -delta
    return timezone(delta, name=zone_name.upper())


def _lookup_zone(zone_name: str) -> tzinfo | None:
    if zone_name.upper() in {"UTC", "Z", "GMT"}:
        return timezone.utc
    fixed = _parse_fixed_offset(zone_name)
    if fixed is not None:
        return fixed
    try:
        return ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        # Directory-like names such as "America" raise IsADirectoryError.
        return None


def resolve_timezone(zone_name: str | None, *, default: str = "UTC") -> tzinfo:
    """Resolve a tenant zone name, falling back to ``default`` and then UTC.

    Accepts IANA names (``America/New_York``) and fixed offsets
    (``UTC-5``, ``UTC+05:30``). Never raises.
    """
    normalized = (zone_name or "").strip()
    if normalized:
        zone = _lookup_zone(normalized)
        if zone is not None:
            return zone
        logger.warning("unknown timezone %r, falling back to %s", normalized, default)

    fallback = _lookup_zone(default.strip()) if default.strip() else None
    if fallback is None:
        logger.warning("default timezone %r is invalid, using UTC", default)
        return timezone.utc
    return fallback


def local_date(instant: datetime, zone: tzinfo) -> date:
    return _coerce_utc(instant).astimezone(zone).date()


def local_date_days_ago(instant: datetime, days: int, zone: tzinfo) -> date:
    return local_date(instant, zone) - timedelta(days=days)


def local_days_between(earlier: date, instant: datetime, zone: tzinfo) -> int:
    """Whole local calendar days from ``earlier`` to the local date of ``instant``."""
    return (local_date(instant, zone) - earlier).days
