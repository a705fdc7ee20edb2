"""Time zone helpers.

Calendar entries are keyed by calendar day in the athlete's time zone. These
helpers turn the various shapes a stored setup date may take into that day.
"""

import re
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

_DAY_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def get_zone(time_zone: str | None) -> ZoneInfo:
    """Get a ZoneInfo for an IANA zone name.

    Args:
        time_zone: IANA zone name (e.g. "Europe/London")

    Returns:
        ZoneInfo for the zone, UTC if the name is empty or unknown
    """
    name = (time_zone or "").strip() or "UTC"
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def is_day_key(value: object) -> bool:
    """Return True if value is a YYYY-MM-DD string."""
    return isinstance(value, str) and bool(_DAY_KEY_RE.match(value.strip()))


def to_local_day(value: date | datetime | str, time_zone: str | None) -> date:
    """Resolve a stored date value to a calendar day in the given time zone.

    Day keys and plain dates are already calendar days and are returned as-is.
    Timestamps are instants: naive ones are taken as UTC, then converted to the
    local day in ``time_zone``.

    Args:
        value: Date, datetime, day key, or ISO-8601 timestamp string
        time_zone: IANA zone name of the athlete

    Returns:
        Calendar day

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, date):
        return value
    elif isinstance(value, str):
        raw = value.strip()
        if is_day_key(raw):
            return date.fromisoformat(raw)
        instant = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported date value: {value!r}")

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(get_zone(time_zone)).date()
