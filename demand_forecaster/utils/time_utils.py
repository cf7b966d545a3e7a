"""
Date and time helpers shared by feature extraction, the registry and jobs.

All persisted timestamps are timezone-aware UTC and serialized as ISO-8601
strings; dates are ``YYYY-MM-DD``.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def week_of_year(d: date) -> int:
    """Return ``ceil(days since Jan 1 / 7)``.

    Jan 1 itself is week 0; Jan 2..Jan 8 are week 1, and so on up to 53.
    """
    delta_days = (d - date(d.year, 1, 1)).days
    return math.ceil(delta_days / 7)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp stored in SQLite, assuming UTC when naive."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage, normalising to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()
