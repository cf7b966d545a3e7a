"""
Per-hour local event features.

How it works
------------
1.  Ask the ``EventProvider`` for events overlapping the target date within
    ``radius_miles`` of the restaurant.
2.  Re-check each event's Haversine distance (providers may over-return).
3.  Each event affects hours ``start_hour - 2`` through ``end_hour + 1``,
    clamped to 0..23. Events that began on an earlier day start at hour 0;
    events that run past midnight end at hour 23.
4.  Per affected hour accumulate: event count, summed attendance, nearest
    distance and the maximum per-event impact score.

Impact score
------------
``multiplier(category) * log10(max(100, attendance)) / 5
  * max(0, 1 - dist/20) * rank / 5``, capped at 1. Missing attendance counts
as 1000 and missing rank as 3.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Optional

from demand_forecaster.models.event import EventCategory, LocalEvent

if TYPE_CHECKING:
    from demand_forecaster.ingestion.event_aggregator import EventProvider

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959.0

CATEGORY_MULTIPLIERS: dict[EventCategory, float] = {
    EventCategory.SPORTS: 0.8,
    EventCategory.CONCERT: 0.7,
    EventCategory.FESTIVAL: 0.9,
    EventCategory.CONFERENCE: 0.5,
    EventCategory.HOLIDAY: 0.6,
    EventCategory.OTHER: 0.4,
}

DEFAULT_ATTENDANCE = 1000
DEFAULT_RANK = 3
HOURS_BEFORE = 2
HOURS_AFTER = 1


@dataclass
class HourEvents:
    """Event aggregates for one hour (mutable while accumulating)."""

    event_count: int = 0
    total_attendance: int = 0
    nearest_event_dist: Optional[float] = None
    event_impact_score: float = 0.0


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in miles."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def calculate_event_impact(
    category: EventCategory | str,
    attendance: Optional[int],
    distance_miles: float,
    rank: Optional[int],
) -> float:
    """Impact score in [0, 1] for one event at a given distance."""
    try:
        multiplier = CATEGORY_MULTIPLIERS[EventCategory(category)]
    except ValueError:
        multiplier = CATEGORY_MULTIPLIERS[EventCategory.OTHER]

    attendance_factor = math.log10(max(100, attendance or DEFAULT_ATTENDANCE)) / 5
    distance_decay = max(0.0, 1 - distance_miles / 20)
    rank_factor = (rank or DEFAULT_RANK) / 5
    return min(1.0, multiplier * attendance_factor * distance_decay * rank_factor)


def day_bounds(target_date: date) -> tuple[datetime, datetime]:
    """UTC ``[00:00:00, 23:59:59]`` of ``target_date``."""
    start = datetime.combine(target_date, time(0, 0), tzinfo=timezone.utc)
    return start, start + timedelta(hours=23, minutes=59, seconds=59)


def _affected_hours(event: LocalEvent, day_start: datetime, day_end: datetime) -> range:
    start = event.start_time.astimezone(timezone.utc)
    end = event.end_time.astimezone(timezone.utc)
    first = 0 if start < day_start else max(0, start.hour - HOURS_BEFORE)
    last = 23 if end > day_end else min(23, end.hour + HOURS_AFTER)
    return range(first, last + 1)


def aggregate_event_hours(
    events: list[LocalEvent],
    lat: float,
    lon: float,
    target_date: date,
    radius_miles: float,
) -> dict[int, HourEvents]:
    """Fold a list of events into per-hour aggregates (keys 0–23)."""
    result = {h: HourEvents() for h in range(24)}
    day_start, day_end = day_bounds(target_date)

    for event in events:
        if event.end_time < day_start or event.start_time > day_end:
            continue
        dist = haversine_miles(lat, lon, event.lat, event.lon)
        if dist > radius_miles:
            continue

        impact = calculate_event_impact(
            event.category, event.expected_attendance, dist, event.rank
        )
        for h in _affected_hours(event, day_start, day_end):
            bucket = result[h]
            bucket.event_count += 1
            bucket.total_attendance += event.expected_attendance or 0
            if bucket.nearest_event_dist is None or dist < bucket.nearest_event_dist:
                bucket.nearest_event_dist = dist
            bucket.event_impact_score = max(bucket.event_impact_score, impact)

    return result


def event_features_by_hour(
    provider: "EventProvider | None",
    lat: float,
    lon: float,
    target_date: date,
    radius_miles: float,
) -> dict[int, HourEvents]:
    """Fetch nearby events and aggregate them per hour.

    A provider failure is logged at WARNING and yields empty aggregates.
    """
    events: list[LocalEvent] = []
    if provider is not None:
        day_start, day_end = day_bounds(target_date)
        try:
            events = provider.get_local_events(lat, lon, radius_miles, day_start, day_end)
        except Exception as exc:
            logger.warning("Event fetch failed for (%.4f, %.4f): %s", lat, lon, exc)
    return aggregate_event_hours(events, lat, lon, target_date, radius_miles)
