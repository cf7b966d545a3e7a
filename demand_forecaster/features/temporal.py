"""
Calendar features: day of week, week/month of year, weekend and holiday flags.

Day of week uses the Sunday = 0 convention throughout (``dow_0`` is Sunday).

Holiday calendar
----------------
A small rule-based US calendar rather than a holiday library:

  fixed dates     Jan 1, Jul 4, Dec 25, Dec 31
  Thanksgiving    Thursday in Nov 22–28 (4th Thursday)
  Memorial Day    Monday on or after May 25 (last Monday)
  Labor Day       Monday in Sep 1–7 (first Monday)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from demand_forecaster.utils.time_utils import week_of_year

_FIXED_HOLIDAYS: dict[tuple[int, int], str] = {
    (1, 1): "New Year's Day",
    (7, 4): "Independence Day",
    (12, 25): "Christmas",
    (12, 31): "New Year's Eve",
}

_THURSDAY = 4
_MONDAY = 1


@dataclass(frozen=True)
class TemporalFeatures:
    """Calendar fields shared by every hour of one date."""

    day_of_week: int
    week_of_year: int
    month_of_year: int
    is_weekend: bool
    is_holiday: bool
    holiday_name: Optional[str]


def day_of_week(d: date) -> int:
    """Sunday = 0 … Saturday = 6."""
    return (d.weekday() + 1) % 7


def holiday_name(d: date) -> Optional[str]:
    """Return the holiday's name if ``d`` is one, else ``None``."""
    fixed = _FIXED_HOLIDAYS.get((d.month, d.day))
    if fixed:
        return fixed

    dow = day_of_week(d)
    if d.month == 11 and dow == _THURSDAY and 22 <= d.day <= 28:
        return "Thanksgiving"
    if d.month == 5 and dow == _MONDAY and d.day >= 25:
        return "Memorial Day"
    if d.month == 9 and dow == _MONDAY and d.day <= 7:
        return "Labor Day"
    return None


def temporal_features(d: date) -> TemporalFeatures:
    """Compute the calendar block for ``d``."""
    dow = day_of_week(d)
    name = holiday_name(d)
    return TemporalFeatures(
        day_of_week=dow,
        week_of_year=week_of_year(d),
        month_of_year=d.month,
        is_weekend=dow in (0, 6),
        is_holiday=name is not None,
        holiday_name=name,
    )
