"""
Same-hour lag, rolling-mean and trend features from observed demand.

Purpose
-------
Given the ``DemandActual`` rows of the ``window_days`` (default 28) days
before a target date, compute for each hour of the day:

  lag_*_1d      value at the same hour one day earlier
  lag_*_7d      value at the same hour seven days earlier
  avg_*_7d      mean over dates in ``[d - 7, d)``
  avg_*_28d     mean over dates in ``[d - 28, d)``
  *_trend       ``(avg7 - avg28) / avg28``

Missing data handling
---------------------
Fields stay ``None`` when there is no history for them; ``build_feature_vector``
substitutes the defaults (dine-in 30, delivery 15, trend 0). Trend is ``None``
when either mean is missing or ``avg28 == 0``.

Leakage notes
-------------
Only rows strictly before the target date are used, so a snapshot built for
date ``d`` never sees demand from ``d`` itself.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from demand_forecaster.models.snapshot import DemandActual


@dataclass(frozen=True)
class HourLags:
    """History-derived fields for one hour slot."""

    lag_dine_in_1d: Optional[float] = None
    lag_dine_in_7d: Optional[float] = None
    lag_delivery_1d: Optional[float] = None
    lag_delivery_7d: Optional[float] = None
    avg_dine_in_7d: Optional[float] = None
    avg_delivery_7d: Optional[float] = None
    avg_dine_in_28d: Optional[float] = None
    avg_delivery_28d: Optional[float] = None
    dine_in_trend: Optional[float] = None
    delivery_trend: Optional[float] = None


def compute_lag_features(
    actuals: list[DemandActual],
    target_date: date,
    window_days: int = 28,
) -> dict[int, HourLags]:
    """Compute ``HourLags`` for each of the 24 hours of ``target_date``.

    Args:
        actuals: Demand rows for one restaurant. Rows outside
            ``[target_date - window_days, target_date)`` are ignored.
        target_date: Date being featurized.
        window_days: Long rolling window length.

    Returns:
        Dict keyed 0–23. Hours with no history hold an all-``None`` ``HourLags``.
    """
    window_start = target_date - timedelta(days=window_days)
    week_start = target_date - timedelta(days=7)
    yesterday = target_date - timedelta(days=1)

    by_hour: dict[int, dict[date, DemandActual]] = defaultdict(dict)
    for row in actuals:
        if window_start <= row.date < target_date:
            by_hour[row.hour_slot][row.date] = row

    result: dict[int, HourLags] = {}
    for h in range(24):
        lookup = by_hour.get(h)
        if not lookup:
            result[h] = HourLags()
            continue

        day_1 = lookup.get(yesterday)
        day_7 = lookup.get(week_start)
        last_week = [r for d, r in lookup.items() if d >= week_start]
        last_window = list(lookup.values())

        avg_dine_7 = _mean([r.actual_dine_in for r in last_week])
        avg_deliv_7 = _mean([r.actual_delivery for r in last_week])
        avg_dine_28 = _mean([r.actual_dine_in for r in last_window])
        avg_deliv_28 = _mean([r.actual_delivery for r in last_window])

        result[h] = HourLags(
            lag_dine_in_1d=day_1.actual_dine_in if day_1 else None,
            lag_dine_in_7d=day_7.actual_dine_in if day_7 else None,
            lag_delivery_1d=day_1.actual_delivery if day_1 else None,
            lag_delivery_7d=day_7.actual_delivery if day_7 else None,
            avg_dine_in_7d=avg_dine_7,
            avg_delivery_7d=avg_deliv_7,
            avg_dine_in_28d=avg_dine_28,
            avg_delivery_28d=avg_deliv_28,
            dine_in_trend=_trend(avg_dine_7, avg_dine_28),
            delivery_trend=_trend(avg_deliv_7, avg_deliv_28),
        )
    return result


# ── Internal helpers ───────────────────────────────────────────────────────────


def _mean(values: list[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _trend(short: Optional[float], long: Optional[float]) -> Optional[float]:
    if short is None or long is None or long <= 0:
        return None
    return (short - long) / long
