"""
Feature registry for the demand forecaster.

This module is the single source of truth for the model-ready feature order.
Every weight artifact (linear coefficients keyed by name, tree
``feature_index`` values) indexes into this order, so changing it invalidates
every stored model.

Groups
------
hour        One-hot hour of day (24).
dow         One-hot day of week, Sunday = 0 (7).
calendar    Weekend / holiday flags.
cyclical    sin/cos month and week-of-year encodings.
weather     Raw hourly weather readings.
condition   One-hot weather bucket.
event       Nearby event counts, attendance, proximity and impact.
lag         Same-hour demand 1 and 7 days earlier.
rolling     7- and 28-day same-hour demand means.
trend       Relative 7-day vs 28-day change.

``is_binary`` marks the one-hot and flag columns that normalization leaves
untouched.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FeatureSpec:
    """Specification for a single model input column.

    Attributes:
        name: Feature name as stored in ``MLModel.feature_names``.
        group: Logical group for filtering and documentation.
        description: What the feature captures.
        is_binary: True for one-hot / flag columns (exempt from z-scoring).
    """

    name: str
    group: str
    description: str
    is_binary: bool = False


# ── Registry ──────────────────────────────────────────────────────────────────
# Order here is the canonical feature order.

FEATURE_REGISTRY: list[FeatureSpec] = [

    # ── Temporal one-hots ──────────────────────────────────────────────────
    *[
        FeatureSpec(f"hour_{h}", "hour", f"1 if the hour slot is {h}.", is_binary=True)
        for h in range(24)
    ],
    *[
        FeatureSpec(f"dow_{d}", "dow", f"1 if the day of week is {d} (Sunday = 0).", is_binary=True)
        for d in range(7)
    ],
    FeatureSpec("is_weekend",  "calendar", "1 on Saturday or Sunday.", is_binary=True),
    FeatureSpec("is_holiday",  "calendar", "1 on a calendar holiday.", is_binary=True),

    # ── Cyclical ───────────────────────────────────────────────────────────
    FeatureSpec("month_sin",   "cyclical", "sin(2π·month/12)."),
    FeatureSpec("month_cos",   "cyclical", "cos(2π·month/12)."),
    FeatureSpec("week_sin",    "cyclical", "sin(2π·week/52)."),
    FeatureSpec("week_cos",    "cyclical", "cos(2π·week/52)."),

    # ── Weather ────────────────────────────────────────────────────────────
    FeatureSpec("temperature",   "weather", "Air temperature, °C."),
    FeatureSpec("feels_like",    "weather", "Apparent temperature, °C."),
    FeatureSpec("humidity",      "weather", "Relative humidity, %."),
    FeatureSpec("precipitation", "weather", "Precipitation in the hour, mm."),
    FeatureSpec("wind_speed",    "weather", "Wind speed, m/s."),
    FeatureSpec("cloud_cover",   "weather", "Cloud cover, %."),

    FeatureSpec("weather_clear",   "condition", "Bucketed condition is clear.",   is_binary=True),
    FeatureSpec("weather_cloudy",  "condition", "Bucketed condition is cloudy.",  is_binary=True),
    FeatureSpec("weather_rain",    "condition", "Bucketed condition is rain.",    is_binary=True),
    FeatureSpec("weather_snow",    "condition", "Bucketed condition is snow.",    is_binary=True),
    FeatureSpec("weather_extreme", "condition", "Bucketed condition is extreme.", is_binary=True),

    # ── Events ─────────────────────────────────────────────────────────────
    FeatureSpec("event_count",            "event", "Events affecting this hour within the radius."),
    FeatureSpec("total_attendance_log",   "event", "log1p of summed expected attendance."),
    FeatureSpec("nearest_event_dist_inv", "event", "1/(1+miles) to the nearest event; 0 if none."),
    FeatureSpec("event_impact_score",     "event", "Max per-event impact score in [0, 1]."),

    # ── Demand history ─────────────────────────────────────────────────────
    FeatureSpec("lag_dine_in_1d",   "lag",     "Same-hour dine-in orders one day earlier."),
    FeatureSpec("lag_dine_in_7d",   "lag",     "Same-hour dine-in orders seven days earlier."),
    FeatureSpec("lag_delivery_1d",  "lag",     "Same-hour delivery orders one day earlier."),
    FeatureSpec("lag_delivery_7d",  "lag",     "Same-hour delivery orders seven days earlier."),
    FeatureSpec("avg_dine_in_7d",   "rolling", "Mean same-hour dine-in over the prior 7 days."),
    FeatureSpec("avg_delivery_7d",  "rolling", "Mean same-hour delivery over the prior 7 days."),
    FeatureSpec("avg_dine_in_28d",  "rolling", "Mean same-hour dine-in over the prior 28 days."),
    FeatureSpec("avg_delivery_28d", "rolling", "Mean same-hour delivery over the prior 28 days."),
    FeatureSpec("dine_in_trend",    "trend",   "(avg7 - avg28) / avg28 for dine-in."),
    FeatureSpec("delivery_trend",   "trend",   "(avg7 - avg28) / avg28 for delivery."),
]

# ── Registry helpers ───────────────────────────────────────────────────────────

FEATURE_NAMES: tuple[str, ...] = tuple(f.name for f in FEATURE_REGISTRY)
BINARY_FEATURES: frozenset[str] = frozenset(f.name for f in FEATURE_REGISTRY if f.is_binary)
_INDEX: dict[str, int] = {name: i for i, name in enumerate(FEATURE_NAMES)}


def feature_names(group: str | None = None) -> list[str]:
    """Return feature names in canonical order, optionally filtered to a group."""
    if group is None:
        return list(FEATURE_NAMES)
    return [f.name for f in FEATURE_REGISTRY if f.group == group]


def continuous_feature_names() -> list[str]:
    """Names that normalization rescales (everything not binary)."""
    return [f.name for f in FEATURE_REGISTRY if not f.is_binary]


def feature_index(name: str) -> int:
    """Position of ``name`` in the canonical order.

    Raises:
        KeyError: If ``name`` is not a registered feature.
    """
    return _INDEX[name]


def is_binary_feature(name: str) -> bool:
    return name in BINARY_FEATURES
