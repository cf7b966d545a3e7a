"""
Feature vector construction, normalization and the ``FeatureEngineer`` service.

Pipeline for one (restaurant, date)
-----------------------------------
1.  ``temporal_features``         calendar block shared by all 24 hours.
2.  ``weather_features_by_hour``  provider forecast, defaults for gaps.
3.  ``event_features_by_hour``    provider events within the radius.
4.  ``compute_lag_features``      same-hour history from ``demand_actuals``.
5.  Merge into one ``FeatureSnapshot`` per hour (raw, persisted as-is).
6.  ``build_feature_vector``      snapshot → 62 floats in registry order.
7.  ``normalize_features``        z-score every non-binary position.

Training rebuilds step 6 from stored snapshots, so a model is always trained
on exactly the raw values that were captured at collection time.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, ConfigDict

from demand_forecaster.config import FeatureConfig
from demand_forecaster.db.repositories.restaurant_repo import RestaurantRepository
from demand_forecaster.db.repositories.snapshot_repo import SnapshotRepository
from demand_forecaster.errors import RestaurantNotFoundError
from demand_forecaster.features.events import event_features_by_hour
from demand_forecaster.features.lag_rolling import compute_lag_features
from demand_forecaster.features.registry import (
    BINARY_FEATURES,
    FEATURE_NAMES,
    continuous_feature_names,
)
from demand_forecaster.features.temporal import temporal_features
from demand_forecaster.features.weather import DEFAULT_HOUR_WEATHER, weather_features_by_hour
from demand_forecaster.models.snapshot import DemandActual, FeatureSnapshot
from demand_forecaster.models.weather import WeatherCondition

if TYPE_CHECKING:
    from demand_forecaster.ingestion.event_aggregator import EventProvider
    from demand_forecaster.ingestion.weather_client import WeatherProvider
    from demand_forecaster.registry.cache import ExternalCache

logger = logging.getLogger(__name__)

SCALING_CACHE_PREFIX = "ml:scaling:"

# Substituted when a snapshot field is missing.
_DEFAULT_DINE_IN = 30.0
_DEFAULT_DELIVERY = 15.0

_CONDITION_ORDER = (
    WeatherCondition.CLEAR,
    WeatherCondition.CLOUDY,
    WeatherCondition.RAIN,
    WeatherCondition.SNOW,
    WeatherCondition.EXTREME,
)


# ── Scaling parameters ────────────────────────────────────────────────────────


class ScalingParams(BaseModel):
    """Per-feature z-score statistics keyed by feature name.

    ``min`` / ``max`` are informational; only ``mean`` and ``std`` are used
    by ``normalize_features``.
    """

    model_config = ConfigDict(frozen=True)

    mean: dict[str, float] = {}
    std: dict[str, float] = {}
    min: dict[str, float] = {}
    max: dict[str, float] = {}


DEFAULT_SCALING = ScalingParams(
    mean={
        "temperature": 18,
        "feels_like": 17,
        "humidity": 60,
        "precipitation": 2,
        "wind_speed": 5,
        "cloud_cover": 50,
        "total_attendance_log": 4,
        "nearest_event_dist_inv": 0.1,
        "event_impact_score": 0.2,
        "lag_dine_in_1d": 30,
        "lag_dine_in_7d": 30,
        "lag_delivery_1d": 15,
        "lag_delivery_7d": 15,
        "avg_dine_in_7d": 30,
        "avg_delivery_7d": 15,
        "avg_dine_in_28d": 30,
        "avg_delivery_28d": 15,
        "dine_in_trend": 0,
        "delivery_trend": 0,
    },
    std={
        "temperature": 10,
        "feels_like": 10,
        "humidity": 20,
        "precipitation": 5,
        "wind_speed": 3,
        "cloud_cover": 30,
        "total_attendance_log": 2,
        "nearest_event_dist_inv": 0.2,
        "event_impact_score": 0.3,
        "lag_dine_in_1d": 20,
        "lag_dine_in_7d": 20,
        "lag_delivery_1d": 10,
        "lag_delivery_7d": 10,
        "avg_dine_in_7d": 15,
        "avg_delivery_7d": 8,
        "avg_dine_in_28d": 12,
        "avg_delivery_28d": 6,
        "dine_in_trend": 0.3,
        "delivery_trend": 0.3,
    },
)


# ── Feature vectors ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FeatureMetadata:
    """Provenance of a feature vector."""

    restaurant_id: str
    date: date
    hour_slot: int
    raw_snapshot: Optional[FeatureSnapshot] = None


@dataclass(frozen=True)
class FeatureVector:
    """Model-ready input: ``features[i]`` is the value of ``feature_names[i]``."""

    features: list[float]
    feature_names: list[str]
    metadata: FeatureMetadata
    normalized: bool = field(default=False)


def build_feature_vector(snapshot: FeatureSnapshot) -> FeatureVector:
    """Encode a raw snapshot as 62 floats in canonical order.

    Missing weather fields fall back to ``DEFAULT_HOUR_WEATHER`` (the same
    values used for hours the provider did not return); missing history falls
    back to dine-in 30, delivery 15, trend 0.
    """
    s = snapshot
    values: list[float] = []

    values.extend(1.0 if s.hour_slot == h else 0.0 for h in range(24))
    values.extend(1.0 if s.day_of_week == d else 0.0 for d in range(7))
    values.append(1.0 if s.is_weekend else 0.0)
    values.append(1.0 if s.is_holiday else 0.0)

    values.append(math.sin(2 * math.pi * s.month_of_year / 12))
    values.append(math.cos(2 * math.pi * s.month_of_year / 12))
    values.append(math.sin(2 * math.pi * s.week_of_year / 52))
    values.append(math.cos(2 * math.pi * s.week_of_year / 52))

    w = DEFAULT_HOUR_WEATHER
    values.append(_or(s.temperature, w.temperature))
    values.append(_or(s.feels_like, w.feels_like))
    values.append(_or(s.humidity, w.humidity))
    values.append(_or(s.precipitation, w.precipitation))
    values.append(_or(s.wind_speed, w.wind_speed))
    values.append(_or(s.cloud_cover, w.cloud_cover))

    condition = s.weather_condition or w.weather_condition
    values.extend(1.0 if condition == c else 0.0 for c in _CONDITION_ORDER)

    values.append(float(s.event_count))
    values.append(math.log1p(s.total_attendance))
    values.append(
        1.0 / (1.0 + s.nearest_event_dist) if s.nearest_event_dist is not None else 0.0
    )
    values.append(s.event_impact_score)

    values.append(_or(s.lag_dine_in_1d, _DEFAULT_DINE_IN))
    values.append(_or(s.lag_dine_in_7d, _DEFAULT_DINE_IN))
    values.append(_or(s.lag_delivery_1d, _DEFAULT_DELIVERY))
    values.append(_or(s.lag_delivery_7d, _DEFAULT_DELIVERY))
    values.append(_or(s.avg_dine_in_7d, _DEFAULT_DINE_IN))
    values.append(_or(s.avg_delivery_7d, _DEFAULT_DELIVERY))
    values.append(_or(s.avg_dine_in_28d, _DEFAULT_DINE_IN))
    values.append(_or(s.avg_delivery_28d, _DEFAULT_DELIVERY))
    values.append(_or(s.dine_in_trend, 0.0))
    values.append(_or(s.delivery_trend, 0.0))

    assert len(values) == len(FEATURE_NAMES)
    return FeatureVector(
        features=values,
        feature_names=list(FEATURE_NAMES),
        metadata=FeatureMetadata(
            restaurant_id=s.restaurant_id,
            date=s.date,
            hour_slot=s.hour_slot,
            raw_snapshot=s,
        ),
    )


def normalize_features(
    fv: FeatureVector,
    scaling: Optional[ScalingParams] = None,
) -> FeatureVector:
    """Z-score every non-binary feature; returns a new vector.

    Names absent from ``scaling`` use mean 0 / std 1, and a stored std of 0
    is treated as 1. One-hot and flag positions are copied unchanged.
    """
    params = scaling or DEFAULT_SCALING
    out = list(fv.features)
    for i, name in enumerate(fv.feature_names):
        if name in BINARY_FEATURES:
            continue
        mean = params.mean.get(name, 0.0)
        std = params.std.get(name, 1.0) or 1.0
        out[i] = (out[i] - mean) / std
    return replace(fv, features=out, normalized=True)


def learn_scaling_from_snapshots(snapshots: list[FeatureSnapshot]) -> ScalingParams:
    """Population mean/std/min/max of each continuous feature."""
    names = continuous_feature_names()
    positions = [FEATURE_NAMES.index(n) for n in names]
    columns: list[list[float]] = [[] for _ in names]
    for snap in snapshots:
        vec = build_feature_vector(snap).features
        for col, pos in zip(columns, positions):
            col.append(vec[pos])

    mean: dict[str, float] = {}
    std: dict[str, float] = {}
    lo: dict[str, float] = {}
    hi: dict[str, float] = {}
    for name, col in zip(names, columns):
        if not col:
            continue
        mu = sum(col) / len(col)
        sigma = math.sqrt(max(0.0, sum((v - mu) ** 2 for v in col) / len(col)))
        mean[name] = mu
        std[name] = sigma if sigma > 0 else 1.0
        lo[name] = min(col)
        hi[name] = max(col)
    return ScalingParams(mean=mean, std=std, min=lo, max=hi)


def _or(value: Optional[float], default: float) -> float:
    return float(value) if value is not None else default


# ── Service ───────────────────────────────────────────────────────────────────


class FeatureEngineer:
    """Extracts, stores and scales features for restaurants.

    Args:
        conn: Open SQLite connection (restaurants, snapshots, actuals).
        config: Feature section of ``AppConfig``.
        weather_provider: Forecast source; ``None`` uses defaults for every hour.
        event_provider: Local event source; ``None`` means no events.
        cache: External cache for learned scaling params (optional).
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[FeatureConfig] = None,
        weather_provider: "WeatherProvider | None" = None,
        event_provider: "EventProvider | None" = None,
        cache: "ExternalCache | None" = None,
    ) -> None:
        self.config = config or FeatureConfig()
        self.weather_provider = weather_provider
        self.event_provider = event_provider
        self.cache = cache
        self._restaurants = RestaurantRepository(conn)
        self._snapshots = SnapshotRepository(conn)
        self._scaling: dict[str, ScalingParams] = {}

    def get_feature_names(self) -> list[str]:
        return list(FEATURE_NAMES)

    # ── Extraction ────────────────────────────────────────────────────────────

    def extract_features(
        self,
        restaurant_id: str,
        target_date: date,
        hour_slot: Optional[int] = None,
    ) -> list[FeatureVector]:
        """Build raw (unnormalized) vectors for one date.

        Args:
            restaurant_id: Restaurant to featurize.
            target_date: Date to featurize.
            hour_slot: Single hour (0–23); ``None`` returns all 24.

        Returns:
            One ``FeatureVector`` per requested hour, each carrying its raw
            snapshot in ``metadata.raw_snapshot``.

        Raises:
            RestaurantNotFoundError: If the restaurant id is unknown.
            ValueError: If ``hour_slot`` is outside 0–23.
        """
        if hour_slot is not None and not 0 <= hour_slot <= 23:
            raise ValueError(f"hour_slot must be in [0, 23], got {hour_slot}.")

        restaurant = self._restaurants.get_by_id(restaurant_id)
        if restaurant is None:
            raise RestaurantNotFoundError(restaurant_id)

        hours = [hour_slot] if hour_slot is not None else list(range(24))
        calendar = temporal_features(target_date)
        weather = weather_features_by_hour(
            self.weather_provider, restaurant.lat, restaurant.lon, target_date
        )
        events = event_features_by_hour(
            self.event_provider,
            restaurant.lat,
            restaurant.lon,
            target_date,
            self.config.event_radius_miles,
        )
        window = self.config.lag_window_days
        history = self._snapshots.get_actuals_between(
            restaurant_id, target_date - timedelta(days=window), target_date
        )
        lags = compute_lag_features(history, target_date, window)

        vectors: list[FeatureVector] = []
        for h in hours:
            w, e, lag = weather[h], events[h], lags[h]
            snapshot = FeatureSnapshot(
                restaurant_id=restaurant_id,
                date=target_date,
                hour_slot=h,
                day_of_week=calendar.day_of_week,
                week_of_year=calendar.week_of_year,
                month_of_year=calendar.month_of_year,
                is_weekend=calendar.is_weekend,
                is_holiday=calendar.is_holiday,
                holiday_name=calendar.holiday_name,
                temperature=w.temperature,
                feels_like=w.feels_like,
                humidity=w.humidity,
                precipitation=w.precipitation,
                wind_speed=w.wind_speed,
                cloud_cover=w.cloud_cover,
                weather_condition=w.weather_condition,
                event_count=e.event_count,
                total_attendance=e.total_attendance,
                nearest_event_dist=e.nearest_event_dist,
                event_impact_score=e.event_impact_score,
                lag_dine_in_1d=lag.lag_dine_in_1d,
                lag_dine_in_7d=lag.lag_dine_in_7d,
                lag_delivery_1d=lag.lag_delivery_1d,
                lag_delivery_7d=lag.lag_delivery_7d,
                avg_dine_in_7d=lag.avg_dine_in_7d,
                avg_delivery_7d=lag.avg_delivery_7d,
                avg_dine_in_28d=lag.avg_dine_in_28d,
                avg_delivery_28d=lag.avg_delivery_28d,
                dine_in_trend=lag.dine_in_trend,
                delivery_trend=lag.delivery_trend,
            )
            vectors.append(build_feature_vector(snapshot))

        logger.debug(
            "Extracted %d feature vector(s) for %s on %s",
            len(vectors), restaurant_id, target_date,
        )
        return vectors

    # ── Persistence ───────────────────────────────────────────────────────────

    def store_feature_snapshot(self, snapshot: FeatureSnapshot) -> None:
        """Upsert one raw snapshot on (restaurant_id, date, hour_slot)."""
        self._snapshots.upsert_snapshot(snapshot)

    def collect_snapshots(self, restaurant_id: str, target_date: date) -> int:
        """Extract all 24 hours for a date and store them. Returns rows stored."""
        vectors = self.extract_features(restaurant_id, target_date)
        snapshots = [fv.metadata.raw_snapshot for fv in vectors if fv.metadata.raw_snapshot]
        return self._snapshots.upsert_snapshots(snapshots)

    def record_actuals(self, actuals: list[DemandActual]) -> int:
        """Upsert observed demand rows. Returns the number written."""
        for actual in actuals:
            self._snapshots.upsert_actual(actual)
        return len(actuals)

    # ── Scaling ───────────────────────────────────────────────────────────────

    def learn_scaling_params(self, restaurant_id: str) -> ScalingParams:
        """Learn z-score statistics from the restaurant's recent snapshots.

        Uses up to 10,000 of the most recent snapshots. With fewer than
        ``scaling_min_snapshots`` rows the built-in ``DEFAULT_SCALING`` is
        returned and nothing is cached.
        """
        snapshots = self._snapshots.recent_snapshots(restaurant_id, limit=10_000)
        if len(snapshots) < self.config.scaling_min_snapshots:
            logger.warning(
                "Not enough snapshots for scaling params for %s (%d < %d); using defaults.",
                restaurant_id, len(snapshots), self.config.scaling_min_snapshots,
            )
            return DEFAULT_SCALING

        params = learn_scaling_from_snapshots(snapshots)
        self._scaling[restaurant_id] = params
        if self.cache is not None:
            self.cache.set_json(
                f"{SCALING_CACHE_PREFIX}{restaurant_id}",
                params.model_dump(),
                self.config.scaling_cache_ttl_seconds,
            )
        logger.info("Learned scaling params for %s from %d snapshots", restaurant_id, len(snapshots))
        return params

    def get_scaling_params(self, restaurant_id: str) -> Optional[ScalingParams]:
        """Previously learned params (memory, then external cache), or ``None``."""
        if restaurant_id in self._scaling:
            return self._scaling[restaurant_id]
        if self.cache is not None:
            cached = self.cache.get_json(f"{SCALING_CACHE_PREFIX}{restaurant_id}")
            if cached is not None:
                params = ScalingParams.model_validate(cached)
                self._scaling[restaurant_id] = params
                return params
        return None
