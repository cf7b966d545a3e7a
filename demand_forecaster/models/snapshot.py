"""
Hourly feature snapshots and observed demand.

A ``FeatureSnapshot`` is the raw (pre-normalization) feature record for one
restaurant-hour, persisted so training can be rebuilt later without calling
the weather/event providers again. ``DemandActual`` is the observed
dine-in/delivery count for the same key; joining the two yields a labeled
training row, surfaced as ``actual_dine_in`` / ``actual_delivery`` on the
snapshot.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from demand_forecaster.models.weather import WeatherCondition


class FeatureSnapshot(BaseModel):
    """Raw feature record for one (restaurant, date, hour).

    Weather fields are ``None`` only for legacy rows; extraction always fills
    them (with defaults when the provider fails). Lag fields are ``None`` when
    there is no demand history for the hour.
    """

    model_config = ConfigDict(frozen=True)

    restaurant_id: str
    date: date
    hour_slot: int

    day_of_week: int
    week_of_year: int
    month_of_year: int
    is_weekend: bool = False
    is_holiday: bool = False
    holiday_name: Optional[str] = None

    temperature: Optional[float] = None
    feels_like: Optional[float] = None
    humidity: Optional[float] = None
    precipitation: Optional[float] = None
    wind_speed: Optional[float] = None
    cloud_cover: Optional[float] = None
    weather_condition: Optional[WeatherCondition] = None

    event_count: int = 0
    total_attendance: int = 0
    nearest_event_dist: Optional[float] = None
    event_impact_score: float = 0.0

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

    actual_dine_in: Optional[float] = None
    actual_delivery: Optional[float] = None

    @field_validator("hour_slot")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"hour_slot must be in [0, 23], got {v}.")
        return v

    @field_validator("day_of_week")
    @classmethod
    def validate_dow(cls, v: int) -> int:
        if not 0 <= v <= 6:
            raise ValueError(f"day_of_week must be in [0, 6] (Sunday = 0), got {v}.")
        return v

    @property
    def is_labeled(self) -> bool:
        return self.actual_dine_in is not None and self.actual_delivery is not None


class DemandActual(BaseModel):
    """Observed order counts for one restaurant-hour."""

    model_config = ConfigDict(frozen=True)

    restaurant_id: str
    date: date
    hour_slot: int
    actual_dine_in: float
    actual_delivery: float

    @field_validator("hour_slot")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"hour_slot must be in [0, 23], got {v}.")
        return v

    @field_validator("actual_dine_in", "actual_delivery")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Demand counts must be >= 0, got {v}.")
        return v
