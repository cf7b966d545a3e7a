"""Restaurant location record — the unit every model and snapshot is keyed by."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator


class Restaurant(BaseModel):
    """A forecastable restaurant location.

    Attributes:
        restaurant_id: Stable external identifier.
        name: Display name used in job reports.
        lat: Latitude in decimal degrees.
        lon: Longitude in decimal degrees.
        forecasting_enabled: Batch jobs (train-all, collect-features) only
            visit restaurants with this flag set.
    """

    model_config = ConfigDict(frozen=True)

    restaurant_id: str
    name: str
    lat: float
    lon: float
    forecasting_enabled: bool = True

    @field_validator("lat")
    @classmethod
    def validate_lat(cls, v: float) -> float:
        if not -90.0 <= v <= 90.0:
            raise ValueError(f"lat must be in [-90, 90], got {v}.")
        return v

    @field_validator("lon")
    @classmethod
    def validate_lon(cls, v: float) -> float:
        if not -180.0 <= v <= 180.0:
            raise ValueError(f"lon must be in [-180, 180], got {v}.")
        return v
