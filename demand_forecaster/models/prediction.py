"""
Prediction outputs served to downstream staffing/delivery planning.

``PredictionResult`` carries the rounded point estimates for one hour, the
model's confidence and a symmetric interval per channel. Linear models also
attach per-feature contributions (``coefficient * normalized value``).
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from demand_forecaster.models.ml_model import ModelType


class PredictionInterval(BaseModel):
    """Symmetric interval around a point estimate, floored at zero."""

    model_config = ConfigDict(frozen=True)

    lower: float
    upper: float

    @model_validator(mode="after")
    def validate_bounds(self) -> "PredictionInterval":
        if self.lower > self.upper:
            raise ValueError(f"lower ({self.lower}) must be <= upper ({self.upper}).")
        return self


class PredictionResult(BaseModel):
    """Forecast for one restaurant-hour.

    Attributes:
        restaurant_id: Target restaurant.
        date: Forecast date.
        hour_slot: Hour of day, 0–23.
        predicted_dine_in: ``max(0, round(x))`` of the model output.
        predicted_delivery: Same transform; equal to dine-in for the shared
            linear / tree models.
        confidence: ``clamp(1 - mape/100, 0.3, 0.95)``.
        dine_in_interval / delivery_interval: ``± z * mae * 1.5`` bands.
        model_version: Version of the ACTIVE model used.
        model_type: Its algorithm family.
        feature_contributions: Linear models only.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    restaurant_id: str
    date: date
    hour_slot: int
    predicted_dine_in: int
    predicted_delivery: int
    confidence: float
    dine_in_interval: PredictionInterval
    delivery_interval: PredictionInterval
    model_version: int
    model_type: ModelType
    feature_contributions: Optional[dict[str, float]] = None


class FeatureImportance(BaseModel):
    """Normalized importance of one feature; a ranking sums to 1."""

    model_config = ConfigDict(frozen=True)

    feature: str
    importance: float
