"""
Serving-side inference for the ACTIVE model of a restaurant.

Point estimates mirror training exactly: features are extracted, encoded and
normalized with ``DEFAULT_SCALING``, then dispatched on the weights'
``model_type`` tag. Linear and boosted models produce one value used for both
dine-in and delivery.

Confidence and intervals
------------------------
    confidence = clamp(1 - mape/100, 0.3, 0.95)     mape defaults to 20
    margin     = z(level) * mae * 1.5               mae defaults to 5
    interval   = [max(0, x - margin), max(0, x + margin)]

with ``z = 1.96`` at 0.95, ``1.645`` at 0.90 and ``1.28`` otherwise.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Optional

from demand_forecaster.errors import ModelNotFoundError
from demand_forecaster.features.engineering import DEFAULT_SCALING, FeatureEngineer, normalize_features
from demand_forecaster.ml.ensemble import predict_ensemble
from demand_forecaster.ml.gradient_boost import predict_gradient_boost
from demand_forecaster.ml.linear import linear_contributions, predict_linear
from demand_forecaster.ml.tree import split_feature_counts
from demand_forecaster.models.ml_model import (
    AccuracyTrend,
    EnsembleWeights,
    GradientBoostWeights,
    LinearWeights,
    MLModel,
)
from demand_forecaster.models.prediction import (
    FeatureImportance,
    PredictionInterval,
    PredictionResult,
)
from demand_forecaster.registry.model_registry import ModelRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAPE = 20.0
DEFAULT_MAE = 5.0
MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95
INTERVAL_WIDTH_FACTOR = 1.5

_Z_SCORES = {0.95: 1.96, 0.90: 1.645}
_Z_FALLBACK = 1.28


def z_score(confidence_level: float) -> float:
    return _Z_SCORES.get(round(confidence_level, 4), _Z_FALLBACK)


def confidence_from_mape(mape: Optional[float]) -> float:
    """``clamp(1 - mape/100, 0.3, 0.95)``; a missing or zero MAPE counts as 20."""
    value = mape or DEFAULT_MAPE
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, 1 - value / 100))


def prediction_interval(
    value: float,
    mae: Optional[float],
    confidence_level: float = 0.95,
) -> PredictionInterval:
    margin = z_score(confidence_level) * (mae or DEFAULT_MAE) * INTERVAL_WIDTH_FACTOR
    return PredictionInterval(
        lower=max(0.0, value - margin),
        upper=max(0.0, value + margin),
    )


def point_estimate(model: MLModel, features: list[float], feature_names: list[str]) -> float:
    """Raw (unrounded) model output for one normalized vector."""
    weights = model.weights
    if isinstance(weights, LinearWeights):
        return predict_linear(weights, features, feature_names)
    if isinstance(weights, GradientBoostWeights):
        return predict_gradient_boost(weights, features)
    return predict_ensemble(weights, features, feature_names)


class Predictor:
    """Forecasts with, and reports on, each restaurant's ACTIVE model.

    Args:
        conn: Open SQLite connection.
        registry: Model registry used for lookups and usage tracking.
        feature_engineer: Feature source; built from ``conn`` if omitted.
        confidence_level: Interval coverage (0.95 → z = 1.96).
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        registry: ModelRegistry,
        feature_engineer: Optional[FeatureEngineer] = None,
        confidence_level: float = 0.95,
    ) -> None:
        self.registry = registry
        self.feature_engineer = feature_engineer or FeatureEngineer(conn)
        self.confidence_level = confidence_level

    def _require_model(self, restaurant_id: str) -> MLModel:
        model = self.registry.load_model(restaurant_id)
        if model is None:
            raise ModelNotFoundError(f"No active model for restaurant {restaurant_id}")
        return model

    def predict(
        self,
        restaurant_id: str,
        target_date: date,
        hour_slot: Optional[int] = None,
    ) -> list[PredictionResult]:
        """Forecast one hour, or all 24 when ``hour_slot`` is ``None``.

        Raises:
            ModelNotFoundError: If the restaurant has no ACTIVE model.
            RestaurantNotFoundError: If the restaurant id is unknown.
        """
        model = self._require_model(restaurant_id)
        vectors = self.feature_engineer.extract_features(restaurant_id, target_date, hour_slot)
        confidence = confidence_from_mape(model.mape)

        results: list[PredictionResult] = []
        for fv in vectors:
            normalized = normalize_features(fv, DEFAULT_SCALING)
            value = point_estimate(model, normalized.features, normalized.feature_names)
            contributions = (
                linear_contributions(model.weights, normalized.features, normalized.feature_names)
                if isinstance(model.weights, LinearWeights)
                else None
            )
            interval = prediction_interval(value, model.mae, self.confidence_level)
            predicted = max(0, round(value))
            results.append(
                PredictionResult(
                    restaurant_id=restaurant_id,
                    date=fv.metadata.date,
                    hour_slot=fv.metadata.hour_slot,
                    predicted_dine_in=predicted,
                    predicted_delivery=predicted,
                    confidence=confidence,
                    dine_in_interval=interval,
                    delivery_interval=interval,
                    model_version=model.version,
                    model_type=model.model_type,
                    feature_contributions=contributions,
                )
            )

        self.registry.record_prediction(restaurant_id)
        logger.debug(
            "Predicted %d hour(s) for %s on %s with v%d",
            len(results), restaurant_id, target_date, model.version,
        )
        return results

    def get_feature_importance(self, restaurant_id: str) -> list[FeatureImportance]:
        """Normalized importances (sum to 1 when any is non-zero), highest first.

        Raises:
            ModelNotFoundError: If the restaurant has no ACTIVE model.
        """
        model = self._require_model(restaurant_id)
        names = model.feature_names
        weights = model.weights

        if isinstance(weights, LinearWeights):
            raw = {name: abs(coef) for name, coef in weights.coefficients.items()}
        elif isinstance(weights, GradientBoostWeights):
            raw = _boost_importance(weights, names)
        else:
            raw = _ensemble_importance(weights, names)

        total = sum(raw.values())
        if total > 0:
            raw = {name: value / total for name, value in raw.items()}

        ranked = sorted(raw.items(), key=lambda kv: kv[1], reverse=True)
        return [FeatureImportance(feature=name, importance=value) for name, value in ranked]

    def update_performance_metrics(
        self,
        restaurant_id: str,
        recent_predictions: list[tuple[float, float]],
    ) -> Optional[AccuracyTrend]:
        """Record live MAE from ``(predicted, actual)`` pairs and derive the trend.

        Returns the persisted trend, or ``None`` when nothing was recorded
        (empty input or no ACTIVE model).
        """
        if not recent_predictions:
            return None
        recent_mae = sum(abs(p - a) for p, a in recent_predictions) / len(recent_predictions)

        model = self.registry.load_model(restaurant_id)
        if model is None:
            logger.warning("No active model for %s; performance not recorded", restaurant_id)
            return None

        trend = AccuracyTrend.STABLE
        if model.mae:
            degradation = (recent_mae - model.mae) / model.mae
            if degradation > self.registry.config.mae_degradation_threshold:
                trend = AccuracyTrend.DEGRADING
            elif degradation < self.registry.config.improvement_threshold:
                trend = AccuracyTrend.IMPROVING

        self.registry.update_model_performance(restaurant_id, recent_mae, trend)
        return trend


# ── Importance helpers ────────────────────────────────────────────────────────


def _boost_importance(weights: GradientBoostWeights, names: list[str]) -> dict[str, float]:
    """Internal splits per feature divided by the number of trees."""
    n_trees = len(weights.trees)
    counts = [0] * len(names)
    for tree in weights.trees:
        for i, c in enumerate(split_feature_counts(tree, len(names))):
            counts[i] += c
    return {name: (counts[i] / n_trees if n_trees else 0.0) for i, name in enumerate(names)}


def _ensemble_importance(weights: EnsembleWeights, names: list[str]) -> dict[str, float]:
    out = {
        name: abs(coef) * weights.linear_weight
        for name, coef in weights.linear.coefficients.items()
    }
    for name, value in _boost_importance(weights.gradient_boost, names).items():
        out[name] = out.get(name, 0.0) + value * weights.gradient_boost_weight
    return out
