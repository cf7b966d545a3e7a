"""
Linear + gradient boost ensemble weighted by inverse in-sample MAPE.

    linear_weight = gb_mape / (linear_mape + gb_mape)
    gb_weight     = 1 - linear_weight

The model with the lower MAPE gets the larger share. When both MAPEs are
zero the blend is 50/50. Reported metrics are those of the blended output.
"""

from __future__ import annotations

from collections.abc import Sequence

from demand_forecaster.ml.gradient_boost import predict_gradient_boost
from demand_forecaster.ml.linear import predict_linear
from demand_forecaster.models.ml_model import (
    EnsembleWeights,
    GradientBoostWeights,
    LinearWeights,
)


def inverse_mape_weights(linear_mape: float, gb_mape: float) -> tuple[float, float]:
    """Return ``(linear_weight, gradient_boost_weight)``, summing to 1."""
    total = linear_mape + gb_mape
    linear_weight = gb_mape / total if total > 0 else 0.5
    return linear_weight, 1.0 - linear_weight


def build_ensemble(
    linear: LinearWeights,
    gradient_boost: GradientBoostWeights,
    linear_mape: float,
    gb_mape: float,
) -> EnsembleWeights:
    lw, gw = inverse_mape_weights(linear_mape, gb_mape)
    return EnsembleWeights(
        linear=linear,
        gradient_boost=gradient_boost,
        linear_weight=lw,
        gradient_boost_weight=gw,
    )


def predict_ensemble(
    weights: EnsembleWeights,
    features: Sequence[float],
    feature_names: Sequence[str],
) -> float:
    linear_pred = predict_linear(weights.linear, features, feature_names)
    gb_pred = predict_gradient_boost(weights.gradient_boost, features)
    return weights.linear_weight * linear_pred + weights.gradient_boost_weight * gb_pred
