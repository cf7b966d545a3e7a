"""
Tests for ``Predictor`` and its confidence / interval helpers.

What we test
------------
1. predict: 24 hourly results (or one), rounded non-negative values, the
   same number for dine-in and delivery, intervals from MAE, linear
   contributions, one usage increment per call.
2. Missing ACTIVE model raises ModelNotFoundError.
3. confidence_from_mape clamps to [0.3, 0.95]; z-scores per level.
4. Feature importance for linear and boosted models.
5. update_performance_metrics derives the accuracy trend.
"""

from __future__ import annotations

import dataclasses
from datetime import date

import pytest

from demand_forecaster.errors import ModelNotFoundError
from demand_forecaster.features.engineering import FeatureEngineer
from demand_forecaster.ml.predictor import (
    Predictor,
    confidence_from_mape,
    prediction_interval,
    z_score,
)
from demand_forecaster.models.ml_model import (
    AccuracyTrend,
    GradientBoostWeights,
    ModelType,
    RegressionTree,
    TreeNode,
)
from demand_forecaster.registry.model_registry import ModelRegistry

from conftest import make_save_request

DAY = date(2026, 10, 17)


@pytest.fixture
def registry(seeded_db):
    return ModelRegistry(seeded_db)


@pytest.fixture
def predictor(seeded_db, registry):
    return Predictor(seeded_db, registry, FeatureEngineer(seeded_db))


# ── predict ───────────────────────────────────────────────────────────────────

def test_predict_all_hours_with_constant_model(predictor, registry):
    registry.save_model(make_save_request(mae=2.0, mape=10.0, intercept=20.0))
    results = predictor.predict("r-1", DAY)

    assert [r.hour_slot for r in results] == list(range(24))
    first = results[0]
    assert first.predicted_dine_in == 20
    assert first.predicted_delivery == 20
    assert first.confidence == pytest.approx(0.9)
    assert first.dine_in_interval.lower == pytest.approx(20 - 5.88)
    assert first.dine_in_interval.upper == pytest.approx(20 + 5.88)
    assert first.delivery_interval == first.dine_in_interval
    assert first.model_version == 1
    assert first.model_type == ModelType.LINEAR
    assert first.date == DAY


def test_predict_single_hour_has_contributions(predictor, registry):
    registry.save_model(make_save_request(intercept=20.0, coefficients={"hour_7": 4.0}))
    [result] = predictor.predict("r-1", DAY, hour_slot=7)

    assert result.hour_slot == 7
    assert result.predicted_dine_in == 24
    assert result.feature_contributions["intercept"] == 20.0
    assert result.feature_contributions["hour_7"] == 4.0
    assert result.feature_contributions["hour_8"] == 0.0


def test_negative_output_clamped_to_zero(predictor, registry):
    registry.save_model(make_save_request(mae=2.0, intercept=-10.0))
    [result] = predictor.predict("r-1", DAY, hour_slot=3)
    assert result.predicted_dine_in == 0
    assert result.dine_in_interval.lower == 0.0
    assert result.dine_in_interval.upper == 0.0


def test_prediction_rounds_to_nearest(predictor, registry):
    registry.save_model(make_save_request(intercept=20.6))
    [result] = predictor.predict("r-1", DAY, hour_slot=3)
    assert result.predicted_dine_in == 21


def test_each_call_counts_one_prediction(predictor, registry, seeded_db):
    registry.save_model(make_save_request())
    predictor.predict("r-1", DAY)
    predictor.predict("r-1", DAY, hour_slot=5)

    assert registry.load_model("r-1").predictions_count == 2
    fresh = ModelRegistry(seeded_db).load_model("r-1")
    assert fresh.predictions_count == 2
    assert fresh.last_prediction_at is not None


def test_no_active_model_raises(predictor):
    with pytest.raises(ModelNotFoundError):
        predictor.predict("r-1", DAY)


# ── Confidence helpers ────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "mape, expected",
    [(10.0, 0.9), (80.0, 0.3), (1.0, 0.95), (None, 0.8), (0.0, 0.8)],
)
def test_confidence_from_mape(mape, expected):
    assert confidence_from_mape(mape) == pytest.approx(expected)


@pytest.mark.parametrize("level, z", [(0.95, 1.96), (0.90, 1.645), (0.8, 1.28)])
def test_z_scores(level, z):
    assert z_score(level) == z


def test_interval_defaults_mae():
    interval = prediction_interval(30.0, None)
    assert interval.lower == pytest.approx(30 - 14.7)
    assert interval.upper == pytest.approx(30 + 14.7)


# ── Feature importance ────────────────────────────────────────────────────────

def test_linear_importance(predictor, registry):
    registry.save_model(make_save_request(coefficients={"temperature": 3.0, "hour_12": -1.0}))
    ranked = predictor.get_feature_importance("r-1")
    assert [(f.feature, f.importance) for f in ranked[:2]] == [
        ("temperature", pytest.approx(0.75)),
        ("hour_12", pytest.approx(0.25)),
    ]


def test_boost_importance(predictor, registry):
    def stump(feature_index: int) -> RegressionTree:
        return RegressionTree(
            nodes=[
                TreeNode(feature_index=feature_index, threshold=0.5, left_value=1.0,
                         right_value=2.0, left_child=1, right_child=2),
                TreeNode(left_value=1.0, right_value=1.0),
                TreeNode(left_value=2.0, right_value=2.0),
            ]
        )

    weights = GradientBoostWeights(trees=[stump(0), stump(5)], learning_rate=0.1, initial_prediction=10.0)
    registry.save_model(
        dataclasses.replace(make_save_request(), model_type=ModelType.GRADIENT_BOOST, weights=weights)
    )
    ranked = predictor.get_feature_importance("r-1")
    top = {f.feature: f.importance for f in ranked[:2]}
    assert top == {"hour_0": pytest.approx(0.5), "hour_5": pytest.approx(0.5)}
    assert sum(f.importance for f in ranked) == pytest.approx(1.0)


def test_importance_without_model_raises(predictor):
    with pytest.raises(ModelNotFoundError):
        predictor.get_feature_importance("r-1")


# ── Performance tracking ──────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "pairs, trend",
    [
        ([(10.0, 23.0)], AccuracyTrend.DEGRADING),
        ([(10.0, 18.5)], AccuracyTrend.IMPROVING),
        ([(10.0, 20.0)], AccuracyTrend.STABLE),
    ],
)
def test_update_performance_trend(predictor, registry, pairs, trend):
    registry.save_model(make_save_request(mae=10.0))
    assert predictor.update_performance_metrics("r-1", pairs) == trend
    model = registry.load_model("r-1")
    assert model.accuracy_trend == trend
    assert model.recent_mae == pytest.approx(abs(pairs[0][0] - pairs[0][1]))


def test_degrading_trend_triggers_retraining(predictor, registry):
    registry.save_model(make_save_request(mae=10.0))
    predictor.update_performance_metrics("r-1", [(0.0, 15.0), (0.0, 15.0)])
    decision = registry.check_retraining_needed("r-1")
    assert decision.needed
    assert decision.reason == "Model accuracy is degrading"


def test_update_performance_noop_cases(predictor):
    assert predictor.update_performance_metrics("r-1", []) is None
    assert predictor.update_performance_metrics("r-1", [(1.0, 2.0)]) is None
