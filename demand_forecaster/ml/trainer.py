"""
Per-restaurant model training.

``DemandTrainer.train_model(TrainingRequest)`` runs:

  1. Retrain gate (skipped when ``force_retrain``): if the registry says the
     current model is fine, return ``success=False, error="Retraining not needed"``.
  2. Restaurant lookup; unknown ids fail the request.
  3. Training data: stored snapshots joined with ``demand_actuals``, newest
     ``2 * min_data_points`` rows, re-encoded with ``build_feature_vector`` and
     normalized with ``DEFAULT_SCALING`` (the same scaling ``predict`` uses).
  4. Row-count gate: fewer than ``min_data_points`` rows fails the request.
  5. Fit the requested family, score it in-sample, save it as the new ACTIVE
     version.

Expected failures (gates, unknown restaurant) are reported through
``TrainingResult``; so is any exception raised while fitting or saving. The
trainer itself never raises for a single request.

Nothing is written until the fit has succeeded, so a failed fit leaves no
``ml_models`` row behind and the previous ACTIVE version keeps serving. A
stored version is only ever set to FAILED through
``ModelRegistry.mark_model_failed``.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from demand_forecaster.config import AppConfig
from demand_forecaster.db.repositories.restaurant_repo import RestaurantRepository
from demand_forecaster.db.repositories.snapshot_repo import SnapshotRepository
from demand_forecaster.features.engineering import (
    DEFAULT_SCALING,
    FeatureVector,
    build_feature_vector,
    normalize_features,
)
from demand_forecaster.features.registry import FEATURE_NAMES
from demand_forecaster.ml.ensemble import build_ensemble, predict_ensemble
from demand_forecaster.ml.gradient_boost import predict_gradient_boost, train_gradient_boost
from demand_forecaster.ml.linear import predict_linear, train_linear
from demand_forecaster.ml.metrics import combined_target, compute_metrics
from demand_forecaster.models.ml_model import (
    ModelParameters,
    ModelType,
    ModelWeights,
    TrainingMetrics,
)
from demand_forecaster.registry.model_registry import ModelRegistry, ModelSaveRequest

logger = logging.getLogger(__name__)

RETRAIN_NOT_NEEDED = "Retraining not needed"


@dataclass
class TrainingRequest:
    """Input to ``DemandTrainer.train_model``.

    Attributes:
        restaurant_id: Restaurant to train for.
        model_type: Algorithm family; ``None`` uses ``training.default_model_type``.
        parameters: Partial hyperparameter overrides (``ModelParameters`` field
            names). Missing keys come from ``TrainingConfig``.
        min_data_points: Required labeled rows; ``None`` uses
            ``training.min_training_days * 24``.
        force_retrain: Skip the registry's retrain check.
    """

    restaurant_id: str
    model_type: Optional[ModelType] = None
    parameters: dict[str, Any] = field(default_factory=dict)
    min_data_points: Optional[int] = None
    force_retrain: bool = False


@dataclass
class TrainingResult:
    """Outcome of one training request."""

    success: bool
    model_id: Optional[int] = None
    version: Optional[int] = None
    metrics: Optional[TrainingMetrics] = None
    training_duration_ms: int = 0
    data_points_used: int = 0
    error: Optional[str] = None


@dataclass
class TrainingSet:
    """Normalized design matrix and both target vectors."""

    vectors: list[FeatureVector]
    y_dine_in: list[float]
    y_delivery: list[float]

    @property
    def X(self) -> list[list[float]]:
        return [v.features for v in self.vectors]

    @property
    def feature_names(self) -> list[str]:
        return self.vectors[0].feature_names if self.vectors else list(FEATURE_NAMES)

    def __len__(self) -> int:
        return len(self.vectors)


class DemandTrainer:
    """Trains, scores and registers per-restaurant demand models.

    Args:
        conn: Open SQLite connection.
        config: Application config (training defaults, registry thresholds).
        registry: Model registry; built from ``conn`` / ``config`` if omitted.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[AppConfig] = None,
        registry: Optional[ModelRegistry] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.registry = registry or ModelRegistry(conn, self.config.registry)
        self._restaurants = RestaurantRepository(conn)
        self._snapshots = SnapshotRepository(conn)

    # ── Public API ────────────────────────────────────────────────────────────

    def train_model(self, request: TrainingRequest) -> TrainingResult:
        rid = request.restaurant_id
        started = time.perf_counter()
        min_points = (
            request.min_data_points
            if request.min_data_points is not None
            else self.config.training.min_data_points
        )

        try:
            logger.info("Starting model training for %s", rid)

            if not request.force_retrain:
                decision = self.registry.check_retraining_needed(rid)
                if not decision.needed:
                    logger.info("Retraining not needed for %s", rid)
                    return TrainingResult(success=False, error=RETRAIN_NOT_NEEDED)
                logger.info("Retraining reason for %s: %s", rid, decision.reason)

            if self._restaurants.get_by_id(rid) is None:
                return TrainingResult(
                    success=False,
                    training_duration_ms=_elapsed_ms(started),
                    error=f"Restaurant not found: {rid}",
                )

            data = self.get_training_data(rid, min_points)
            if len(data) < min_points:
                return TrainingResult(
                    success=False,
                    training_duration_ms=_elapsed_ms(started),
                    data_points_used=len(data),
                    error=f"Insufficient training data: {len(data)} points (need {min_points})",
                )

            model_type = request.model_type or ModelType(self.config.training.default_model_type)
            params = self.resolve_parameters(request.parameters)
            weights, metrics = fit_model(model_type, data, params)

            duration_ms = _elapsed_ms(started)
            model = self.registry.save_model(
                ModelSaveRequest(
                    restaurant_id=rid,
                    model_type=model_type,
                    weights=weights,
                    parameters=params,
                    feature_names=data.feature_names,
                    metrics=metrics,
                    data_points_used=len(data),
                    training_duration_ms=duration_ms,
                )
            )
        except Exception as exc:
            logger.error("Model training failed for %s: %s", rid, exc)
            return TrainingResult(
                success=False,
                training_duration_ms=_elapsed_ms(started),
                error=str(exc),
            )

        logger.info(
            "Model training completed for %s: v%d, MAE=%.2f, MAPE=%.1f%%, duration=%dms",
            rid, model.version, metrics.mae, metrics.mape, duration_ms,
        )
        return TrainingResult(
            success=True,
            model_id=model.model_id,
            version=model.version,
            metrics=metrics,
            training_duration_ms=duration_ms,
            data_points_used=len(data),
        )

    def retrain_if_needed(self, restaurant_id: str) -> Optional[TrainingResult]:
        """Train (forced) only if the registry asks for it; else ``None``."""
        decision = self.registry.check_retraining_needed(restaurant_id)
        if not decision.needed:
            return None
        logger.info("Retraining model for %s: %s", restaurant_id, decision.reason)
        return self.train_model(TrainingRequest(restaurant_id=restaurant_id, force_retrain=True))

    def get_training_data(self, restaurant_id: str, min_points: int) -> TrainingSet:
        """Labeled, normalized rows (oldest first), at most ``2 * min_points``."""
        limit = min_points * 2 if min_points > 0 else None
        snapshots = self._snapshots.list_labeled(restaurant_id, limit=limit)
        vectors: list[FeatureVector] = []
        y_dine_in: list[float] = []
        y_delivery: list[float] = []
        for snap in snapshots:
            if snap.actual_dine_in is None or snap.actual_delivery is None:
                continue
            vectors.append(normalize_features(build_feature_vector(snap), DEFAULT_SCALING))
            y_dine_in.append(snap.actual_dine_in)
            y_delivery.append(snap.actual_delivery)
        logger.debug("Loaded %d training rows for %s", len(vectors), restaurant_id)
        return TrainingSet(vectors=vectors, y_dine_in=y_dine_in, y_delivery=y_delivery)

    def resolve_parameters(self, overrides: dict[str, Any]) -> ModelParameters:
        """Merge request overrides onto ``TrainingConfig`` defaults.

        An explicit ``learning_rate`` override without ``boost_learning_rate``
        applies to the boosted trees as well.
        """
        t = self.config.training
        values: dict[str, Any] = {
            "learning_rate": t.learning_rate,
            "max_iterations": t.max_iterations,
            "regularization": t.regularization,
            "num_trees": t.num_trees,
            "max_depth": t.max_depth,
            "min_samples_leaf": t.min_samples_leaf,
            "subsample_ratio": t.subsample_ratio,
            "random_seed": t.random_seed,
        }
        unknown = set(overrides) - set(ModelParameters.model_fields)
        if unknown:
            raise ValueError(f"Unknown training parameter(s): {sorted(unknown)}")
        values.update(overrides)
        if "learning_rate" in overrides and "boost_learning_rate" not in overrides:
            values["boost_learning_rate"] = overrides["learning_rate"]
        return ModelParameters(**values)


# ── Fitting ───────────────────────────────────────────────────────────────────


def fit_model(
    model_type: ModelType,
    data: TrainingSet,
    params: ModelParameters,
) -> tuple[ModelWeights, TrainingMetrics]:
    """Fit one model family on ``data`` and score it in-sample."""
    X = data.X
    names = data.feature_names
    target = combined_target(data.y_dine_in, data.y_delivery)

    if model_type == ModelType.LINEAR:
        weights = _fit_linear(X, data, names, params)
        preds = [predict_linear(weights, row, names) for row in X]
        return weights, compute_metrics(preds, target)

    if model_type == ModelType.GRADIENT_BOOST:
        weights = _fit_boost(X, data, params)
        preds = [predict_gradient_boost(weights, row) for row in X]
        return weights, compute_metrics(preds, target)

    linear = _fit_linear(X, data, names, params)
    boost = _fit_boost(X, data, params)
    linear_metrics = compute_metrics([predict_linear(linear, row, names) for row in X], target)
    boost_metrics = compute_metrics([predict_gradient_boost(boost, row) for row in X], target)
    ensemble = build_ensemble(linear, boost, linear_metrics.mape, boost_metrics.mape)
    logger.debug(
        "Ensemble weights: linear=%.3f (MAPE %.1f%%), boost=%.3f (MAPE %.1f%%)",
        ensemble.linear_weight, linear_metrics.mape,
        ensemble.gradient_boost_weight, boost_metrics.mape,
    )
    preds = [predict_ensemble(ensemble, row, names) for row in X]
    return ensemble, compute_metrics(preds, target)


def _fit_linear(X, data: TrainingSet, names: list[str], params: ModelParameters):
    return train_linear(
        X,
        data.y_dine_in,
        data.y_delivery,
        names,
        learning_rate=params.learning_rate,
        max_iterations=params.max_iterations,
        regularization=params.regularization,
    )


def _fit_boost(X, data: TrainingSet, params: ModelParameters):
    return train_gradient_boost(
        X,
        data.y_dine_in,
        data.y_delivery,
        num_trees=params.num_trees,
        max_depth=params.max_depth,
        min_samples_leaf=params.min_samples_leaf,
        subsample_ratio=params.subsample_ratio,
        learning_rate=params.boost_learning_rate,
        random_seed=params.random_seed,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
