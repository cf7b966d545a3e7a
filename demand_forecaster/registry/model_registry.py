"""
Versioned model registry.

Lifecycle
---------
``save_model`` assigns ``version = latest + 1`` (FAILED/DEPRECATED rows count,
so numbers are never reused), demotes the current ACTIVE row to DEPRECATED and
inserts the new one as ACTIVE, all inside one SAVEPOINT and under a
per-restaurant lock. The partial unique index on ``(restaurant_id) WHERE
status = 'active'`` rejects any interleaving that would leave two ACTIVE rows.

Lookup
------
``load_model`` reads through three tiers and backfills the faster ones:

    ModelCache (in-process) → ExternalCache (``ml:model:{id}``) → ml_models

Save, rollback and performance updates invalidate both cache tiers for the
affected restaurant before re-populating them.

Retraining policy
-----------------
``check_retraining_needed`` returns the first matching reason:

  1. no ACTIVE model
  2. model older than ``max_model_age_days``
  3. accuracy trend is DEGRADING
  4. ``(recent_mae - mae) / mae > mae_degradation_threshold``
  5. ``predictions_count > max_predictions_before_retrain``
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from demand_forecaster.config import RegistryConfig
from demand_forecaster.db.repositories.model_repo import ModelRepository
from demand_forecaster.errors import ModelNotFoundError, RollbackError
from demand_forecaster.models.ml_model import (
    AccuracyTrend,
    ActiveModelInfo,
    MLModel,
    ModelEvaluation,
    ModelHistoryEntry,
    ModelImprovement,
    ModelParameters,
    ModelStatus,
    ModelType,
    ModelWeights,
    RetrainDecision,
    TrainingMetrics,
)
from demand_forecaster.registry.cache import ExternalCache, MemoryTTLCache, ModelCache
from demand_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

MODEL_CACHE_PREFIX = "ml:model:"

_locks_guard = threading.Lock()
_restaurant_locks: dict[str, threading.Lock] = {}


def _restaurant_lock(restaurant_id: str) -> threading.Lock:
    """Process-wide lock serializing version assignment for one restaurant."""
    with _locks_guard:
        lock = _restaurant_locks.get(restaurant_id)
        if lock is None:
            lock = _restaurant_locks[restaurant_id] = threading.Lock()
        return lock


@dataclass(frozen=True)
class ModelSaveRequest:
    """Everything needed to persist a freshly trained model."""

    restaurant_id: str
    model_type: ModelType
    weights: ModelWeights
    parameters: ModelParameters
    feature_names: list[str]
    metrics: TrainingMetrics
    data_points_used: int
    training_duration_ms: int
    trained_at: Optional[datetime] = None


class ModelRegistry:
    """Persistence, caching and lifecycle management for trained models.

    Args:
        conn: Open SQLite connection.
        config: Registry section of ``AppConfig``.
        external_cache: Shared JSON cache; defaults to a private ``MemoryTTLCache``.
        model_cache: In-process cache; defaults to a new ``ModelCache`` using
            ``config.cache_ttl_seconds``.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[RegistryConfig] = None,
        external_cache: Optional[ExternalCache] = None,
        model_cache: Optional[ModelCache] = None,
    ) -> None:
        self.config = config or RegistryConfig()
        self.repo = ModelRepository(conn)
        self.external_cache: ExternalCache = (
            external_cache if external_cache is not None else MemoryTTLCache()
        )
        self.model_cache = model_cache or ModelCache(self.config.cache_ttl_seconds)

    # ── Save / load ───────────────────────────────────────────────────────────

    def save_model(self, request: ModelSaveRequest) -> MLModel:
        """Persist a new ACTIVE version, demoting the previous one.

        Returns:
            The stored ``MLModel`` with ``model_id`` and ``version`` assigned.

        Raises:
            sqlite3.Error: On persistence failure (nothing is changed).
        """
        rid = request.restaurant_id
        with _restaurant_lock(rid):
            with self.repo.transaction("save_model"):
                version = self.repo.latest_version(rid) + 1
                model = MLModel(
                    restaurant_id=rid,
                    version=version,
                    model_type=request.model_type,
                    weights=request.weights,
                    parameters=request.parameters,
                    feature_names=list(request.feature_names),
                    mae=request.metrics.mae,
                    rmse=request.metrics.rmse,
                    mape=request.metrics.mape,
                    r2_score=request.metrics.r2_score,
                    trained_at=request.trained_at or utcnow(),
                    data_points_used=request.data_points_used,
                    training_duration_ms=request.training_duration_ms,
                    status=ModelStatus.ACTIVE,
                )
                demoted = self.repo.demote_active(rid)
                model_id = self.repo.insert(model)

        saved = model.model_copy(update={"model_id": model_id})
        self._invalidate(rid)
        self._cache(saved)
        logger.info(
            "Saved model v%d (%s) for %s: MAE=%.2f, MAPE=%.1f%%%s",
            version, request.model_type, rid, request.metrics.mae, request.metrics.mape,
            " (previous version deprecated)" if demoted else "",
        )
        return saved

    def load_model(self, restaurant_id: str) -> Optional[MLModel]:
        """Return the ACTIVE model, or ``None`` if the restaurant has none."""
        model = self.model_cache.get(restaurant_id)
        if model is not None:
            return model

        cached = self.external_cache.get_json(self._cache_key(restaurant_id))
        if cached is not None:
            model = MLModel.model_validate(cached)
            self.model_cache.put(model)
            return model

        model = self.repo.get_active(restaurant_id)
        if model is None:
            return None
        self._cache(model)
        return model

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def rollback_model(self, restaurant_id: str, target_version: int) -> MLModel:
        """Reactivate ``target_version`` and demote the current ACTIVE model.

        The target's ``recent_mae`` is cleared and its trend reset to STABLE.

        Raises:
            ModelNotFoundError: If the version does not exist.
            RollbackError: If the version is FAILED.
        """
        with _restaurant_lock(restaurant_id):
            target = self.repo.get_by_version(restaurant_id, target_version)
            if target is None:
                raise ModelNotFoundError(
                    f"Model version {target_version} not found for restaurant {restaurant_id}"
                )
            if target.status == ModelStatus.FAILED:
                raise RollbackError(
                    f"Cannot roll back {restaurant_id} to v{target_version}: model is failed"
                )
            with self.repo.transaction("rollback_model"):
                self.repo.demote_active(restaurant_id)
                self.repo.activate(restaurant_id, target_version, reset_performance=True)
            model = self.repo.get_by_version(restaurant_id, target_version)

        self._invalidate(restaurant_id)
        if model is None:
            raise ModelNotFoundError(
                f"Model version {target_version} vanished during rollback for restaurant {restaurant_id}"
            )
        self._cache(model)
        logger.info("Rolled back %s to model v%d", restaurant_id, target_version)
        return model

    def mark_model_failed(self, restaurant_id: str, version: int, error: str) -> None:
        """Set a version to FAILED and record ``error`` in its parameters."""
        existing = self.repo.get_by_version(restaurant_id, version)
        if existing is None:
            raise ModelNotFoundError(
                f"Model version {version} not found for restaurant {restaurant_id}"
            )
        params = existing.parameters.model_copy(update={"error": error})
        self.repo.mark_failed(restaurant_id, version, params)
        if existing.status == ModelStatus.ACTIVE:
            self._invalidate(restaurant_id)
        logger.error("Model v%d for %s marked as failed: %s", version, restaurant_id, error)

    def prune_model_history(self, restaurant_id: str, keep: Optional[int] = None) -> int:
        """Delete versions beyond the newest ``keep``; ACTIVE is always retained.

        The ACTIVE version counts toward ``keep`` when it falls inside the
        window. Returns the number of rows deleted.
        """
        keep = self.config.keep_versions if keep is None else keep
        kept = 0
        to_delete: list[int] = []
        for model in self.repo.list_history(restaurant_id):
            if model.status == ModelStatus.ACTIVE or kept < keep:
                kept += 1
            else:
                to_delete.append(model.version)

        if not to_delete:
            return 0
        with self.repo.transaction("prune_models"):
            deleted = self.repo.delete_versions(restaurant_id, to_delete)
        logger.info("Pruned %d old model version(s) for %s", deleted, restaurant_id)
        return deleted

    # ── Performance tracking ──────────────────────────────────────────────────

    def record_prediction(self, restaurant_id: str) -> None:
        """Increment ``predictions_count`` on the ACTIVE model.

        The in-process copy is bumped in place; the shared external copy is
        dropped so other processes re-read the counter from the database.
        """
        now = utcnow()
        self.repo.increment_predictions(restaurant_id, now)
        self.external_cache.delete(self._cache_key(restaurant_id))
        cached = self.model_cache.get(restaurant_id)
        if cached is not None:
            self.model_cache.replace(
                cached.model_copy(
                    update={
                        "predictions_count": cached.predictions_count + 1,
                        "last_prediction_at": now,
                    }
                )
            )

    def update_model_performance(
        self,
        restaurant_id: str,
        recent_mae: float,
        trend: AccuracyTrend,
    ) -> None:
        """Persist live accuracy on the ACTIVE model and drop cached copies."""
        self.repo.update_performance(restaurant_id, recent_mae, trend)
        self._invalidate(restaurant_id)
        logger.debug("Performance for %s: recent MAE=%.2f, trend=%s", restaurant_id, recent_mae, trend)

    def check_retraining_needed(self, restaurant_id: str) -> RetrainDecision:
        model = self.load_model(restaurant_id)
        if model is None:
            return RetrainDecision(needed=True, reason="No active model exists")

        cfg = self.config
        if utcnow() - model.trained_at > timedelta(days=cfg.max_model_age_days):
            return RetrainDecision(
                needed=True, reason=f"Model is older than {cfg.max_model_age_days} days"
            )

        if model.accuracy_trend == AccuracyTrend.DEGRADING:
            return RetrainDecision(needed=True, reason="Model accuracy is degrading")

        if model.recent_mae is not None and model.mae:
            degradation = (model.recent_mae - model.mae) / model.mae
            if degradation > cfg.mae_degradation_threshold:
                return RetrainDecision(
                    needed=True,
                    reason=(
                        f"Recent MAE {cfg.mae_degradation_threshold:.0%} higher than training MAE"
                    ),
                )

        if model.predictions_count > cfg.max_predictions_before_retrain:
            return RetrainDecision(
                needed=True,
                reason=f"Over {cfg.max_predictions_before_retrain:,} predictions since last training",
            )

        return RetrainDecision(needed=False)

    # ── Reporting ─────────────────────────────────────────────────────────────

    def get_model_history(self, restaurant_id: str) -> list[ModelHistoryEntry]:
        """All versions newest first."""
        return [
            ModelHistoryEntry(
                version=m.version,
                model_type=m.model_type,
                trained_at=m.trained_at,
                status=m.status,
                mae=m.mae,
                rmse=m.rmse,
                mape=m.mape,
                r2_score=m.r2_score,
                data_points_used=m.data_points_used,
                predictions_count=m.predictions_count,
            )
            for m in self.repo.list_history(restaurant_id)
        ]

    def get_active_models(self) -> list[ActiveModelInfo]:
        return self.repo.list_active_with_names()

    def get_model_evaluation(self, restaurant_id: str) -> Optional[ModelEvaluation]:
        """Metrics, retrain decision and change versus ``version - 1``."""
        model = self.load_model(restaurant_id)
        if model is None:
            return None

        decision = self.check_retraining_needed(restaurant_id)

        improvement: Optional[ModelImprovement] = None
        previous = (
            self.repo.get_by_version(restaurant_id, model.version - 1)
            if model.version > 1
            else None
        )
        if previous is not None and previous.mae and model.mae:
            mape_improvement = 0.0
            if previous.mape and model.mape is not None:
                mape_improvement = (previous.mape - model.mape) / previous.mape * 100
            improvement = ModelImprovement(
                mae_delta=previous.mae - model.mae,
                mape_improvement=mape_improvement,
            )

        return ModelEvaluation(
            model_id=model.model_id,
            restaurant_id=restaurant_id,
            version=model.version,
            evaluated_at=utcnow(),
            metrics=TrainingMetrics(
                mae=model.mae or 0.0,
                rmse=model.rmse or 0.0,
                mape=model.mape or 0.0,
                r2_score=model.r2_score or 0.0,
            ),
            needs_retraining=decision.needed,
            retraining_reason=decision.reason,
            improvement_over_previous=improvement,
        )

    # ── Caches ────────────────────────────────────────────────────────────────

    def clear_caches(self, restaurant_id: Optional[str] = None) -> None:
        """Drop cached models for one restaurant, or the whole in-process tier.

        Without a restaurant id only the in-process tier is cleared; external
        entries expire on their own TTL.
        """
        if restaurant_id is not None:
            self._invalidate(restaurant_id)
        else:
            self.model_cache.clear()

    @staticmethod
    def _cache_key(restaurant_id: str) -> str:
        return f"{MODEL_CACHE_PREFIX}{restaurant_id}"

    def _cache(self, model: MLModel) -> None:
        self.model_cache.put(model)
        self.external_cache.set_json(
            self._cache_key(model.restaurant_id),
            model.model_dump(mode="json"),
            self.config.cache_ttl_seconds,
        )

    def _invalidate(self, restaurant_id: str) -> None:
        self.model_cache.invalidate(restaurant_id)
        self.external_cache.delete(self._cache_key(restaurant_id))
