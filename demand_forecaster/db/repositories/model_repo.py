"""
Repository for trained model artifacts (``ml_models``).

Weights, parameters and feature names are stored as JSON text columns.
Weights round-trip through a pydantic ``TypeAdapter`` over the
``ModelWeights`` discriminated union, so the ``model_type`` tag in the JSON
selects the concrete weight class on load.

This repository does no locking or version arithmetic of its own; the
``ModelRegistry`` composes these primitives inside ``transaction()`` blocks.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional

from pydantic import TypeAdapter

from demand_forecaster.db.repositories.base import BaseRepository
from demand_forecaster.models.ml_model import (
    AccuracyTrend,
    ActiveModelInfo,
    MLModel,
    ModelParameters,
    ModelStatus,
    ModelType,
    ModelWeights,
)
from demand_forecaster.utils.time_utils import parse_datetime, to_iso

logger = logging.getLogger(__name__)

_WEIGHTS_ADAPTER: TypeAdapter[ModelWeights] = TypeAdapter(ModelWeights)

_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%SZ', 'now')"


class ModelRepository(BaseRepository):
    """Read/write access to the ``ml_models`` table."""

    def insert(self, model: MLModel) -> int:
        """Insert a model row and return its ``model_id``.

        Args:
            model: The ``MLModel`` to persist. ``model_id`` is ignored.

        Returns:
            The newly assigned ``model_id``.

        Raises:
            sqlite3.IntegrityError: On a duplicate (restaurant_id, version) or
                a second ACTIVE row for the restaurant.
        """
        self.execute(
            """
            INSERT INTO ml_models (
                restaurant_id, version, model_type, weights_json,
                parameters_json, feature_names_json, mae, rmse, mape,
                r2_score, trained_at, data_points_used, training_duration_ms,
                status, predictions_count, last_prediction_at, recent_mae,
                accuracy_trend
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                model.restaurant_id,
                model.version,
                model.model_type.value,
                model.weights.model_dump_json(),
                model.parameters.model_dump_json(),
                json.dumps(model.feature_names),
                model.mae,
                model.rmse,
                model.mape,
                model.r2_score,
                to_iso(model.trained_at),
                model.data_points_used,
                model.training_duration_ms,
                model.status.value,
                model.predictions_count,
                to_iso(model.last_prediction_at),
                model.recent_mae,
                model.accuracy_trend.value,
            ),
        )
        return self.last_insert_rowid()

    def get_active(self, restaurant_id: str) -> Optional[MLModel]:
        """Return the restaurant's ACTIVE model, or ``None``."""
        row = self.fetchone(
            "SELECT * FROM ml_models WHERE restaurant_id = ? AND status = ?;",
            (restaurant_id, ModelStatus.ACTIVE.value),
        )
        return _row_to_model(row) if row else None

    def get_by_version(self, restaurant_id: str, version: int) -> Optional[MLModel]:
        """Return one version regardless of status, or ``None``."""
        row = self.fetchone(
            "SELECT * FROM ml_models WHERE restaurant_id = ? AND version = ?;",
            (restaurant_id, version),
        )
        return _row_to_model(row) if row else None

    def latest_version(self, restaurant_id: str) -> int:
        """Highest version ever stored for the restaurant (0 if none).

        FAILED and DEPRECATED rows count, so a version number is never reused.
        """
        row = self.fetchone(
            "SELECT COALESCE(MAX(version), 0) AS v FROM ml_models WHERE restaurant_id = ?;",
            (restaurant_id,),
        )
        assert row is not None
        return int(row["v"])

    def demote_active(self, restaurant_id: str) -> int:
        """Set the current ACTIVE row (if any) to DEPRECATED. Returns rows changed."""
        cur = self.execute(
            f"""
            UPDATE ml_models
            SET status = ?, updated_at = {_NOW_SQL}
            WHERE restaurant_id = ? AND status = ?;
            """,
            (ModelStatus.DEPRECATED.value, restaurant_id, ModelStatus.ACTIVE.value),
        )
        return cur.rowcount

    def activate(self, restaurant_id: str, version: int, reset_performance: bool = False) -> int:
        """Mark ``version`` ACTIVE. The caller must have demoted the old one.

        Args:
            restaurant_id: Owning restaurant.
            version: Version to activate.
            reset_performance: Clear ``recent_mae`` and reset the trend to
                STABLE (used by rollback).

        Returns:
            Rows changed (0 if the version does not exist).
        """
        if reset_performance:
            sql = f"""
                UPDATE ml_models
                SET status = ?, recent_mae = NULL, accuracy_trend = ?,
                    updated_at = {_NOW_SQL}
                WHERE restaurant_id = ? AND version = ?;
            """
            params: tuple = (
                ModelStatus.ACTIVE.value,
                AccuracyTrend.STABLE.value,
                restaurant_id,
                version,
            )
        else:
            sql = f"""
                UPDATE ml_models
                SET status = ?, updated_at = {_NOW_SQL}
                WHERE restaurant_id = ? AND version = ?;
            """
            params = (ModelStatus.ACTIVE.value, restaurant_id, version)
        return self.execute(sql, params).rowcount

    def update_performance(
        self,
        restaurant_id: str,
        recent_mae: float,
        accuracy_trend: AccuracyTrend,
    ) -> int:
        """Persist live accuracy on the ACTIVE model. Returns rows changed."""
        cur = self.execute(
            f"""
            UPDATE ml_models
            SET recent_mae = ?, accuracy_trend = ?, updated_at = {_NOW_SQL}
            WHERE restaurant_id = ? AND status = ?;
            """,
            (recent_mae, accuracy_trend.value, restaurant_id, ModelStatus.ACTIVE.value),
        )
        return cur.rowcount

    def increment_predictions(self, restaurant_id: str, at: datetime) -> int:
        """Atomically bump ``predictions_count`` on the ACTIVE model."""
        cur = self.execute(
            """
            UPDATE ml_models
            SET predictions_count = predictions_count + 1,
                last_prediction_at = ?
            WHERE restaurant_id = ? AND status = ?;
            """,
            (to_iso(at), restaurant_id, ModelStatus.ACTIVE.value),
        )
        return cur.rowcount

    def mark_failed(self, restaurant_id: str, version: int, parameters: ModelParameters) -> int:
        """Set status FAILED and overwrite parameters (which carry the error)."""
        cur = self.execute(
            f"""
            UPDATE ml_models
            SET status = ?, parameters_json = ?, updated_at = {_NOW_SQL}
            WHERE restaurant_id = ? AND version = ?;
            """,
            (ModelStatus.FAILED.value, parameters.model_dump_json(), restaurant_id, version),
        )
        return cur.rowcount

    def list_history(self, restaurant_id: str) -> list[MLModel]:
        """All versions for a restaurant, newest first."""
        rows = self.fetchall(
            "SELECT * FROM ml_models WHERE restaurant_id = ? ORDER BY version DESC;",
            (restaurant_id,),
        )
        return [_row_to_model(r) for r in rows]

    def list_active_with_names(self) -> list[ActiveModelInfo]:
        """Every ACTIVE model joined with its restaurant's display name."""
        rows = self.fetchall(
            """
            SELECT m.restaurant_id, r.name AS restaurant_name, m.version,
                   m.model_type, m.trained_at, m.mae, m.mape,
                   m.predictions_count, m.accuracy_trend, m.last_prediction_at
            FROM ml_models m
            JOIN restaurants r ON r.restaurant_id = m.restaurant_id
            WHERE m.status = ?
            ORDER BY m.restaurant_id;
            """,
            (ModelStatus.ACTIVE.value,),
        )
        return [
            ActiveModelInfo(
                restaurant_id=r["restaurant_id"],
                restaurant_name=r["restaurant_name"],
                version=r["version"],
                model_type=ModelType(r["model_type"]),
                trained_at=parse_datetime(r["trained_at"]),
                mae=r["mae"],
                mape=r["mape"],
                predictions_count=r["predictions_count"],
                accuracy_trend=AccuracyTrend(r["accuracy_trend"]),
                last_prediction_at=parse_datetime(r["last_prediction_at"]),
            )
            for r in rows
        ]

    def delete_versions(self, restaurant_id: str, versions: list[int]) -> int:
        """Hard-delete the given non-ACTIVE versions. Returns rows deleted."""
        if not versions:
            return 0
        cur = self.executemany(
            "DELETE FROM ml_models WHERE restaurant_id = ? AND version = ? AND status != ?;",
            [(restaurant_id, v, ModelStatus.ACTIVE.value) for v in versions],
        )
        return cur.rowcount


# ── Private helper ────────────────────────────────────────────────────────────


def _row_to_model(row: sqlite3.Row) -> MLModel:
    """Convert a ``sqlite3.Row`` from ``ml_models`` to an ``MLModel``."""
    return MLModel(
        model_id=row["model_id"],
        restaurant_id=row["restaurant_id"],
        version=row["version"],
        model_type=ModelType(row["model_type"]),
        weights=_WEIGHTS_ADAPTER.validate_json(row["weights_json"]),
        parameters=ModelParameters.model_validate_json(row["parameters_json"]),
        feature_names=json.loads(row["feature_names_json"]),
        mae=row["mae"],
        rmse=row["rmse"],
        mape=row["mape"],
        r2_score=row["r2_score"],
        trained_at=parse_datetime(row["trained_at"]),
        data_points_used=row["data_points_used"],
        training_duration_ms=row["training_duration_ms"],
        status=ModelStatus(row["status"]),
        predictions_count=row["predictions_count"],
        last_prediction_at=parse_datetime(row["last_prediction_at"]),
        recent_mae=row["recent_mae"],
        accuracy_trend=AccuracyTrend(row["accuracy_trend"]),
    )
