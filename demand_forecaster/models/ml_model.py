"""
Trained model artifacts and their supporting value types.

``MLModel`` is one versioned, per-restaurant artifact as stored in
``ml_models``. Its ``weights`` field is a discriminated union keyed by
``model_type``:

  - ``LinearWeights``         — intercept + coefficient per feature name.
  - ``GradientBoostWeights``  — flat-array regression trees + learning rate
                                + initial prediction.
  - ``EnsembleWeights``       — one of each, blended by inverse in-sample MAPE.

Regression trees are stored as a flat list of ``TreeNode`` with integer child
indices (``-1`` = no child). Node 0 is the root; a node with both children
``-1`` is a leaf and carries its prediction in ``left_value`` (mirrored into
``right_value``).

All models here are frozen; the registry produces updated copies via
``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ModelType(StrEnum):
    """Algorithm family of a trained artifact."""

    LINEAR = "linear"
    GRADIENT_BOOST = "gradient_boost"
    ENSEMBLE = "ensemble"


class ModelStatus(StrEnum):
    """Lifecycle state. At most one ACTIVE row per restaurant.

    TRAINING is the default of an ``MLModel`` that has not been saved yet;
    ``save_model`` always stores ACTIVE.
    """

    TRAINING = "training"
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    FAILED = "failed"


class AccuracyTrend(StrEnum):
    """Direction of live error relative to training error."""

    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


# ── Hyperparameters and metrics ───────────────────────────────────────────────


class ModelParameters(BaseModel):
    """Resolved training hyperparameters stored alongside the weights.

    ``boost_learning_rate`` is the shrinkage for gradient-boost trees; it is
    kept separate from the linear ``learning_rate`` because the two families
    need very different step sizes. ``error`` is only set on FAILED models.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    learning_rate: float = 0.01
    max_iterations: int = 1000
    regularization: float = 0.01
    num_trees: int = 50
    max_depth: int = 4
    min_samples_leaf: int = 5
    subsample_ratio: float = 0.8
    boost_learning_rate: float = 0.1
    random_seed: Optional[int] = None
    error: Optional[str] = None


class TrainingMetrics(BaseModel):
    """In-sample accuracy summary. ``mape`` is a percentage."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    mae: float
    rmse: float
    mape: float
    r2_score: float


# ── Weight variants ───────────────────────────────────────────────────────────


class LinearWeights(BaseModel):
    """Single shared weight vector applied to both dine-in and delivery."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_type: Literal["linear"] = "linear"
    intercept: float
    coefficients: dict[str, float]


class TreeNode(BaseModel):
    """One node of a flat regression tree."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    feature_index: int = 0
    threshold: float = 0.0
    left_value: float
    right_value: float
    left_child: int = -1
    right_child: int = -1

    @property
    def is_leaf(self) -> bool:
        return self.left_child == -1 and self.right_child == -1


class RegressionTree(BaseModel):
    """Flat node array; ``nodes[0]`` is the root."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    nodes: list[TreeNode]

    @field_validator("nodes")
    @classmethod
    def validate_nodes(cls, v: list[TreeNode]) -> list[TreeNode]:
        if not v:
            raise ValueError("A regression tree needs at least one node.")
        n = len(v)
        for idx, node in enumerate(v):
            for child in (node.left_child, node.right_child):
                if child != -1 and not idx < child < n:
                    raise ValueError(
                        f"Node {idx} has invalid child index {child} (tree size {n})."
                    )
        return v


class GradientBoostWeights(BaseModel):
    """Additive tree ensemble: ``initial + learning_rate * Σ tree(x)``."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_type: Literal["gradient_boost"] = "gradient_boost"
    trees: list[RegressionTree]
    learning_rate: float
    initial_prediction: float


class EnsembleWeights(BaseModel):
    """Linear + gradient boost blended by inverse in-sample MAPE."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_type: Literal["ensemble"] = "ensemble"
    linear: LinearWeights
    gradient_boost: GradientBoostWeights
    linear_weight: float
    gradient_boost_weight: float

    @model_validator(mode="after")
    def validate_weights_sum(self) -> "EnsembleWeights":
        total = self.linear_weight + self.gradient_boost_weight
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"Ensemble weights must sum to 1.0, got {total}.")
        if not 0.0 <= self.linear_weight <= 1.0:
            raise ValueError(f"linear_weight must be in [0, 1], got {self.linear_weight}.")
        return self


ModelWeights = Annotated[
    Union[LinearWeights, GradientBoostWeights, EnsembleWeights],
    Field(discriminator="model_type"),
]


# ── Stored artifact ───────────────────────────────────────────────────────────


class MLModel(BaseModel):
    """A trained, versioned model for one restaurant.

    Attributes:
        model_id: Auto-assigned DB PK; ``None`` before insertion.
        restaurant_id: Owning restaurant.
        version: Monotonic per restaurant, never reused.
        model_type: Algorithm family; always equals ``weights.model_type``.
        weights: Algorithm-specific parameters (tagged union).
        parameters: Hyperparameters used for training.
        feature_names: Canonical feature order the weights index by.
        mae / rmse / mape / r2_score: In-sample training metrics.
        trained_at: UTC time training finished.
        data_points_used: Labeled rows used for training.
        training_duration_ms: Wall time of the training call.
        status: Lifecycle state.
        predictions_count: Predictions served since activation.
        last_prediction_at: UTC time of the last served prediction.
        recent_mae: Live MAE reported by the evaluation loop.
        accuracy_trend: Live error direction.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: Optional[int] = None
    restaurant_id: str
    version: int
    model_type: ModelType
    weights: ModelWeights
    parameters: ModelParameters = ModelParameters()
    feature_names: list[str]
    mae: Optional[float] = None
    rmse: Optional[float] = None
    mape: Optional[float] = None
    r2_score: Optional[float] = None
    trained_at: datetime
    data_points_used: int = 0
    training_duration_ms: int = 0
    status: ModelStatus = ModelStatus.TRAINING
    predictions_count: int = 0
    last_prediction_at: Optional[datetime] = None
    recent_mae: Optional[float] = None
    accuracy_trend: AccuracyTrend = AccuracyTrend.STABLE

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"version must be >= 1, got {v}.")
        return v

    @field_validator("trained_at", "last_prediction_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def validate_type_matches_weights(self) -> "MLModel":
        if self.weights.model_type != self.model_type:
            raise ValueError(
                f"model_type '{self.model_type}' does not match weights "
                f"'{self.weights.model_type}'."
            )
        return self

    @property
    def metrics(self) -> Optional[TrainingMetrics]:
        """Training metrics, or ``None`` if any is missing."""
        if None in (self.mae, self.rmse, self.mape, self.r2_score):
            return None
        return TrainingMetrics(
            mae=self.mae, rmse=self.rmse, mape=self.mape, r2_score=self.r2_score
        )


class ModelHistoryEntry(BaseModel):
    """One row of ``get_model_history`` output."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    version: int
    model_type: ModelType
    trained_at: datetime
    status: ModelStatus
    mae: Optional[float] = None
    rmse: Optional[float] = None
    mape: Optional[float] = None
    r2_score: Optional[float] = None
    data_points_used: int = 0
    predictions_count: int = 0


class ActiveModelInfo(BaseModel):
    """Summary of a restaurant's ACTIVE model for monitoring jobs."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    restaurant_id: str
    restaurant_name: str
    version: int
    model_type: ModelType
    trained_at: datetime
    mae: Optional[float] = None
    mape: Optional[float] = None
    predictions_count: int = 0
    accuracy_trend: AccuracyTrend = AccuracyTrend.STABLE
    last_prediction_at: Optional[datetime] = None


# ── Registry reports ──────────────────────────────────────────────────────────


class RetrainDecision(BaseModel):
    """Outcome of ``ModelRegistry.check_retraining_needed``."""

    model_config = ConfigDict(frozen=True)

    needed: bool
    reason: Optional[str] = None


class ModelImprovement(BaseModel):
    """Change relative to version ``v - 1``; positive means the new model is better."""

    model_config = ConfigDict(frozen=True)

    mae_delta: float
    mape_improvement: float


class ModelEvaluation(BaseModel):
    """Snapshot of an ACTIVE model's quality for the evaluation job."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: Optional[int] = None
    restaurant_id: str
    version: int
    evaluated_at: datetime
    metrics: TrainingMetrics
    needs_retraining: bool
    retraining_reason: Optional[str] = None
    improvement_over_previous: Optional[ModelImprovement] = None
