"""
Scheduler-facing training jobs.

An external scheduler (cron, systemd timer, APScheduler) decides *when* to
call these; this module only decides *what* each job does. Six jobs:

  train-model        Train one restaurant (forced unless told otherwise).
  retrain-if-needed  Ask the registry, train one restaurant if required.
  train-all          Every forecasting-enabled restaurant, sequentially.
  collect-features   Snapshot yesterday and the N-1 days before it.
  evaluate-models    Evaluate each ACTIVE model, report retrain candidates.
  cleanup            Drop expired cached events, prune old model versions.

Failure isolation
-----------------
Every job returns a ``JobResult`` and never raises. Batch jobs record a
per-restaurant failure in ``errors`` and move on to the next restaurant;
``success`` stays True unless the job itself could not run. Single-restaurant
jobs report ``success`` from the underlying training outcome.

Suggested cadence::

    0 2 * * 0   demand-forecaster train-all
    0 4 * * *   demand-forecaster collect-features
    0 5 * * *   demand-forecaster evaluate-models
    0 3 * * 6   demand-forecaster cleanup
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import Any, Optional

from demand_forecaster.config import AppConfig
from demand_forecaster.db.repositories.restaurant_repo import RestaurantRepository
from demand_forecaster.features.engineering import FeatureEngineer
from demand_forecaster.ingestion.event_aggregator import EventAggregator
from demand_forecaster.ingestion.weather_client import OpenWeatherClient
from demand_forecaster.ml.trainer import DemandTrainer, TrainingRequest, TrainingResult
from demand_forecaster.models.ml_model import ModelType
from demand_forecaster.registry.cache import ExternalCache, build_external_cache
from demand_forecaster.registry.model_registry import ModelRegistry
from demand_forecaster.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class TrainingJobType(StrEnum):
    TRAIN_MODEL = "train-model"
    RETRAIN_IF_NEEDED = "retrain-if-needed"
    TRAIN_ALL = "train-all"
    COLLECT_FEATURES = "collect-features"
    EVALUATE_MODELS = "evaluate-models"
    CLEANUP = "cleanup"


# ── Result type ───────────────────────────────────────────────────────────────

@dataclass
class JobResult:
    """Outcome of one job invocation.

    Attributes:
        job_type:              Which job ran.
        success:               False only when the job as a whole failed.
        restaurants_processed: Restaurants the job completed for.
        models_trained:        New model versions saved.
        errors:                Accumulated per-restaurant error messages.
        duration_ms:           Wall-clock time of the job.
        details:               Job-specific counters and per-restaurant rows.
    """

    job_type:              TrainingJobType
    success:               bool = True
    restaurants_processed: int = 0
    models_trained:        int = 0
    errors:                list[str] = field(default_factory=list)
    duration_ms:           int = 0
    details:               dict[str, Any] = field(default_factory=dict)


def _training_details(restaurant_id: str, result: TrainingResult) -> dict[str, Any]:
    return {
        "restaurant_id": restaurant_id,
        "version": result.version,
        "metrics": result.metrics.model_dump() if result.metrics else None,
        "data_points_used": result.data_points_used,
        "training_duration_ms": result.training_duration_ms,
    }


# ── Runner ────────────────────────────────────────────────────────────────────


class TrainingJobRunner:
    """Owns the services a job needs and exposes one method per job.

    Args:
        conn: Open SQLite connection shared by every service.
        config: Application config.
        registry: Model registry; built from ``config`` if omitted.
        trainer: Trainer; built around ``registry`` if omitted.
        feature_engineer: Feature service for ``collect_features``.
        event_aggregator: Event service for ``cleanup_expired_data``.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: AppConfig,
        registry: Optional[ModelRegistry] = None,
        trainer: Optional[DemandTrainer] = None,
        feature_engineer: Optional[FeatureEngineer] = None,
        event_aggregator: Optional[EventAggregator] = None,
    ) -> None:
        self.config = config
        self.restaurants = RestaurantRepository(conn)
        self.registry = registry or ModelRegistry(conn, config.registry)
        self.trainer = trainer or DemandTrainer(conn, config, self.registry)
        self.feature_engineer = feature_engineer or FeatureEngineer(conn, config.features)
        self.event_aggregator = event_aggregator or EventAggregator(conn, config.providers)

    @classmethod
    def from_config(
        cls,
        conn: sqlite3.Connection,
        config: AppConfig,
        external_cache: Optional[ExternalCache] = None,
    ) -> "TrainingJobRunner":
        """Wire every service from config, sharing one external cache.

        The OpenWeather client is only created when an API key is set; without
        one, weather features fall back to neutral defaults.
        """
        cache = external_cache if external_cache is not None else build_external_cache(config.cache)
        providers = config.providers
        weather = None
        if providers.openweather_api_key:
            weather = OpenWeatherClient(
                providers.openweather_api_key,
                timeout_seconds=providers.timeout_seconds,
                cache=cache,
                cache_ttl_seconds=providers.weather_cache_ttl_seconds,
            )
        events = EventAggregator(conn, providers, cache=cache)
        registry = ModelRegistry(conn, config.registry, external_cache=cache)
        return cls(
            conn,
            config,
            registry=registry,
            feature_engineer=FeatureEngineer(
                conn,
                config.features,
                weather_provider=weather,
                event_provider=events,
                cache=cache,
            ),
            event_aggregator=events,
        )

    # ── Dispatch ──────────────────────────────────────────────────────────────

    def run(self, job_type: TrainingJobType | str, **params: Any) -> JobResult:
        """Dispatch by job type. Any exception becomes a failed ``JobResult``."""
        started = time.perf_counter()
        try:
            kind = TrainingJobType(job_type)
        except ValueError:
            return JobResult(
                job_type=job_type,  # type: ignore[arg-type]
                success=False,
                errors=[f"Unknown job type: {job_type}"],
            )

        handlers = {
            TrainingJobType.TRAIN_MODEL: self.train_single_restaurant,
            TrainingJobType.RETRAIN_IF_NEEDED: self.retrain_if_needed,
            TrainingJobType.TRAIN_ALL: self.train_all_restaurants,
            TrainingJobType.COLLECT_FEATURES: self.collect_features,
            TrainingJobType.EVALUATE_MODELS: self.evaluate_models,
            TrainingJobType.CLEANUP: self.cleanup_expired_data,
        }
        logger.info("Job [%s] starting", kind)
        try:
            result = handlers[kind](**params)
        except Exception as exc:
            logger.error("Job [%s] FAILED: %s", kind, exc)
            return JobResult(
                job_type=kind,
                success=False,
                errors=[str(exc)],
                duration_ms=_elapsed_ms(started),
            )
        logger.info(
            "Job [%s] completed | restaurants=%d | models=%d | errors=%d",
            kind, result.restaurants_processed, result.models_trained, len(result.errors),
        )
        return result

    # ── Jobs ──────────────────────────────────────────────────────────────────

    def train_single_restaurant(
        self,
        restaurant_id: Optional[str] = None,
        model_type: Optional[ModelType | str] = None,
        force_retrain: bool = True,
        parameters: Optional[dict[str, Any]] = None,
    ) -> JobResult:
        """Train one restaurant's model."""
        started = time.perf_counter()
        if not restaurant_id:
            raise ValueError("restaurant_id is required for train-model")

        training = self.trainer.train_model(
            TrainingRequest(
                restaurant_id=restaurant_id,
                model_type=ModelType(model_type) if model_type else None,
                parameters=dict(parameters or {}),
                force_retrain=force_retrain,
            )
        )
        result = JobResult(
            job_type=TrainingJobType.TRAIN_MODEL,
            success=training.success,
            restaurants_processed=1,
            models_trained=1 if training.success else 0,
            details=_training_details(restaurant_id, training),
        )
        if not training.success:
            result.errors.append(training.error or "Training failed")
        result.duration_ms = _elapsed_ms(started)
        return result

    def retrain_if_needed(self, restaurant_id: Optional[str] = None) -> JobResult:
        """Retrain one restaurant only if the registry says so."""
        started = time.perf_counter()
        if not restaurant_id:
            raise ValueError("restaurant_id is required for retrain-if-needed")

        training = self.trainer.retrain_if_needed(restaurant_id)
        result = JobResult(job_type=TrainingJobType.RETRAIN_IF_NEEDED, restaurants_processed=1)
        if training is None:
            result.details = {"restaurant_id": restaurant_id, "retrain_triggered": False}
        else:
            result.details = {
                **_training_details(restaurant_id, training),
                "retrain_triggered": True,
            }
            result.success = training.success
            if training.success:
                result.models_trained = 1
            else:
                result.errors.append(training.error or "Retraining failed")
        result.duration_ms = _elapsed_ms(started)
        return result

    def train_all_restaurants(
        self,
        force_retrain: bool = False,
        model_type: Optional[ModelType | str] = None,
    ) -> JobResult:
        """Train every enabled restaurant in turn.

        Forced runs train unconditionally; otherwise each restaurant goes
        through the retrain check first. A restaurant that needed nothing
        counts as processed with no error.
        """
        started = time.perf_counter()
        result = JobResult(job_type=TrainingJobType.TRAIN_ALL)
        rows: list[dict[str, Any]] = []
        kind = ModelType(model_type) if model_type else None

        for restaurant in self.restaurants.list_enabled():
            try:
                if force_retrain:
                    training: Optional[TrainingResult] = self.trainer.train_model(
                        TrainingRequest(
                            restaurant_id=restaurant.restaurant_id,
                            model_type=kind,
                            force_retrain=True,
                        )
                    )
                else:
                    training = self.trainer.retrain_if_needed(restaurant.restaurant_id)
            except Exception as exc:
                logger.error("Training failed for %s: %s", restaurant.restaurant_id, exc)
                result.errors.append(f"{restaurant.name}: {exc}")
                continue

            result.restaurants_processed += 1
            if training is None:
                continue
            row = {
                "restaurant_id": restaurant.restaurant_id,
                "restaurant_name": restaurant.name,
                "success": training.success,
            }
            if training.success:
                result.models_trained += 1
                row["version"] = training.version
            else:
                result.errors.append(f"{restaurant.name}: {training.error}")
                row["error"] = training.error
            rows.append(row)

        result.details = {"results": rows}
        result.duration_ms = _elapsed_ms(started)
        return result

    def collect_features(self, days: Optional[int] = None) -> JobResult:
        """Store raw snapshots for yesterday and the ``days - 1`` days before."""
        started = time.perf_counter()
        days = days or self.config.jobs.collect_days
        result = JobResult(job_type=TrainingJobType.COLLECT_FEATURES)
        yesterday = utcnow().date() - timedelta(days=1)
        stored = 0

        for restaurant in self.restaurants.list_enabled():
            rid = restaurant.restaurant_id
            try:
                for offset in range(days):
                    stored += self.feature_engineer.collect_snapshots(
                        rid, yesterday - timedelta(days=offset)
                    )
            except Exception as exc:
                logger.error("Feature collection failed for %s: %s", rid, exc)
                result.errors.append(f"Feature collection for {rid}: {exc}")
                continue
            result.restaurants_processed += 1

        logger.info(
            "Collected %d feature snapshots for %d restaurants",
            stored, result.restaurants_processed,
        )
        result.details = {"feature_snapshots": stored, "days": days}
        result.duration_ms = _elapsed_ms(started)
        return result

    def evaluate_models(self) -> JobResult:
        """Evaluate every ACTIVE model and list those due for retraining."""
        started = time.perf_counter()
        result = JobResult(job_type=TrainingJobType.EVALUATE_MODELS)
        evaluations: list[dict[str, Any]] = []
        candidates: list[str] = []

        for info in self.registry.get_active_models():
            rid = info.restaurant_id
            try:
                evaluation = self.registry.get_model_evaluation(rid)
            except Exception as exc:
                logger.error("Evaluation failed for %s: %s", rid, exc)
                result.errors.append(f"Evaluation for {rid}: {exc}")
                continue

            result.restaurants_processed += 1
            if evaluation is None:
                continue
            evaluations.append(
                {
                    "restaurant_id": rid,
                    "restaurant_name": info.restaurant_name,
                    "version": info.version,
                    "metrics": evaluation.metrics.model_dump(),
                    "needs_retraining": evaluation.needs_retraining,
                    "reason": evaluation.retraining_reason,
                }
            )
            if evaluation.needs_retraining:
                candidates.append(rid)

        logger.info(
            "Evaluated %d models, %d need retraining",
            result.restaurants_processed, len(candidates),
        )
        result.details = {
            "evaluations": evaluations,
            "retrain_candidates": candidates,
        }
        result.duration_ms = _elapsed_ms(started)
        return result

    def cleanup_expired_data(self, keep: Optional[int] = None) -> JobResult:
        """Delete expired cached events and prune model history."""
        started = time.perf_counter()
        keep = keep if keep is not None else self.config.registry.keep_versions
        result = JobResult(job_type=TrainingJobType.CLEANUP)

        cleaned = self.event_aggregator.cleanup_expired_events()
        pruned = 0
        for restaurant in self.restaurants.list_enabled():
            rid = restaurant.restaurant_id
            try:
                pruned += self.registry.prune_model_history(rid, keep)
            except Exception as exc:
                logger.error("Model pruning failed for %s: %s", rid, exc)
                result.errors.append(f"Model pruning for {rid}: {exc}")
                continue
            result.restaurants_processed += 1

        logger.info("Cleaned up %d events and %d model versions", cleaned, pruned)
        result.details = {
            "events_cleaned_up": cleaned,
            "model_versions_pruned": pruned,
        }
        result.duration_ms = _elapsed_ms(started)
        return result


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
