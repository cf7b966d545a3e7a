"""
Shared pytest fixtures for the demand forecaster test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``seeded_db``: ``in_memory_db`` plus two forecasting-enabled restaurants.
  - Factories for snapshots, demand history and model save requests.
"""

from __future__ import annotations

import random
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Generator, Optional

import pytest

from demand_forecaster.db.repositories.restaurant_repo import RestaurantRepository
from demand_forecaster.db.repositories.snapshot_repo import SnapshotRepository
from demand_forecaster.db.schema import apply_schema
from demand_forecaster.features.registry import FEATURE_NAMES
from demand_forecaster.features.temporal import temporal_features
from demand_forecaster.models.event import EventCategory, EventSource, LocalEvent
from demand_forecaster.models.ml_model import (
    LinearWeights,
    ModelParameters,
    ModelType,
    TrainingMetrics,
)
from demand_forecaster.models.restaurant import Restaurant
from demand_forecaster.models.snapshot import DemandActual, FeatureSnapshot
from demand_forecaster.registry.model_registry import ModelSaveRequest


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Schema is applied idempotently.
    Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def sample_restaurant() -> Restaurant:
    """A downtown Los Angeles restaurant."""
    return Restaurant(
        restaurant_id="r-1",
        name="Bistro One",
        lat=34.0430,
        lon=-118.2673,
    )


@pytest.fixture
def seeded_db(in_memory_db: sqlite3.Connection, sample_restaurant: Restaurant) -> sqlite3.Connection:
    """In-memory DB holding ``r-1`` and a second restaurant ``r-2``."""
    repo = RestaurantRepository(in_memory_db)
    repo.upsert(sample_restaurant)
    repo.upsert(Restaurant(restaurant_id="r-2", name="Taqueria Two", lat=34.05, lon=-118.25))
    return in_memory_db


# ── Factories ─────────────────────────────────────────────────────────────────

def make_snapshot(
    restaurant_id: str = "r-1",
    snapshot_date: date = date(2026, 10, 14),
    hour_slot: int = 12,
    **overrides,
) -> FeatureSnapshot:
    """A raw snapshot with a consistent calendar block for ``snapshot_date``."""
    cal = temporal_features(snapshot_date)
    fields = dict(
        restaurant_id=restaurant_id,
        date=snapshot_date,
        hour_slot=hour_slot,
        day_of_week=cal.day_of_week,
        week_of_year=cal.week_of_year,
        month_of_year=cal.month_of_year,
        is_weekend=cal.is_weekend,
        is_holiday=cal.is_holiday,
        holiday_name=cal.holiday_name,
    )
    fields.update(overrides)
    return FeatureSnapshot(**fields)


def seed_training_history(
    conn: sqlite3.Connection,
    restaurant_id: str = "r-1",
    days: int = 45,
    end_date: date = date(2026, 10, 14),
    seed: int = 42,
    hours: int = 24,
) -> int:
    """Store ``days * hours`` labeled snapshots where demand tracks the hour.

    ``hours`` limits each day to slots ``0..hours-1``.

    Dine-in is ``3 * hour`` and delivery ``1.5 * hour`` plus small noise; the
    lag / rolling fields carry the noiseless hourly profile so a linear model
    can recover it. Returns the number of labeled rows written.
    """
    rng = random.Random(seed)
    repo = SnapshotRepository(conn)
    written = 0
    for offset in range(days):
        d = end_date - timedelta(days=offset)
        for h in range(hours):
            dine_in = 3.0 * h
            delivery = 1.5 * h
            repo.upsert_snapshot(
                make_snapshot(
                    restaurant_id,
                    d,
                    h,
                    temperature=18.0,
                    feels_like=17.0,
                    humidity=60.0,
                    precipitation=0.0,
                    wind_speed=5.0,
                    cloud_cover=50.0,
                    lag_dine_in_1d=dine_in,
                    lag_dine_in_7d=dine_in,
                    lag_delivery_1d=delivery,
                    lag_delivery_7d=delivery,
                    avg_dine_in_7d=dine_in,
                    avg_delivery_7d=delivery,
                    avg_dine_in_28d=dine_in,
                    avg_delivery_28d=delivery,
                    dine_in_trend=0.0,
                    delivery_trend=0.0,
                )
            )
            repo.upsert_actual(
                DemandActual(
                    restaurant_id=restaurant_id,
                    date=d,
                    hour_slot=h,
                    actual_dine_in=max(0.0, dine_in + rng.uniform(-1.0, 1.0)),
                    actual_delivery=max(0.0, delivery + rng.uniform(-0.5, 0.5)),
                )
            )
            written += 1
    return written


def make_save_request(
    restaurant_id: str = "r-1",
    mae: float = 10.0,
    mape: float = 20.0,
    intercept: float = 20.0,
    coefficients: Optional[dict[str, float]] = None,
    trained_at: Optional[datetime] = None,
) -> ModelSaveRequest:
    """A LINEAR model save request with the given metrics."""
    return ModelSaveRequest(
        restaurant_id=restaurant_id,
        model_type=ModelType.LINEAR,
        weights=LinearWeights(intercept=intercept, coefficients=coefficients or {}),
        parameters=ModelParameters(),
        feature_names=list(FEATURE_NAMES),
        metrics=TrainingMetrics(mae=mae, rmse=mae * 1.2, mape=mape, r2_score=0.5),
        data_points_used=720,
        training_duration_ms=5,
        trained_at=trained_at,
    )


def make_event(
    external_id: str = "evt-1",
    name: str = "Lakers vs Celtics",
    start: Optional[datetime] = None,
    hours: int = 3,
    lat: float = 34.0430,
    lon: float = -118.2673,
    source: EventSource = EventSource.PREDICTHQ,
    **overrides,
) -> LocalEvent:
    """A local event starting tomorrow at 19:00 UTC unless ``start`` is given."""
    if start is None:
        tomorrow = datetime.now(tz=timezone.utc).date() + timedelta(days=1)
        start = datetime(tomorrow.year, tomorrow.month, tomorrow.day, 19, tzinfo=timezone.utc)
    fields = dict(
        external_id=external_id,
        source=source,
        name=name,
        category=EventCategory.SPORTS,
        lat=lat,
        lon=lon,
        start_time=start,
        end_time=start + timedelta(hours=hours),
        expected_attendance=18_000,
        rank=4,
    )
    fields.update(overrides)
    return LocalEvent(**fields)


@pytest.fixture
def snapshot_factory() -> Callable[..., FeatureSnapshot]:
    return make_snapshot


@pytest.fixture
def save_request_factory() -> Callable[..., ModelSaveRequest]:
    return make_save_request


@pytest.fixture
def event_factory() -> Callable[..., LocalEvent]:
    return make_event


@pytest.fixture
def history_seeder() -> Callable[..., int]:
    return seed_training_history
