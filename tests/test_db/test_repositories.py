"""Tests for repository round-trip operations using in-memory SQLite."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from demand_forecaster.db.repositories.event_repo import CachedEventRepository
from demand_forecaster.db.repositories.model_repo import ModelRepository
from demand_forecaster.db.repositories.restaurant_repo import RestaurantRepository
from demand_forecaster.db.repositories.snapshot_repo import SnapshotRepository
from demand_forecaster.models.ml_model import (
    LinearWeights,
    MLModel,
    ModelStatus,
    ModelType,
)
from demand_forecaster.models.restaurant import Restaurant
from demand_forecaster.models.snapshot import DemandActual
from demand_forecaster.models.weather import WeatherCondition

from conftest import make_event, make_snapshot


def _model(version: int, status: ModelStatus = ModelStatus.DEPRECATED) -> MLModel:
    return MLModel(
        restaurant_id="r-1",
        version=version,
        model_type=ModelType.LINEAR,
        weights=LinearWeights(intercept=1.5, coefficients={"hour_12": 0.25}),
        feature_names=["hour_12"],
        mae=3.0,
        rmse=4.0,
        mape=12.0,
        r2_score=0.7,
        trained_at=datetime(2026, 10, 1, 4, tzinfo=timezone.utc),
        status=status,
    )


# ── Restaurants ───────────────────────────────────────────────────────────────

class TestRestaurantRepository:
    def test_upsert_and_get(self, in_memory_db, sample_restaurant):
        repo = RestaurantRepository(in_memory_db)
        repo.upsert(sample_restaurant)
        fetched = repo.get_by_id("r-1")
        assert fetched == sample_restaurant

    def test_upsert_updates_in_place(self, in_memory_db, sample_restaurant):
        repo = RestaurantRepository(in_memory_db)
        repo.upsert(sample_restaurant)
        repo.upsert(sample_restaurant.model_copy(update={"name": "Bistro Renamed"}))
        assert repo.get_by_id("r-1").name == "Bistro Renamed"
        assert len(repo.list_all()) == 1

    def test_list_enabled_skips_disabled(self, seeded_db):
        repo = RestaurantRepository(seeded_db)
        repo.upsert(
            Restaurant(restaurant_id="r-3", name="Closed", lat=0.0, lon=0.0, forecasting_enabled=False)
        )
        enabled = [r.restaurant_id for r in repo.list_enabled()]
        assert enabled == ["r-1", "r-2"]
        assert len(repo.list_all()) == 3

    def test_unknown_id_returns_none(self, in_memory_db):
        assert RestaurantRepository(in_memory_db).get_by_id("missing") is None


# ── Snapshots and actuals ─────────────────────────────────────────────────────

class TestSnapshotRepository:
    def test_snapshot_round_trip(self, seeded_db):
        repo = SnapshotRepository(seeded_db)
        snap = make_snapshot(
            hour_slot=18,
            temperature=22.5,
            weather_condition=WeatherCondition.RAIN,
            event_count=2,
            nearest_event_dist=1.25,
            lag_dine_in_1d=41.0,
        )
        repo.upsert_snapshot(snap)
        fetched = repo.get_snapshot("r-1", snap.date, 18)
        assert fetched == snap
        assert not fetched.is_labeled

    def test_upsert_overwrites_same_key(self, seeded_db):
        repo = SnapshotRepository(seeded_db)
        repo.upsert_snapshot(make_snapshot(temperature=10.0))
        repo.upsert_snapshot(make_snapshot(temperature=30.0))
        assert repo.count_snapshots("r-1") == 1
        assert repo.get_snapshot("r-1", date(2026, 10, 14), 12).temperature == 30.0

    def test_list_labeled_joins_actuals(self, seeded_db):
        repo = SnapshotRepository(seeded_db)
        repo.upsert_snapshots([make_snapshot(hour_slot=h) for h in range(3)])
        repo.upsert_actual(
            DemandActual(
                restaurant_id="r-1", date=date(2026, 10, 14), hour_slot=1,
                actual_dine_in=12.0, actual_delivery=4.0,
            )
        )
        labeled = repo.list_labeled("r-1")
        assert len(labeled) == 1
        assert labeled[0].hour_slot == 1
        assert labeled[0].actual_dine_in == 12.0
        assert labeled[0].is_labeled

    def test_list_labeled_limit_keeps_newest_oldest_first(self, seeded_db):
        repo = SnapshotRepository(seeded_db)
        for offset in range(5):
            d = date(2026, 10, 10) + timedelta(days=offset)
            repo.upsert_snapshot(make_snapshot(snapshot_date=d, hour_slot=0))
            repo.upsert_actual(
                DemandActual(
                    restaurant_id="r-1", date=d, hour_slot=0,
                    actual_dine_in=float(offset), actual_delivery=0.0,
                )
            )
        rows = repo.list_labeled("r-1", limit=3)
        assert [r.date for r in rows] == [
            date(2026, 10, 12),
            date(2026, 10, 13),
            date(2026, 10, 14),
        ]

    def test_actuals_between_is_half_open(self, seeded_db):
        repo = SnapshotRepository(seeded_db)
        for day in (10, 11, 12):
            repo.upsert_actual(
                DemandActual(
                    restaurant_id="r-1", date=date(2026, 10, day), hour_slot=9,
                    actual_dine_in=1.0, actual_delivery=1.0,
                )
            )
        rows = repo.get_actuals_between("r-1", date(2026, 10, 10), date(2026, 10, 12))
        assert [r.date.day for r in rows] == [10, 11]

    def test_recent_snapshots_newest_first(self, seeded_db):
        repo = SnapshotRepository(seeded_db)
        repo.upsert_snapshots([make_snapshot(hour_slot=h) for h in (3, 7, 5)])
        assert [s.hour_slot for s in repo.recent_snapshots("r-1", limit=2)] == [7, 5]


# ── Cached events ─────────────────────────────────────────────────────────────

class TestCachedEventRepository:
    def test_upsert_returns_stable_id(self, in_memory_db):
        repo = CachedEventRepository(in_memory_db)
        event = make_event()
        now = datetime.now(tz=timezone.utc)
        first = repo.upsert(event, fetched_at=now, expires_at=event.end_time + timedelta(days=7))
        second = repo.upsert(
            event.model_copy(update={"name": "Renamed"}),
            fetched_at=now,
            expires_at=event.end_time + timedelta(days=7),
        )
        assert first == second
        assert repo.count() == 1

    def test_find_overlapping_window_and_expiry(self, in_memory_db):
        repo = CachedEventRepository(in_memory_db)
        now = datetime.now(tz=timezone.utc)
        live = make_event("live")
        expired = make_event("expired")
        repo.upsert(live, fetched_at=now, expires_at=now + timedelta(days=3))
        repo.upsert(expired, fetched_at=now, expires_at=now - timedelta(hours=1))

        window_start = live.start_time - timedelta(hours=1)
        found = repo.find_overlapping(window_start, live.end_time, now)
        assert [e.external_id for e in found] == ["live"]
        assert found[0].event_id is not None

    def test_find_overlapping_bbox(self, in_memory_db):
        repo = CachedEventRepository(in_memory_db)
        now = datetime.now(tz=timezone.utc)
        near = make_event("near")
        far = make_event("far", lat=40.7, lon=-74.0)
        for e in (near, far):
            repo.upsert(e, fetched_at=now, expires_at=now + timedelta(days=3))
        found = repo.find_overlapping(
            near.start_time, near.end_time, now, bbox=(33.5, 34.5, -119.0, -118.0)
        )
        assert [e.external_id for e in found] == ["near"]

    def test_delete_expired(self, in_memory_db):
        repo = CachedEventRepository(in_memory_db)
        now = datetime.now(tz=timezone.utc)
        repo.upsert(make_event("old"), fetched_at=now, expires_at=now - timedelta(days=1))
        repo.upsert(make_event("new"), fetched_at=now, expires_at=now + timedelta(days=1))
        assert repo.delete_expired(now) == 1
        assert repo.count() == 1


# ── Models ────────────────────────────────────────────────────────────────────

class TestModelRepository:
    def test_insert_and_get_by_version(self, seeded_db):
        repo = ModelRepository(seeded_db)
        model = _model(1, ModelStatus.ACTIVE)
        model_id = repo.insert(model)
        fetched = repo.get_by_version("r-1", 1)
        assert fetched.model_id == model_id
        assert fetched.weights == model.weights
        assert fetched.trained_at == model.trained_at
        assert repo.get_active("r-1").version == 1

    def test_latest_version_zero_when_empty(self, seeded_db):
        assert ModelRepository(seeded_db).latest_version("r-1") == 0

    def test_demote_then_activate(self, seeded_db):
        repo = ModelRepository(seeded_db)
        repo.insert(_model(1, ModelStatus.ACTIVE))
        repo.insert(_model(2))
        assert repo.demote_active("r-1") == 1
        assert repo.get_active("r-1") is None
        repo.activate("r-1", 2)
        assert repo.get_active("r-1").version == 2

    def test_increment_predictions_targets_active_only(self, seeded_db):
        repo = ModelRepository(seeded_db)
        repo.insert(_model(1))
        repo.insert(_model(2, ModelStatus.ACTIVE))
        at = datetime(2026, 10, 15, 12, tzinfo=timezone.utc)
        for _ in range(3):
            repo.increment_predictions("r-1", at)
        assert repo.get_by_version("r-1", 2).predictions_count == 3
        assert repo.get_by_version("r-1", 2).last_prediction_at == at
        assert repo.get_by_version("r-1", 1).predictions_count == 0

    def test_delete_versions_never_deletes_active(self, seeded_db):
        repo = ModelRepository(seeded_db)
        repo.insert(_model(1))
        repo.insert(_model(2, ModelStatus.ACTIVE))
        deleted = repo.delete_versions("r-1", [1, 2])
        assert deleted == 1
        assert [m.version for m in repo.list_history("r-1")] == [2]

    def test_list_active_with_names(self, seeded_db):
        repo = ModelRepository(seeded_db)
        repo.insert(_model(1, ModelStatus.ACTIVE))
        active = repo.list_active_with_names()
        assert len(active) == 1
        assert active[0].restaurant_name == "Bistro One"
