"""
Tests for the ``FeatureEngineer`` service and the Parquet training export.

What we test
------------
1. extract_features returns 24 raw vectors (or one for a given hour) with
   provider weather/events merged into the stored snapshot.
2. Unknown restaurants and invalid hours are rejected.
3. collect_snapshots persists one row per hour; record_actuals feeds the
   lag block of later dates.
4. learn_scaling_params: defaults below the snapshot threshold, learned and
   cached params above it, shared through the external cache.
5. export_training_dataset writes labeled rows with the full column set.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pyarrow.parquet as pq
import pytest

from demand_forecaster.config import FeatureConfig
from demand_forecaster.db.repositories.snapshot_repo import SnapshotRepository
from demand_forecaster.errors import RestaurantNotFoundError
from demand_forecaster.features.dataset_export import export_training_dataset
from demand_forecaster.features.engineering import DEFAULT_SCALING, FeatureEngineer
from demand_forecaster.features.registry import FEATURE_NAMES, feature_index
from demand_forecaster.models.snapshot import DemandActual
from demand_forecaster.models.weather import WeatherCondition, WeatherConditions
from demand_forecaster.registry.cache import MemoryTTLCache

from conftest import make_event, make_snapshot

DAY = date(2026, 10, 17)


class _FixedWeather:
    def get_forecast(self, lat, lon, days):
        return [
            WeatherConditions(
                observed_at=datetime(DAY.year, DAY.month, DAY.day, h, tzinfo=timezone.utc),
                temperature=25.0,
                feels_like=26.0,
                humidity=40.0,
                wind_speed=2.0,
                cloud_cover=10.0,
            )
            for h in range(24)
        ]


class _FixedEvents:
    def __init__(self, events):
        self.events = events

    def get_local_events(self, lat, lon, radius_miles, start, end):
        return self.events


def test_extract_all_hours(seeded_db):
    fe = FeatureEngineer(seeded_db)
    vectors = fe.extract_features("r-1", DAY)
    assert [v.metadata.hour_slot for v in vectors] == list(range(24))
    assert all(len(v.features) == 62 for v in vectors)
    assert all(not v.normalized for v in vectors)
    assert fe.get_feature_names() == list(FEATURE_NAMES)


def test_extract_single_hour_merges_providers(seeded_db):
    event = make_event(start=datetime(2026, 10, 17, 19, tzinfo=timezone.utc))
    fe = FeatureEngineer(
        seeded_db,
        weather_provider=_FixedWeather(),
        event_provider=_FixedEvents([event]),
    )
    [fv] = fe.extract_features("r-1", DAY, hour_slot=19)
    snap = fv.metadata.raw_snapshot
    assert snap.temperature == 25.0
    assert snap.weather_condition == WeatherCondition.CLEAR
    assert snap.event_count == 1
    assert snap.total_attendance == 18_000
    assert fv.features[feature_index("hour_19")] == 1.0
    assert fv.features[feature_index("dow_6")] == 1.0


def test_unknown_restaurant_raises(in_memory_db):
    with pytest.raises(RestaurantNotFoundError):
        FeatureEngineer(in_memory_db).extract_features("nope", DAY)


@pytest.mark.parametrize("hour", [-1, 24])
def test_invalid_hour_raises(seeded_db, hour):
    with pytest.raises(ValueError):
        FeatureEngineer(seeded_db).extract_features("r-1", DAY, hour_slot=hour)


def test_collect_snapshots_persists_24_rows(seeded_db):
    fe = FeatureEngineer(seeded_db)
    assert fe.collect_snapshots("r-1", DAY) == 24
    assert fe.collect_snapshots("r-1", DAY) == 24
    assert SnapshotRepository(seeded_db).count_snapshots("r-1") == 24


def test_recorded_actuals_feed_lag_features(seeded_db):
    fe = FeatureEngineer(seeded_db)
    yesterday = DAY - timedelta(days=1)
    written = fe.record_actuals(
        [
            DemandActual(
                restaurant_id="r-1", date=yesterday, hour_slot=12,
                actual_dine_in=42.0, actual_delivery=9.0,
            )
        ]
    )
    assert written == 1
    [fv] = fe.extract_features("r-1", DAY, hour_slot=12)
    assert fv.metadata.raw_snapshot.lag_dine_in_1d == 42.0
    assert fv.metadata.raw_snapshot.avg_delivery_7d == 9.0


def test_store_feature_snapshot(seeded_db):
    fe = FeatureEngineer(seeded_db)
    fe.store_feature_snapshot(make_snapshot(hour_slot=3))
    assert SnapshotRepository(seeded_db).get_snapshot("r-1", date(2026, 10, 14), 3) is not None


# ── Scaling ───────────────────────────────────────────────────────────────────

def test_scaling_defaults_below_threshold(seeded_db):
    fe = FeatureEngineer(seeded_db, FeatureConfig(scaling_min_snapshots=100))
    SnapshotRepository(seeded_db).upsert_snapshots([make_snapshot(hour_slot=h) for h in range(5)])
    assert fe.learn_scaling_params("r-1") is DEFAULT_SCALING
    assert fe.get_scaling_params("r-1") is None


def test_learned_scaling_is_cached_and_shared(seeded_db):
    cache = MemoryTTLCache()
    config = FeatureConfig(scaling_min_snapshots=10)
    repo = SnapshotRepository(seeded_db)
    repo.upsert_snapshots(
        [make_snapshot(hour_slot=h, temperature=float(h)) for h in range(24)]
    )

    fe = FeatureEngineer(seeded_db, config, cache=cache)
    params = fe.learn_scaling_params("r-1")
    assert params.mean["temperature"] == pytest.approx(11.5)
    assert fe.get_scaling_params("r-1") == params

    other = FeatureEngineer(seeded_db, config, cache=cache)
    assert other.get_scaling_params("r-1") == params


# ── Export ────────────────────────────────────────────────────────────────────

def test_export_training_dataset(seeded_db, history_seeder, tmp_path):
    history_seeder(seeded_db, days=2)
    path = tmp_path / "exports" / "training_r-1.parquet"
    rows = export_training_dataset(seeded_db, "r-1", path)
    assert rows == 48

    table = pq.read_table(path)
    assert table.num_rows == 48
    assert table.column_names[:3] == ["restaurant_id", "date", "hour_slot"]
    assert table.column_names[3:65] == list(FEATURE_NAMES)
    assert table.column_names[-2:] == ["actual_dine_in", "actual_delivery"]


def test_export_empty_still_writes_schema(seeded_db, tmp_path):
    path = tmp_path / "empty.parquet"
    assert export_training_dataset(seeded_db, "r-2", path) == 0
    assert pq.read_table(path).num_rows == 0
