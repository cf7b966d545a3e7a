"""
Tests for schema creation, migrations and SAVEPOINT transactions.

What we test
------------
1. Every expected table exists after ``apply_schema``.
2. ``apply_schema`` is idempotent.
3. The partial unique index allows at most one ACTIVE model per restaurant.
4. (restaurant_id, version) is unique in ``ml_models``.
5. ``run_migrations`` applies each migration once.
6. ``atomic`` rolls back everything inside the block on error.
"""

from __future__ import annotations

import sqlite3

import pytest

from demand_forecaster.db.connection import atomic
from demand_forecaster.db.migrations import MIGRATIONS, migration_0001_bootstrap, run_migrations
from demand_forecaster.db.repositories.restaurant_repo import RestaurantRepository
from demand_forecaster.db.schema import ALL_TABLE_NAMES, apply_schema, get_existing_tables
from demand_forecaster.models.restaurant import Restaurant


def _insert_model_row(conn, version: int, status: str) -> None:
    conn.execute(
        """
        INSERT INTO ml_models (
            restaurant_id, version, model_type, weights_json, parameters_json,
            feature_names_json, trained_at, status
        ) VALUES ('r-1', ?, 'linear', '{}', '{}', '[]', '2026-10-01T00:00:00+00:00', ?);
        """,
        (version, status),
    )


def test_all_tables_created(in_memory_db):
    existing = set(get_existing_tables(in_memory_db))
    for table in ALL_TABLE_NAMES:
        assert table in existing, f"Table '{table}' was not created."


def test_apply_schema_is_idempotent(in_memory_db):
    apply_schema(in_memory_db)
    apply_schema(in_memory_db)
    assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))


def test_only_one_active_model_per_restaurant(seeded_db):
    _insert_model_row(seeded_db, 1, "active")
    _insert_model_row(seeded_db, 2, "deprecated")
    with pytest.raises(sqlite3.IntegrityError):
        _insert_model_row(seeded_db, 3, "active")


def test_version_unique_per_restaurant(seeded_db):
    _insert_model_row(seeded_db, 1, "deprecated")
    with pytest.raises(sqlite3.IntegrityError):
        _insert_model_row(seeded_db, 1, "deprecated")


def test_model_requires_known_restaurant(in_memory_db):
    with pytest.raises(sqlite3.IntegrityError):
        _insert_model_row(in_memory_db, 1, "active")


def test_migrations_apply_once(in_memory_db):
    first = run_migrations(in_memory_db)
    second = run_migrations(in_memory_db)
    assert first == len(MIGRATIONS)
    assert second == 0


def test_bootstrap_migration_is_recorded_without_ddl(in_memory_db):
    def _schema_objects():
        return in_memory_db.execute(
            "SELECT name FROM sqlite_master WHERE name NOT LIKE 'sqlite_%' ORDER BY name;"
        ).fetchall()

    run_migrations(in_memory_db)
    before = [r[0] for r in _schema_objects()]
    migration_0001_bootstrap(in_memory_db)

    assert [r[0] for r in _schema_objects()] == before
    recorded = {
        r[0] for r in in_memory_db.execute("SELECT version_id FROM schema_versions;").fetchall()
    }
    assert "0001_bootstrap" in recorded


def test_atomic_rolls_back_on_error(in_memory_db):
    repo = RestaurantRepository(in_memory_db)
    with pytest.raises(RuntimeError):
        with atomic(in_memory_db, "test_block"):
            repo.upsert(Restaurant(restaurant_id="r-9", name="Ghost", lat=0.0, lon=0.0))
            raise RuntimeError("boom")
    assert repo.get_by_id("r-9") is None


def test_atomic_keeps_changes_on_success(in_memory_db):
    repo = RestaurantRepository(in_memory_db)
    with atomic(in_memory_db, "test_block"):
        repo.upsert(Restaurant(restaurant_id="r-9", name="Kept", lat=0.0, lon=0.0))
    assert repo.get_by_id("r-9") is not None


def test_atomic_rejects_bad_savepoint_name(in_memory_db):
    with pytest.raises(ValueError):
        with atomic(in_memory_db, "bad name;"):
            pass
