"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Table creation order respects foreign key dependencies:
  1. restaurants         (no FKs)
  2. ml_models           (→ restaurants)
  3. feature_snapshots   (→ restaurants)
  4. demand_actuals      (→ restaurants)
  5. cached_events       (no FKs)

Key constraints:
  - ``ml_models``: UNIQUE(restaurant_id, version) plus a partial unique index
    allowing at most one ``status = 'active'`` row per restaurant.
  - ``feature_snapshots`` / ``demand_actuals``: one row per
    (restaurant_id, date, hour_slot); writes are upserts.
  - ``cached_events``: UNIQUE(external_id, source).
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_RESTAURANTS = """
CREATE TABLE IF NOT EXISTS restaurants (
    restaurant_id        TEXT    PRIMARY KEY,
    name                 TEXT    NOT NULL,
    lat                  REAL    NOT NULL,
    lon                  REAL    NOT NULL,
    forecasting_enabled  INTEGER NOT NULL DEFAULT 1,
    created_at           TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_ML_MODELS = """
CREATE TABLE IF NOT EXISTS ml_models (
    model_id              INTEGER PRIMARY KEY AUTOINCREMENT,
    restaurant_id         TEXT    NOT NULL REFERENCES restaurants(restaurant_id),
    version               INTEGER NOT NULL,
    model_type            TEXT    NOT NULL,
    weights_json          TEXT    NOT NULL,
    parameters_json       TEXT    NOT NULL,
    feature_names_json    TEXT    NOT NULL,
    mae                   REAL,
    rmse                  REAL,
    mape                  REAL,
    r2_score              REAL,
    trained_at            TEXT    NOT NULL,
    data_points_used      INTEGER NOT NULL DEFAULT 0,
    training_duration_ms  INTEGER NOT NULL DEFAULT 0,
    status                TEXT    NOT NULL DEFAULT 'training',
    predictions_count     INTEGER NOT NULL DEFAULT 0,
    last_prediction_at    TEXT,
    recent_mae            REAL,
    accuracy_trend        TEXT    NOT NULL DEFAULT 'stable',
    created_at            TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at            TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (restaurant_id, version)
);
"""

_DDL_ML_MODELS_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_ml_models_one_active
    ON ml_models(restaurant_id)
    WHERE status = 'active';
CREATE INDEX IF NOT EXISTS idx_ml_models_status
    ON ml_models(status);
"""

_DDL_FEATURE_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS feature_snapshots (
    snapshot_id            INTEGER PRIMARY KEY AUTOINCREMENT,
    restaurant_id          TEXT    NOT NULL REFERENCES restaurants(restaurant_id),
    date                   TEXT    NOT NULL,
    hour_slot              INTEGER NOT NULL CHECK (hour_slot BETWEEN 0 AND 23),
    day_of_week            INTEGER NOT NULL,
    week_of_year           INTEGER NOT NULL,
    month_of_year          INTEGER NOT NULL,
    is_weekend             INTEGER NOT NULL DEFAULT 0,
    is_holiday             INTEGER NOT NULL DEFAULT 0,
    holiday_name           TEXT,
    temperature            REAL,
    feels_like             REAL,
    humidity               REAL,
    precipitation          REAL,
    wind_speed             REAL,
    cloud_cover            REAL,
    weather_condition      TEXT,
    event_count            INTEGER NOT NULL DEFAULT 0,
    total_attendance       INTEGER NOT NULL DEFAULT 0,
    nearest_event_dist     REAL,
    event_impact_score     REAL    NOT NULL DEFAULT 0.0,
    lag_dine_in_1d         REAL,
    lag_dine_in_7d         REAL,
    lag_delivery_1d        REAL,
    lag_delivery_7d        REAL,
    avg_dine_in_7d         REAL,
    avg_delivery_7d        REAL,
    avg_dine_in_28d        REAL,
    avg_delivery_28d       REAL,
    dine_in_trend          REAL,
    delivery_trend         REAL,
    created_at             TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (restaurant_id, date, hour_slot)
);
"""

_DDL_DEMAND_ACTUALS = """
CREATE TABLE IF NOT EXISTS demand_actuals (
    actual_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    restaurant_id    TEXT    NOT NULL REFERENCES restaurants(restaurant_id),
    date             TEXT    NOT NULL,
    hour_slot        INTEGER NOT NULL CHECK (hour_slot BETWEEN 0 AND 23),
    actual_dine_in   REAL    NOT NULL,
    actual_delivery  REAL    NOT NULL,
    recorded_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (restaurant_id, date, hour_slot)
);
"""

_DDL_DEMAND_ACTUALS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_demand_actuals_restaurant_date
    ON demand_actuals(restaurant_id, date);
"""

_DDL_CACHED_EVENTS = """
CREATE TABLE IF NOT EXISTS cached_events (
    event_id             INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id          TEXT    NOT NULL,
    source               TEXT    NOT NULL,
    name                 TEXT    NOT NULL,
    category             TEXT    NOT NULL,
    subcategory          TEXT,
    lat                  REAL    NOT NULL,
    lon                  REAL    NOT NULL,
    venue                TEXT,
    city                 TEXT,
    state                TEXT,
    start_time           TEXT    NOT NULL,
    end_time             TEXT    NOT NULL,
    expected_attendance  INTEGER,
    rank                 INTEGER,
    fetched_at           TEXT    NOT NULL,
    expires_at           TEXT    NOT NULL,
    UNIQUE (external_id, source)
);
"""

_DDL_CACHED_EVENTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_cached_events_window
    ON cached_events(start_time, end_time);
"""

_ALL_DDL: list[str] = [
    _DDL_RESTAURANTS,
    _DDL_ML_MODELS,
    _DDL_ML_MODELS_INDEXES,
    _DDL_FEATURE_SNAPSHOTS,
    _DDL_DEMAND_ACTUALS,
    _DDL_DEMAND_ACTUALS_INDEXES,
    _DDL_CACHED_EVENTS,
    _DDL_CACHED_EVENTS_INDEXES,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "restaurants",
    "ml_models",
    "feature_snapshots",
    "demand_actuals",
    "cached_events",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            if statement.strip():
                conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
