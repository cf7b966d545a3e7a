"""
Repository for hourly feature snapshots and observed demand actuals.

Both tables are keyed by (restaurant_id, date, hour_slot) and written with
upserts, so re-running a collection job for the same day overwrites rather
than duplicates.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Optional

from demand_forecaster.db.repositories.base import BaseRepository
from demand_forecaster.models.snapshot import DemandActual, FeatureSnapshot
from demand_forecaster.models.weather import WeatherCondition

logger = logging.getLogger(__name__)

# Column order shared by the upsert statement and _snapshot_params().
_SNAPSHOT_COLUMNS: tuple[str, ...] = (
    "restaurant_id",
    "date",
    "hour_slot",
    "day_of_week",
    "week_of_year",
    "month_of_year",
    "is_weekend",
    "is_holiday",
    "holiday_name",
    "temperature",
    "feels_like",
    "humidity",
    "precipitation",
    "wind_speed",
    "cloud_cover",
    "weather_condition",
    "event_count",
    "total_attendance",
    "nearest_event_dist",
    "event_impact_score",
    "lag_dine_in_1d",
    "lag_dine_in_7d",
    "lag_delivery_1d",
    "lag_delivery_7d",
    "avg_dine_in_7d",
    "avg_delivery_7d",
    "avg_dine_in_28d",
    "avg_delivery_28d",
    "dine_in_trend",
    "delivery_trend",
)

_KEY_COLUMNS = ("restaurant_id", "date", "hour_slot")

_UPSERT_SNAPSHOT_SQL = (
    f"INSERT INTO feature_snapshots ({', '.join(_SNAPSHOT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _SNAPSHOT_COLUMNS)}) "
    "ON CONFLICT(restaurant_id, date, hour_slot) DO UPDATE SET "
    + ", ".join(f"{c} = excluded.{c}" for c in _SNAPSHOT_COLUMNS if c not in _KEY_COLUMNS)
    + ";"
)


class SnapshotRepository(BaseRepository):
    """Read/write access to ``feature_snapshots`` and ``demand_actuals``."""

    # ── Snapshots ─────────────────────────────────────────────────────────────

    def upsert_snapshot(self, snapshot: FeatureSnapshot) -> None:
        """Insert or overwrite the snapshot for its (restaurant, date, hour)."""
        self.execute(_UPSERT_SNAPSHOT_SQL, _snapshot_params(snapshot))

    def upsert_snapshots(self, snapshots: list[FeatureSnapshot]) -> int:
        """Bulk variant of ``upsert_snapshot``. Returns the number written."""
        if not snapshots:
            return 0
        self.executemany(_UPSERT_SNAPSHOT_SQL, [_snapshot_params(s) for s in snapshots])
        return len(snapshots)

    def get_snapshot(
        self, restaurant_id: str, snapshot_date: date, hour_slot: int
    ) -> Optional[FeatureSnapshot]:
        """Fetch one snapshot (with actuals joined if recorded)."""
        row = self.fetchone(
            """
            SELECT s.*, a.actual_dine_in, a.actual_delivery
            FROM feature_snapshots s
            LEFT JOIN demand_actuals a
              ON a.restaurant_id = s.restaurant_id
             AND a.date = s.date
             AND a.hour_slot = s.hour_slot
            WHERE s.restaurant_id = ? AND s.date = ? AND s.hour_slot = ?;
            """,
            (restaurant_id, snapshot_date.isoformat(), hour_slot),
        )
        return _row_to_snapshot(row) if row else None

    def recent_snapshots(self, restaurant_id: str, limit: int = 10_000) -> list[FeatureSnapshot]:
        """Most recent snapshots for a restaurant, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM feature_snapshots
            WHERE restaurant_id = ?
            ORDER BY date DESC, hour_slot DESC
            LIMIT ?;
            """,
            (restaurant_id, limit),
        )
        return [_row_to_snapshot(r) for r in rows]

    def list_labeled(
        self, restaurant_id: str, limit: Optional[int] = None
    ) -> list[FeatureSnapshot]:
        """Snapshots that have a recorded actual, oldest first.

        These are the training rows: the snapshot supplies the raw features,
        the joined ``demand_actuals`` row supplies the targets. With ``limit``
        only the most recent ``limit`` rows are returned (still oldest first).
        """
        rows = self.fetchall(
            """
            SELECT s.*, a.actual_dine_in, a.actual_delivery
            FROM feature_snapshots s
            JOIN demand_actuals a
              ON a.restaurant_id = s.restaurant_id
             AND a.date = s.date
             AND a.hour_slot = s.hour_slot
            WHERE s.restaurant_id = ?
            ORDER BY s.date DESC, s.hour_slot DESC
            LIMIT ?;
            """,
            (restaurant_id, -1 if limit is None else limit),
        )
        return [_row_to_snapshot(r) for r in reversed(rows)]

    def count_snapshots(self, restaurant_id: str) -> int:
        row = self.fetchone(
            "SELECT COUNT(*) AS n FROM feature_snapshots WHERE restaurant_id = ?;",
            (restaurant_id,),
        )
        assert row is not None
        return int(row["n"])

    # ── Actuals ───────────────────────────────────────────────────────────────

    def upsert_actual(self, actual: DemandActual) -> None:
        """Insert or overwrite observed demand for one restaurant-hour."""
        self.execute(
            """
            INSERT INTO demand_actuals (
                restaurant_id, date, hour_slot, actual_dine_in, actual_delivery
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(restaurant_id, date, hour_slot) DO UPDATE SET
                actual_dine_in  = excluded.actual_dine_in,
                actual_delivery = excluded.actual_delivery,
                recorded_at     = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            (
                actual.restaurant_id,
                actual.date.isoformat(),
                actual.hour_slot,
                actual.actual_dine_in,
                actual.actual_delivery,
            ),
        )

    def get_actuals_between(
        self,
        restaurant_id: str,
        start_date: date,
        end_date: date,
    ) -> list[DemandActual]:
        """Actuals with ``start_date <= date < end_date``, oldest first."""
        rows = self.fetchall(
            """
            SELECT * FROM demand_actuals
            WHERE restaurant_id = ? AND date >= ? AND date < ?
            ORDER BY date, hour_slot;
            """,
            (restaurant_id, start_date.isoformat(), end_date.isoformat()),
        )
        return [
            DemandActual(
                restaurant_id=r["restaurant_id"],
                date=date.fromisoformat(r["date"]),
                hour_slot=r["hour_slot"],
                actual_dine_in=r["actual_dine_in"],
                actual_delivery=r["actual_delivery"],
            )
            for r in rows
        ]


# ── Private helpers ───────────────────────────────────────────────────────────


def _snapshot_params(s: FeatureSnapshot) -> tuple:
    values = s.model_dump(include=set(_SNAPSHOT_COLUMNS))
    values["date"] = s.date.isoformat()
    values["is_weekend"] = int(s.is_weekend)
    values["is_holiday"] = int(s.is_holiday)
    values["weather_condition"] = s.weather_condition.value if s.weather_condition else None
    return tuple(values[c] for c in _SNAPSHOT_COLUMNS)


def _row_to_snapshot(row: sqlite3.Row) -> FeatureSnapshot:
    """Convert a ``feature_snapshots`` row (optionally joined with actuals)."""
    keys = row.keys()
    data = {c: row[c] for c in _SNAPSHOT_COLUMNS}
    data["date"] = date.fromisoformat(row["date"])
    data["is_weekend"] = bool(row["is_weekend"])
    data["is_holiday"] = bool(row["is_holiday"])
    if row["weather_condition"] is not None:
        data["weather_condition"] = WeatherCondition(row["weather_condition"])
    if "actual_dine_in" in keys:
        data["actual_dine_in"] = row["actual_dine_in"]
        data["actual_delivery"] = row["actual_delivery"]
    return FeatureSnapshot(**data)
