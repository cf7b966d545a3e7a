"""
Export a restaurant's labeled training matrix to Parquet.

Columns
-------
restaurant_id (utf8), date (date32), hour_slot (int32), the 62 registry
features as float64 in canonical order (raw, not normalized), then
``actual_dine_in`` / ``actual_delivery`` (float64).

The output is for offline analysis (notebooks, drift checks); training itself
reads snapshots straight from SQLite.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from demand_forecaster.db.repositories.snapshot_repo import SnapshotRepository
from demand_forecaster.features.engineering import build_feature_vector
from demand_forecaster.features.registry import FEATURE_NAMES

log = logging.getLogger(__name__)

_TARGET_COLUMNS = ("actual_dine_in", "actual_delivery")


def build_export_schema() -> pa.Schema:
    """Schema for the training export, in column order."""
    fields = [
        pa.field("restaurant_id", pa.string(), nullable=False),
        pa.field("date", pa.date32(), nullable=False),
        pa.field("hour_slot", pa.int32(), nullable=False),
    ]
    fields.extend(pa.field(name, pa.float64(), nullable=False) for name in FEATURE_NAMES)
    fields.extend(pa.field(name, pa.float64(), nullable=False) for name in _TARGET_COLUMNS)
    return pa.schema(fields)


def rows_to_table(rows: list[dict[str, Any]], schema: pa.Schema) -> pa.Table:
    """Column-wise conversion of row dicts to a ``pa.Table``."""
    arrays: dict[str, pa.Array] = {}
    for field in schema:
        arrays[field.name] = pa.array([r[field.name] for r in rows], type=field.type)
    return pa.table(arrays, schema=schema)


def export_training_dataset(
    conn: sqlite3.Connection,
    restaurant_id: str,
    path: Path,
) -> int:
    """Write every labeled snapshot for ``restaurant_id`` to ``path``.

    Args:
        conn: Open SQLite connection.
        restaurant_id: Restaurant to export.
        path: Destination ``.parquet`` file; parent dirs are created.

    Returns:
        Number of rows written (0 still writes an empty file with the schema).
    """
    snapshots = SnapshotRepository(conn).list_labeled(restaurant_id)

    rows: list[dict[str, Any]] = []
    for snap in snapshots:
        fv = build_feature_vector(snap)
        row: dict[str, Any] = {
            "restaurant_id": snap.restaurant_id,
            "date": snap.date,
            "hour_slot": snap.hour_slot,
            "actual_dine_in": snap.actual_dine_in,
            "actual_delivery": snap.actual_delivery,
        }
        row.update(zip(fv.feature_names, fv.features))
        rows.append(row)

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table = rows_to_table(rows, build_export_schema())
    pq.write_table(table, str(path), compression="snappy")
    log.info("Training export written: %s (%d rows)", path.name, len(rows))
    return len(rows)
