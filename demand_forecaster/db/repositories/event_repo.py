"""
Repository for locally cached third-party events (``cached_events``).

Rows are upserted on (external_id, source). Every row carries an
``expires_at`` timestamp; reads ignore expired rows and the cleanup job
deletes them.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from demand_forecaster.db.repositories.base import BaseRepository
from demand_forecaster.models.event import EventCategory, EventSource, LocalEvent
from demand_forecaster.utils.time_utils import parse_datetime, to_iso

logger = logging.getLogger(__name__)


class CachedEventRepository(BaseRepository):
    """Read/write access to the ``cached_events`` table."""

    def upsert(self, event: LocalEvent, fetched_at: datetime, expires_at: datetime) -> int:
        """Insert or refresh an event by (external_id, source).

        Args:
            event: The event to cache.
            fetched_at: When the provider returned it.
            expires_at: When the row becomes eligible for cleanup.

        Returns:
            The ``event_id`` (existing or new).
        """
        self.execute(
            """
            INSERT INTO cached_events (
                external_id, source, name, category, subcategory, lat, lon,
                venue, city, state, start_time, end_time, expected_attendance,
                rank, fetched_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(external_id, source) DO UPDATE SET
                name                = excluded.name,
                category            = excluded.category,
                subcategory         = excluded.subcategory,
                lat                 = excluded.lat,
                lon                 = excluded.lon,
                venue               = excluded.venue,
                city                = excluded.city,
                state               = excluded.state,
                start_time          = excluded.start_time,
                end_time            = excluded.end_time,
                expected_attendance = excluded.expected_attendance,
                rank                = excluded.rank,
                fetched_at          = excluded.fetched_at,
                expires_at          = excluded.expires_at;
            """,
            (
                event.external_id,
                event.source.value,
                event.name,
                event.category.value,
                event.subcategory,
                event.lat,
                event.lon,
                event.venue,
                event.city,
                event.state,
                to_iso(event.start_time),
                to_iso(event.end_time),
                event.expected_attendance,
                event.rank,
                to_iso(fetched_at),
                to_iso(expires_at),
            ),
        )
        row = self.fetchone(
            "SELECT event_id FROM cached_events WHERE external_id = ? AND source = ?;",
            (event.external_id, event.source.value),
        )
        assert row is not None
        return int(row["event_id"])

    def find_overlapping(
        self,
        start: datetime,
        end: datetime,
        now: datetime,
        bbox: Optional[tuple[float, float, float, float]] = None,
    ) -> list[LocalEvent]:
        """Unexpired events whose span overlaps ``[start, end]``.

        Args:
            start: Window start (UTC).
            end: Window end (UTC).
            now: Rows with ``expires_at <= now`` are skipped.
            bbox: Optional ``(min_lat, max_lat, min_lon, max_lon)`` prefilter;
                exact radius filtering is the caller's job.

        Returns:
            Events ordered by ``start_time``.
        """
        sql = """
            SELECT * FROM cached_events
            WHERE start_time <= ? AND end_time >= ? AND expires_at > ?
        """
        params: list = [to_iso(end), to_iso(start), to_iso(now)]
        if bbox is not None:
            sql += " AND lat BETWEEN ? AND ? AND lon BETWEEN ? AND ?"
            params.extend(bbox)
        sql += " ORDER BY start_time;"
        rows = self.fetchall(sql, tuple(params))
        return [_row_to_event(r) for r in rows]

    def delete_expired(self, now: datetime) -> int:
        """Delete rows with ``expires_at`` in the past. Returns rows deleted."""
        cur = self.execute(
            "DELETE FROM cached_events WHERE expires_at < ?;", (to_iso(now),)
        )
        return cur.rowcount

    def count(self) -> int:
        """Return total number of cached events."""
        row = self.fetchone("SELECT COUNT(*) AS n FROM cached_events;")
        assert row is not None
        return int(row["n"])


# ── Private helper ────────────────────────────────────────────────────────────


def _row_to_event(row: sqlite3.Row) -> LocalEvent:
    """Convert a ``sqlite3.Row`` from ``cached_events`` to a ``LocalEvent``."""
    return LocalEvent(
        event_id=row["event_id"],
        external_id=row["external_id"],
        source=EventSource(row["source"]),
        name=row["name"],
        category=EventCategory(row["category"]),
        subcategory=row["subcategory"],
        lat=row["lat"],
        lon=row["lon"],
        venue=row["venue"],
        city=row["city"],
        state=row["state"],
        start_time=parse_datetime(row["start_time"]),
        end_time=parse_datetime(row["end_time"]),
        expected_attendance=row["expected_attendance"],
        rank=row["rank"],
    )
