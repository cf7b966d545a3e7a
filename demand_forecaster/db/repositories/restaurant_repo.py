"""
Repository for restaurant locations.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from demand_forecaster.db.repositories.base import BaseRepository
from demand_forecaster.models.restaurant import Restaurant

logger = logging.getLogger(__name__)


class RestaurantRepository(BaseRepository):
    """Read/write access to the ``restaurants`` table."""

    def upsert(self, restaurant: Restaurant) -> None:
        """Insert a restaurant or update it in place by ``restaurant_id``."""
        self.execute(
            """
            INSERT INTO restaurants (restaurant_id, name, lat, lon, forecasting_enabled)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(restaurant_id) DO UPDATE SET
                name                = excluded.name,
                lat                 = excluded.lat,
                lon                 = excluded.lon,
                forecasting_enabled = excluded.forecasting_enabled;
            """,
            (
                restaurant.restaurant_id,
                restaurant.name,
                restaurant.lat,
                restaurant.lon,
                int(restaurant.forecasting_enabled),
            ),
        )

    def get_by_id(self, restaurant_id: str) -> Optional[Restaurant]:
        """Fetch a restaurant, or ``None`` if the id is unknown."""
        row = self.fetchone(
            "SELECT * FROM restaurants WHERE restaurant_id = ?;", (restaurant_id,)
        )
        return _row_to_restaurant(row) if row else None

    def list_enabled(self) -> list[Restaurant]:
        """All restaurants with forecasting enabled, ordered by id."""
        rows = self.fetchall(
            """
            SELECT * FROM restaurants
            WHERE forecasting_enabled = 1
            ORDER BY restaurant_id;
            """
        )
        return [_row_to_restaurant(r) for r in rows]

    def list_all(self) -> list[Restaurant]:
        rows = self.fetchall("SELECT * FROM restaurants ORDER BY restaurant_id;")
        return [_row_to_restaurant(r) for r in rows]


# ── Private helper ────────────────────────────────────────────────────────────


def _row_to_restaurant(row: sqlite3.Row) -> Restaurant:
    """Convert a ``sqlite3.Row`` from ``restaurants`` to a ``Restaurant``."""
    return Restaurant(
        restaurant_id=row["restaurant_id"],
        name=row["name"],
        lat=row["lat"],
        lon=row["lon"],
        forecasting_enabled=bool(row["forecasting_enabled"]),
    )
