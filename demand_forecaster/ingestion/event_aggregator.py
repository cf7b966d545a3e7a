"""
Local event lookup with caching and provider fan-out.

``EventAggregator.get_local_events(lat, lon, radius_miles, start, end)``:

  1. External cache, key ``events:{lat:.2f}:{lon:.2f}:{radius}:{start}:{end}``
     (dates only), TTL ``event_cache_ttl_seconds``.
  2. ``cached_events`` rows overlapping the window, not yet expired and within
     the radius. A non-empty result is written back to the external cache.
  3. PredictHQ, then Ticketmaster. Ticketmaster events that duplicate a
     PredictHQ event (same name ignoring case, starts within 2 h, venues
     within 1 mile) are dropped. Results are upserted into ``cached_events``
     with ``expires_at = end_time + 7 days`` and cached.

A failing provider is logged and skipped; the other may still contribute.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional, Protocol

from demand_forecaster.config import ProviderConfig
from demand_forecaster.db.repositories.event_repo import CachedEventRepository
from demand_forecaster.errors import ProviderError
from demand_forecaster.features.events import haversine_miles
from demand_forecaster.ingestion.event_client import PredictHQClient, TicketmasterClient
from demand_forecaster.models.event import EventSource, LocalEvent
from demand_forecaster.utils.time_utils import utcnow

if TYPE_CHECKING:
    from demand_forecaster.registry.cache import ExternalCache

logger = logging.getLogger(__name__)

EVENT_RETENTION = timedelta(days=7)
DUPLICATE_TIME_WINDOW = timedelta(hours=2)
DUPLICATE_DISTANCE_MILES = 1.0


class EventProvider(Protocol):
    """Anything that can list events near a point within a time window."""

    def get_local_events(
        self,
        lat: float,
        lon: float,
        radius_miles: float,
        start: datetime,
        end: datetime,
    ) -> list[LocalEvent]: ...


def events_cache_key(lat: float, lon: float, radius_miles: float, start: datetime, end: datetime) -> str:
    return (
        f"events:{lat:.2f}:{lon:.2f}:{radius_miles:g}:"
        f"{start.date().isoformat()}:{end.date().isoformat()}"
    )


def is_same_event(a: LocalEvent, b: LocalEvent) -> bool:
    """Same name (case-insensitive), starts < 2 h apart and venues < 1 mile apart."""
    if a.name.lower() != b.name.lower():
        return False
    if abs(a.start_time - b.start_time) >= DUPLICATE_TIME_WINDOW:
        return False
    return haversine_miles(a.lat, a.lon, b.lat, b.lon) < DUPLICATE_DISTANCE_MILES


def _bounding_box(lat: float, lon: float, radius_miles: float) -> tuple[float, float, float, float]:
    """Generous lat/lon box around a point; exact filtering happens afterwards."""
    dlat = radius_miles / 69.0 + 0.01
    dlon = radius_miles / 40.0 + 0.01
    return lat - dlat, lat + dlat, lon - dlon, lon + dlon


class EventAggregator:
    """``EventProvider`` backed by the external cache, SQLite and two APIs.

    Args:
        conn: Open SQLite connection (``cached_events``).
        config: Provider section of ``AppConfig``.
        cache: External JSON cache; ``None`` skips tier 1.
        predicthq: PredictHQ client; built from ``config`` when a key is set.
        ticketmaster: Ticketmaster client; built from ``config`` when a key is set.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[ProviderConfig] = None,
        cache: "Optional[ExternalCache]" = None,
        predicthq: Optional[PredictHQClient] = None,
        ticketmaster: Optional[TicketmasterClient] = None,
    ) -> None:
        self.config = config or ProviderConfig()
        self.cache = cache
        self.repo = CachedEventRepository(conn)
        self.predicthq = predicthq
        if self.predicthq is None and self.config.predicthq_api_key:
            self.predicthq = PredictHQClient(
                self.config.predicthq_api_key, self.config.timeout_seconds
            )
        self.ticketmaster = ticketmaster
        if self.ticketmaster is None and self.config.ticketmaster_api_key:
            self.ticketmaster = TicketmasterClient(
                self.config.ticketmaster_api_key, self.config.timeout_seconds
            )
        if self.predicthq is None and self.ticketmaster is None:
            logger.warning("No event API keys configured; only cached and manual events are used")

    def get_local_events(
        self,
        lat: float,
        lon: float,
        radius_miles: float,
        start: datetime,
        end: datetime,
    ) -> list[LocalEvent]:
        key = events_cache_key(lat, lon, radius_miles, start, end)
        if self.cache is not None:
            cached = self.cache.get_json(key)
            if cached is not None:
                logger.debug("Event cache hit for (%.2f, %.2f)", lat, lon)
                return [LocalEvent.model_validate(item) for item in cached]

        events = self._events_from_database(lat, lon, radius_miles, start, end)
        if not events:
            events = self._events_from_apis(lat, lon, radius_miles, start, end)
            self.cache_events(events)

        if events or self.predicthq is not None or self.ticketmaster is not None:
            self._remember(key, events)
        return events

    # ── Persistence ───────────────────────────────────────────────────────────

    def cache_events(self, events: list[LocalEvent]) -> int:
        """Upsert fetched events into ``cached_events``. Returns rows written.

        A row that fails to write is logged and skipped.
        """
        now = utcnow()
        written = 0
        for event in events:
            try:
                self.repo.upsert(event, fetched_at=now, expires_at=event.end_time + EVENT_RETENTION)
            except sqlite3.Error as exc:
                logger.error("Failed to cache event %s/%s: %s", event.source, event.external_id, exc)
                continue
            written += 1
        return written

    def add_manual_event(self, event: LocalEvent) -> LocalEvent:
        """Store a known local event that no provider lists.

        The source is forced to MANUAL; an empty ``external_id`` gets a
        generated ``manual-<hex>`` id.
        """
        external_id = event.external_id or f"manual-{uuid.uuid4().hex[:12]}"
        manual = event.model_copy(
            update={"source": EventSource.MANUAL, "external_id": external_id}
        )
        event_id = self.repo.upsert(
            manual, fetched_at=utcnow(), expires_at=manual.end_time + EVENT_RETENTION
        )
        logger.info("Added manual event '%s' (%s)", manual.name, external_id)
        return manual.model_copy(update={"event_id": event_id})

    def cleanup_expired_events(self) -> int:
        """Delete events whose ``expires_at`` has passed. Returns rows deleted."""
        deleted = self.repo.delete_expired(utcnow())
        logger.info("Cleaned up %d expired events", deleted)
        return deleted

    # ── Tiers ─────────────────────────────────────────────────────────────────

    def _events_from_database(
        self,
        lat: float,
        lon: float,
        radius_miles: float,
        start: datetime,
        end: datetime,
    ) -> list[LocalEvent]:
        rows = self.repo.find_overlapping(
            start, end, utcnow(), bbox=_bounding_box(lat, lon, radius_miles)
        )
        nearby: list[LocalEvent] = []
        for event in rows:
            dist = haversine_miles(lat, lon, event.lat, event.lon)
            if dist <= radius_miles:
                nearby.append(event.model_copy(update={"distance_miles": dist}))
        return nearby

    def _events_from_apis(
        self,
        lat: float,
        lon: float,
        radius_miles: float,
        start: datetime,
        end: datetime,
    ) -> list[LocalEvent]:
        events: list[LocalEvent] = []

        if self.predicthq is not None:
            try:
                events.extend(self.predicthq.fetch_events(lat, lon, radius_miles, start, end))
            except ProviderError as exc:
                logger.error("PredictHQ fetch failed: %s", exc)

        if self.ticketmaster is not None:
            try:
                for event in self.ticketmaster.fetch_events(lat, lon, radius_miles, start, end):
                    if not any(is_same_event(existing, event) for existing in events):
                        events.append(event)
            except ProviderError as exc:
                logger.error("Ticketmaster fetch failed: %s", exc)

        logger.info("Fetched %d event(s) from providers for (%.2f, %.2f)", len(events), lat, lon)
        return events

    def _remember(self, key: str, events: list[LocalEvent]) -> None:
        if self.cache is None:
            return
        self.cache.set_json(
            key,
            [e.model_dump(mode="json") for e in events],
            self.config.event_cache_ttl_seconds,
        )
