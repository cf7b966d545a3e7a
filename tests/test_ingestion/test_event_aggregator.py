"""
Tests for ``EventAggregator``.

Provider clients are replaced by in-memory stubs; the SQLite tier uses the
in-memory DB fixture.

What we test
------------
1. Tier order: external cache, then cached_events, then provider APIs.
2. Provider results are persisted and cached; a failing provider is skipped.
3. Ticketmaster duplicates of PredictHQ events are dropped.
4. Radius filtering of stored events.
5. Manual events and expiry cleanup.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from demand_forecaster.config import ProviderConfig
from demand_forecaster.db.repositories.event_repo import CachedEventRepository
from demand_forecaster.errors import ProviderError
from demand_forecaster.ingestion.event_aggregator import (
    EventAggregator,
    events_cache_key,
    is_same_event,
)
from demand_forecaster.ingestion.event_client import PredictHQClient, TicketmasterClient
from demand_forecaster.models.event import EventSource
from demand_forecaster.registry.cache import MemoryTTLCache
from demand_forecaster.utils.time_utils import utcnow

from conftest import make_event

LAT, LON = 34.0430, -118.2673
RADIUS = 15.0


class _StubClient:
    def __init__(self, events=None, error: Exception | None = None):
        self.events = events or []
        self.error = error
        self.calls = 0

    def fetch_events(self, lat, lon, radius_miles, start, end):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.events)


def _window() -> tuple[datetime, datetime]:
    tomorrow = utcnow().date() + timedelta(days=1)
    start = datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _lookup(aggregator: EventAggregator):
    start, end = _window()
    return aggregator.get_local_events(LAT, LON, RADIUS, start, end)


# ── Tiers ─────────────────────────────────────────────────────────────────────

def test_api_results_are_persisted_and_cached(in_memory_db):
    cache = MemoryTTLCache()
    phq = _StubClient([make_event("phq-1")])
    aggregator = EventAggregator(in_memory_db, cache=cache, predicthq=phq)

    events = _lookup(aggregator)
    assert [e.external_id for e in events] == ["phq-1"]
    assert CachedEventRepository(in_memory_db).count() == 1
    assert len(cache) == 1

    again = _lookup(aggregator)
    assert phq.calls == 1
    assert [e.external_id for e in again] == ["phq-1"]


def test_database_tier_before_apis(in_memory_db):
    stored = EventAggregator(in_memory_db)
    stored.cache_events([make_event("stored-1", lat=LAT + 0.01)])

    phq = _StubClient([make_event("phq-1")])
    aggregator = EventAggregator(in_memory_db, cache=MemoryTTLCache(), predicthq=phq)
    [event] = _lookup(aggregator)

    assert event.external_id == "stored-1"
    assert event.distance_miles == pytest.approx(0.69, abs=0.02)
    assert phq.calls == 0


def test_stored_events_outside_radius_ignored(in_memory_db):
    aggregator = EventAggregator(in_memory_db)
    # Inside the bounding box but beyond 15 miles.
    aggregator.cache_events([make_event("far", lat=LAT + 0.2, lon=LON + 0.2)])
    assert _lookup(aggregator) == []


def test_empty_result_without_providers_not_cached(in_memory_db):
    cache = MemoryTTLCache()
    aggregator = EventAggregator(in_memory_db, cache=cache)
    assert _lookup(aggregator) == []
    assert len(cache) == 0


def test_empty_provider_result_is_cached(in_memory_db):
    cache = MemoryTTLCache()
    phq = _StubClient([])
    aggregator = EventAggregator(in_memory_db, cache=cache, predicthq=phq)
    assert _lookup(aggregator) == []
    assert _lookup(aggregator) == []
    assert phq.calls == 1


# ── Provider fan-out ──────────────────────────────────────────────────────────

def test_ticketmaster_duplicates_dropped(in_memory_db):
    phq_event = make_event("phq-1", name="Lakers vs Celtics")
    duplicate = make_event(
        "tm-1",
        name="LAKERS VS CELTICS",
        start=phq_event.start_time + timedelta(hours=1),
        source=EventSource.TICKETMASTER,
    )
    distinct = make_event("tm-2", name="Jazz Night", source=EventSource.TICKETMASTER)
    aggregator = EventAggregator(
        in_memory_db,
        predicthq=_StubClient([phq_event]),
        ticketmaster=_StubClient([duplicate, distinct]),
    )
    assert sorted(e.external_id for e in _lookup(aggregator)) == ["phq-1", "tm-2"]


def test_failing_provider_is_skipped(in_memory_db):
    aggregator = EventAggregator(
        in_memory_db,
        predicthq=_StubClient(error=ProviderError("PredictHQ request failed")),
        ticketmaster=_StubClient([make_event("tm-1", source=EventSource.TICKETMASTER)]),
    )
    assert [e.external_id for e in _lookup(aggregator)] == ["tm-1"]


def test_clients_built_from_config(in_memory_db):
    aggregator = EventAggregator(
        in_memory_db,
        ProviderConfig(predicthq_api_key="phq", ticketmaster_api_key="tm"),
    )
    assert isinstance(aggregator.predicthq, PredictHQClient)
    assert isinstance(aggregator.ticketmaster, TicketmasterClient)
    assert EventAggregator(in_memory_db).predicthq is None


# ── Manual events and cleanup ─────────────────────────────────────────────────

def test_add_manual_event(in_memory_db):
    aggregator = EventAggregator(in_memory_db)
    added = aggregator.add_manual_event(make_event("", name="Street Fair", source=EventSource.PREDICTHQ))

    assert added.source == EventSource.MANUAL
    assert added.external_id.startswith("manual-")
    assert len(added.external_id) == len("manual-") + 12
    assert added.event_id is not None
    assert [e.name for e in _lookup(aggregator)] == ["Street Fair"]


def test_manual_event_keeps_given_id(in_memory_db):
    added = EventAggregator(in_memory_db).add_manual_event(make_event("parade-2026"))
    assert added.external_id == "parade-2026"


def test_cleanup_expired_events(in_memory_db):
    repo = CachedEventRepository(in_memory_db)
    now = utcnow()
    old = make_event("old", start=now - timedelta(days=10))
    repo.upsert(old, fetched_at=now - timedelta(days=10), expires_at=now - timedelta(days=1))
    repo.upsert(make_event("new"), fetched_at=now, expires_at=now + timedelta(days=7))

    assert EventAggregator(in_memory_db).cleanup_expired_events() == 1
    assert repo.count() == 1


# ── Helpers ───────────────────────────────────────────────────────────────────

def test_is_same_event():
    base = make_event("a")
    assert is_same_event(base, make_event("b", start=base.start_time + timedelta(minutes=90)))
    assert not is_same_event(base, make_event("b", start=base.start_time + timedelta(hours=2)))
    assert not is_same_event(base, make_event("b", name="Other Game"))
    assert not is_same_event(base, make_event("b", lat=LAT + 0.05))


def test_events_cache_key():
    start = datetime(2026, 10, 17, 5, tzinfo=timezone.utc)
    key = events_cache_key(LAT, LON, 15.0, start, start + timedelta(days=1))
    assert key == "events:34.04:-118.27:15:2026-10-17:2026-10-18"
