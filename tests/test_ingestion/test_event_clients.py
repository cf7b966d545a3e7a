"""
Tests for the PredictHQ / Ticketmaster clients and response parsers.

Uses httpx.MockTransport so no network calls are made.

What we test
------------
1. categorize_event keyword/pattern rules and their precedence.
2. predicthq_rank scaling from 0-100 to 1-5.
3. PredictHQ parsing: [lon, lat] order, venue entity, attendance, distance.
4. Ticketmaster parsing: events without coordinates skipped, default
   duration and rank, segment-based category.
5. Request parameters and error translation to ProviderError.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from demand_forecaster.errors import ProviderError
from demand_forecaster.ingestion.event_client import (
    PredictHQClient,
    TicketmasterClient,
    categorize_event,
    parse_predicthq_events,
    parse_ticketmaster_events,
    predicthq_rank,
)
from demand_forecaster.models.event import EventCategory, EventSource

LAT, LON = 34.0430, -118.2673
START = datetime(2026, 10, 17, tzinfo=timezone.utc)
END = START + timedelta(days=1)

PHQ_PAYLOAD = {
    "results": [
        {
            "id": "phq-1",
            "title": "Lakers vs Celtics",
            "category": "sports",
            "labels": ["basketball"],
            "location": [-118.2673, 34.0430],
            "start": "2026-10-17T02:30:00Z",
            "end": "2026-10-17T05:00:00Z",
            "phq_attendance": 18997,
            "rank": 81,
            "entities": [
                {"type": "event-group", "name": "NBA"},
                {"type": "venue", "name": "Crypto.com Arena"},
            ],
        }
    ]
}

TM_PAYLOAD = {
    "_embedded": {
        "events": [
            {
                "id": "tm-1",
                "name": "Opening Night",
                "classifications": [{"segment": {"name": "Music"}}],
                "dates": {"start": {"dateTime": "2026-10-17T03:00:00Z"}},
                "_embedded": {
                    "venues": [
                        {
                            "name": "Hollywood Bowl",
                            "city": {"name": "Los Angeles"},
                            "state": {"stateCode": "CA"},
                            "location": {"latitude": "34.1122", "longitude": "-118.3391"},
                        }
                    ]
                },
            },
            {
                "id": "tm-2",
                "name": "Venue TBA",
                "dates": {"start": {"dateTime": "2026-10-17T03:00:00Z"}},
                "_embedded": {"venues": [{"name": "Somewhere"}]},
            },
        ]
    }
}


def _http(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


# ── Categorization ────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "name, category, labels, expected",
    [
        ("Lakers vs Celtics", "sports", None, EventCategory.SPORTS),
        ("Dodgers Game", "", None, EventCategory.SPORTS),
        ("The Eras Tour", "concerts", None, EventCategory.CONCERT),
        ("Evening Set", "", ["music"], EventCategory.CONCERT),
        ("LA Food Fest", "", None, EventCategory.FESTIVAL),
        ("Tech Summit 2026", "", None, EventCategory.CONFERENCE),
        ("City Halloween Parade", "", None, EventCategory.HOLIDAY),
        ("Farmers Market", "community", None, EventCategory.OTHER),
    ],
)
def test_categorize_event(name, category, labels, expected):
    assert categorize_event(name, category, labels) == expected


def test_sports_rule_wins_over_later_rules():
    assert categorize_event("NBA Live Game Show") == EventCategory.SPORTS


@pytest.mark.parametrize("rank, expected", [(None, None), (0, 1), (20, 1), (55, 3), (81, 5), (100, 5)])
def test_predicthq_rank(rank, expected):
    assert predicthq_rank(rank) == expected


# ── Parsing ───────────────────────────────────────────────────────────────────

def test_parse_predicthq():
    [event] = parse_predicthq_events(PHQ_PAYLOAD, LAT, LON)
    assert event.external_id == "phq-1"
    assert event.source == EventSource.PREDICTHQ
    assert event.category == EventCategory.SPORTS
    assert (event.lat, event.lon) == (34.0430, -118.2673)
    assert event.venue == "Crypto.com Arena"
    assert event.expected_attendance == 18997
    assert event.rank == 5
    assert event.start_time == datetime(2026, 10, 17, 2, 30, tzinfo=timezone.utc)
    assert event.distance_miles == pytest.approx(0.0)


def test_parse_ticketmaster():
    [event] = parse_ticketmaster_events(TM_PAYLOAD, LAT, LON)
    assert event.external_id == "tm-1"
    assert event.source == EventSource.TICKETMASTER
    assert event.category == EventCategory.CONCERT
    assert event.city == "Los Angeles"
    assert event.state == "CA"
    assert event.rank == 3
    assert event.end_time - event.start_time == timedelta(hours=3)
    assert event.expected_attendance is None
    assert 4 < event.distance_miles < 8


def test_parse_empty_payloads():
    assert parse_predicthq_events({}, LAT, LON) == []
    assert parse_ticketmaster_events({"page": {"totalElements": 0}}, LAT, LON) == []


# ── Clients ───────────────────────────────────────────────────────────────────

def test_predicthq_request():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=PHQ_PAYLOAD)

    client = PredictHQClient("phq-token", http_client=_http(handler))
    events = client.fetch_events(LAT, LON, 10.0, START, END)

    [request] = seen
    assert len(events) == 1
    assert request.headers["Authorization"] == "Bearer phq-token"
    assert request.url.params["within"].startswith("16.09")
    assert request.url.params["within"].endswith("km@34.043,-118.2673")
    assert request.url.params["active.gte"] == "2026-10-17"
    assert request.url.params["active.lte"] == "2026-10-18"
    assert request.url.params["sort"] == "rank"


def test_ticketmaster_request():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=TM_PAYLOAD)

    client = TicketmasterClient("tm-key", http_client=_http(handler))
    events = client.fetch_events(LAT, LON, 10.0, START, END)

    [request] = seen
    assert len(events) == 1
    assert request.url.params["apikey"] == "tm-key"
    assert request.url.params["unit"] == "miles"
    assert request.url.params["startDateTime"] == "2026-10-17T00:00:00Z"
    assert request.url.params["endDateTime"] == "2026-10-18T00:00:00Z"


@pytest.mark.parametrize("client_cls", [PredictHQClient, TicketmasterClient])
def test_http_errors_raise_provider_error(client_cls):
    client = client_cls("key", http_client=_http(lambda r: httpx.Response(503)))
    with pytest.raises(ProviderError):
        client.fetch_events(LAT, LON, 10.0, START, END)


def test_malformed_predicthq_body_raises_provider_error():
    payload = {"results": [{"id": "x", "title": "No location"}]}
    client = PredictHQClient("key", http_client=_http(lambda r: httpx.Response(200, json=payload)))
    with pytest.raises(ProviderError):
        client.fetch_events(LAT, LON, 10.0, START, END)
