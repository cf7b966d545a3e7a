"""
PredictHQ and Ticketmaster HTTP clients.

PredictHQ
---------
``GET https://api.predicthq.com/v1/events/`` with a bearer token::

    within=<radius_km>km@<lat>,<lon>  active.gte=<YYYY-MM-DD>  active.lte=<YYYY-MM-DD>
    limit=100  sort=rank

``location`` is ``[lon, lat]``; the 0–100 ``rank`` becomes
``min(5, ceil(rank / 20))`` (0 maps to 1); ``phq_attendance`` is the
expected attendance; the venue is the first entity of type ``venue``.

Ticketmaster
------------
``GET https://app.ticketmaster.com/discovery/v2/events.json``::

    apikey=..  latlong=<lat>,<lon>  radius=<miles>  unit=miles
    startDateTime=<ISO Z>  endDateTime=<ISO Z>  size=100  sort=date,asc

Events without venue coordinates are skipped. A missing end time defaults to
start + 3 h and every event gets rank 3. The first classification's segment
name feeds ``categorize_event``.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Optional

import httpx

from demand_forecaster.errors import ProviderError
from demand_forecaster.features.events import haversine_miles
from demand_forecaster.models.event import EventCategory, EventSource, LocalEvent

logger = logging.getLogger(__name__)

KM_PER_MILE = 1.60934
TICKETMASTER_DEFAULT_DURATION = timedelta(hours=3)
TICKETMASTER_DEFAULT_RANK = 3


# ── Categorization ────────────────────────────────────────────────────────────

# (category, substrings matched against category/labels, regex on the name)
_CATEGORY_RULES: list[tuple[EventCategory, tuple[str, ...], re.Pattern[str]]] = [
    (
        EventCategory.SPORTS,
        ("sport",),
        re.compile(r"\b(game|match|nba|nfl|mlb|nhl|mls|ncaa|soccer|football|basketball|baseball|hockey)\b"),
    ),
    (
        EventCategory.CONCERT,
        ("concert", "music"),
        re.compile(r"\b(tour|concert|live|performance|show)\b"),
    ),
    (
        EventCategory.FESTIVAL,
        ("festival",),
        re.compile(r"\b(festival|fest|fair|carnival)\b"),
    ),
    (
        EventCategory.CONFERENCE,
        ("conference", "convention", "expo"),
        re.compile(r"\b(conference|convention|expo|summit|symposium|meetup)\b"),
    ),
    (
        EventCategory.HOLIDAY,
        ("holiday",),
        re.compile(r"\b(christmas|thanksgiving|easter|halloween|new\s+year|fourth|memorial|labor\s+day)\b"),
    ),
]


def categorize_event(name: str, category: str = "", labels: Optional[list[str]] = None) -> EventCategory:
    """Map a provider's name/category/labels onto ``EventCategory``.

    Rules are tried in order (sports, concert, festival, conference, holiday);
    the first whose keyword appears in the category or a label, or whose
    pattern matches the name, wins. Otherwise ``OTHER``.
    """
    lower_name = name.lower()
    lower_category = category.lower()
    lower_labels = [label.lower() for label in labels or []]

    for result, keywords, pattern in _CATEGORY_RULES:
        if any(k in lower_category for k in keywords):
            return result
        if any(k in label for label in lower_labels for k in keywords):
            return result
        if pattern.search(lower_name):
            return result
    return EventCategory.OTHER


def predicthq_rank(rank: Optional[float]) -> Optional[int]:
    """Convert a 0–100 PredictHQ rank to the 1–5 scale."""
    if rank is None:
        return None
    return max(1, min(5, math.ceil(rank / 20)))


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


# ── Response parsing ──────────────────────────────────────────────────────────


def parse_predicthq_events(payload: dict[str, Any], lat: float, lon: float) -> list[LocalEvent]:
    """Convert a PredictHQ ``/v1/events/`` body into ``LocalEvent`` records."""
    events: list[LocalEvent] = []
    for item in payload.get("results", []):
        event_lon, event_lat = item["location"]
        venue = next(
            (e.get("name") for e in item.get("entities", []) if e.get("type") == "venue"),
            None,
        )
        events.append(
            LocalEvent(
                external_id=item["id"],
                source=EventSource.PREDICTHQ,
                name=item["title"],
                category=categorize_event(
                    item["title"], item.get("category", ""), item.get("labels", [])
                ),
                lat=event_lat,
                lon=event_lon,
                venue=venue,
                start_time=_parse_time(item["start"]),
                end_time=_parse_time(item["end"]),
                expected_attendance=item.get("phq_attendance"),
                rank=predicthq_rank(item.get("rank")),
                distance_miles=haversine_miles(lat, lon, event_lat, event_lon),
            )
        )
    return events


def parse_ticketmaster_events(payload: dict[str, Any], lat: float, lon: float) -> list[LocalEvent]:
    """Convert a Ticketmaster Discovery body into ``LocalEvent`` records."""
    events: list[LocalEvent] = []
    for item in (payload.get("_embedded") or {}).get("events", []):
        venues = (item.get("_embedded") or {}).get("venues") or []
        venue = venues[0] if venues else None
        if not venue or not venue.get("location"):
            continue

        event_lat = float(venue["location"]["latitude"])
        event_lon = float(venue["location"]["longitude"])
        classifications = item.get("classifications") or [{}]
        segment = ((classifications[0] or {}).get("segment") or {}).get("name") or "Other"

        dates = item["dates"]
        start = _parse_time(dates["start"]["dateTime"])
        end_raw = (dates.get("end") or {}).get("dateTime")
        end = _parse_time(end_raw) if end_raw else start + TICKETMASTER_DEFAULT_DURATION

        events.append(
            LocalEvent(
                external_id=item["id"],
                source=EventSource.TICKETMASTER,
                name=item["name"],
                category=categorize_event(item["name"], segment),
                lat=event_lat,
                lon=event_lon,
                venue=venue.get("name"),
                city=(venue.get("city") or {}).get("name"),
                state=(venue.get("state") or {}).get("stateCode"),
                start_time=start,
                end_time=end,
                rank=TICKETMASTER_DEFAULT_RANK,
                distance_miles=haversine_miles(lat, lon, event_lat, event_lon),
            )
        )
    return events


# ── Clients ───────────────────────────────────────────────────────────────────


class PredictHQClient:
    """Thin httpx wrapper for the PredictHQ events endpoint."""

    BASE_URL: ClassVar[str] = "https://api.predicthq.com/v1/events/"

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    def fetch_events(
        self,
        lat: float,
        lon: float,
        radius_miles: float,
        start: datetime,
        end: datetime,
    ) -> list[LocalEvent]:
        """Raises ``ProviderError`` on any transport or parse failure."""
        try:
            resp = self._http.get(
                self.BASE_URL,
                params={
                    "within": f"{radius_miles * KM_PER_MILE}km@{lat},{lon}",
                    "active.gte": start.date().isoformat(),
                    "active.lte": end.date().isoformat(),
                    "limit": 100,
                    "sort": "rank",
                },
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                },
            )
            resp.raise_for_status()
            return parse_predicthq_events(resp.json(), lat, lon)
        except httpx.HTTPError as exc:
            raise ProviderError(f"PredictHQ request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"PredictHQ response could not be parsed: {exc}") from exc


class TicketmasterClient:
    """Thin httpx wrapper for the Ticketmaster Discovery events endpoint."""

    BASE_URL: ClassVar[str] = "https://app.ticketmaster.com/discovery/v2/events.json"

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = api_key
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    def fetch_events(
        self,
        lat: float,
        lon: float,
        radius_miles: float,
        start: datetime,
        end: datetime,
    ) -> list[LocalEvent]:
        """Raises ``ProviderError`` on any transport or parse failure."""
        try:
            resp = self._http.get(
                self.BASE_URL,
                params={
                    "apikey": self.api_key,
                    "latlong": f"{lat},{lon}",
                    "radius": str(radius_miles),
                    "unit": "miles",
                    "startDateTime": _tm_timestamp(start),
                    "endDateTime": _tm_timestamp(end),
                    "size": 100,
                    "sort": "date,asc",
                },
            )
            resp.raise_for_status()
            return parse_ticketmaster_events(resp.json(), lat, lon)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Ticketmaster request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Ticketmaster response could not be parsed: {exc}") from exc


def _tm_timestamp(value: datetime) -> str:
    """``YYYY-MM-DDTHH:MM:SSZ`` in UTC, as Ticketmaster requires."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
