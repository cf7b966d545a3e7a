"""
Local event data contract.

``LocalEvent`` is what an ``EventProvider`` returns and what the
``cached_events`` table stores. Category drives the impact multiplier used in
event features; source records which upstream API produced the row.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class EventCategory(StrEnum):
    """Coarse event type."""

    SPORTS = "sports"
    CONCERT = "concert"
    FESTIVAL = "festival"
    CONFERENCE = "conference"
    HOLIDAY = "holiday"
    OTHER = "other"


class EventSource(StrEnum):
    """Upstream provider of an event record."""

    PREDICTHQ = "predicthq"
    TICKETMASTER = "ticketmaster"
    MANUAL = "manual"


class LocalEvent(BaseModel):
    """A scheduled event near a restaurant.

    Attributes:
        event_id: DB PK once cached; ``None`` for freshly fetched events.
        external_id: Provider's identifier (unique together with ``source``).
        source: Which provider produced the record.
        name: Event title.
        category: Coarse category.
        lat / lon: Venue coordinates.
        start_time / end_time: UTC event span.
        expected_attendance: Provider estimate, if any.
        rank: 1–5 significance score, if any.
        distance_miles: Distance from the querying restaurant (not persisted).
    """

    model_config = ConfigDict(frozen=True)

    event_id: Optional[int] = None
    external_id: str
    source: EventSource
    name: str
    category: EventCategory = EventCategory.OTHER
    subcategory: Optional[str] = None
    lat: float
    lon: float
    venue: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    start_time: datetime
    end_time: datetime
    expected_attendance: Optional[int] = None
    rank: Optional[int] = None
    distance_miles: Optional[float] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v

    @field_validator("rank")
    @classmethod
    def validate_rank(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 1 <= v <= 5:
            raise ValueError(f"rank must be in [1, 5], got {v}.")
        return v

    @model_validator(mode="after")
    def validate_span(self) -> "LocalEvent":
        if self.end_time < self.start_time:
            raise ValueError(
                f"end_time ({self.end_time}) must not precede start_time ({self.start_time})."
            )
        return self
