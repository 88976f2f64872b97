"""Shared Pydantic models for the event map backend."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    @field_validator("latitude", "longitude")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinate must be a finite number")
        return value


class Market(BaseModel):
    name: str | None = None
    id: str | None = None


class Ada(BaseModel):
    phones: str | None = None
    custom_copy: str | None = None
    hours: str | None = None


class VenueIn(BaseModel):
    name: str
    url: str | None = None
    postal_code: str | None = None
    timezone: str | None = None
    city: str | None = None
    country: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    address_line3: str | None = None
    location: Coordinates | None = None
    markets: list[Market] = Field(default_factory=list)
    ada: Ada | None = None


class ClassificationIn(BaseModel):
    """Taxonomy tuple. Missing levels are empty strings so dedup keys compare equal."""

    segment: str = ""
    genre: str = ""
    sub_genre: str = ""
    type: str = ""
    sub_type: str = ""


class ImageIn(BaseModel):
    url: str
    ratio: str | None = None
    width: int | None = None
    height: int | None = None
    fallback: bool = False


class SalesWindow(BaseModel):
    start_date_time: str | None = None
    end_date_time: str | None = None
    start_tbd: bool = False
    start_tba: bool = False
    end_tbd: bool = False
    end_tba: bool = False


class DateWindow(BaseModel):
    start_local_date: str | None = None
    start_local_time: str | None = None
    start_date_time: str | None = None
    date_tbd: bool = False
    date_tba: bool = False
    time_tba: bool = False
    no_specific_time: bool = False
    end_local_time: str | None = None
    end_date_time: str | None = None
    end_approximate: bool = False
    end_no_specific_time: bool = False
    timezone: str | None = None
    status: str | None = None
    span_multiple_days: bool = False


class PriceRangeIn(BaseModel):
    type: str = "standard"
    currency: str = "USD"
    min: float
    max: float


class AttractionIn(BaseModel):
    name: str
    url: str = ""
    aliases: list[str] = Field(default_factory=list)


class SourceTag(BaseModel):
    name: str
    id: str


class EventCreate(BaseModel):
    """A complete event with its sub-entities inline, before any store lookups."""

    name: str
    type: str = "event"
    description: str | None = None
    url: str | None = None
    locale: str | None = None
    location: Coordinates
    venue: VenueIn
    classifications: list[ClassificationIn] = Field(default_factory=list)
    images: list[ImageIn] = Field(default_factory=list)
    sales: SalesWindow = Field(default_factory=SalesWindow)
    dates: DateWindow = Field(default_factory=DateWindow)
    price_ranges: list[PriceRangeIn] = Field(default_factory=list)
    attractions: list[AttractionIn] = Field(default_factory=list)
    source: SourceTag | None = None


class EventBatch(BaseModel):
    events: list[EventCreate]


class EventDraft(BaseModel):
    """Ready-to-persist event: every sub-entity resolved to its row id."""

    name: str
    type: str = "event"
    description: str | None = None
    url: str | None = None
    locale: str | None = None
    location: Coordinates
    source: SourceTag | None = None
    venue_id: int
    sales_id: int
    dates_id: int
    classification_ids: list[int] = Field(default_factory=list)
    image_ids: list[int] = Field(default_factory=list)
    price_range_ids: list[int] = Field(default_factory=list)
    attraction_ids: list[int] = Field(default_factory=list)


class IngestionQuery(BaseModel):
    """One ingestion window."""

    country_code: str
    city: str
    event_type: str
    start: datetime
    end: datetime

    @staticmethod
    def format_instant(value: datetime) -> str:
        """Render an instant the way the Discovery API expects (UTC, second precision, 'Z')."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class IngestionStatus(str, Enum):
    STORED = "stored"
    NO_EVENTS = "no_events"
    REFINE_FILTERS = "refine_filters"
    FAILED = "failed"


class IngestionReport(BaseModel):
    start: datetime
    end: datetime
    status: IngestionStatus
    total_available: int = 0
    pages: int = 0
    fetched: int = 0
    persisted: int = 0
    message: str = ""
