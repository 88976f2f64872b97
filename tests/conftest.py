"""Shared pytest fixtures for the event map test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from api.database import EventStore, get_db, init_db
from ingestion.base import SourceError
from ingestion.models import Coordinates, IngestionQuery

# ---------------------------------------------------------------------------
# Raw Discovery API payloads
# ---------------------------------------------------------------------------


def make_raw_event(
    event_id: str = "G5vYZ9",
    *,
    name: str = "Night Show",
    venue: dict | None | bool = True,
    venue_name: str = "O2 Academy Brixton",
    address_line1: str | None = "211 Stockwell Road",
    venue_location: dict | None = None,
    event_location: dict | None = None,
    postal_code: str | None = "SW9 9SL",
    venue_city: str | None = "London",
    venue_country: str | None = "Great Britain",
    segment: str = "Music",
    genre: str = "Rock",
    sub_genre: str = "Alternative Rock",
    price_ranges: list[dict] | None = None,
    images: list[dict] | None = None,
    attractions: list[dict] | None = None,
    local_date: str = "2026-10-20",
    date_time: str | None = "2026-10-20T19:00:00Z",
) -> dict[str, Any]:
    """A Discovery API event shaped like the real thing, with overridable parts."""
    raw: dict[str, Any] = {
        "id": event_id,
        "name": name,
        "type": "event",
        "url": f"https://www.ticketmaster.co.uk/event/{event_id}",
        "locale": "en-us",
        "info": "Doors at 7pm.",
        "images": images
        if images is not None
        else [
            {
                "ratio": "16_9",
                "url": f"https://s1.ticketm.net/dam/{event_id}_RETINA_PORTRAIT_16_9.jpg",
                "width": 640,
                "height": 360,
                "fallback": False,
            }
        ],
        "sales": {
            "public": {
                "startDateTime": "2026-09-01T09:00:00Z",
                "endDateTime": "2026-10-20T18:00:00Z",
                "startTBD": False,
                "startTBA": False,
            }
        },
        "dates": {
            "start": {
                "localDate": local_date,
                "localTime": "19:00:00",
                "dateTime": date_time,
                "dateTBD": False,
                "dateTBA": False,
                "timeTBA": False,
                "noSpecificTime": False,
            },
            "timezone": "Europe/London",
            "status": {"code": "onsale"},
            "spanMultipleDays": False,
        },
        "classifications": [
            {
                "primary": True,
                "segment": {"id": "KZFzniwnSyZfZ7v7nJ", "name": segment},
                "genre": {"id": "KnvZfZ7vAeA", "name": genre},
                "subGenre": {"id": "KZazBEonSMnZfZ7v6F1", "name": sub_genre},
                "type": {"id": "KZAyXgnZfZ7v7nI", "name": "Undefined"},
                "subType": {"id": "KZFzBErXgnZfZ7v7lJ", "name": "Undefined"},
            }
        ],
        "priceRanges": price_ranges
        if price_ranges is not None
        else [{"type": "standard", "currency": "GBP", "min": 35.0, "max": 60.0}],
        "_embedded": {
            "attractions": attractions
            if attractions is not None
            else [{"name": "The Band", "url": "https://www.ticketmaster.co.uk/the-band"}],
        },
    }
    if event_location is not None:
        raw["location"] = event_location
    if venue is True:
        venue_payload: dict[str, Any] = {
            "name": venue_name,
            "url": "https://www.ticketmaster.co.uk/o2-academy-brixton",
            "postalCode": postal_code,
            "timezone": "Europe/London",
            "city": {"name": venue_city} if venue_city else None,
            "country": {"name": venue_country, "countryCode": "GB"} if venue_country else None,
            "address": {"line1": address_line1} if address_line1 else {},
            "markets": [{"name": "London", "id": "202"}],
            "ada": {"adaPhones": "0333 321 9999", "adaHours": "Mon-Fri 9-5"},
        }
        if venue_location is not None:
            venue_payload["location"] = venue_location
        raw["_embedded"]["venues"] = [venue_payload]
    elif isinstance(venue, dict):
        raw["_embedded"]["venues"] = [venue]
    return raw


BRIXTON = {"latitude": "51.465", "longitude": "-0.115"}


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGeocoder:
    """Records every lookup and answers with a fixed result."""

    def __init__(self, result: Coordinates | None = None) -> None:
        self.result = result
        self.calls: list[tuple] = []

    async def geocode(self, address, postal_code=None, city=None, country=None):
        self.calls.append((address, postal_code, city, country))
        return self.result


class FakeSource:
    """A Ticketmaster stand-in serving canned pages."""

    name = "ticketmaster"

    def __init__(
        self,
        pages: list[list[dict]] | None = None,
        *,
        total: int | None = None,
        page_size: int = 200,
        count_error: bool = False,
    ) -> None:
        self.pages = pages or []
        self.total = total if total is not None else sum(len(p) for p in self.pages)
        self.page_size = page_size
        self.count_error = count_error
        self.count_calls: list[IngestionQuery] = []
        self.page_calls: list[int] = []

    async def count_events(self, query: IngestionQuery) -> int:
        self.count_calls.append(query)
        if self.count_error:
            raise SourceError("[ticketmaster] count failed after 3 attempts")
        return self.total

    async def fetch_page(self, query: IngestionQuery, page: int) -> list[dict]:
        self.page_calls.append(page)
        if page < len(self.pages):
            return list(self.pages[page])
        return []


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "events.db"


@pytest_asyncio.fixture
async def db(db_path: Path):
    await init_db(db_path)
    conn = await get_db(db_path)
    try:
        yield conn
    finally:
        await conn.close()


@pytest_asyncio.fixture
async def store(db) -> EventStore:
    return EventStore(db)


async def count_rows(db, table: str) -> int:
    cursor = await db.execute(f"SELECT COUNT(*) FROM {table}")
    return (await cursor.fetchone())[0]
