"""Read side: bounding-box search and by-ID lookups with sub-entities joined."""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

import aiosqlite


class InvalidIdentifierError(ValueError):
    """An id that cannot name a stored row."""


class InvalidBoundsError(ValueError):
    """A bounding box that is inverted or off the globe."""


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def __post_init__(self) -> None:
        if not (-90 <= self.min_lat <= 90 and -90 <= self.max_lat <= 90):
            raise InvalidBoundsError("Latitudes must be between -90 and 90.")
        if not (-180 <= self.min_lng <= 180 and -180 <= self.max_lng <= 180):
            raise InvalidBoundsError("Longitudes must be between -180 and 180.")
        if self.min_lat > self.max_lat or self.min_lng > self.max_lng:
            raise InvalidBoundsError("Minimum bounds must not exceed maximum bounds.")


@dataclass(frozen=True)
class EventFilters:
    event_type: str | None = None
    genre: str | None = None
    start_date: date | None = None
    end_date: date | None = None


def parse_ids(raw: int | str | Iterable[int | str]) -> list[int]:
    """Validate row ids before they reach the database.

    Accepts an int, a digit string, a comma-separated string or an iterable of
    those. Raises :class:`InvalidIdentifierError` on anything else.
    """
    if isinstance(raw, int) and not isinstance(raw, bool):
        parts: list[int | str] = [raw]
    elif isinstance(raw, str):
        parts = [p.strip() for p in raw.split(",")]
    else:
        parts = list(raw)

    ids: list[int] = []
    for part in parts:
        if isinstance(part, bool):
            raise InvalidIdentifierError(f"Invalid id: {part!r}")
        if isinstance(part, int):
            value = part
        elif isinstance(part, str) and part.isascii() and part.isdigit():
            value = int(part)
        else:
            raise InvalidIdentifierError(f"Invalid id: {part!r}")
        if value <= 0:
            raise InvalidIdentifierError(f"Invalid id: {part!r}")
        ids.append(value)

    if not ids:
        raise InvalidIdentifierError("At least one id is required.")
    return ids


def _like(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped.lower()}%"


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


_EVENT_SELECT = """
    SELECT
        e.id, e.name, e.type, e.description, e.url, e.locale,
        e.latitude, e.longitude, e.source_name, e.source_id,
        e.created_at, e.updated_at,
        v.id AS v_id, v.name AS v_name, v.url AS v_url,
        v.postal_code AS v_postal_code, v.timezone AS v_timezone,
        v.city AS v_city, v.country AS v_country,
        v.address_line1 AS v_address_line1, v.address_line2 AS v_address_line2,
        v.address_line3 AS v_address_line3,
        v.latitude AS v_latitude, v.longitude AS v_longitude,
        v.markets AS v_markets, v.ada_phones AS v_ada_phones,
        v.ada_custom_copy AS v_ada_custom_copy, v.ada_hours AS v_ada_hours,
        s.id AS s_id, s.start_date_time AS s_start_date_time,
        s.end_date_time AS s_end_date_time, s.start_tbd AS s_start_tbd,
        s.start_tba AS s_start_tba, s.end_tbd AS s_end_tbd, s.end_tba AS s_end_tba,
        d.id AS d_id, d.start_local_date AS d_start_local_date,
        d.start_local_time AS d_start_local_time,
        d.start_date_time AS d_start_date_time, d.date_tbd AS d_date_tbd,
        d.date_tba AS d_date_tba, d.time_tba AS d_time_tba,
        d.no_specific_time AS d_no_specific_time,
        d.end_local_time AS d_end_local_time, d.end_date_time AS d_end_date_time,
        d.end_approximate AS d_end_approximate,
        d.end_no_specific_time AS d_end_no_specific_time,
        d.timezone AS d_timezone, d.status AS d_status,
        d.span_multiple_days AS d_span_multiple_days
    FROM events e
    JOIN venues v ON v.id = e.venue_id
    JOIN sales s ON s.id = e.sales_id
    JOIN date_infos d ON d.id = e.dates_id
"""

_START_DATE = "date(COALESCE(d.start_date_time, d.start_local_date))"


def _event_row(row: aiosqlite.Row) -> dict[str, Any]:
    ada = None
    if row["v_ada_phones"] or row["v_ada_custom_copy"] or row["v_ada_hours"]:
        ada = {
            "phones": row["v_ada_phones"],
            "custom_copy": row["v_ada_custom_copy"],
            "hours": row["v_ada_hours"],
        }
    source = None
    if row["source_name"]:
        source = {"name": row["source_name"], "id": row["source_id"]}
    return {
        "id": row["id"],
        "name": row["name"],
        "type": row["type"],
        "description": row["description"],
        "url": row["url"],
        "locale": row["locale"],
        "location": {"latitude": row["latitude"], "longitude": row["longitude"]},
        "source": source,
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "venue": {
            "id": row["v_id"],
            "name": row["v_name"],
            "url": row["v_url"],
            "postal_code": row["v_postal_code"],
            "timezone": row["v_timezone"],
            "city": row["v_city"],
            "country": row["v_country"],
            "address_line1": row["v_address_line1"],
            "address_line2": row["v_address_line2"],
            "address_line3": row["v_address_line3"],
            "location": {"latitude": row["v_latitude"], "longitude": row["v_longitude"]},
            "markets": json.loads(row["v_markets"] or "[]"),
            "ada": ada,
        },
        "sales": {
            "id": row["s_id"],
            "start_date_time": row["s_start_date_time"],
            "end_date_time": row["s_end_date_time"],
            "start_tbd": bool(row["s_start_tbd"]),
            "start_tba": bool(row["s_start_tba"]),
            "end_tbd": bool(row["s_end_tbd"]),
            "end_tba": bool(row["s_end_tba"]),
        },
        "dates": {
            "id": row["d_id"],
            "start_local_date": row["d_start_local_date"],
            "start_local_time": row["d_start_local_time"],
            "start_date_time": row["d_start_date_time"],
            "date_tbd": bool(row["d_date_tbd"]),
            "date_tba": bool(row["d_date_tba"]),
            "time_tba": bool(row["d_time_tba"]),
            "no_specific_time": bool(row["d_no_specific_time"]),
            "end_local_time": row["d_end_local_time"],
            "end_date_time": row["d_end_date_time"],
            "end_approximate": bool(row["d_end_approximate"]),
            "end_no_specific_time": bool(row["d_end_no_specific_time"]),
            "timezone": row["d_timezone"],
            "status": row["d_status"],
            "span_multiple_days": bool(row["d_span_multiple_days"]),
        },
        "classifications": [],
        "images": [],
        "price_ranges": [],
        "attractions": [],
    }


async def _attach(db: aiosqlite.Connection, events: list[dict[str, Any]]) -> None:
    """Join the many-valued sub-entities onto *events* in link order."""
    if not events:
        return
    ids = [e["id"] for e in events]
    by_id = {e["id"]: e for e in events}
    marks = _placeholders(ids)

    joins = {
        "classifications": (
            f"SELECT l.event_id, c.id, c.segment, c.genre, c.sub_genre, c.type, c.sub_type "
            f"FROM event_classifications l JOIN classifications c ON c.id = l.classification_id "
            f"WHERE l.event_id IN ({marks}) ORDER BY l.event_id, l.position",
            lambda r: {
                "id": r["id"],
                "segment": r["segment"],
                "genre": r["genre"],
                "sub_genre": r["sub_genre"],
                "type": r["type"],
                "sub_type": r["sub_type"],
            },
        ),
        "images": (
            f"SELECT l.event_id, i.id, i.url, i.ratio, i.width, i.height, i.fallback "
            f"FROM event_images l JOIN images i ON i.id = l.image_id "
            f"WHERE l.event_id IN ({marks}) ORDER BY l.event_id, l.position",
            lambda r: {
                "id": r["id"],
                "url": r["url"],
                "ratio": r["ratio"],
                "width": r["width"],
                "height": r["height"],
                "fallback": bool(r["fallback"]),
            },
        ),
        "price_ranges": (
            f"SELECT l.event_id, p.id, p.type, p.currency, p.min, p.max "
            f"FROM event_price_ranges l JOIN price_ranges p ON p.id = l.price_range_id "
            f"WHERE l.event_id IN ({marks}) ORDER BY l.event_id, l.position",
            lambda r: {
                "id": r["id"],
                "type": r["type"],
                "currency": r["currency"],
                "min": r["min"],
                "max": r["max"],
            },
        ),
        "attractions": (
            f"SELECT l.event_id, a.id, a.name, a.url, a.aliases "
            f"FROM event_attractions l JOIN attractions a ON a.id = l.attraction_id "
            f"WHERE l.event_id IN ({marks}) ORDER BY l.event_id, l.position",
            lambda r: {
                "id": r["id"],
                "name": r["name"],
                "url": r["url"],
                "aliases": json.loads(r["aliases"] or "[]"),
            },
        ),
    }

    for key, (sql, shape) in joins.items():
        grouped: dict[int, list[dict[str, Any]]] = defaultdict(list)
        cursor = await db.execute(sql, ids)
        for row in await cursor.fetchall():
            grouped[row["event_id"]].append(shape(row))
        for event_id, items in grouped.items():
            by_id[event_id][key] = items


async def find_events(
    db: aiosqlite.Connection, bounds: Bounds, filters: EventFilters | None = None
) -> list[dict[str, Any]]:
    """Events whose location lies inside *bounds* and that match *filters*."""
    filters = filters or EventFilters()
    conditions = [
        "e.latitude BETWEEN ? AND ?",
        "e.longitude BETWEEN ? AND ?",
    ]
    params: list[Any] = [bounds.min_lat, bounds.max_lat, bounds.min_lng, bounds.max_lng]

    if filters.event_type:
        conditions.append(
            "EXISTS (SELECT 1 FROM event_classifications l "
            "JOIN classifications c ON c.id = l.classification_id "
            "WHERE l.event_id = e.id AND lower(c.segment) LIKE ? ESCAPE '\\')"
        )
        params.append(_like(filters.event_type))
    if filters.genre:
        conditions.append(
            "EXISTS (SELECT 1 FROM event_classifications l "
            "JOIN classifications c ON c.id = l.classification_id "
            "WHERE l.event_id = e.id AND lower(c.genre) LIKE ? ESCAPE '\\')"
        )
        params.append(_like(filters.genre))
    if filters.start_date:
        conditions.append(f"{_START_DATE} >= ?")
        params.append(filters.start_date.isoformat())
    if filters.end_date:
        conditions.append(f"{_START_DATE} <= ?")
        params.append(filters.end_date.isoformat())

    cursor = await db.execute(
        f"{_EVENT_SELECT} WHERE {' AND '.join(conditions)} "
        "ORDER BY COALESCE(d.start_date_time, d.start_local_date) ASC, e.id ASC",
        params,
    )
    events = [_event_row(row) for row in await cursor.fetchall()]
    await _attach(db, events)
    return events


async def get_events(db: aiosqlite.Connection, ids: list[int]) -> list[dict[str, Any]]:
    """Fully joined events for *ids*, in the order asked; unknown ids are skipped."""
    if not ids:
        return []
    cursor = await db.execute(
        f"{_EVENT_SELECT} WHERE e.id IN ({_placeholders(ids)})", ids
    )
    found = {row["id"]: _event_row(row) for row in await cursor.fetchall()}
    events = [found[i] for i in dict.fromkeys(ids) if i in found]
    await _attach(db, events)
    return events


async def get_event(db: aiosqlite.Connection, event_id: int) -> dict[str, Any] | None:
    events = await get_events(db, [event_id])
    return events[0] if events else None
