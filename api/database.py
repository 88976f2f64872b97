"""Database setup, connection management and event writes for the event map."""

from __future__ import annotations

import json
import logging
from os import PathLike

import aiosqlite

from ingestion.models import (
    AttractionIn,
    ClassificationIn,
    Coordinates,
    DateWindow,
    EventDraft,
    ImageIn,
    PriceRangeIn,
    SalesWindow,
    VenueIn,
)

log = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = "events.db"

SCHEMA = """
    CREATE TABLE IF NOT EXISTS venues (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        url TEXT,
        postal_code TEXT,
        timezone TEXT,
        city TEXT,
        country TEXT,
        address_line1 TEXT,
        address_line2 TEXT,
        address_line3 TEXT,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        markets TEXT NOT NULL DEFAULT '[]',
        ada_phones TEXT,
        ada_custom_copy TEXT,
        ada_hours TEXT,
        UNIQUE(name, latitude, longitude)
    );

    CREATE TABLE IF NOT EXISTS classifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        segment TEXT NOT NULL DEFAULT '',
        genre TEXT NOT NULL DEFAULT '',
        sub_genre TEXT NOT NULL DEFAULT '',
        type TEXT NOT NULL DEFAULT '',
        sub_type TEXT NOT NULL DEFAULT '',
        UNIQUE(segment, genre, sub_genre)
    );

    CREATE TABLE IF NOT EXISTS images (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT NOT NULL UNIQUE,
        ratio TEXT,
        width INTEGER,
        height INTEGER,
        fallback INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS attractions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        url TEXT NOT NULL DEFAULT '',
        aliases TEXT NOT NULL DEFAULT '[]'
    );

    CREATE TABLE IF NOT EXISTS sales (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        start_date_time TEXT,
        end_date_time TEXT,
        start_tbd INTEGER NOT NULL DEFAULT 0,
        start_tba INTEGER NOT NULL DEFAULT 0,
        end_tbd INTEGER NOT NULL DEFAULT 0,
        end_tba INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS date_infos (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        start_local_date TEXT,
        start_local_time TEXT,
        start_date_time TEXT,
        date_tbd INTEGER NOT NULL DEFAULT 0,
        date_tba INTEGER NOT NULL DEFAULT 0,
        time_tba INTEGER NOT NULL DEFAULT 0,
        no_specific_time INTEGER NOT NULL DEFAULT 0,
        end_local_time TEXT,
        end_date_time TEXT,
        end_approximate INTEGER NOT NULL DEFAULT 0,
        end_no_specific_time INTEGER NOT NULL DEFAULT 0,
        timezone TEXT,
        status TEXT,
        span_multiple_days INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS price_ranges (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        type TEXT NOT NULL DEFAULT 'standard',
        currency TEXT NOT NULL DEFAULT 'USD',
        min REAL NOT NULL,
        max REAL NOT NULL,
        created_at TEXT DEFAULT (datetime('now'))
    );

    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'event',
        description TEXT,
        url TEXT,
        locale TEXT,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        source_name TEXT,
        source_id TEXT,
        venue_id INTEGER NOT NULL REFERENCES venues(id),
        sales_id INTEGER NOT NULL REFERENCES sales(id),
        dates_id INTEGER NOT NULL REFERENCES date_infos(id),
        created_at TEXT DEFAULT (datetime('now')),
        updated_at TEXT DEFAULT (datetime('now')),
        UNIQUE(source_name, source_id)
    );

    CREATE TABLE IF NOT EXISTS event_classifications (
        event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        classification_id INTEGER NOT NULL REFERENCES classifications(id),
        position INTEGER NOT NULL,
        PRIMARY KEY (event_id, position)
    );

    CREATE TABLE IF NOT EXISTS event_images (
        event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        image_id INTEGER NOT NULL REFERENCES images(id),
        position INTEGER NOT NULL,
        PRIMARY KEY (event_id, position)
    );

    CREATE TABLE IF NOT EXISTS event_price_ranges (
        event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        price_range_id INTEGER NOT NULL REFERENCES price_ranges(id),
        position INTEGER NOT NULL,
        PRIMARY KEY (event_id, position)
    );

    CREATE TABLE IF NOT EXISTS event_attractions (
        event_id INTEGER NOT NULL REFERENCES events(id) ON DELETE CASCADE,
        attraction_id INTEGER NOT NULL REFERENCES attractions(id),
        position INTEGER NOT NULL,
        PRIMARY KEY (event_id, position)
    );

    CREATE TABLE IF NOT EXISTS profiles (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        longitude REAL NOT NULL,
        latitude REAL NOT NULL,
        bio TEXT,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        updated_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    );

    CREATE INDEX IF NOT EXISTS idx_events_latitude ON events(latitude);
    CREATE INDEX IF NOT EXISTS idx_events_longitude ON events(longitude);
    CREATE INDEX IF NOT EXISTS idx_events_venue ON events(venue_id);
    CREATE INDEX IF NOT EXISTS idx_date_infos_start ON date_infos(start_local_date);
    CREATE INDEX IF NOT EXISTS idx_event_classifications_classification
        ON event_classifications(classification_id);
"""

# Every event collection, link tables first so foreign keys never dangle.
EVENT_TABLES = (
    "event_classifications",
    "event_images",
    "event_price_ranges",
    "event_attractions",
    "events",
    "classifications",
    "images",
    "attractions",
    "price_ranges",
    "sales",
    "date_infos",
    "venues",
)

_LINK_TABLES = (
    ("event_classifications", "classification_id", "classification_ids"),
    ("event_images", "image_id", "image_ids"),
    ("event_price_ranges", "price_range_id", "price_range_ids"),
    ("event_attractions", "attraction_id", "attraction_ids"),
)


class StoreError(RuntimeError):
    """A write to the event store failed and was rolled back."""


async def get_db(path: str | PathLike[str] = DEFAULT_DATABASE_PATH) -> aiosqlite.Connection:
    """Get a database connection with row factory enabled."""
    db = await aiosqlite.connect(path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    return db


async def init_db(path: str | PathLike[str] = DEFAULT_DATABASE_PATH) -> None:
    """Create every table and index if they do not exist yet."""
    async with aiosqlite.connect(path) as db:
        await db.executescript(SCHEMA)
        await db.commit()


class EventStore:
    """Find-or-create and bulk writes for events and their sub-entities.

    Every dedup key is backed by a UNIQUE constraint, so find-or-create is
    "insert unless present, then select": concurrent normalizations that race
    on the same key all end up with the same row.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    async def _scalar(self, sql: str, params: tuple) -> int:
        rows = await self.db.execute_fetchall(sql, params)
        return rows[0][0]

    async def _insert(self, sql: str, params: tuple) -> int:
        cursor = await self.db.execute(sql, params)
        await self.db.commit()
        return cursor.lastrowid

    # ------------------------------------------------------------------
    # Deduplicated sub-entities
    # ------------------------------------------------------------------

    async def upsert_venue(self, venue: VenueIn, location: Coordinates) -> int:
        """Insert the venue or update the one with the same name and location."""
        ada = venue.ada
        await self.db.execute(
            """
            INSERT INTO venues (
                name, url, postal_code, timezone, city, country,
                address_line1, address_line2, address_line3,
                latitude, longitude, markets,
                ada_phones, ada_custom_copy, ada_hours
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(name, latitude, longitude) DO UPDATE SET
                url = excluded.url,
                postal_code = excluded.postal_code,
                timezone = excluded.timezone,
                city = excluded.city,
                country = excluded.country,
                address_line1 = excluded.address_line1,
                address_line2 = excluded.address_line2,
                address_line3 = excluded.address_line3,
                markets = excluded.markets,
                ada_phones = excluded.ada_phones,
                ada_custom_copy = excluded.ada_custom_copy,
                ada_hours = excluded.ada_hours
            """,
            (
                venue.name,
                venue.url,
                venue.postal_code,
                venue.timezone,
                venue.city,
                venue.country,
                venue.address_line1,
                venue.address_line2,
                venue.address_line3,
                location.latitude,
                location.longitude,
                json.dumps([m.model_dump() for m in venue.markets]),
                ada.phones if ada else None,
                ada.custom_copy if ada else None,
                ada.hours if ada else None,
            ),
        )
        await self.db.commit()
        return await self._scalar(
            "SELECT id FROM venues WHERE name = ? AND latitude = ? AND longitude = ?",
            (venue.name, location.latitude, location.longitude),
        )

    async def find_or_create_classification(self, item: ClassificationIn) -> int:
        await self.db.execute(
            """
            INSERT INTO classifications (segment, genre, sub_genre, type, sub_type)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(segment, genre, sub_genre) DO NOTHING
            """,
            (item.segment, item.genre, item.sub_genre, item.type, item.sub_type),
        )
        await self.db.commit()
        return await self._scalar(
            "SELECT id FROM classifications "
            "WHERE segment = ? AND genre = ? AND sub_genre = ?",
            (item.segment, item.genre, item.sub_genre),
        )

    async def find_or_create_image(self, item: ImageIn) -> int:
        await self.db.execute(
            """
            INSERT INTO images (url, ratio, width, height, fallback)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(url) DO NOTHING
            """,
            (item.url, item.ratio, item.width, item.height, int(item.fallback)),
        )
        await self.db.commit()
        return await self._scalar("SELECT id FROM images WHERE url = ?", (item.url,))

    async def find_or_create_attraction(self, item: AttractionIn) -> int:
        await self.db.execute(
            """
            INSERT INTO attractions (name, url, aliases)
            VALUES (?, ?, ?)
            ON CONFLICT(name) DO NOTHING
            """,
            (item.name, item.url, json.dumps(item.aliases)),
        )
        await self.db.commit()
        return await self._scalar(
            "SELECT id FROM attractions WHERE name = ?", (item.name,)
        )

    # ------------------------------------------------------------------
    # Per-event sub-entities (never deduplicated)
    # ------------------------------------------------------------------

    async def create_sales(self, sales: SalesWindow) -> int:
        return await self._insert(
            """
            INSERT INTO sales (
                start_date_time, end_date_time, start_tbd, start_tba, end_tbd, end_tba
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                sales.start_date_time,
                sales.end_date_time,
                int(sales.start_tbd),
                int(sales.start_tba),
                int(sales.end_tbd),
                int(sales.end_tba),
            ),
        )

    async def create_dates(self, dates: DateWindow) -> int:
        return await self._insert(
            """
            INSERT INTO date_infos (
                start_local_date, start_local_time, start_date_time,
                date_tbd, date_tba, time_tba, no_specific_time,
                end_local_time, end_date_time, end_approximate, end_no_specific_time,
                timezone, status, span_multiple_days
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                dates.start_local_date,
                dates.start_local_time,
                dates.start_date_time,
                int(dates.date_tbd),
                int(dates.date_tba),
                int(dates.time_tba),
                int(dates.no_specific_time),
                dates.end_local_time,
                dates.end_date_time,
                int(dates.end_approximate),
                int(dates.end_no_specific_time),
                dates.timezone,
                dates.status,
                int(dates.span_multiple_days),
            ),
        )

    async def create_price_range(self, price: PriceRangeIn) -> int:
        return await self._insert(
            "INSERT INTO price_ranges (type, currency, min, max) VALUES (?, ?, ?, ?)",
            (price.type, price.currency, price.min, price.max),
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def insert_events(self, drafts: list[EventDraft]) -> list[int]:
        """Write all *drafts* in one transaction and return their row ids.

        A draft with a source tag that is already stored replaces the stored
        row's fields and references instead of adding a duplicate.
        """
        ids: list[int] = []
        try:
            for draft in drafts:
                source_name = draft.source.name if draft.source else None
                source_id = draft.source.id if draft.source else None
                rows = await self.db.execute_fetchall(
                    """
                    INSERT INTO events (
                        name, type, description, url, locale, latitude, longitude,
                        source_name, source_id, venue_id, sales_id, dates_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(source_name, source_id) DO UPDATE SET
                        name = excluded.name,
                        type = excluded.type,
                        description = excluded.description,
                        url = excluded.url,
                        locale = excluded.locale,
                        latitude = excluded.latitude,
                        longitude = excluded.longitude,
                        venue_id = excluded.venue_id,
                        sales_id = excluded.sales_id,
                        dates_id = excluded.dates_id,
                        updated_at = datetime('now')
                    RETURNING id
                    """,
                    (
                        draft.name,
                        draft.type,
                        draft.description,
                        draft.url,
                        draft.locale,
                        draft.location.latitude,
                        draft.location.longitude,
                        source_name,
                        source_id,
                        draft.venue_id,
                        draft.sales_id,
                        draft.dates_id,
                    ),
                )
                event_id = rows[0][0]

                for table, column, field in _LINK_TABLES:
                    await self.db.execute(
                        f"DELETE FROM {table} WHERE event_id = ?", (event_id,)
                    )
                    await self.db.executemany(
                        f"INSERT INTO {table} (event_id, {column}, position) "
                        "VALUES (?, ?, ?)",
                        [
                            (event_id, ref_id, position)
                            for position, ref_id in enumerate(getattr(draft, field))
                        ],
                    )
                ids.append(event_id)
            await self.db.commit()
        except aiosqlite.Error as exc:
            await self.db.rollback()
            log.error("Bulk insert of %d event(s) failed: %s", len(drafts), exc)
            raise StoreError(f"Failed to store {len(drafts)} event(s): {exc}") from exc

        log.info("Stored %d event(s)", len(ids))
        return ids

    async def clear(self) -> None:
        """Delete every row of every event collection."""
        try:
            for table in EVENT_TABLES:
                await self.db.execute(f"DELETE FROM {table}")
            await self.db.commit()
        except aiosqlite.Error as exc:
            await self.db.rollback()
            raise StoreError(f"Failed to clear the database: {exc}") from exc
        log.warning("Cleared %d event tables", len(EVENT_TABLES))
