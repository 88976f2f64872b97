"""Map raw Discovery API events onto the event model and resolve sub-entities."""

from __future__ import annotations

import logging
import math
from typing import Any, Protocol

from pydantic import ValidationError

from ingestion.models import (
    Ada,
    AttractionIn,
    ClassificationIn,
    Coordinates,
    DateWindow,
    EventCreate,
    EventDraft,
    ImageIn,
    Market,
    PriceRangeIn,
    SalesWindow,
    SourceTag,
    VenueIn,
)

log = logging.getLogger(__name__)


class Geocoder(Protocol):
    async def geocode(
        self,
        address: str | None,
        postal_code: str | None = None,
        city: str | None = None,
        country: str | None = None,
    ) -> Coordinates | None: ...


def parse_coordinates(location: Any) -> Coordinates | None:
    """Numeric ``{latitude, longitude}`` from a payload, or ``None``.

    The Discovery API sends coordinates as strings, so numeric strings are
    accepted; anything non-finite or out of range is not.
    """
    if not isinstance(location, dict):
        return None
    try:
        lat = float(location["latitude"])
        lng = float(location["longitude"])
    except (KeyError, TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    try:
        return Coordinates(latitude=lat, longitude=lng)
    except ValidationError:
        return None


def event_id_of(raw: Any) -> Any:
    return raw.get("id") if isinstance(raw, dict) else None


def _name(obj: Any) -> str:
    if isinstance(obj, dict):
        return (obj.get("name") or "").strip()
    return ""


def _venue(raw_venue: dict) -> VenueIn:
    address = raw_venue.get("address") or {}
    country = raw_venue.get("country") or {}
    ada = raw_venue.get("ada")
    return VenueIn(
        name=raw_venue.get("name") or address.get("line1"),
        url=raw_venue.get("url"),
        postal_code=raw_venue.get("postalCode"),
        timezone=raw_venue.get("timezone"),
        city=_name(raw_venue.get("city")) or None,
        country=_name(country) or country.get("countryCode"),
        address_line1=address.get("line1"),
        address_line2=address.get("line2"),
        address_line3=address.get("line3"),
        location=parse_coordinates(raw_venue.get("location")),
        markets=[
            Market(name=m.get("name"), id=str(m["id"]) if m.get("id") else None)
            for m in raw_venue.get("markets") or []
            if isinstance(m, dict)
        ],
        ada=(
            Ada(
                phones=ada.get("adaPhones"),
                custom_copy=ada.get("adaCustomCopy"),
                hours=ada.get("adaHours"),
            )
            if isinstance(ada, dict)
            else None
        ),
    )


def _classifications(items: list[dict]) -> list[ClassificationIn]:
    return [
        ClassificationIn(
            segment=_name(c.get("segment")),
            genre=_name(c.get("genre")),
            sub_genre=_name(c.get("subGenre")),
            type=_name(c.get("type")),
            sub_type=_name(c.get("subType")),
        )
        for c in items
        if isinstance(c, dict)
    ]


def _images(items: list[dict]) -> list[ImageIn]:
    return [
        ImageIn(
            url=img["url"],
            ratio=img.get("ratio"),
            width=img.get("width"),
            height=img.get("height"),
            fallback=bool(img.get("fallback", False)),
        )
        for img in items
        if isinstance(img, dict) and img.get("url")
    ]


def _price_ranges(items: list[dict]) -> list[PriceRangeIn]:
    ranges = []
    for pr in items:
        if not isinstance(pr, dict) or pr.get("min") is None or pr.get("max") is None:
            continue
        ranges.append(
            PriceRangeIn(
                type=pr.get("type") or "standard",
                currency=pr.get("currency") or "USD",
                min=pr["min"],
                max=pr["max"],
            )
        )
    return ranges


def _attractions(items: list[dict]) -> list[AttractionIn]:
    return [
        AttractionIn(
            name=a["name"],
            url=a.get("url") or "",
            aliases=[str(alias) for alias in a.get("aliases") or []],
        )
        for a in items
        if isinstance(a, dict) and a.get("name")
    ]


def _sales(raw: dict) -> SalesWindow:
    public = (raw.get("sales") or {}).get("public") or {}
    return SalesWindow(
        start_date_time=public.get("startDateTime"),
        end_date_time=public.get("endDateTime"),
        start_tbd=bool(public.get("startTBD", False)),
        start_tba=bool(public.get("startTBA", False)),
        end_tbd=bool(public.get("endTBD", False)),
        end_tba=bool(public.get("endTBA", False)),
    )


def _dates(raw: dict) -> DateWindow:
    dates = raw.get("dates") or {}
    start = dates.get("start") or {}
    end = dates.get("end") or {}
    status = dates.get("status") or {}
    return DateWindow(
        start_local_date=start.get("localDate"),
        start_local_time=start.get("localTime"),
        start_date_time=start.get("dateTime"),
        date_tbd=bool(start.get("dateTBD", False)),
        date_tba=bool(start.get("dateTBA", False)),
        time_tba=bool(start.get("timeTBA", False)),
        no_specific_time=bool(start.get("noSpecificTime", False)),
        end_local_time=end.get("localTime"),
        end_date_time=end.get("dateTime"),
        end_approximate=bool(end.get("approximate", False)),
        end_no_specific_time=bool(end.get("noSpecificTime", False)),
        timezone=dates.get("timezone"),
        status=status.get("code") if isinstance(status, dict) else status,
        span_multiple_days=bool(dates.get("spanMultipleDays", False)),
    )


class EventNormalizer:
    """Turn one raw event into an :class:`EventDraft` or reject it.

    ``store`` is an :class:`api.database.EventStore` (or anything with the same
    find-or-create methods); ``geocoder`` is only consulted when neither the
    event nor its venue carries usable coordinates.
    """

    def __init__(self, store, geocoder: Geocoder | None = None, source_name: str = "ticketmaster"):
        self.store = store
        self.geocoder = geocoder
        self.source_name = source_name

    async def _locate(
        self, raw: dict, venue: VenueIn, city: str | None, country: str | None
    ) -> Coordinates | None:
        coords = parse_coordinates(raw.get("location"))
        if coords:
            return coords
        if venue.location:
            return venue.location
        if self.geocoder is None:
            return None
        return await self.geocoder.geocode(
            venue.address_line1,
            venue.postal_code,
            venue.city or city,
            venue.country or country,
        )

    async def map_event(
        self, raw: dict, city: str | None = None, country: str | None = None
    ) -> EventCreate | None:
        """Build an :class:`EventCreate` from *raw*; no store access.

        *city* and *country* are the request's and stand in for a venue that
        lacks them when geocoding.
        """
        if not isinstance(raw, dict):
            log.warning("Rejected event payload of type %s", type(raw).__name__)
            return None
        event_id = raw.get("id")
        venues = (raw.get("_embedded") or {}).get("venues") or []
        raw_venue = venues[0] if venues and isinstance(venues[0], dict) else None
        if raw_venue is None:
            log.debug("Rejected event %s: no venue", event_id)
            return None
        if not (raw_venue.get("address") or {}).get("line1"):
            log.debug("Rejected event %s: no venue address", event_id)
            return None

        venue = _venue(raw_venue)
        location = await self._locate(raw, venue, city, country)
        if location is None:
            log.info("Rejected event %s: no coordinates", event_id)
            return None

        embedded = raw.get("_embedded") or {}
        return EventCreate(
            name=raw.get("name") or "",
            type=raw.get("type") or "event",
            description=raw.get("description") or raw.get("info") or raw.get("pleaseNote"),
            url=raw.get("url"),
            locale=raw.get("locale"),
            location=location,
            venue=venue,
            classifications=_classifications(raw.get("classifications") or []),
            images=_images(raw.get("images") or []),
            sales=_sales(raw),
            dates=_dates(raw),
            price_ranges=_price_ranges(raw.get("priceRanges") or []),
            attractions=_attractions(embedded.get("attractions") or []),
            source=SourceTag(name=self.source_name, id=str(event_id)) if event_id else None,
        )

    async def resolve(self, event: EventCreate) -> EventDraft:
        """Find or create every sub-entity of *event* and return the draft."""
        store = self.store
        # A venue without its own point is placed at the event.
        venue_id = await store.upsert_venue(event.venue, event.venue.location or event.location)
        classification_ids = [
            await store.find_or_create_classification(c) for c in event.classifications
        ]
        image_ids = [await store.find_or_create_image(img) for img in event.images]
        attraction_ids = [
            await store.find_or_create_attraction(a) for a in event.attractions
        ]
        sales_id = await store.create_sales(event.sales)
        dates_id = await store.create_dates(event.dates)
        price_range_ids = [await store.create_price_range(p) for p in event.price_ranges]

        return EventDraft(
            name=event.name,
            type=event.type,
            description=event.description,
            url=event.url,
            locale=event.locale,
            location=event.location,
            source=event.source,
            venue_id=venue_id,
            sales_id=sales_id,
            dates_id=dates_id,
            classification_ids=classification_ids,
            image_ids=image_ids,
            price_range_ids=price_range_ids,
            attraction_ids=attraction_ids,
        )

    async def normalize(
        self, raw: dict, city: str | None = None, country: str | None = None
    ) -> EventDraft | None:
        """Map and resolve *raw*; a rejection or a per-event failure yields ``None``."""
        try:
            event = await self.map_event(raw, city, country)
            if event is None:
                return None
            return await self.resolve(event)
        except (ValidationError, AttributeError, KeyError, TypeError, ValueError) as exc:
            log.warning("Could not normalize event %s: %s", event_id_of(raw), exc)
            return None
