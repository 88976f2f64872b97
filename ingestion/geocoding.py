"""Free-text address geocoding through geopy's Nominatim geocoder."""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from urllib.parse import urlsplit

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim
from pydantic import ValidationError

from ingestion.models import Coordinates

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://nominatim.openstreetmap.org"
DEFAULT_USER_AGENT = "event-map-backend/0.1 (geocoding fallback)"


class NominatimGeocoder:
    """Resolve an address to coordinates; every failure becomes ``None``.

    Lookups go through a geopy :class:`RateLimiter` (one request per second by
    default, per the Nominatim usage policy) and are cached per query string.
    The blocking geopy call runs in a worker thread so the event loop keeps
    serving other normalizations. ``geocoder`` replaces the geopy
    ``Nominatim`` instance, e.g. with a stub in tests.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10,
        min_delay_seconds: float = 1.0,
        cache_size: int = 512,
        geocoder=None,
    ) -> None:
        if geocoder is None:
            url = urlsplit(base_url)
            geocoder = Nominatim(
                user_agent=user_agent,
                domain=url.netloc or url.path,
                scheme=url.scheme or "https",
                timeout=timeout,
            )
        self._geocoder = geocoder
        self._rate_limited = RateLimiter(
            geocoder.geocode,
            min_delay_seconds=min_delay_seconds,
            max_retries=0,
            swallow_exceptions=False,
        )
        self._lookup = lru_cache(maxsize=cache_size)(self._lookup_uncached)

    @staticmethod
    def build_query(*parts: str | None) -> str:
        return ", ".join(p.strip() for p in parts if p and p.strip())

    def _lookup_uncached(self, query: str) -> Coordinates | None:
        location = self._rate_limited(query, exactly_one=True, addressdetails=True)
        if location is None:
            log.info("No geocoding result for %r", query)
            return None
        try:
            return Coordinates(latitude=location.latitude, longitude=location.longitude)
        except (TypeError, ValueError, ValidationError):
            log.warning("Unusable geocoding result for %r: %r", query, location)
            return None

    async def geocode(
        self,
        address: str | None,
        postal_code: str | None = None,
        city: str | None = None,
        country: str | None = None,
    ) -> Coordinates | None:
        query = self.build_query(address, postal_code, city, country)
        if not query:
            return None
        try:
            return await asyncio.to_thread(self._lookup, query)
        except GeopyError as exc:
            log.warning("Geocoding %r failed: %s", query, exc)
            return None
