"""Ticketmaster events via the Discovery API v2."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ingestion.base import BaseClient, SourceError
from ingestion.models import IngestionQuery

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://app.ticketmaster.com"
_EVENTS_PATH = "/discovery/v2/events.json"
PAGE_SIZE = 200  # API max

_RATE_LIMIT_HEADERS = ("Rate-Limit", "Rate-Limit-Available", "Rate-Limit-Reset")


class TicketmasterClient(BaseClient):
    """Paginated client for the Discovery API.

    ``fetch_page`` never raises: a page that keeps failing is logged and comes
    back empty so the rest of the run can continue. ``count_events`` raises
    :class:`SourceError` instead, since without a count there is no run.
    """

    name = "ticketmaster"
    rate_limit = 0.25  # 5 req/s quota

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        page_size: int = PAGE_SIZE,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.page_size = page_size
        self._endpoint = base_url.rstrip("/") + _EVENTS_PATH

    def _params(self, query: IngestionQuery, *, page: int, size: int) -> dict[str, Any]:
        return {
            "apikey": self.api_key,
            "countryCode": query.country_code,
            "city": query.city,
            "classificationName": query.event_type,
            "size": size,
            "page": page,
            "sort": "date,asc",
            "startDateTime": IngestionQuery.format_instant(query.start),
            "endDateTime": IngestionQuery.format_instant(query.end),
        }

    def _log_rate_limit(self, headers: httpx.Headers) -> None:
        seen = {h: headers[h] for h in _RATE_LIMIT_HEADERS if h in headers}
        if seen:
            log.debug("[%s] rate limit %s", self.name, seen)

    async def count_events(self, query: IngestionQuery) -> int:
        """Total number of events matching *query* across all pages."""
        data, headers = await self.fetch_json(
            self._endpoint, params=self._params(query, page=0, size=1)
        )
        self._log_rate_limit(headers)
        page_info = data.get("page") or {}
        return int(page_info.get("totalElements") or 0)

    async def fetch_page(self, query: IngestionQuery, page: int) -> list[dict[str, Any]]:
        """Raw event payloads for one page, or ``[]`` when exhausted or failing."""
        try:
            data, headers = await self.fetch_json(
                self._endpoint,
                params=self._params(query, page=page, size=self.page_size),
            )
        except SourceError as exc:
            log.error("[%s] skipping page %d: %s", self.name, page, exc)
            return []

        self._log_rate_limit(headers)
        embedded = data.get("_embedded") or {}
        events = embedded.get("events") or []
        log.info("[%s] page %d: %d events", self.name, page, len(events))
        return list(events)
