"""Ingestion runs: count, cap, fetch pages, normalize, bulk insert."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

from ingestion.base import SourceError
from ingestion.models import (
    EventDraft,
    IngestionQuery,
    IngestionReport,
    IngestionStatus,
)
from ingestion.normalizer import event_id_of

log = logging.getLogger(__name__)

T = TypeVar("T")

MAX_PAGES = 4
BACKFILL_WEEKS = 8
MAX_CONCURRENCY = 10


class IngestionOrchestrator:
    """Drive one ingestion window end to end.

    Parameters
    ----------
    source:
        A :class:`~ingestion.ticketmaster.TicketmasterClient` (or any object
        with ``count_events``, ``fetch_page`` and ``page_size``).
    normalizer:
        An :class:`~ingestion.normalizer.EventNormalizer`.
    store:
        An :class:`~api.database.EventStore`; only ``insert_events`` is used here.
    max_pages:
        Windows needing more pages than this are refused as a whole.
    max_concurrency:
        Upper bound on in-flight page fetches and normalizations.
    """

    def __init__(
        self,
        source,
        normalizer,
        store,
        *,
        max_pages: int = MAX_PAGES,
        max_concurrency: int = MAX_CONCURRENCY,
    ) -> None:
        self.source = source
        self.normalizer = normalizer
        self.store = store
        self.max_pages = max_pages
        self.max_concurrency = max(1, max_concurrency)

    async def _bounded(
        self,
        limit: asyncio.Semaphore,
        items: list[Any],
        work: Callable[[Any], Awaitable[T]],
    ) -> list[T]:
        async def run(item: Any) -> T:
            async with limit:
                return await work(item)

        return await asyncio.gather(*(run(item) for item in items))

    async def _normalize_one(self, raw: dict, query: IngestionQuery) -> EventDraft | None:
        try:
            return await self.normalizer.normalize(raw, query.city, query.country_code)
        except Exception:
            # One bad event must not sink the window.
            log.exception("Event %s failed to normalize", event_id_of(raw))
            return None

    async def ingest_window(self, query: IngestionQuery) -> IngestionReport:
        """Ingest every event of one window; see :class:`IngestionStatus` for outcomes.

        Raises :class:`~api.database.StoreError` when the bulk insert fails.
        """
        window = (
            f"{query.event_type} in {query.city}, {query.country_code} "
            f"{IngestionQuery.format_instant(query.start)}..{IngestionQuery.format_instant(query.end)}"
        )
        report = IngestionReport(
            start=query.start, end=query.end, status=IngestionStatus.NO_EVENTS
        )

        try:
            total = await self.source.count_events(query)
        except SourceError as exc:
            log.error("%s: count failed: %s", window, exc)
            report.status = IngestionStatus.FAILED
            report.message = f"Could not count events: {exc}"
            return report

        report.total_available = total
        if total == 0:
            report.message = "No events found for these filters."
            log.info("%s: no events", window)
            return report

        pages = math.ceil(total / self.source.page_size)
        report.pages = pages
        if pages > self.max_pages:
            report.status = IngestionStatus.REFINE_FILTERS
            report.message = (
                f"{total} events need {pages} pages (limit {self.max_pages}); "
                "refine your filters."
            )
            log.warning("%s: %d events over %d pages, refusing", window, total, pages)
            return report

        limit = asyncio.Semaphore(self.max_concurrency)
        page_results = await self._bounded(
            limit, list(range(pages)), lambda page: self.source.fetch_page(query, page)
        )
        raw_events = [raw for page in page_results for raw in page]
        report.fetched = len(raw_events)

        results = await self._bounded(
            limit, raw_events, lambda raw: self._normalize_one(raw, query)
        )
        drafts = [draft for draft in results if draft is not None]

        if not drafts:
            report.message = "No valid events found."
            log.info("%s: none of %d events were usable", window, len(raw_events))
            return report

        # An event repeated across pages is upserted onto the same row.
        stored = list(dict.fromkeys(await self.store.insert_events(drafts)))
        report.status = IngestionStatus.STORED
        report.persisted = len(stored)
        report.message = f"Stored {len(stored)} event(s)."
        log.info(
            "%s: fetched %d, rejected %d, stored %d",
            window,
            len(raw_events),
            len(raw_events) - len(drafts),
            len(stored),
        )
        return report

    async def backfill(
        self,
        country_code: str,
        city: str,
        event_type: str,
        *,
        start: datetime | None = None,
        weeks: int = BACKFILL_WEEKS,
    ) -> list[IngestionReport]:
        """Ingest *weeks* consecutive one-week windows starting at *start* (default now).

        Each window stands alone: a failing window is reported and the next
        one still runs.
        """
        window_start = start or datetime.now(timezone.utc)
        reports: list[IngestionReport] = []
        for week in range(weeks):
            window_end = window_start + timedelta(weeks=1)
            query = IngestionQuery(
                country_code=country_code,
                city=city,
                event_type=event_type,
                start=window_start,
                end=window_end,
            )
            log.info("Backfill week %d/%d", week + 1, weeks)
            try:
                report = await self.ingest_window(query)
            except Exception as exc:
                log.exception("Backfill week %d failed", week + 1)
                report = IngestionReport(
                    start=window_start,
                    end=window_end,
                    status=IngestionStatus.FAILED,
                    message=str(exc),
                )
            reports.append(report)
            window_start = window_end
        return reports
