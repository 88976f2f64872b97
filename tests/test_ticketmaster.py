"""Tests for the Discovery API client: paging, counting and retries."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from ingestion.base import SourceError
from ingestion.models import IngestionQuery
from ingestion.ticketmaster import TicketmasterClient

QUERY = IngestionQuery(
    country_code="GB",
    city="London",
    event_type="Music",
    start=datetime(2026, 10, 18, 12, 30, 15, 123000, tzinfo=timezone.utc),
    end=datetime(2026, 10, 25, 12, 30, 15, tzinfo=timezone.utc),
)


def _client(handler) -> TicketmasterClient:
    return TicketmasterClient(
        "test-key",
        base_url="https://tm.test",
        rate_limit=0,
        retry_backoff=0,
        transport=httpx.MockTransport(handler),
    )


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_sends_window_and_filters(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"_embedded": {"events": [{"id": "a"}, {"id": "b"}]}},
                headers={"Rate-Limit-Available": "4999"},
            )

        async with _client(handler) as client:
            events = await client.fetch_page(QUERY, 2)

        assert [e["id"] for e in events] == ["a", "b"]
        params = seen[0].url.params
        assert seen[0].url.path == "/discovery/v2/events.json"
        assert params["apikey"] == "test-key"
        assert params["countryCode"] == "GB"
        assert params["city"] == "London"
        assert params["classificationName"] == "Music"
        assert params["size"] == "200"
        assert params["page"] == "2"
        assert params["sort"] == "date,asc"
        assert params["startDateTime"] == "2026-10-18T12:30:15Z"
        assert params["endDateTime"] == "2026-10-25T12:30:15Z"

    @pytest.mark.asyncio
    async def test_page_without_events_is_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"page": {"totalElements": 0}})

        async with _client(handler) as client:
            assert await client.fetch_page(QUERY, 0) == []

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                return httpx.Response(503, json={"fault": "busy"})
            return httpx.Response(200, json={"_embedded": {"events": [{"id": "ok"}]}})

        async with _client(handler) as client:
            events = await client.fetch_page(QUERY, 0)

        assert attempts == 3
        assert events == [{"id": "ok"}]

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts_and_skips_page(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            events = await client.fetch_page(QUERY, 1)

        assert attempts == 3
        assert events == []

    @pytest.mark.asyncio
    async def test_undecodable_body_counts_as_a_failed_attempt(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                return httpx.Response(200, content=b"<html>gateway</html>")
            return httpx.Response(200, json={"_embedded": {"events": [{"id": "x"}]}})

        async with _client(handler) as client:
            events = await client.fetch_page(QUERY, 0)

        assert attempts == 2
        assert events == [{"id": "x"}]

    @pytest.mark.asyncio
    async def test_waits_the_fixed_backoff_between_attempts(self, monkeypatch):
        sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        monkeypatch.setattr("ingestion.base.asyncio.sleep", fake_sleep)

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        client = TicketmasterClient(
            "test-key",
            base_url="https://tm.test",
            rate_limit=0,
            transport=httpx.MockTransport(handler),
        )
        async with client:
            assert await client.fetch_page(QUERY, 0) == []

        assert sleeps == [2.0, 2.0]


class TestCountEvents:
    @pytest.mark.asyncio
    async def test_reads_total_elements_with_a_single_item_page(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"page": {"size": 1, "totalElements": 437, "totalPages": 437, "number": 0}},
            )

        async with _client(handler) as client:
            assert await client.count_events(QUERY) == 437

        assert seen[0].url.params["size"] == "1"
        assert seen[0].url.params["page"] == "0"

    @pytest.mark.asyncio
    async def test_missing_page_descriptor_counts_as_zero(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={})

        async with _client(handler) as client:
            assert await client.count_events(QUERY) == 0

    @pytest.mark.asyncio
    async def test_raises_after_exhausting_retries(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"fault": {"faultstring": "Invalid ApiKey"}})

        async with _client(handler) as client:
            with pytest.raises(SourceError):
                await client.count_events(QUERY)


def test_naive_instants_are_treated_as_utc():
    assert IngestionQuery.format_instant(datetime(2026, 1, 2, 3, 4, 5)) == "2026-01-02T03:04:05Z"
