"""Tests for the Nominatim geocoding fallback."""

from __future__ import annotations

import pytest
from geopy.exc import GeocoderServiceError, GeocoderTimedOut
from geopy.location import Location

from ingestion.geocoding import NominatimGeocoder


class StubNominatim:
    """Stands in for ``geopy.geocoders.Nominatim``; answers from a script."""

    def __init__(self, *answers) -> None:
        self.answers = list(answers)
        self.calls: list[tuple[str, dict]] = []

    def geocode(self, query, **kwargs):
        self.calls.append((query, kwargs))
        answer = self.answers.pop(0) if self.answers else None
        if isinstance(answer, Exception):
            raise answer
        return answer


def _geocoder(stub: StubNominatim) -> NominatimGeocoder:
    return NominatimGeocoder(geocoder=stub, min_delay_seconds=0)


@pytest.mark.asyncio
async def test_joins_present_parts_and_returns_the_match():
    stub = StubNominatim(Location("O2 Academy Brixton", (51.465, -0.115), {}))

    coords = await _geocoder(stub).geocode("211 Stockwell Road", None, "London", "  ")

    assert coords is not None
    assert coords.latitude == pytest.approx(51.465)
    assert coords.longitude == pytest.approx(-0.115)
    assert stub.calls == [
        ("211 Stockwell Road, London", {"exactly_one": True, "addressdetails": True})
    ]


@pytest.mark.asyncio
async def test_no_match_is_none():
    stub = StubNominatim(None)

    assert await _geocoder(stub).geocode("Nowhere Lane", "00000", "Atlantis", "Sea") is None


@pytest.mark.asyncio
async def test_service_failure_is_swallowed():
    stub = StubNominatim(GeocoderServiceError("429 Too Many Requests"))

    assert await _geocoder(stub).geocode("211 Stockwell Road", city="London") is None
    assert len(stub.calls) == 1


@pytest.mark.asyncio
async def test_timeout_is_swallowed_and_not_cached():
    stub = StubNominatim(
        GeocoderTimedOut("timed out"), Location("Brixton", (51.465, -0.115), {})
    )
    geocoder = _geocoder(stub)

    assert await geocoder.geocode("211 Stockwell Road") is None
    assert await geocoder.geocode("211 Stockwell Road") is not None
    assert len(stub.calls) == 2


@pytest.mark.asyncio
async def test_repeated_address_is_looked_up_once():
    stub = StubNominatim(Location("Brixton", (51.465, -0.115), {}))
    geocoder = _geocoder(stub)

    first = await geocoder.geocode("211 Stockwell Road", city="London")
    second = await geocoder.geocode("211 Stockwell Road", city="London")

    assert first == second
    assert len(stub.calls) == 1


@pytest.mark.asyncio
async def test_unusable_match_is_none():
    class OffTheGlobe:
        latitude = 123.0
        longitude = -0.1

    assert await _geocoder(StubNominatim(OffTheGlobe())).geocode("211 Stockwell Road") is None


@pytest.mark.asyncio
async def test_nothing_to_look_up_skips_the_request():
    stub = StubNominatim()

    assert await _geocoder(stub).geocode(None, "", None, None) is None
    assert stub.calls == []


def test_base_url_configures_the_geopy_client():
    geocoder = NominatimGeocoder(
        base_url="http://nominatim.internal:8080", user_agent="event-map-tests"
    )

    assert geocoder._geocoder.domain == "nominatim.internal:8080"
    assert geocoder._geocoder.scheme == "http"
