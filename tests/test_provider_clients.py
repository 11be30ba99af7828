"""
Wire-level tests for the provider clients using httpx.MockTransport.

Covers:
    • Request formatting and payload parsing for each provider
    • Retry policy (5xx / 429 retried, other 4xx not, malformed JSON not)
    • Missing API key fails fast with zero HTTP calls
    • Per-call timeout → TIMEOUT status
    • Alert feeds (weather advisories, registry warnings, hydro stations)
    • Undated alert records skipped, non-finite numbers rejected
    • Failed registry sub-request cancels its sibling
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from conftest import make_config

from backend.app.alerts.models import AlertSeverity
from backend.app.providers import (
    ElevationClient,
    GovernmentRegistryClient,
    InfrastructureClient,
    WeatherClient,
)
from backend.app.core.errors import ProviderMalformedResponseError
from backend.app.providers.base import as_number, gather_or_cancel, optional_number
from backend.app.providers.elevation import proximity_from_terrain
from backend.app.providers.infrastructure import classify_element
from backend.app.risk.models import FetchStatus, Location, ProviderKind
from backend.app.spatial.geometry import bounding_box

HANOI = Location(21.0285, 105.8542, name="Hanoi", province="Hanoi")

FORECAST = {
    "current": {
        "temp_c": 29.5,
        "humidity": 84,
        "precip_mm": 2.5,
        "condition": {"code": 1195, "text": "Heavy rain"},
    },
    "forecast": {
        "forecastday": [
            {"day": {"totalprecip_mm": 40.0}},
            {"day": {"totalprecip_mm": 55.5}},
            {"day": {"totalprecip_mm": 12.0}},
        ]
    },
}


class Recorder:
    """MockTransport handler replaying a scripted list of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


def _run(coro):
    return asyncio.run(coro)


def _fetch(client, query, timeout=None):
    async def go():
        try:
            return await client.fetch(query, timeout=timeout)
        finally:
            await client.aclose()
    return _run(go())


def _fetch_alerts(client, province):
    async def go():
        try:
            return await client.fetch_alerts(province)
        finally:
            await client.aclose()
    return _run(go())


def _weather(handler, **cfg):
    return WeatherClient(make_config(**cfg), forecast_days=3, transport=httpx.MockTransport(handler))


# ═══════════════════════════════════════════════════════════════════════════
# Weather
# ═══════════════════════════════════════════════════════════════════════════

class TestWeatherClient:
    def test_parses_forecast(self):
        rec = Recorder(httpx.Response(200, json=FORECAST))
        result = _fetch(_weather(rec), HANOI)

        assert result.success
        assert result.kind == ProviderKind.WEATHER
        payload = result.payload
        assert payload.temperature_c == 29.5
        assert payload.condition_code == 1195
        assert payload.daily_rainfall_mm == (40.0, 55.5, 12.0)
        assert payload.forecast_rainfall_mm == pytest.approx(110.0)

        params = rec.requests[0].url.params
        assert rec.requests[0].url.path.endswith("/forecast.json")
        assert params["key"] == "secret"
        assert params["q"] == "21.0285,105.8542"
        assert params["days"] == "3"

    def test_missing_key_fails_fast(self):
        rec = Recorder(httpx.Response(200, json=FORECAST))
        result = _fetch(_weather(rec, api_key=None), HANOI)
        assert result.status == FetchStatus.UNCONFIGURED
        assert rec.requests == []
        assert result.attempts == 0

    def test_retries_server_errors_then_succeeds(self):
        rec = Recorder(
            httpx.Response(503),
            httpx.Response(429),
            httpx.Response(200, json=FORECAST),
        )
        result = _fetch(_weather(rec), HANOI)
        assert result.success
        assert result.attempts == 3

    def test_gives_up_after_two_retries(self):
        rec = Recorder(httpx.Response(500, text="boom"))
        result = _fetch(_weather(rec), HANOI)
        assert result.status == FetchStatus.API_ERROR
        assert len(rec.requests) == 3

    def test_client_error_not_retried(self):
        rec = Recorder(httpx.Response(401, json={"error": {"message": "bad key"}}))
        result = _fetch(_weather(rec), HANOI)
        assert result.status == FetchStatus.API_ERROR
        assert len(rec.requests) == 1

    def test_network_error_retried(self):
        rec = Recorder(httpx.ConnectError("refused"))
        result = _fetch(_weather(rec), HANOI)
        assert result.status == FetchStatus.NETWORK_ERROR
        assert len(rec.requests) == 3

    def test_invalid_json_is_malformed(self):
        rec = Recorder(httpx.Response(200, content=b"<html>oops</html>"))
        result = _fetch(_weather(rec), HANOI)
        assert result.status == FetchStatus.MALFORMED_RESPONSE
        assert len(rec.requests) == 1

    def test_missing_field_is_malformed(self):
        rec = Recorder(httpx.Response(200, json={"current": {"temp_c": 20}}))
        result = _fetch(_weather(rec), HANOI)
        assert result.status == FetchStatus.MALFORMED_RESPONSE
        assert not result.success

    def test_slow_provider_times_out(self):
        async def slow(request):
            await asyncio.sleep(2.0)
            return httpx.Response(200, json=FORECAST)

        client = WeatherClient(make_config(), transport=httpx.MockTransport(slow))
        result = _fetch(client, HANOI, timeout=0.1)
        assert result.status == FetchStatus.TIMEOUT

    def test_effective_timeout_bounded_by_deadline(self):
        client = WeatherClient(make_config(timeout_seconds=5.0))
        assert client.effective_timeout(1.5) == 1.5
        assert client.effective_timeout(30.0) == 5.0
        assert client.effective_timeout(None) == 5.0

    def test_alerts_keep_flood_events_only(self):
        body = {
            "alerts": {
                "alert": [
                    {
                        "headline": "Flash Flood Warning",
                        "event": "Flood Warning",
                        "severity": "Severe",
                        "effective": "2024-09-08T06:00:00+07:00",
                        "desc": "Rivers rising quickly",
                    },
                    {
                        "headline": "Heat Advisory",
                        "event": "Heat",
                        "severity": "Moderate",
                        "effective": "2024-09-08T03:00:00+07:00",
                    },
                ]
            }
        }
        rec = Recorder(httpx.Response(200, json=body))
        feed = _fetch_alerts(_weather(rec), "Hanoi")

        assert feed.success
        assert len(feed.alerts) == 1
        alert = feed.alerts[0]
        assert alert.severity == AlertSeverity.HIGH
        assert alert.source == ProviderKind.WEATHER
        assert alert.issued_at == datetime(2024, 9, 7, 23, 0, tzinfo=timezone.utc)
        assert rec.requests[0].url.params["alerts"] == "yes"
        assert rec.requests[0].url.params["q"] == "Hanoi"

    def test_alert_with_bad_timestamp_skipped(self):
        body = {"alerts": {"alert": [
            {"headline": "Flood Watch", "event": "Flood", "severity": "Moderate",
             "effective": "2024-09-08T06:00:00Z"},
            {"headline": "Flood Warning", "event": "Flood", "severity": "Severe",
             "effective": "not a date"},
            {"headline": "River Flood Warning", "event": "Flood", "severity": "Severe"},
        ]}}
        feed = _fetch_alerts(_weather(Recorder(httpx.Response(200, json=body))), "Hanoi")
        assert feed.success
        assert [a.title for a in feed.alerts] == ["Flood Watch"]


# ═══════════════════════════════════════════════════════════════════════════
# Elevation
# ═══════════════════════════════════════════════════════════════════════════

class TestElevationClient:
    def test_point_and_neighbours_in_one_request(self):
        body = {"results": [
            {"elevation": 8.0},
            {"elevation": 12.0},
            {"elevation": 10.0},
            {"elevation": 6.0},
            {"elevation": 9.0},
        ]}
        rec = Recorder(httpx.Response(200, json=body))
        client = ElevationClient(
            make_config(api_key=None, requires_api_key=False),
            transport=httpx.MockTransport(rec),
        )
        result = _fetch(client, HANOI)

        assert result.success
        payload = result.payload
        assert payload.elevation_m == 8.0
        assert payload.neighbour_elevations_m == (12.0, 10.0, 6.0, 9.0)
        # band 0.8 (< 10 m) + 0.2 × 3/4 higher neighbours
        assert payload.proximity_to_water == pytest.approx(0.95)
        assert payload.slope_pct > 0

        assert len(rec.requests) == 1
        assert rec.requests[0].url.params["locations"].count("|") == 4

    def test_empty_results_malformed(self):
        rec = Recorder(httpx.Response(200, json={"results": []}))
        client = ElevationClient(
            make_config(requires_api_key=False), transport=httpx.MockTransport(rec),
        )
        assert _fetch(client, HANOI).status == FetchStatus.MALFORMED_RESPONSE

    @pytest.mark.parametrize("elevation, expected", [
        (5.0, 0.8),
        (30.0, 0.6),
        (75.0, 0.3),
        (400.0, 0.1),
    ])
    def test_proximity_bands(self, elevation, expected):
        assert proximity_from_terrain(elevation, ()) == pytest.approx(expected)

    def test_proximity_never_exceeds_one(self):
        assert proximity_from_terrain(1.0, (50.0, 50.0, 50.0, 50.0)) == pytest.approx(1.0)


# ═══════════════════════════════════════════════════════════════════════════
# Infrastructure
# ═══════════════════════════════════════════════════════════════════════════

class TestInfrastructureClient:
    def test_counts_by_tag(self):
        elements = [
            {"type": "way", "tags": {"waterway": "river"}},
            {"type": "way", "tags": {"waterway": "stream"}},
            {"type": "way", "tags": {"natural": "water"}},
            {"type": "way", "tags": {"waterway": "drain"}},
            {"type": "way", "tags": {"highway": "primary"}},
            {"type": "way", "tags": {"highway": "footway"}},
            {"type": "way", "tags": {"building": "yes"}},
            {"type": "way", "tags": {"building": "house"}},
            {"type": "way", "tags": {"man_made": "dyke"}},
            {"type": "node"},
        ]
        rec = Recorder(httpx.Response(200, json={"elements": elements}))
        client = InfrastructureClient(
            make_config(requires_api_key=False), transport=httpx.MockTransport(rec),
        )
        bbox = bounding_box(HANOI.latitude, HANOI.longitude, 5.0)
        result = _fetch(client, bbox)

        assert result.success
        p = result.payload
        assert (p.rivers, p.water_bodies, p.drainage_channels) == (2, 1, 1)
        assert (p.roads, p.buildings, p.flood_defenses) == (1, 2, 1)

        request = rec.requests[0]
        assert request.method == "POST"
        assert bbox.as_overpass() in request.content.decode()

    @pytest.mark.parametrize("tags, category", [
        ({"landuse": "reservoir"}, "water_bodies"),
        ({"man_made": "drain"}, "drainage_channels"),
        ({"highway": "track"}, None),
        ({"barrier": "flood_barrier"}, "flood_defenses"),
        ({"amenity": "cafe"}, None),
    ])
    def test_classification(self, tags, category):
        assert classify_element(tags) == category


# ═══════════════════════════════════════════════════════════════════════════
# Government registry
# ═══════════════════════════════════════════════════════════════════════════

def _registry_handler(request: httpx.Request) -> httpx.Response:
    assert request.headers["X-API-Key"] == "secret"
    path = request.url.path
    if path.endswith("/population"):
        return httpx.Response(200, json={"records": [
            {"year": 2019, "density_per_km2": 2398.0},
            {"year": 2023, "density_per_km2": 2555.0},
        ]})
    if path.endswith("/disasters/floods"):
        return httpx.Response(200, json={"events": [
            {"date": "2008-11-01"}, {"date": "2016-10-14"}, {"date": "2020-10-12"},
        ]})
    if path.endswith("/alerts"):
        return httpx.Response(200, json={"alerts": [
            {"id": "w1", "severity": "medium", "issued_at": "2024-09-08T02:00:00Z",
             "title": "River warning", "description": "Red River rising"},
        ]})
    if path.endswith("/hydro-stations"):
        return httpx.Response(200, json={"stations": [
            {"station_id": "HN01", "station_name": "Long Bien", "last_updated": "2024-09-08T01:00:00Z",
             "flood_levels": {"alert": 9.5, "danger": 11.5},
             "measurements": [{"time": "2024-09-08T01:00:00Z", "water_level": 11.8}]},
            {"station_id": "HN02", "station_name": "Son Tay", "last_updated": "2024-09-08T03:00:00Z",
             "flood_levels": {"alert": 12.0, "danger": 14.0},
             "measurements": [{"time": "2024-09-08T03:00:00Z", "water_level": 12.4}]},
            {"station_id": "HN03", "station_name": "Ha Noi", "last_updated": "2024-09-08T03:00:00Z",
             "flood_levels": {"alert": 12.0, "danger": 14.0},
             "measurements": [{"time": "2024-09-08T03:00:00Z", "water_level": 4.0}]},
        ]})
    return httpx.Response(404)


class TestGovernmentRegistryClient:
    def _client(self):
        return GovernmentRegistryClient(make_config(), transport=httpx.MockTransport(_registry_handler))

    def test_population_and_history(self):
        result = _fetch(self._client(), HANOI)
        assert result.success
        p = result.payload
        assert p.population_density_per_km2 == 2555.0
        assert p.population_year == 2023
        assert p.flood_event_count == 3
        assert p.years_covered == 13

    def test_location_without_province_unavailable(self):
        result = _fetch(self._client(), Location(21.0, 105.0))
        assert result.status == FetchStatus.API_ERROR

    def test_missing_key_fails_fast(self):
        calls = []
        client = GovernmentRegistryClient(
            make_config(api_key=""),
            transport=httpx.MockTransport(lambda r: calls.append(r) or httpx.Response(200)),
        )
        assert _fetch(client, HANOI).status == FetchStatus.UNCONFIGURED
        assert calls == []

    def test_alerts_include_hydro_levels(self):
        feed = _fetch_alerts(self._client(), "Hanoi")
        assert feed.success
        by_id = {a.id: a for a in feed.alerts}
        assert set(by_id) == {"gov:w1", "hydro:HN01", "hydro:HN02"}
        assert by_id["hydro:HN01"].severity == AlertSeverity.HIGH
        assert by_id["hydro:HN02"].severity == AlertSeverity.MEDIUM
        assert "Immediate evacuation of low-lying areas" in by_id["hydro:HN01"].recommended_actions

    def test_alert_feed_outage_reported(self):
        client = GovernmentRegistryClient(
            make_config(), transport=httpx.MockTransport(lambda r: httpx.Response(502)),
        )
        feed = _fetch_alerts(client, "Hanoi")
        assert not feed.success
        assert feed.alerts == ()
        assert feed.status == FetchStatus.API_ERROR

    def test_failed_sub_request_cancels_sibling(self):
        seen = []

        async def handler(request):
            seen.append(request.url.path)
            if request.url.path.endswith("/population"):
                return httpx.Response(404)
            await asyncio.sleep(0.3)
            return httpx.Response(503)

        client = GovernmentRegistryClient(make_config(), transport=httpx.MockTransport(handler))

        async def go():
            try:
                result = await client.fetch(HANOI)
                requests_at_return = len(seen)
                await asyncio.sleep(1.0)
                return result, requests_at_return
            finally:
                await client.aclose()

        result, requests_at_return = _run(go())
        assert result.status == FetchStatus.API_ERROR
        # nothing keeps retrying once the result is handed back
        assert len(seen) == requests_at_return
        assert seen.count("/disasters/floods") <= 1

    def test_alert_without_timestamp_skipped(self):
        def handler(request):
            if request.url.path.endswith("/alerts"):
                return httpx.Response(200, json={"alerts": [
                    {"id": "w1", "severity": "high", "issued_at": "2024-09-08T02:00:00Z",
                     "title": "River warning"},
                    {"id": "w2", "severity": "high", "issued_at": None, "title": "Undated"},
                    {"id": "w3", "severity": "high", "issued_at": "yesterday", "title": "Garbled"},
                ]})
            return httpx.Response(200, json={"stations": []})

        client = GovernmentRegistryClient(make_config(), transport=httpx.MockTransport(handler))
        feed = _fetch_alerts(client, "Hanoi")
        assert feed.success
        assert [a.id for a in feed.alerts] == ["gov:w1"]


# ═══════════════════════════════════════════════════════════════════════════
# Non-finite numbers
# ═══════════════════════════════════════════════════════════════════════════

def _raw_json(text: str) -> httpx.Response:
    # The JSON decoder accepts bare NaN / Infinity tokens
    return httpx.Response(200, content=text.encode(), headers={"Content-Type": "application/json"})


class TestNonFiniteValues:
    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_as_number_rejects(self, value):
        with pytest.raises(ProviderMalformedResponseError):
            as_number(value, "x", "test")

    def test_optional_number_default_for_null(self):
        assert optional_number(None, "humidity", "test", default=0.0) == 0.0
        assert optional_number(80, "humidity", "test") == 80.0

    def test_elevation_nan_malformed(self):
        body = '{"results": [{"elevation": NaN}, {"elevation": 12.0}, {"elevation": 10.0}, ' \
               '{"elevation": 6.0}, {"elevation": 9.0}]}'
        rec = Recorder(_raw_json(body))
        client = ElevationClient(make_config(requires_api_key=False), transport=httpx.MockTransport(rec))
        assert _fetch(client, HANOI).status == FetchStatus.MALFORMED_RESPONSE

    def test_weather_rainfall_nan_malformed(self):
        body = json.dumps(FORECAST).replace('"totalprecip_mm": 40.0', '"totalprecip_mm": NaN')
        result = _fetch(_weather(Recorder(_raw_json(body))), HANOI)
        assert result.status == FetchStatus.MALFORMED_RESPONSE

    def test_weather_current_precip_infinite_malformed(self):
        body = json.dumps(FORECAST).replace('"precip_mm": 2.5', '"precip_mm": Infinity')
        result = _fetch(_weather(Recorder(_raw_json(body))), HANOI)
        assert result.status == FetchStatus.MALFORMED_RESPONSE

    def test_government_density_nan_malformed(self):
        def handler(request):
            if request.url.path.endswith("/population"):
                return _raw_json('{"records": [{"year": 2023, "density_per_km2": NaN}]}')
            return _registry_handler(request)

        client = GovernmentRegistryClient(make_config(), transport=httpx.MockTransport(handler))
        assert _fetch(client, HANOI).status == FetchStatus.MALFORMED_RESPONSE


# ═══════════════════════════════════════════════════════════════════════════
# Concurrent sub-requests
# ═══════════════════════════════════════════════════════════════════════════

class TestGatherOrCancel:
    def test_returns_results_in_order(self):
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        assert _run(gather_or_cancel(value("a", 0.05), value("b", 0.0))) == ["a", "b"]

    def test_failure_cancels_siblings(self):
        state = {"finished": False}

        async def slow():
            await asyncio.sleep(5.0)
            state["finished"] = True

        async def boom():
            await asyncio.sleep(0)
            raise ValueError("boom")

        async def go():
            start = asyncio.get_running_loop().time()
            with pytest.raises(ValueError):
                await gather_or_cancel(slow(), boom())
            return asyncio.get_running_loop().time() - start

        assert _run(go()) < 1.0
        assert state["finished"] is False
