"""
Tests for the risk factor normaliser.

Covers:
    • Each per-source formula at reference points
    • Clamping of out-of-range inputs
    • Monotonicity in the risk-increasing input
    • Dispatch on payload kind (and TypeError for anything else)
"""

from __future__ import annotations

import pytest

from conftest import elevation_payload, government_payload, infrastructure_payload, weather_payload

from backend.app.risk.models import (
    ElevationPayload,
    InfrastructurePayload,
    ProviderKind,
    WeatherPayload,
)
from backend.app.risk.normalizer import (
    DENSITY_SEVERE_PER_KM2,
    ELEVATION_SAFE_M,
    HISTORICAL_EVENTS_SEVERE,
    RAINFALL_SEVERE_MM,
    normalise,
    normalise_elevation,
    normalise_government,
    normalise_infrastructure,
    normalise_weather,
)


class TestNormaliseWeather:
    def test_no_rain(self):
        assert normalise_weather(weather_payload(0.0)).value == 0.0

    def test_half_of_severe(self):
        assert normalise_weather(weather_payload(RAINFALL_SEVERE_MM / 2)).value == pytest.approx(0.5)

    def test_saturates_at_one(self):
        assert normalise_weather(weather_payload(RAINFALL_SEVERE_MM * 3)).value == 1.0

    def test_sums_current_and_daily(self):
        payload = WeatherPayload(
            temperature_c=25.0,
            condition_code=1000,
            current_precip_mm=15.0,
            daily_rainfall_mm=(30.0, 30.0),
        )
        nf = normalise_weather(payload)
        assert nf.value == pytest.approx(75.0 / RAINFALL_SEVERE_MM)
        assert nf.details["forecast_rainfall_mm"] == 75.0

    def test_negative_rain_clamped(self):
        assert normalise_weather(weather_payload(-20.0)).value == 0.0

    def test_heavy_rain_note(self):
        nf = normalise_weather(weather_payload(RAINFALL_SEVERE_MM))
        assert any("Heavy rainfall" in n for n in nf.notes)

    def test_monotonic(self):
        values = [normalise_weather(weather_payload(mm)).value for mm in (0, 20, 60, 120, 200)]
        assert values == sorted(values)


class TestNormaliseElevation:
    def test_sea_level_adjacent_to_water(self):
        assert normalise_elevation(elevation_payload(0.0, 1.0)).value == pytest.approx(1.0)

    def test_high_dry_ground(self):
        assert normalise_elevation(elevation_payload(ELEVATION_SAFE_M * 5, 0.0)).value == 0.0

    def test_midpoint(self):
        # 0.5 · (1 − 0.5) + 0.5 · 0.5
        assert normalise_elevation(elevation_payload(50.0, 0.5)).value == pytest.approx(0.5)

    def test_below_sea_level_clamped(self):
        nf = normalise_elevation(elevation_payload(-10.0, 0.2))
        assert nf.value == pytest.approx(0.5 * 1.0 + 0.5 * 0.2)

    def test_proximity_clamped(self):
        payload = ElevationPayload(elevation_m=100.0, proximity_to_water=3.0)
        assert normalise_elevation(payload).value == pytest.approx(0.5)

    def test_lower_is_riskier(self):
        values = [normalise_elevation(elevation_payload(h, 0.3)).value for h in (200, 80, 40, 5)]
        assert values == sorted(values)


class TestNormaliseInfrastructure:
    def test_empty_box(self):
        assert normalise_infrastructure(InfrastructurePayload()).value == 0.0

    def test_impervious_without_drainage(self):
        nf = normalise_infrastructure(infrastructure_payload(roads=100, buildings=100))
        assert nf.value == pytest.approx(0.5)
        assert "No visible flood defense structures" in nf.notes

    def test_drainage_relieves(self):
        dense = normalise_infrastructure(infrastructure_payload(roads=300, buildings=300)).value
        drained = normalise_infrastructure(infrastructure_payload(roads=300, buildings=300, drains=20)).value
        assert dense == pytest.approx(1.0)
        assert drained == pytest.approx(0.5)

    def test_defences_count_as_drainage(self):
        payload = InfrastructurePayload(roads=400, flood_defenses=10, rivers=10)
        assert normalise_infrastructure(payload).value == pytest.approx(0.5)

    def test_more_buildings_never_lowers(self):
        values = [
            normalise_infrastructure(infrastructure_payload(buildings=b, drains=5)).value
            for b in (0, 50, 200, 400, 1000)
        ]
        assert values == sorted(values)


class TestNormaliseGovernment:
    def test_no_exposure(self):
        assert normalise_government(government_payload(0.0, 0)).value == 0.0

    def test_saturated(self):
        nf = normalise_government(
            government_payload(DENSITY_SEVERE_PER_KM2 * 2, int(HISTORICAL_EVENTS_SEVERE) * 2)
        )
        assert nf.value == 1.0

    def test_mean_of_components(self):
        nf = normalise_government(government_payload(DENSITY_SEVERE_PER_KM2, 0))
        assert nf.value == pytest.approx(0.5)
        assert nf.details["exposure"] == 1.0
        assert nf.details["susceptibility"] == 0.0


class TestDispatch:
    @pytest.mark.parametrize("payload, kind", [
        (weather_payload(10.0), ProviderKind.WEATHER),
        (elevation_payload(), ProviderKind.ELEVATION),
        (infrastructure_payload(), ProviderKind.INFRASTRUCTURE),
        (government_payload(), ProviderKind.GOVERNMENT_REGISTRY),
    ])
    def test_kind_preserved(self, payload, kind):
        nf = normalise(payload)
        assert nf.kind == kind
        assert 0.0 <= nf.value <= 1.0

    def test_unknown_payload_rejected(self):
        with pytest.raises(TypeError):
            normalise({"kind": "weather"})
