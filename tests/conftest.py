"""
Shared fixtures: fake provider clients and a zero-backoff provider config.

Fake clients stand in for the real HTTP clients so the aggregators can be
driven deterministically (fixed payloads, controlled latency, call counts).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, List, Optional

import pytest

from backend.app.alerts.models import AlertSeverity, FloodAlert, ProviderAlerts
from backend.app.core.config import ProviderConfig
from backend.app.risk.models import (
    ElevationPayload,
    FetchStatus,
    GovernmentPayload,
    InfrastructurePayload,
    ProviderKind,
    ProviderResult,
    RawPayload,
    WeatherPayload,
)


def make_config(**overrides: Any) -> ProviderConfig:
    params = dict(
        name="test-provider",
        base_url="http://provider.test",
        api_key="secret",
        requires_api_key=True,
        timeout_seconds=2.0,
        max_retries=2,
        retry_backoff_seconds=0.0,
    )
    params.update(overrides)
    return ProviderConfig(**params)


class FakeClient:
    """
    Duck-typed ProviderClient.

    ``payload`` is returned on success; ``status`` other than SUCCESS makes
    the fetch fail with that status; ``delay`` simulates provider latency.
    """

    def __init__(
        self,
        kind: ProviderKind,
        payload: Optional[RawPayload] = None,
        *,
        status: FetchStatus = FetchStatus.SUCCESS,
        delay: float = 0.0,
        alerts: Optional[List[FloodAlert]] = None,
    ):
        self.kind = kind
        self.payload = payload
        self.status = status
        self.delay = delay
        self.alerts = alerts or []
        self.calls = 0
        self.queries: List[Any] = []
        self.closed = False

    async def fetch(self, query: Any, *, timeout: Optional[float] = None) -> ProviderResult:
        self.calls += 1
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status != FetchStatus.SUCCESS:
            return ProviderResult.failed(self.kind, self.status, "fake failure")
        return ProviderResult(kind=self.kind, status=FetchStatus.SUCCESS, payload=self.payload)

    async def fetch_alerts(self, province: str, *, timeout: Optional[float] = None) -> ProviderAlerts:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status != FetchStatus.SUCCESS:
            return ProviderAlerts(source=self.kind, status=self.status, error_message="fake failure")
        return ProviderAlerts(source=self.kind, status=FetchStatus.SUCCESS, alerts=tuple(self.alerts))

    async def aclose(self) -> None:
        self.closed = True


# ── Payload factories ──

def weather_payload(rain_mm: float = 0.0) -> WeatherPayload:
    return WeatherPayload(
        temperature_c=27.0,
        condition_code=1189,
        condition_text="Moderate rain",
        humidity_pct=80.0,
        current_precip_mm=0.0,
        daily_rainfall_mm=(rain_mm,),
    )


def elevation_payload(elevation_m: float = 50.0, proximity: float = 0.5) -> ElevationPayload:
    return ElevationPayload(elevation_m=elevation_m, proximity_to_water=proximity)


def infrastructure_payload(roads: int = 0, buildings: int = 0, drains: int = 0) -> InfrastructurePayload:
    return InfrastructurePayload(roads=roads, buildings=buildings, drainage_channels=drains)


def government_payload(density: float = 0.0, events: int = 0) -> GovernmentPayload:
    return GovernmentPayload(
        province="Hanoi",
        population_density_per_km2=density,
        population_year=2023,
        flood_event_count=events,
    )


def make_alert(
    alert_id: str,
    severity: AlertSeverity,
    hour: int,
    source: ProviderKind = ProviderKind.GOVERNMENT_REGISTRY,
) -> FloodAlert:
    return FloodAlert(
        id=alert_id,
        province="Hanoi",
        severity=severity,
        issued_at=datetime(2024, 9, 8, hour, 0, tzinfo=timezone.utc),
        description=f"alert {alert_id}",
        source=source,
    )


@pytest.fixture
def fake_clients():
    """All four providers answering instantly with moderate values."""
    return {
        ProviderKind.WEATHER: FakeClient(ProviderKind.WEATHER, weather_payload(75.0)),
        ProviderKind.ELEVATION: FakeClient(ProviderKind.ELEVATION, elevation_payload(50.0, 0.5)),
        ProviderKind.INFRASTRUCTURE: FakeClient(
            ProviderKind.INFRASTRUCTURE, infrastructure_payload(roads=100, buildings=100),
        ),
        ProviderKind.GOVERNMENT_REGISTRY: FakeClient(
            ProviderKind.GOVERNMENT_REGISTRY, government_payload(density=1000.0, events=5),
        ),
    }
