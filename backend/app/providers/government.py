"""
government.py — Government registry client (demographics, disasters, hydrology).

The registry is pluggable: any REST service that answers the endpoints
below with these minimal shapes can be configured via
``GOVERNMENT_API_URL``.  Every request carries ``X-API-Key``.

    GET /population?province=P
        {"records": [{"year": 2023, "density_per_km2": 2398.0}, ...]}

    GET /disasters/floods?province=P
        {"events": [{"date": "2020-10-12", ...}, ...]}

    GET /alerts?province=P
        {"alerts": [{"id", "severity", "issued_at", "title", "description"}]}

    GET /hydro-stations?province=P
        {"stations": [{"station_id", "station_name", "last_updated",
                       "flood_levels": {"alert": 9.5, "danger": 11.5},
                       "measurements": [{"time", "water_level"}, ...]}]}

Hydrological alerts
===================
Only the latest measurement of each station is considered:

    water_level ≥ danger   →  HIGH
    water_level ≥ alert    →  MEDIUM
    otherwise              →  no alert
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from backend.app.alerts.models import AlertSeverity, FloodAlert, RECOMMENDED_ACTIONS
from backend.app.core.errors import ProviderMalformedResponseError, ProviderUnavailableError
from backend.app.providers.base import (
    CallContext,
    ProviderClient,
    as_number,
    gather_or_cancel,
    parse_timestamp,
    require,
)
from backend.app.risk.models import GovernmentPayload, Location, ProviderKind

logger = logging.getLogger(__name__)


class GovernmentRegistryClient(ProviderClient):
    """Population density and flood history for an administrative unit."""

    kind = ProviderKind.GOVERNMENT_REGISTRY

    @property
    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.config.api_key or ""}

    async def _get(self, call: CallContext, path: str, province: str) -> Any:
        return await self._request_json(
            call, "GET", path, params={"province": province}, headers=self._headers,
        )

    # ── Assessment payload ──

    async def _fetch_payload(self, query: Location, call: CallContext) -> GovernmentPayload:
        province = query.province.strip()
        if not province:
            raise ProviderUnavailableError(
                self.config.name,
                "location has no province to look up",
                reason="api_error",
            )

        population, history = await gather_or_cancel(
            self._get(call, "/population", province),
            self._get(call, "/disasters/floods", province),
        )
        density, year = self.parse_population(population)
        events, years = self.parse_flood_history(history)

        return GovernmentPayload(
            province=province,
            population_density_per_km2=density,
            population_year=year,
            flood_event_count=events,
            years_covered=years,
        )

    def parse_population(self, data: Any) -> Tuple[float, int]:
        """Density of the most recent year on record."""
        name = self.config.name
        records = require(data, "records", provider=name)
        if not isinstance(records, list) or not records:
            raise ProviderMalformedResponseError(name, "no population records")

        latest = max(records, key=lambda r: int(require(r, "year", provider=name)))
        density = as_number(require(latest, "density_per_km2", provider=name), "density_per_km2", name)
        return max(0.0, density), int(latest["year"])

    def parse_flood_history(self, data: Any) -> Tuple[int, int]:
        """(event count, span of years covered)."""
        name = self.config.name
        events = require(data, "events", provider=name)
        if not isinstance(events, list):
            raise ProviderMalformedResponseError(name, "'events' is not a list")
        if not events:
            return 0, 0

        years = [parse_timestamp(require(e, "date", provider=name), name).year for e in events]
        return len(events), max(years) - min(years) + 1

    # ── Alerts ──

    async def _fetch_alerts(self, province: str, call: CallContext) -> List[FloodAlert]:
        warnings, stations = await gather_or_cancel(
            self._get(call, "/alerts", province),
            self._get(call, "/hydro-stations", province),
        )
        alerts = self.parse_warnings(warnings, province)
        alerts.extend(self.parse_hydro_stations(stations, province))
        return alerts

    def parse_warnings(self, data: Any, province: str) -> List[FloodAlert]:
        name = self.config.name
        raw_alerts = require(data, "alerts", provider=name)
        if not isinstance(raw_alerts, list):
            raise ProviderMalformedResponseError(name, "'alerts' is not a list")

        alerts: List[FloodAlert] = []
        for raw in raw_alerts:
            alert_id = f"gov:{require(raw, 'id', provider=name)}"
            issued = self._alert_time(raw.get("issued_at"), alert_id, province)
            if issued is None:
                continue
            severity = AlertSeverity.parse(raw.get("severity"))
            title = str(raw.get("title") or "")
            alerts.append(FloodAlert(
                id=alert_id,
                province=province,
                severity=severity,
                issued_at=issued,
                title=title,
                description=str(raw.get("description") or title),
                source=self.kind,
                recommended_actions=RECOMMENDED_ACTIONS[severity],
            ))
        return alerts

    def parse_hydro_stations(self, data: Any, province: str) -> List[FloodAlert]:
        name = self.config.name
        stations = require(data, "stations", provider=name)
        if not isinstance(stations, list):
            raise ProviderMalformedResponseError(name, "'stations' is not a list")

        alerts: List[FloodAlert] = []
        for station in stations:
            alert = self._station_alert(station, province)
            if alert is not None:
                alerts.append(alert)
        return alerts

    def _station_alert(self, station: Dict[str, Any], province: str) -> Optional[FloodAlert]:
        name = self.config.name
        measurements = station.get("measurements") or []
        if not measurements:
            return None

        level = as_number(require(measurements[-1], "water_level", provider=name), "water_level", name)
        danger = as_number(require(station, "flood_levels", "danger", provider=name), "danger", name)
        alert_level = as_number(require(station, "flood_levels", "alert", provider=name), "alert", name)
        station_name = str(station.get("station_name") or station.get("station_id") or "station")

        if level >= danger:
            severity = AlertSeverity.HIGH
            description = f"Danger water level: {level}m (danger: {danger}m)"
        elif level >= alert_level:
            severity = AlertSeverity.MEDIUM
            description = f"Alert water level: {level}m (alert: {alert_level}m)"
        else:
            return None

        alert_id = f"hydro:{require(station, 'station_id', provider=name)}"
        issued = self._alert_time(
            station.get("last_updated") or measurements[-1].get("time"), alert_id, province,
        )
        if issued is None:
            return None
        return FloodAlert(
            id=alert_id,
            province=province,
            severity=severity,
            issued_at=issued,
            title=f"{station_name} water level",
            description=description,
            source=self.kind,
            recommended_actions=RECOMMENDED_ACTIONS[severity],
        )

    def _alert_time(self, raw: Any, alert_id: str, province: str) -> Optional[datetime]:
        """Issue time of one alert; a record without a usable one is skipped."""
        try:
            return parse_timestamp(raw, self.config.name)
        except ProviderMalformedResponseError as e:
            logger.warning(
                "Skipping alert %s: %s", alert_id, e.message,
                extra={"provider": self.kind.value, "province": province},
            )
            return None
