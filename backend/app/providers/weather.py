"""
weather.py — WeatherAPI.com client (current conditions + daily forecast).

Endpoint: ``GET {base_url}/forecast.json?key=…&q=lat,lon&days=N``

Only the fields the risk engine needs are read:

    current.temp_c                          → temperature_c
    current.condition.code / .text          → condition_code / condition_text
    current.humidity                        → humidity_pct
    current.precip_mm                       → current_precip_mm
    forecast.forecastday[*].day.totalprecip_mm → daily_rainfall_mm

``fetch_alerts`` asks the same endpoint with ``alerts=yes`` and keeps only
flood-related events (flood, heavy rain, inundation, storm surge).
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from backend.app.alerts.models import AlertSeverity, FloodAlert, RECOMMENDED_ACTIONS
from backend.app.core.config import ProviderConfig
from backend.app.core.errors import ProviderMalformedResponseError
from backend.app.providers.base import (
    CallContext,
    ProviderClient,
    as_number,
    optional_number,
    parse_timestamp,
    require,
)
from backend.app.risk.models import Location, ProviderKind, WeatherPayload

logger = logging.getLogger(__name__)

FLOOD_KEYWORDS = ("flood", "heavy rain", "rainfall", "inundation", "storm surge")


class WeatherClient(ProviderClient):
    """Short-range rainfall forecast for a point."""

    kind = ProviderKind.WEATHER

    def __init__(
        self,
        config: ProviderConfig,
        *,
        forecast_days: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, transport=transport)
        self.forecast_days = max(1, forecast_days)

    async def _fetch_payload(self, query: Location, call: CallContext) -> WeatherPayload:
        data = await self._request_json(
            call,
            "GET",
            "/forecast.json",
            params={
                "key": self.config.api_key,
                "q": f"{query.latitude},{query.longitude}",
                "days": self.forecast_days,
                "aqi": "no",
                "alerts": "no",
            },
        )
        return self.parse_forecast(data)

    def parse_forecast(self, data: Any) -> WeatherPayload:
        name = self.config.name
        current = require(data, "current", provider=name)
        days = require(data, "forecast", "forecastday", provider=name)
        if not isinstance(days, list):
            raise ProviderMalformedResponseError(name, "'forecast.forecastday' is not a list")

        daily = tuple(
            max(0.0, as_number(require(d, "day", "totalprecip_mm", provider=name),
                               "totalprecip_mm", name))
            for d in days
        )
        condition = current.get("condition") or {}

        return WeatherPayload(
            temperature_c=as_number(require(current, "temp_c", provider=name), "temp_c", name),
            condition_code=int(condition.get("code") or 0),
            condition_text=str(condition.get("text") or ""),
            humidity_pct=optional_number(current.get("humidity"), "humidity", name),
            current_precip_mm=max(0.0, optional_number(current.get("precip_mm"), "precip_mm", name)),
            daily_rainfall_mm=daily,
        )

    async def _fetch_alerts(self, province: str, call: CallContext) -> List[FloodAlert]:
        data = await self._request_json(
            call,
            "GET",
            "/forecast.json",
            params={
                "key": self.config.api_key,
                "q": province,
                "days": 1,
                "aqi": "no",
                "alerts": "yes",
            },
        )
        return self.parse_alerts(data, province)

    def parse_alerts(self, data: Any, province: str) -> List[FloodAlert]:
        name = self.config.name
        if not isinstance(data, dict):
            raise ProviderMalformedResponseError(name, "response is not an object")
        raw_alerts = (data.get("alerts") or {}).get("alert") or []
        if not isinstance(raw_alerts, list):
            raise ProviderMalformedResponseError(name, "'alerts.alert' is not a list")

        alerts: List[FloodAlert] = []
        for i, raw in enumerate(raw_alerts):
            if not isinstance(raw, dict):
                continue
            event = str(raw.get("event") or "")
            headline = str(raw.get("headline") or event)
            text = f"{event} {headline}".lower()
            if not any(k in text for k in FLOOD_KEYWORDS):
                continue

            try:
                issued = parse_timestamp(raw.get("effective"), name)
            except ProviderMalformedResponseError as e:
                logger.warning(
                    "Skipping weather alert %r for %s: %s", headline, province, e.message,
                    extra={"provider": self.kind.value, "province": province},
                )
                continue
            severity = AlertSeverity.parse(raw.get("severity"))
            alerts.append(FloodAlert(
                id=f"weather:{issued.strftime('%Y%m%d%H%M')}:{i}",
                province=province,
                severity=severity,
                issued_at=issued,
                title=headline,
                description=str(raw.get("desc") or raw.get("instruction") or headline),
                source=self.kind,
                recommended_actions=RECOMMENDED_ACTIONS[severity],
            ))

        logger.debug(
            "%d flood-related weather alert(s) of %d for %s",
            len(alerts), len(raw_alerts), province,
            extra={"provider": self.kind.value, "province": province},
        )
        return alerts
