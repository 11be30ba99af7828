"""
alert_aggregator.py — Active flood alerts for one province.

Queries the government registry (official warnings + hydrological station
levels) and the weather provider (flood-related advisories) concurrently
under one deadline, then merges whatever answered.

Merge rules
===========
    • order   — issued_at ascending, ties broken by alert id
    • counts  — total_alerts, high_severity_count over the merged list
    • outages — an unavailable source contributes nothing and is left out
                of ``sources``; it never fails the request

``get_regional_summary`` rates the whole province from the merged counts
(see ``classify_regional_level``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from backend.app.alerts.models import (
    AlertSeverity,
    AlertSummary,
    FloodAlert,
    ProviderAlerts,
    RegionalSummary,
)
from backend.app.core.config import Settings
from backend.app.core.errors import ValidationError
from backend.app.providers import (
    GovernmentRegistryClient,
    ProviderClient,
    WeatherClient,
    retrieve_abandoned,
)
from backend.app.risk.models import CANONICAL_ORDER, FetchStatus, ProviderKind

logger = logging.getLogger(__name__)

ALERT_SOURCES = (ProviderKind.GOVERNMENT_REGISTRY, ProviderKind.WEATHER)


def merge_alerts(feeds: List[ProviderAlerts], province: str) -> AlertSummary:
    """Merge per-provider feeds into one chronologically ordered summary."""
    alerts: List[FloodAlert] = []
    sources: List[ProviderKind] = []
    for feed in feeds:
        if not feed.success:
            continue
        sources.append(feed.source)
        alerts.extend(feed.alerts)

    alerts.sort(key=lambda a: (a.issued_at, a.id))
    sources.sort(key=lambda k: CANONICAL_ORDER.index(k))

    return AlertSummary(
        province=province,
        total_alerts=len(alerts),
        high_severity_count=sum(1 for a in alerts if a.severity == AlertSeverity.HIGH),
        alerts=alerts,
        sources=sources,
    )


class AlertAggregator:
    """
    Usage:
        aggregator = AlertAggregator.from_settings(settings)
        summary = await aggregator.get_flood_alerts("Quảng Bình")
        print(summary.total_alerts, summary.high_severity_count)
    """

    def __init__(
        self,
        clients: Dict[ProviderKind, ProviderClient],
        *,
        deadline: float = 6.0,
    ):
        self.clients = {k: c for k, c in clients.items() if k in ALERT_SOURCES}
        self.deadline = deadline

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clients: Optional[Dict[ProviderKind, ProviderClient]] = None,
    ) -> "AlertAggregator":
        """Reuse existing clients (and their pools) when given."""
        if clients is None:
            clients = {
                ProviderKind.WEATHER: WeatherClient(settings.provider_config("weather")),
                ProviderKind.GOVERNMENT_REGISTRY: GovernmentRegistryClient(
                    settings.provider_config("government_registry"),
                ),
            }
        return cls(clients, deadline=settings.ALERTS_DEADLINE_SECONDS)

    async def aclose(self) -> None:
        for client in self.clients.values():
            await client.aclose()

    async def get_flood_alerts(self, province: str, deadline: Optional[float] = None) -> AlertSummary:
        """
        Merged active alerts for ``province``.

        Raises ValidationError for an empty province before any provider call.
        """
        if not isinstance(province, str) or not province.strip():
            raise ValidationError("Province must be a non-empty string", field="province")
        province = province.strip()
        budget = self.deadline if deadline is None else deadline

        tasks = {
            asyncio.ensure_future(client.fetch_alerts(province, timeout=budget)): kind
            for kind, client in self.clients.items()
        }
        feeds: List[ProviderAlerts] = []
        if tasks:
            done, pending = await asyncio.wait(tasks.keys(), timeout=budget)
            for task in pending:
                task.cancel()
                task.add_done_callback(retrieve_abandoned)
                feeds.append(ProviderAlerts(
                    source=tasks[task],
                    status=FetchStatus.DEADLINE_EXCEEDED,
                    error_message=f"no answer within {budget:.2f}s",
                ))
            for task in done:
                if task.cancelled() or task.exception() is not None:
                    logger.error(
                        "Alert feed %s failed unexpectedly: %r",
                        tasks[task].value, None if task.cancelled() else task.exception(),
                        extra={"provider": tasks[task].value, "province": province},
                    )
                    continue
                feeds.append(task.result())

        summary = merge_alerts(feeds, province)
        logger.info(
            "Flood alerts for %s: %d total, %d high (sources: %s)",
            province,
            summary.total_alerts,
            summary.high_severity_count,
            ", ".join(s.value for s in summary.sources) or "none",
            extra={"province": province},
        )
        return summary

    async def get_regional_summary(
        self, province: str, deadline: Optional[float] = None,
    ) -> RegionalSummary:
        """Province-wide risk level and standing recommendations from the alert feed."""
        summary = await self.get_flood_alerts(province, deadline=deadline)
        regional = RegionalSummary.from_alerts(summary)
        logger.info(
            "Regional summary for %s: %s (%d alerts)",
            regional.province, regional.overall_risk_level.value, regional.recent_alerts,
            extra={"province": regional.province},
        )
        return regional
