"""
Health check aggregation — provider configuration report.

Checks:
    • Each external data provider is configured (credentials present)
    • Aggregation settings are sane (deadline vs. per-call timeout)

No provider is probed over the network: a health check must stay cheap
and must not spend third-party rate limits.  An unconfigured provider
only degrades the service (its factor is skipped), so it is reported as
DEGRADED, never UNHEALTHY.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

PROVIDER_KINDS = ("weather", "elevation", "infrastructure", "government_registry")


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


# Least to most severe; the report takes the worst component status
_SEVERITY = [HealthStatus.HEALTHY, HealthStatus.DEGRADED, HealthStatus.UNHEALTHY]


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = ""
    environment: str = ""
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


def check_provider(cfg_settings: Settings, kind: str) -> ComponentHealth:
    """Report whether one provider has what it needs to be called."""
    cfg = cfg_settings.provider_config(kind)
    comp = ComponentHealth(name=kind)
    comp.details = {
        "provider": cfg.name,
        "base_url": cfg.base_url,
        "requires_api_key": cfg.requires_api_key,
        "timeout_seconds": cfg.timeout_seconds,
    }
    if cfg.is_configured:
        comp.message = "Configured"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No API key configured; factor will be skipped"
    return comp


def check_aggregation(cfg_settings: Settings) -> ComponentHealth:
    comp = ComponentHealth(name="aggregation")
    comp.details = {
        "assessment_deadline_seconds": cfg_settings.ASSESSMENT_DEADLINE_SECONDS,
        "provider_timeout_seconds": cfg_settings.PROVIDER_TIMEOUT_SECONDS,
        "min_sources": cfg_settings.MIN_SOURCES,
    }
    if cfg_settings.ASSESSMENT_DEADLINE_SECONDS <= 0:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Assessment deadline must be positive"
    elif cfg_settings.MIN_SOURCES > len(PROVIDER_KINDS):
        comp.status = HealthStatus.UNHEALTHY
        comp.message = f"MIN_SOURCES exceeds the {len(PROVIDER_KINDS)} available providers"
    else:
        comp.message = "Settings valid"
    return comp


def run_health_check(cfg_settings: Optional[Settings] = None) -> HealthReport:
    """Run all checks and aggregate into a report."""
    cfg_settings = cfg_settings or default_settings
    report = HealthReport(
        version=cfg_settings.APP_VERSION,
        environment=cfg_settings.ENVIRONMENT,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    report.components = [check_provider(cfg_settings, kind) for kind in PROVIDER_KINDS]
    report.components.append(check_aggregation(cfg_settings))

    report.status = max((c.status for c in report.components), key=_SEVERITY.index)

    if report.status != HealthStatus.HEALTHY:
        logger.debug("Health check: %s", report.status.value)
    return report
