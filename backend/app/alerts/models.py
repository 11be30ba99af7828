"""
models.py — Data structures for the flood alert read path.

Defines:
    • AlertSeverity — ordered low / medium / high
    • FloodAlert    — one active warning from a provider
    • AlertSummary  — merged, chronologically ordered alerts for a province
    • RegionalSummary — province-wide level derived from the alert counts

Alerts come from two independent sources:

    Source                Alert kinds
    ──────────────────    ─────────────────────────────────────────────
    GovernmentRegistry    official warnings + hydrological station levels
    Weather               provider-issued flood / heavy-rain advisories

Neither source is required: a missing source simply contributes no alerts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from backend.app.risk.models import FetchStatus, ProviderKind


class AlertSeverity(str, Enum):
    """Alert severity — ordered by ``rank``."""
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"

    @property
    def rank(self) -> int:
        return list(AlertSeverity).index(self)

    @classmethod
    def parse(cls, raw: Optional[str]) -> "AlertSeverity":
        """
        Map provider vocabularies onto the three-level scale.

        Unknown or missing values map to MEDIUM so an alert is never
        silently downgraded to LOW.
        """
        if not raw:
            return cls.MEDIUM
        text = str(raw).strip().lower()
        if text in {"high", "severe", "extreme", "catastrophic", "danger", "red"}:
            return cls.HIGH
        if text in {"low", "minor", "advisory", "green", "yellow"}:
            return cls.LOW
        return cls.MEDIUM


# Recommended actions per severity (from the hydrological alert playbook)
RECOMMENDED_ACTIONS: Dict[AlertSeverity, Tuple[str, ...]] = {
    AlertSeverity.HIGH: (
        "Immediate evacuation of low-lying areas",
        "Activate emergency response teams",
        "Close roads and bridges if necessary",
        "Monitor water levels continuously",
    ),
    AlertSeverity.MEDIUM: (
        "Prepare emergency supplies",
        "Monitor weather updates",
        "Be ready for evacuation",
        "Secure property and vehicles",
    ),
    AlertSeverity.LOW: (
        "Stay informed about weather conditions",
    ),
}


@dataclass(frozen=True)
class FloodAlert:
    """A single active flood warning or advisory."""
    id: str
    province: str
    severity: AlertSeverity
    issued_at: datetime
    description: str
    source: ProviderKind
    title: str = ""
    recommended_actions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "province": self.province,
            "severity": self.severity.value,
            "issued_at": self.issued_at.isoformat(),
            "title": self.title,
            "description": self.description,
            "source": self.source.value,
            "recommended_actions": list(self.recommended_actions),
        }


@dataclass(frozen=True)
class ProviderAlerts:
    """Result slot for one provider's alert feed."""
    source: ProviderKind
    status: FetchStatus
    alerts: Tuple[FloodAlert, ...] = ()
    error_message: str = ""

    @property
    def success(self) -> bool:
        return self.status == FetchStatus.SUCCESS


@dataclass
class AlertSummary:
    """Merged alert view for one province, produced per request."""
    province: str
    total_alerts: int
    high_severity_count: int
    alerts: List[FloodAlert] = field(default_factory=list)
    sources: List[ProviderKind] = field(default_factory=list)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "province": self.province,
            "alerts": [a.to_dict() for a in self.alerts],
            "summary": {
                "total_alerts": self.total_alerts,
                "high_severity_count": self.high_severity_count,
                "sources": [s.value for s in self.sources],
                "last_updated": self.last_updated.isoformat(),
            },
        }


# ── Regional summary ──

# Alert counts above which a province is rated high / medium
REGIONAL_HIGH_SEVERITY_LIMIT = 5
REGIONAL_TOTAL_ALERTS_LIMIT = 10

REGIONAL_RECOMMENDATIONS: Tuple[str, ...] = (
    "Implement comprehensive flood monitoring system",
    "Develop emergency response plans",
    "Improve drainage infrastructure",
    "Community preparedness programs",
)


def classify_regional_level(total_alerts: int, high_severity_count: int) -> AlertSeverity:
    """
    Province-wide level from active alert counts.

        high-severity alerts > 5   →  HIGH
        total alerts > 10          →  MEDIUM
        otherwise                  →  LOW
    """
    if high_severity_count > REGIONAL_HIGH_SEVERITY_LIMIT:
        return AlertSeverity.HIGH
    if total_alerts > REGIONAL_TOTAL_ALERTS_LIMIT:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


@dataclass
class RegionalSummary:
    """Province-level risk overview derived from the merged alert feed."""
    province: str
    overall_risk_level: AlertSeverity
    recent_alerts: int
    high_severity_alerts: int
    sources: List[ProviderKind] = field(default_factory=list)
    recommendations: Tuple[str, ...] = REGIONAL_RECOMMENDATIONS
    assessment_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_alerts(cls, summary: AlertSummary) -> "RegionalSummary":
        return cls(
            province=summary.province,
            overall_risk_level=classify_regional_level(
                summary.total_alerts, summary.high_severity_count,
            ),
            recent_alerts=summary.total_alerts,
            high_severity_alerts=summary.high_severity_count,
            sources=list(summary.sources),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "province": self.province,
            "assessment_date": self.assessment_date.isoformat(),
            "overall_risk_level": self.overall_risk_level.value,
            "recent_alerts": self.recent_alerts,
            "high_severity_alerts": self.high_severity_alerts,
            "sources": [s.value for s in self.sources],
            "recommendations": list(self.recommendations),
        }
