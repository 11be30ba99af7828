"""
models.py — Shared data structures for the flood risk aggregation engine.

Defines:
    • Location            — validated input point (+ administrative names)
    • ProviderKind        — closed set of external data sources
    • Raw payloads        — one typed payload per ProviderKind (tagged union)
    • FetchStatus / ProviderResult — per-provider result slot
    • RiskFactor          — normalised [0, 1] contribution of one provider
    • RiskLevel / ConfidenceLevel — ordered classifications
    • FloodRiskAssessment — the immutable output of one assessment

═══════════════════════════════════════════════════════════════════════════
CANONICAL PROVIDER ORDER
═══════════════════════════════════════════════════════════════════════════

    Weather → Elevation → Infrastructure → GovernmentRegistry

Every sequence keyed by provider (factors, data_sources) is emitted in
this order regardless of which provider answered first, so identical
inputs always serialise identically.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from backend.app.core.errors import InvalidLocationError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class ProviderKind(str, Enum):
    """External data sources.  Declaration order is the canonical order."""
    WEATHER             = "weather"
    ELEVATION           = "elevation"
    INFRASTRUCTURE      = "infrastructure"
    GOVERNMENT_REGISTRY = "government_registry"

    @property
    def rank(self) -> int:
        return CANONICAL_ORDER.index(self)


CANONICAL_ORDER: Tuple[ProviderKind, ...] = tuple(ProviderKind)


class RiskLevel(str, Enum):
    """Flood risk level derived from the 0–100 score."""
    LOW    = "low"       # 0–24
    MEDIUM = "medium"    # 25–49
    HIGH   = "high"      # 50–74
    SEVERE = "severe"    # 75–100

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


class ConfidenceLevel(str, Enum):
    """How much of the provider set actually contributed."""
    LOW    = "low"       # 0–1 sources
    MEDIUM = "medium"    # 2 sources
    HIGH   = "high"      # 3–4 sources

    @property
    def rank(self) -> int:
        return list(ConfidenceLevel).index(self)


class FetchStatus(str, Enum):
    """Outcome of one provider fetch."""
    SUCCESS            = "success"
    UNCONFIGURED       = "unconfigured"        # no credentials → never called
    TIMEOUT            = "timeout"             # per-call timeout exhausted
    NETWORK_ERROR      = "network_error"
    API_ERROR          = "api_error"           # HTTP error status
    MALFORMED_RESPONSE = "malformed_response"  # unparseable / missing fields
    DEADLINE_EXCEEDED  = "deadline_exceeded"   # still pending at the join


# ═══════════════════════════════════════════════════════════════════════════
# Location
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Location:
    """
    A geographic point with optional administrative names.

    Construction never fails; ``validate()`` is called by the aggregator
    before any provider is contacted.
    """
    latitude: float
    longitude: float
    name: str = ""
    province: str = ""
    district: str = ""
    ward: str = ""

    def validate(self) -> "Location":
        """Raise InvalidLocationError unless both coordinates are in range."""
        for fld, value, bound in (
            ("latitude", self.latitude, 90.0),
            ("longitude", self.longitude, 180.0),
        ):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidLocationError(
                    f"{fld.capitalize()} must be a number, got {value!r}",
                    field=fld, value=repr(value),
                )
            if not math.isfinite(value) or not (-bound <= value <= bound):
                raise InvalidLocationError(
                    f"{fld.capitalize()} must be in [-{bound:g}, {bound:g}], got {value}",
                    field=fld, value=value,
                )
        return self

    @property
    def label(self) -> str:
        """Human-readable name for logs."""
        return self.name or f"{self.latitude:.4f}, {self.longitude:.4f}"

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "name": self.name,
            "province": self.province,
        }
        if self.district:
            d["district"] = self.district
        if self.ward:
            d["ward"] = self.ward
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Raw provider payloads (tagged union keyed by ``kind``)
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class WeatherPayload:
    """Current conditions plus a short-range daily rainfall forecast."""
    kind: ClassVar[ProviderKind] = ProviderKind.WEATHER

    temperature_c: float
    condition_code: int
    condition_text: str = ""
    humidity_pct: float = 0.0
    current_precip_mm: float = 0.0
    daily_rainfall_mm: Tuple[float, ...] = ()

    @property
    def forecast_rainfall_mm(self) -> float:
        """Current precipitation plus every forecast day's total."""
        return self.current_precip_mm + sum(self.daily_rainfall_mm)


@dataclass(frozen=True)
class ElevationPayload:
    """Point elevation with terrain-derived water proximity."""
    kind: ClassVar[ProviderKind] = ProviderKind.ELEVATION

    elevation_m: float
    proximity_to_water: float  # 0 = far, 1 = adjacent to a water body
    slope_pct: float = 0.0
    neighbour_elevations_m: Tuple[float, ...] = ()


@dataclass(frozen=True)
class InfrastructurePayload:
    """Feature counts inside the query bounding box."""
    kind: ClassVar[ProviderKind] = ProviderKind.INFRASTRUCTURE

    rivers: int = 0
    water_bodies: int = 0
    drainage_channels: int = 0
    roads: int = 0
    buildings: int = 0
    flood_defenses: int = 0

    @property
    def impervious_count(self) -> int:
        return self.roads + self.buildings

    @property
    def drainage_count(self) -> int:
        return self.drainage_channels + self.rivers + self.flood_defenses

    @property
    def total(self) -> int:
        return (
            self.rivers + self.water_bodies + self.drainage_channels
            + self.roads + self.buildings + self.flood_defenses
        )


@dataclass(frozen=True)
class GovernmentPayload:
    """Demographic exposure and disaster history for an administrative unit."""
    kind: ClassVar[ProviderKind] = ProviderKind.GOVERNMENT_REGISTRY

    province: str
    population_density_per_km2: float
    population_year: int
    flood_event_count: int
    years_covered: int = 0


RawPayload = Union[WeatherPayload, ElevationPayload, InfrastructurePayload, GovernmentPayload]


# ═══════════════════════════════════════════════════════════════════════════
# Per-provider result slot
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ProviderResult:
    """
    Outcome of one provider branch of the fan-out.

    Exactly one of ``payload`` (on success) or ``error_message`` is
    meaningful.  Provider clients always return one of these; they never
    raise for a provider-side fault.
    """
    kind: ProviderKind
    status: FetchStatus
    payload: Optional[RawPayload] = None
    error_message: str = ""
    duration_ms: int = 0
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.status == FetchStatus.SUCCESS and self.payload is not None

    @classmethod
    def failed(
        cls,
        kind: ProviderKind,
        status: FetchStatus,
        message: str,
        *,
        duration_ms: int = 0,
        attempts: int = 0,
    ) -> "ProviderResult":
        return cls(
            kind=kind,
            status=status,
            error_message=message,
            duration_ms=duration_ms,
            attempts=attempts,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Risk factor + assessment
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RiskFactor:
    """
    Normalised contribution of one provider.

    ``value`` is ``None`` whenever ``available`` is False; an unavailable
    factor is excluded from scoring, never treated as zero.  ``weight`` is
    the renormalised weight (0 for unavailable factors).
    """
    source: ProviderKind
    value: Optional[float]
    weight: float
    available: bool
    reason: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    notes: Tuple[str, ...] = ()

    @property
    def contribution(self) -> float:
        if not self.available or self.value is None:
            return 0.0
        return self.value * self.weight

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "available": self.available,
            "value": round(self.value, 4) if self.value is not None else None,
            "weight": round(self.weight, 4),
            "weighted_contribution": round(self.contribution, 4),
            "reason": self.reason or None,
            "details": self.details,
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class Recommendations:
    """Action lists derived from the overall score and individual factors."""
    immediate_actions: Tuple[str, ...] = ()
    short_term: Tuple[str, ...] = ()
    long_term: Tuple[str, ...] = ()
    preparedness: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "immediate_actions": list(self.immediate_actions),
            "short_term": list(self.short_term),
            "long_term": list(self.long_term),
            "preparedness": list(self.preparedness),
        }


@dataclass(frozen=True)
class FloodRiskAssessment:
    """
    Complete, immutable result of one ``assess_flood_risk`` call.

    ``data_sources`` lists only the providers that contributed, in
    canonical order; ``factors`` lists all four providers (available or
    not), also in canonical order.
    """
    location: Location
    overall_risk_score: int            # 0–100
    risk_level: RiskLevel
    confidence_level: ConfidenceLevel
    data_sources: Tuple[ProviderKind, ...]
    computed_at: datetime
    factors: Tuple[RiskFactor, ...] = ()
    recommendations: Recommendations = field(default_factory=Recommendations)

    @property
    def degraded(self) -> bool:
        """True when at least one provider did not contribute."""
        return len(self.data_sources) < len(CANONICAL_ORDER)

    def factor(self, kind: ProviderKind) -> Optional[RiskFactor]:
        for f in self.factors:
            if f.source == kind:
                return f
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for API response."""
        return {
            "location": self.location.to_dict(),
            "overall_risk_score": self.overall_risk_score,
            "risk_level": self.risk_level.value,
            "confidence_level": self.confidence_level.value,
            "data_sources": [k.value for k in self.data_sources],
            "computed_at": self.computed_at.isoformat(),
            "degraded": self.degraded,
            "factors": [f.to_dict() for f in self.factors],
            "recommendations": self.recommendations.to_dict(),
        }
