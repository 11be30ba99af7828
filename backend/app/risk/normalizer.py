"""
normalizer.py — Raw provider payload → bounded [0, 1] risk factor value.

Every function here is pure, monotonic in its risk-increasing input and
deterministic.  Out-of-range inputs are clamped, never rejected.

═══════════════════════════════════════════════════════════════════════════
FORMULAS
═══════════════════════════════════════════════════════════════════════════

    Weather
        S_w = min(1, forecast_mm / RAINFALL_SEVERE_MM)
        forecast_mm = current precipitation + Σ daily forecast totals

    Elevation
        elevation_risk = 1 − clamp(elevation_m / ELEVATION_SAFE_M)
        S_e = 0.5 · elevation_risk + 0.5 · proximity_to_water

    Infrastructure
        impervious = min(1, (roads + buildings) / IMPERVIOUS_SATURATION)
        drainage   = min(1, (drains + rivers + defences) / DRAINAGE_SATURATION)
        S_i = impervious · (1 − DRAINAGE_RELIEF · drainage)

    Government registry
        exposure       = min(1, density / DENSITY_SEVERE_PER_KM2)
        susceptibility = min(1, flood_events / HISTORICAL_EVENTS_SEVERE)
        S_g = (exposure + susceptibility) / 2

All thresholds are documented defaults awaiting calibration against
observed flood outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

from backend.app.risk.models import (
    ElevationPayload,
    GovernmentPayload,
    InfrastructurePayload,
    ProviderKind,
    RawPayload,
    WeatherPayload,
)


# ═══════════════════════════════════════════════════════════════════════════
# Constants: Tunable Parameters
# ═══════════════════════════════════════════════════════════════════════════

RAINFALL_SEVERE_MM = 150.0          # multi-day total treated as saturating
ELEVATION_SAFE_M = 100.0            # at or above: no elevation-driven risk
IMPERVIOUS_SATURATION = 400.0       # roads + buildings in the box
DRAINAGE_SATURATION = 20.0          # drains + rivers + defences in the box
DRAINAGE_RELIEF = 0.5               # max share of impervious risk drainage removes
DENSITY_SEVERE_PER_KM2 = 2000.0
HISTORICAL_EVENTS_SEVERE = 10.0

# Sub-signal level above which a human-readable note is attached
NOTE_THRESHOLD = 0.6


@dataclass(frozen=True)
class NormalisedFactor:
    """Output of one normaliser: value plus explanation."""
    kind: ProviderKind
    value: float
    details: Dict[str, Any] = field(default_factory=dict)
    notes: Tuple[str, ...] = ()


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, x))


def _saturating(x: float, ceiling: float) -> float:
    """x / ceiling clamped to [0, 1]."""
    return clamp(x / ceiling)


# ═══════════════════════════════════════════════════════════════════════════
# Per-source normalisers
# ═══════════════════════════════════════════════════════════════════════════

def normalise_weather(payload: WeatherPayload) -> NormalisedFactor:
    """
    Rainfall-driven risk.

    Examples
    --------
    >>> normalise_weather(WeatherPayload(28.0, 1063, daily_rainfall_mm=(30.0, 45.0))).value
    0.5
    """
    forecast_mm = max(0.0, payload.forecast_rainfall_mm)
    value = _saturating(forecast_mm, RAINFALL_SEVERE_MM)

    notes = []
    if value >= NOTE_THRESHOLD:
        notes.append(f"Heavy rainfall forecast: {forecast_mm:.0f} mm over {len(payload.daily_rainfall_mm)} day(s)")
    if payload.humidity_pct >= 90:
        notes.append("Saturated air, further rain likely")

    return NormalisedFactor(
        kind=ProviderKind.WEATHER,
        value=value,
        details={
            "forecast_rainfall_mm": round(forecast_mm, 2),
            "current_precip_mm": payload.current_precip_mm,
            "forecast_days": len(payload.daily_rainfall_mm),
            "temperature_c": payload.temperature_c,
            "condition": payload.condition_text,
        },
        notes=tuple(notes),
    )


def normalise_elevation(payload: ElevationPayload) -> NormalisedFactor:
    """Low ground near water is risky; high, dry ground is not."""
    elevation_risk = 1.0 - clamp(payload.elevation_m / ELEVATION_SAFE_M)
    proximity = clamp(payload.proximity_to_water)
    value = 0.5 * elevation_risk + 0.5 * proximity

    notes = []
    if elevation_risk >= NOTE_THRESHOLD:
        notes.append(f"Low elevation: {payload.elevation_m:.1f} m above sea level")
    if proximity >= NOTE_THRESHOLD:
        notes.append("Close to water bodies or in a local depression")

    return NormalisedFactor(
        kind=ProviderKind.ELEVATION,
        value=clamp(value),
        details={
            "elevation_m": payload.elevation_m,
            "slope_pct": payload.slope_pct,
            "proximity_to_water": round(proximity, 4),
            "elevation_risk": round(elevation_risk, 4),
        },
        notes=tuple(notes),
    )


def normalise_infrastructure(payload: InfrastructurePayload) -> NormalisedFactor:
    """Impervious surface raises runoff; drainage and defences relieve it."""
    impervious = _saturating(max(0, payload.impervious_count), IMPERVIOUS_SATURATION)
    drainage = _saturating(max(0, payload.drainage_count), DRAINAGE_SATURATION)
    value = impervious * (1.0 - DRAINAGE_RELIEF * drainage)

    notes = []
    if impervious >= NOTE_THRESHOLD:
        notes.append("High building and road density increases runoff")
    if payload.drainage_channels == 0:
        notes.append("Limited or no visible drainage infrastructure")
    if payload.flood_defenses == 0:
        notes.append("No visible flood defense structures")

    return NormalisedFactor(
        kind=ProviderKind.INFRASTRUCTURE,
        value=clamp(value),
        details={
            "impervious": round(impervious, 4),
            "drainage": round(drainage, 4),
            "counts": {
                "rivers": payload.rivers,
                "water_bodies": payload.water_bodies,
                "drainage_channels": payload.drainage_channels,
                "roads": payload.roads,
                "buildings": payload.buildings,
                "flood_defenses": payload.flood_defenses,
                "total": payload.total,
            },
        },
        notes=tuple(notes),
    )


def normalise_government(payload: GovernmentPayload) -> NormalisedFactor:
    """Mean of demographic exposure and historical susceptibility."""
    exposure = _saturating(max(0.0, payload.population_density_per_km2), DENSITY_SEVERE_PER_KM2)
    susceptibility = _saturating(max(0, payload.flood_event_count), HISTORICAL_EVENTS_SEVERE)
    value = (exposure + susceptibility) / 2.0

    notes = []
    if exposure >= NOTE_THRESHOLD:
        notes.append(
            f"High population density ({payload.population_density_per_km2:.0f}/km²) increases vulnerability"
        )
    if susceptibility >= NOTE_THRESHOLD:
        notes.append(f"{payload.flood_event_count} historical flood events on record")

    return NormalisedFactor(
        kind=ProviderKind.GOVERNMENT_REGISTRY,
        value=clamp(value),
        details={
            "province": payload.province,
            "population_density_per_km2": payload.population_density_per_km2,
            "population_year": payload.population_year,
            "flood_event_count": payload.flood_event_count,
            "years_covered": payload.years_covered,
            "exposure": round(exposure, 4),
            "susceptibility": round(susceptibility, 4),
        },
        notes=tuple(notes),
    )


_NORMALISERS = {
    ProviderKind.WEATHER: normalise_weather,
    ProviderKind.ELEVATION: normalise_elevation,
    ProviderKind.INFRASTRUCTURE: normalise_infrastructure,
    ProviderKind.GOVERNMENT_REGISTRY: normalise_government,
}

_PAYLOAD_TYPES = (WeatherPayload, ElevationPayload, InfrastructurePayload, GovernmentPayload)


def normalise(payload: RawPayload) -> NormalisedFactor:
    """
    Dispatch on the payload's kind.

    Raises TypeError for anything that is not one of the four payload types.
    """
    if not isinstance(payload, _PAYLOAD_TYPES):
        raise TypeError(f"Cannot normalise {type(payload).__name__}")
    return _NORMALISERS[payload.kind](payload)
