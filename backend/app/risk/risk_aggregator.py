"""
risk_aggregator.py — Multi-source flood risk aggregation engine.

Fans out to the four provider clients concurrently, joins them under a
single deadline, normalises whatever answered, and produces an immutable
``FloodRiskAssessment``.

═══════════════════════════════════════════════════════════════════════════
MATHEMATICAL WEIGHTING FORMULA
═══════════════════════════════════════════════════════════════════════════

    Step 1 — Base weights (sum to 1.0):

        w_weather = 0.30    w_elevation = 0.30
        w_infra   = 0.20    w_gov       = 0.20

    Step 2 — Renormalise over the sources that actually answered:

        w'_i = w_i / Σ_{j ∈ available} w_j

        Missing sources are excluded, never scored as zero, so one outage
        does not drag the score toward "safe".

    Step 3 — Composite:

        overall_risk_score = clamp(round(100 · Σ S_i · w'_i), 0, 100)

    Step 4 — No sources at all:

        overall_risk_score = DEGRADED_FALLBACK_SCORE (25, floor of Medium)
        confidence_level   = low

═══════════════════════════════════════════════════════════════════════════
THRESHOLDS
═══════════════════════════════════════════════════════════════════════════

    overall_risk_score    risk_level         sources answered   confidence
    ─────────────────     ──────────         ────────────────   ──────────
      0 – 24              low                3 – 4              high
     25 – 49              medium             2                  medium
     50 – 74              high               0 – 1              low
     75 – 100             severe

═══════════════════════════════════════════════════════════════════════════
DEADLINE JOIN
═══════════════════════════════════════════════════════════════════════════

Each branch is an asyncio task with its own result slot.  The join waits
for all of them or the deadline, whichever comes first.  Tasks still
pending at the deadline are cancelled and abandoned; their slot is marked
``deadline_exceeded``.  Factor order is canonical, never completion order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from backend.app.core.config import Settings
from backend.app.core.errors import InsufficientDataError
from backend.app.providers import (
    ElevationClient,
    GovernmentRegistryClient,
    InfrastructureClient,
    ProviderClient,
    WeatherClient,
    retrieve_abandoned,
)
from backend.app.risk.models import (
    CANONICAL_ORDER,
    ConfidenceLevel,
    FetchStatus,
    FloodRiskAssessment,
    Location,
    ProviderKind,
    ProviderResult,
    Recommendations,
    RiskFactor,
    RiskLevel,
)
from backend.app.risk.normalizer import NormalisedFactor, normalise
from backend.app.spatial.geometry import bounding_box

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants: Tunable Parameters
# ═══════════════════════════════════════════════════════════════════════════

BASE_WEIGHTS: Dict[ProviderKind, float] = {
    ProviderKind.WEATHER: 0.30,
    ProviderKind.ELEVATION: 0.30,
    ProviderKind.INFRASTRUCTURE: 0.20,
    ProviderKind.GOVERNMENT_REGISTRY: 0.20,
}

# Risk level lower bounds (0–100 scale)
THRESHOLD_MEDIUM = 25
THRESHOLD_HIGH = 50
THRESHOLD_SEVERE = 75

# Confidence by number of contributing sources
CONFIDENCE_HIGH_SOURCES = 3
CONFIDENCE_MEDIUM_SOURCES = 2

# Recommendation triggers
RECOMMEND_EVACUATE_SCORE = THRESHOLD_SEVERE
RECOMMEND_MONITOR_SCORE = THRESHOLD_HIGH
RECOMMEND_FACTOR_VALUE = 0.6


# ═══════════════════════════════════════════════════════════════════════════
# Scoring
# ═══════════════════════════════════════════════════════════════════════════

def renormalise_weights(available: Sequence[ProviderKind]) -> Dict[ProviderKind, float]:
    """
    Base weights rescaled to sum to 1 over ``available``.

    Returns an empty dict when nothing is available.
    """
    total = sum(BASE_WEIGHTS[k] for k in available)
    if total <= 0:
        return {}
    return {k: BASE_WEIGHTS[k] / total for k in available}


def compute_score(factors: Sequence[RiskFactor]) -> int:
    """Weighted composite of the available factors, 0–100."""
    raw = sum(f.contribution for f in factors if f.available)
    return int(max(0, min(100, round(100.0 * raw))))


def classify_risk_level(score: int) -> RiskLevel:
    """
    Map 0–100 score to a risk level.

    >>> classify_risk_level(24).value
    'low'
    >>> classify_risk_level(75).value
    'severe'
    """
    if score >= THRESHOLD_SEVERE:
        return RiskLevel.SEVERE
    if score >= THRESHOLD_HIGH:
        return RiskLevel.HIGH
    if score >= THRESHOLD_MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def classify_confidence(source_count: int) -> ConfidenceLevel:
    if source_count >= CONFIDENCE_HIGH_SOURCES:
        return ConfidenceLevel.HIGH
    if source_count >= CONFIDENCE_MEDIUM_SOURCES:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def build_recommendations(score: int, factors: Sequence[RiskFactor]) -> Recommendations:
    """
    Action lists from the overall score and the individual factor values.

    Every list falls back to a baseline action so none is ever empty.
    """
    immediate: List[str] = []
    short_term: List[str] = []
    long_term: List[str] = []
    preparedness: List[str] = []

    if score >= RECOMMEND_EVACUATE_SCORE:
        immediate += [
            "Immediate evacuation of high-risk areas",
            "Activate emergency operations center",
            "Deploy emergency response teams",
            "Close roads and evacuate vehicles",
        ]
    elif score >= RECOMMEND_MONITOR_SCORE:
        immediate += [
            "Monitor water levels continuously",
            "Prepare emergency supplies",
            "Alert vulnerable populations",
        ]

    elevated = {
        f.source for f in factors
        if f.available and f.value is not None and f.value >= RECOMMEND_FACTOR_VALUE
    }
    if ProviderKind.WEATHER in elevated:
        short_term.append("Monitor weather forecasts closely")
        preparedness.append("Prepare emergency weather radio")
    if ProviderKind.ELEVATION in elevated:
        long_term.append("Consider property elevation or relocation")
        preparedness.append("Create family emergency plan")
    if ProviderKind.INFRASTRUCTURE in elevated:
        long_term.append("Improve drainage infrastructure")
        short_term.append("Clear drains and stormwater systems")
    if ProviderKind.GOVERNMENT_REGISTRY in elevated:
        preparedness += [
            "Learn from past flood events",
            "Develop community flood preparedness programs",
        ]
        long_term.append("Implement flood-resistant building codes")
        short_term.append("Organize community evacuation drills")

    return Recommendations(
        immediate_actions=tuple(immediate or ["Monitor local conditions"]),
        short_term=tuple(short_term or ["Stay informed about weather conditions"]),
        long_term=tuple(long_term or ["Consider flood insurance"]),
        preparedness=tuple(preparedness or ["Create emergency contact list"]),
    )


def build_factors(results: Mapping[ProviderKind, ProviderResult]) -> Tuple[RiskFactor, ...]:
    """
    One RiskFactor per provider, in canonical order.

    Failed providers become unavailable factors carrying their status as
    the reason; successful ones are normalised and weighted.
    """
    normalised: Dict[ProviderKind, NormalisedFactor] = {}
    for kind in CANONICAL_ORDER:
        result = results.get(kind)
        if result is not None and result.success:
            normalised[kind] = normalise(result.payload)

    weights = renormalise_weights([k for k in CANONICAL_ORDER if k in normalised])

    factors: List[RiskFactor] = []
    for kind in CANONICAL_ORDER:
        nf = normalised.get(kind)
        if nf is not None:
            factors.append(RiskFactor(
                source=kind,
                value=nf.value,
                weight=weights[kind],
                available=True,
                details=nf.details,
                notes=nf.notes,
            ))
        else:
            result = results.get(kind)
            factors.append(RiskFactor(
                source=kind,
                value=None,
                weight=0.0,
                available=False,
                # No client registered for this kind
                reason=result.status.value if result else FetchStatus.UNCONFIGURED.value,
            ))
    return tuple(factors)


# ═══════════════════════════════════════════════════════════════════════════
# Aggregator
# ═══════════════════════════════════════════════════════════════════════════

class RiskAggregator:
    """
    Concurrent fan-out over the four provider clients.

    Usage:
        aggregator = RiskAggregator.from_settings(settings)
        assessment = await aggregator.assess_flood_risk(
            Location(21.0285, 105.8542, name="Hanoi", province="Hà Nội"),
        )
        print(assessment.overall_risk_score, assessment.confidence_level)
        await aggregator.aclose()
    """

    def __init__(
        self,
        clients: Mapping[ProviderKind, ProviderClient],
        *,
        deadline: float = 8.0,
        infrastructure_radius_km: float = 5.0,
        fallback_score: int = 25,
        min_sources: int = 0,
        batch_concurrency: int = 5,
    ):
        self.clients: Dict[ProviderKind, ProviderClient] = dict(clients)
        self.deadline = deadline
        self.infrastructure_radius_km = infrastructure_radius_km
        self.fallback_score = int(max(0, min(100, fallback_score)))
        self.min_sources = min_sources
        self.batch_concurrency = max(1, batch_concurrency)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RiskAggregator":
        """Build clients from settings-derived ProviderConfigs."""
        clients: Dict[ProviderKind, ProviderClient] = {
            ProviderKind.WEATHER: WeatherClient(
                settings.provider_config("weather"),
                forecast_days=settings.WEATHER_FORECAST_DAYS,
            ),
            ProviderKind.ELEVATION: ElevationClient(settings.provider_config("elevation")),
            ProviderKind.INFRASTRUCTURE: InfrastructureClient(settings.provider_config("infrastructure")),
            ProviderKind.GOVERNMENT_REGISTRY: GovernmentRegistryClient(
                settings.provider_config("government_registry"),
            ),
        }
        return cls(
            clients,
            deadline=settings.ASSESSMENT_DEADLINE_SECONDS,
            infrastructure_radius_km=settings.INFRASTRUCTURE_RADIUS_KM,
            fallback_score=settings.DEGRADED_FALLBACK_SCORE,
            min_sources=settings.MIN_SOURCES,
            batch_concurrency=settings.BATCH_CONCURRENCY,
        )

    async def aclose(self) -> None:
        for client in self.clients.values():
            await client.aclose()

    # ── Fan-out ──

    def _query_for(self, kind: ProviderKind, location: Location):
        if kind == ProviderKind.INFRASTRUCTURE:
            return bounding_box(location.latitude, location.longitude, self.infrastructure_radius_km)
        return location

    async def _gather(self, location: Location, deadline: float) -> Dict[ProviderKind, ProviderResult]:
        """Dispatch every configured client and join under ``deadline``."""
        tasks: Dict[asyncio.Task, ProviderKind] = {}
        for kind in CANONICAL_ORDER:
            client = self.clients.get(kind)
            if client is None:
                continue
            task = asyncio.ensure_future(
                client.fetch(self._query_for(kind, location), timeout=deadline)
            )
            tasks[task] = kind

        results: Dict[ProviderKind, ProviderResult] = {}
        if not tasks:
            return results

        done, pending = await asyncio.wait(tasks.keys(), timeout=deadline)

        for task in done:
            kind = tasks[task]
            if task.cancelled():
                results[kind] = ProviderResult.failed(
                    kind, FetchStatus.DEADLINE_EXCEEDED, "cancelled",
                )
                continue
            exc = task.exception()
            if exc is not None:
                # A client bug, not a provider fault; never fail the whole assessment
                logger.error(
                    "Provider %s raised unexpectedly: %r", kind.value, exc,
                    extra={"provider": kind.value},
                )
                results[kind] = ProviderResult.failed(kind, FetchStatus.API_ERROR, repr(exc))
            else:
                results[kind] = task.result()

        for task in pending:
            kind = tasks[task]
            task.cancel()
            task.add_done_callback(retrieve_abandoned)
            logger.warning(
                "Provider %s still pending at %.2fs deadline; abandoned",
                kind.value, deadline,
                extra={"provider": kind.value},
            )
            results[kind] = ProviderResult.failed(
                kind, FetchStatus.DEADLINE_EXCEEDED, f"no answer within {deadline:.2f}s",
            )

        return results

    # ── Public API ──

    async def assess_flood_risk(
        self,
        location: Location,
        deadline: Optional[float] = None,
    ) -> FloodRiskAssessment:
        """
        Assess flood risk for one location.

        Raises InvalidLocationError before any provider is contacted, and
        InsufficientDataError only when ``min_sources`` is configured above 0.
        Provider outages otherwise degrade the result, never fail it.
        """
        location.validate()
        budget = self.deadline if deadline is None else deadline
        start = time.monotonic()

        results = await self._gather(location, budget)
        factors = build_factors(results)
        data_sources = tuple(f.source for f in factors if f.available)

        if len(data_sources) < self.min_sources:
            raise InsufficientDataError(len(data_sources), self.min_sources)

        if data_sources:
            score = compute_score(factors)
        else:
            score = self.fallback_score
            logger.warning(
                "No provider answered for %s; using fallback score %d",
                location.label, score,
                extra={"lat": location.latitude, "lon": location.longitude},
            )

        assessment = FloodRiskAssessment(
            location=location,
            overall_risk_score=score,
            risk_level=classify_risk_level(score),
            confidence_level=classify_confidence(len(data_sources)),
            data_sources=data_sources,
            computed_at=datetime.now(timezone.utc),
            factors=factors,
            recommendations=build_recommendations(score, factors),
        )

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Assessed %s: score=%d level=%s confidence=%s sources=%d/%d (%dms)",
            location.label,
            score,
            assessment.risk_level.value,
            assessment.confidence_level.value,
            len(data_sources),
            len(CANONICAL_ORDER),
            duration_ms,
            extra={
                "lat": location.latitude,
                "lon": location.longitude,
                "risk_score": score,
                "confidence": assessment.confidence_level.value,
                "duration_ms": duration_ms,
            },
        )
        return assessment

    async def assess_many(
        self,
        locations: Sequence[Location],
        deadline: Optional[float] = None,
        concurrency: Optional[int] = None,
    ) -> List[FloodRiskAssessment]:
        """
        Assess several locations with bounded concurrency.

        Every location is validated before any provider call; results are
        returned in input order.
        """
        for loc in locations:
            loc.validate()

        semaphore = asyncio.Semaphore(max(1, concurrency or self.batch_concurrency))

        async def _one(loc: Location) -> FloodRiskAssessment:
            async with semaphore:
                return await self.assess_flood_risk(loc, deadline)

        assessments = await asyncio.gather(*(_one(loc) for loc in locations))
        logger.info("Completed batch assessment of %d location(s)", len(assessments))
        return list(assessments)
