"""
FastAPI routes: flood risk assessment, flood alerts and regional summaries.

Thin HTTP surface over ``RiskAggregator`` and ``AlertAggregator``; no
scoring happens here.  The aggregators live on ``app.state`` (created in
the application lifespan) and are injected through dependencies so tests
can substitute their own.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from backend.app.alerts.alert_aggregator import AlertAggregator
from backend.app.core.config import settings
from backend.app.risk.models import ConfidenceLevel, Location
from backend.app.risk.risk_aggregator import (
    BASE_WEIGHTS,
    CONFIDENCE_HIGH_SOURCES,
    CONFIDENCE_MEDIUM_SOURCES,
    THRESHOLD_HIGH,
    THRESHOLD_MEDIUM,
    THRESHOLD_SEVERE,
    RiskAggregator,
    classify_risk_level,
)

router = APIRouter(prefix="/api/v1/flood-risk", tags=["flood-risk"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_risk_aggregator(request: Request) -> RiskAggregator:
    return request.app.state.risk_aggregator


def get_alert_aggregator(request: Request) -> AlertAggregator:
    return request.app.state.alert_aggregator


# ---------------------------------------------------------------------------
# Request / Response Schemas
# ---------------------------------------------------------------------------

class LocationIn(BaseModel):
    """A point to assess, with optional administrative names."""

    latitude: float = Field(
        ..., ge=-90.0, le=90.0,
        description="Latitude in decimal degrees",
        examples=[21.0285],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0,
        description="Longitude in decimal degrees",
        examples=[105.8542],
    )
    name: str = Field(default="", max_length=200, examples=["Hoàn Kiếm"])
    province: str = Field(default="", max_length=100, examples=["Hà Nội"])
    district: str = Field(default="", max_length=100)
    ward: str = Field(default="", max_length=100)

    def to_location(self) -> Location:
        return Location(
            latitude=self.latitude,
            longitude=self.longitude,
            name=self.name,
            province=self.province,
            district=self.district,
            ward=self.ward,
        )


class AssessRequest(LocationIn):
    deadline_seconds: Optional[float] = Field(
        default=None, gt=0.0, le=60.0,
        description="Override the assessment deadline for this call",
    )


class BatchAssessRequest(BaseModel):
    locations: List[LocationIn] = Field(
        ..., min_length=1, max_length=settings.BATCH_MAX_LOCATIONS,
    )
    deadline_seconds: Optional[float] = Field(default=None, gt=0.0, le=60.0)


class RiskFactorOut(BaseModel):
    source: str
    available: bool
    value: Optional[float] = None
    weight: float
    weighted_contribution: float
    reason: Optional[str] = None
    details: Dict[str, Any] = {}
    notes: List[str] = []


class RecommendationsOut(BaseModel):
    immediate_actions: List[str]
    short_term: List[str]
    long_term: List[str]
    preparedness: List[str]


class AssessmentOut(BaseModel):
    """Full flood risk assessment for one location."""
    location: Dict[str, Any]
    overall_risk_score: int = Field(..., ge=0, le=100, description="Composite score 0–100")
    risk_level: str = Field(..., description="low / medium / high / severe")
    confidence_level: str = Field(..., description="low / medium / high")
    data_sources: List[str]
    computed_at: str
    degraded: bool
    factors: List[RiskFactorOut]
    recommendations: RecommendationsOut


class BatchAssessmentOut(BaseModel):
    count: int
    assessments: List[AssessmentOut]


class FloodAlertOut(BaseModel):
    id: str
    province: str
    severity: str
    issued_at: str
    title: str
    description: str
    source: str
    recommended_actions: List[str]


class AlertSummaryInfo(BaseModel):
    total_alerts: int
    high_severity_count: int
    sources: List[str]
    last_updated: str


class AlertSummaryOut(BaseModel):
    province: str
    alerts: List[FloodAlertOut]
    summary: AlertSummaryInfo


class RegionalSummaryOut(BaseModel):
    province: str
    assessment_date: str
    overall_risk_level: str = Field(..., description="low / medium / high")
    recent_alerts: int
    high_severity_alerts: int
    sources: List[str]
    recommendations: List[str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/assess",
    response_model=AssessmentOut,
    summary="Assess Flood Risk",
    description=(
        "Queries weather, elevation, infrastructure and government registry "
        "providers concurrently and combines the answers into a 0–100 score. "
        "Missing providers lower the confidence level instead of failing."
    ),
)
async def assess_flood_risk(
    req: AssessRequest,
    aggregator: RiskAggregator = Depends(get_risk_aggregator),
):
    assessment = await aggregator.assess_flood_risk(
        req.to_location(), deadline=req.deadline_seconds,
    )
    return assessment.to_dict()


@router.post(
    "/batch-assess",
    response_model=BatchAssessmentOut,
    summary="Assess Flood Risk for Several Locations",
)
async def batch_assess_flood_risk(
    req: BatchAssessRequest,
    aggregator: RiskAggregator = Depends(get_risk_aggregator),
):
    assessments = await aggregator.assess_many(
        [loc.to_location() for loc in req.locations],
        deadline=req.deadline_seconds,
    )
    return {
        "count": len(assessments),
        "assessments": [a.to_dict() for a in assessments],
    }


@router.get(
    "/alerts/{province}",
    response_model=AlertSummaryOut,
    summary="Active Flood Alerts for a Province",
)
async def get_flood_alerts(
    province: str,
    aggregator: AlertAggregator = Depends(get_alert_aggregator),
):
    summary = await aggregator.get_flood_alerts(province)
    return summary.to_dict()


@router.get(
    "/regional-summary/{province}",
    response_model=RegionalSummaryOut,
    summary="Regional Flood Risk Summary",
    description="Province-wide risk level derived from the active alert counts.",
)
async def get_regional_summary(
    province: str,
    aggregator: AlertAggregator = Depends(get_alert_aggregator),
):
    regional = await aggregator.get_regional_summary(province)
    return regional.to_dict()


@router.get(
    "/thresholds",
    summary="Get Scoring Parameters",
    description=(
        "Returns the base weights, classification thresholds and the score "
        "reported when no provider answers (and the band it falls in)."
    ),
)
async def get_thresholds(aggregator: RiskAggregator = Depends(get_risk_aggregator)):
    return {
        "weights": {k.value: w for k, w in BASE_WEIGHTS.items()},
        "risk_levels": {
            "low": f"0 – {THRESHOLD_MEDIUM - 1}",
            "medium": f"{THRESHOLD_MEDIUM} – {THRESHOLD_HIGH - 1}",
            "high": f"{THRESHOLD_HIGH} – {THRESHOLD_SEVERE - 1}",
            "severe": f"{THRESHOLD_SEVERE} – 100",
        },
        "confidence_levels": {
            "high": f"≥ {CONFIDENCE_HIGH_SOURCES} sources",
            "medium": f"{CONFIDENCE_MEDIUM_SOURCES} sources",
            "low": f"≤ {CONFIDENCE_MEDIUM_SOURCES - 1} source",
        },
        "degraded_fallback": {
            "score": aggregator.fallback_score,
            "risk_level": classify_risk_level(aggregator.fallback_score).value,
            "confidence_level": ConfidenceLevel.LOW.value,
            "applies_when": "no provider answered before the deadline",
        },
    }
