"""
FastAPI application entry point.

Run with:
    uvicorn backend.app.main:app --reload --port 8000

Or from the project root:
    python -m uvicorn backend.app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.health import HealthStatus, run_health_check

# ── Engine ──
from backend.app.alerts.alert_aggregator import AlertAggregator
from backend.app.risk.risk_aggregator import RiskAggregator

# ── API routers ──
from backend.app.api.v1.flood_risk import router as flood_risk_router

# ── Initialise logging ──
setup_logging()
logger = logging.getLogger(__name__)


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """One aggregator per process; its connection pools are closed on shutdown."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    risk_aggregator = RiskAggregator.from_settings(settings)
    # Alert feeds reuse the weather and registry clients (and their pools)
    alert_aggregator = AlertAggregator.from_settings(settings, clients=risk_aggregator.clients)
    app.state.risk_aggregator = risk_aggregator
    app.state.alert_aggregator = alert_aggregator

    for comp in run_health_check(settings).components:
        if comp.status != HealthStatus.HEALTHY:
            logger.warning("%s: %s", comp.name, comp.message)

    yield

    await risk_aggregator.aclose()
    logger.info("Shutting down %s", settings.APP_NAME)


# ── Create application ──

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Multi-source flood risk aggregation. "
        "Combines weather forecasts, terrain elevation, OpenStreetMap "
        "infrastructure and government registry data into a 0–100 flood "
        "risk score with an explicit confidence level, and summarises "
        "active flood alerts per province."
    ),
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ──

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# ── Error handlers ──
register_error_handlers(app)

# ── Register routers ──
app.include_router(flood_risk_router)


# ── Root & health endpoints ──

@app.get("/", tags=["root"])
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "endpoints": [
            "POST /api/v1/flood-risk/assess",
            "POST /api/v1/flood-risk/batch-assess",
            "GET /api/v1/flood-risk/alerts/{province}",
            "GET /api/v1/flood-risk/thresholds",
        ],
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Provider configuration report (no network probing)."""
    return run_health_check(settings).to_dict()


@app.get("/health/live", tags=["health"])
async def liveness():
    """Kubernetes liveness probe — is the process alive?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["health"])
async def readiness():
    """Kubernetes readiness probe — can we serve traffic?"""
    report = run_health_check(settings)
    if report.status == HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
