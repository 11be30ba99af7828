"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Provider clients never read these settings directly: the application
builds a ``ProviderConfig`` per provider and injects it into the client
constructor, so the aggregation engine can be exercised with any config.

Usage:
    from backend.app.core.config import settings
    print(settings.PROVIDER_TIMEOUT_SECONDS)
    weather_cfg = settings.provider_config("weather")
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ProviderConfig:
    """
    Explicit, immutable configuration for one external data provider.

    Attributes
    ----------
    name : str
        Provider identifier used in logs.
    base_url : str
        Root URL of the provider's HTTP API.
    api_key : str | None
        Credential; ``None`` or empty means "not configured".
    requires_api_key : bool
        If True and no key is set, the client declares itself unavailable
        without attempting a call.
    timeout_seconds : float
        Per-call budget (also bounded by the caller's deadline).
    max_retries : int
        Retries on transient failures (network, timeout, 5xx, 429).
    retry_backoff_seconds : float
        Base of the exponential backoff: wait = base * 2**attempt.
    """
    name: str
    base_url: str
    api_key: Optional[str] = None
    requires_api_key: bool = False
    timeout_seconds: float = 5.0
    max_retries: int = 2
    retry_backoff_seconds: float = 0.5

    @property
    def is_configured(self) -> bool:
        return not self.requires_api_key or bool(self.api_key)


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Flood Risk Aggregator"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Providers ──
    WEATHER_API_URL: str = "https://api.weatherapi.com/v1"
    WEATHER_API_KEY: Optional[str] = None
    ELEVATION_API_URL: str = "https://api.open-elevation.com/api/v1"
    OVERPASS_API_URL: str = "https://overpass-api.de/api"
    GOVERNMENT_API_URL: str = "https://api.gov.vn"
    GOVERNMENT_API_KEY: Optional[str] = None

    PROVIDER_TIMEOUT_SECONDS: float = 5.0
    PROVIDER_MAX_RETRIES: int = 2
    PROVIDER_RETRY_BACKOFF_SECONDS: float = 0.5

    # ── Aggregation ──
    ASSESSMENT_DEADLINE_SECONDS: float = 8.0
    ALERTS_DEADLINE_SECONDS: float = 6.0
    INFRASTRUCTURE_RADIUS_KM: float = 5.0  # ≈ 0.045° box around the point
    WEATHER_FORECAST_DAYS: int = 3
    DEGRADED_FALLBACK_SCORE: int = 25  # floor of the Medium band
    MIN_SOURCES: int = 0  # >0 turns "too few sources" into a 503
    BATCH_CONCURRENCY: int = 5
    BATCH_MAX_LOCATIONS: int = 20

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    def provider_config(self, kind: str) -> ProviderConfig:
        """Build the injected config for one provider kind."""
        common = dict(
            timeout_seconds=self.PROVIDER_TIMEOUT_SECONDS,
            max_retries=self.PROVIDER_MAX_RETRIES,
            retry_backoff_seconds=self.PROVIDER_RETRY_BACKOFF_SECONDS,
        )
        if kind == "weather":
            return ProviderConfig(
                name="weatherapi",
                base_url=self.WEATHER_API_URL,
                api_key=self.WEATHER_API_KEY,
                requires_api_key=True,
                **common,
            )
        if kind == "elevation":
            return ProviderConfig(
                name="open-elevation",
                base_url=self.ELEVATION_API_URL,
                **common,
            )
        if kind == "infrastructure":
            return ProviderConfig(
                name="overpass",
                base_url=self.OVERPASS_API_URL,
                **common,
            )
        if kind == "government_registry":
            return ProviderConfig(
                name="government-registry",
                base_url=self.GOVERNMENT_API_URL,
                api_key=self.GOVERNMENT_API_KEY,
                requires_api_key=True,
                **common,
            )
        raise ValueError(f"Unknown provider kind: {kind!r}")


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
