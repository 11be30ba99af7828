"""
Provider clients — one per external data source.

    WeatherClient             WeatherAPI.com forecast + alerts (key required)
    ElevationClient           Open-Elevation lookup + terrain analysis
    InfrastructureClient      OpenStreetMap Overpass feature counts
    GovernmentRegistryClient  demographics, disaster history, hydro alerts (key required)
"""

from backend.app.providers.base import CallContext, ProviderClient, retrieve_abandoned
from backend.app.providers.elevation import ElevationClient
from backend.app.providers.government import GovernmentRegistryClient
from backend.app.providers.infrastructure import InfrastructureClient
from backend.app.providers.weather import WeatherClient

__all__ = [
    "CallContext",
    "ElevationClient",
    "GovernmentRegistryClient",
    "InfrastructureClient",
    "ProviderClient",
    "WeatherClient",
    "retrieve_abandoned",
]
