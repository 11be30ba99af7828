"""
elevation.py — Open-Elevation client with local terrain analysis.

One request samples the point and its four cardinal neighbours:

    GET {base_url}/lookup?locations=lat,lon|latN,lon|latS,lon|lat,lonE|lat,lonW

Terrain signals
===============
    slope_pct          mean |Δh| / horizontal distance × 100 over the neighbours

    proximity_to_water elevation band, raised when the point sits in a
                       local depression:

        Elevation        Band
        ─────────        ────
        < 10 m           0.8
        < 50 m           0.6
        < 100 m          0.3
        otherwise        0.1

        proximity = clamp(band + DEPRESSION_BOOST × share_of_higher_neighbours)
"""

from __future__ import annotations

from typing import Any, List, Sequence, Tuple

from backend.app.core.errors import ProviderMalformedResponseError
from backend.app.providers.base import CallContext, ProviderClient, as_number, require
from backend.app.risk.models import ElevationPayload, Location, ProviderKind
from backend.app.spatial.geometry import haversine, neighbour_points

# (upper bound in metres, proximity ratio)
ELEVATION_BANDS: Tuple[Tuple[float, float], ...] = (
    (10.0, 0.8),
    (50.0, 0.6),
    (100.0, 0.3),
)
HIGH_GROUND_PROXIMITY = 0.1
DEPRESSION_BOOST = 0.2


def proximity_from_terrain(elevation_m: float, neighbours: Sequence[float]) -> float:
    """Heuristic proximity-to-water ratio in [0, 1]."""
    base = HIGH_GROUND_PROXIMITY
    for upper, ratio in ELEVATION_BANDS:
        if elevation_m < upper:
            base = ratio
            break

    if neighbours:
        higher = sum(1 for h in neighbours if h > elevation_m)
        base += DEPRESSION_BOOST * higher / len(neighbours)

    return min(1.0, max(0.0, base))


def mean_slope_pct(
    point: Tuple[float, float, float],
    neighbours: Sequence[Tuple[float, float, float]],
) -> float:
    """Mean absolute slope (%) from the point to each (lat, lon, elevation) neighbour."""
    lat, lon, h = point
    slopes: List[float] = []
    for n_lat, n_lon, n_h in neighbours:
        run_m = haversine(lat, lon, n_lat, n_lon) * 1000.0
        if run_m > 0:
            slopes.append(abs(n_h - h) / run_m * 100.0)
    return round(sum(slopes) / len(slopes), 3) if slopes else 0.0


class ElevationClient(ProviderClient):
    """Point elevation, slope and water proximity."""

    kind = ProviderKind.ELEVATION

    async def _fetch_payload(self, query: Location, call: CallContext) -> ElevationPayload:
        points = [(query.latitude, query.longitude)]
        points.extend(neighbour_points(query.latitude, query.longitude))
        locations = "|".join(f"{lat:.6f},{lon:.6f}" for lat, lon in points)

        data = await self._request_json(
            call, "GET", "/lookup", params={"locations": locations},
        )
        return self.parse_lookup(data, points)

    def parse_lookup(self, data: Any, points: Sequence[Tuple[float, float]]) -> ElevationPayload:
        name = self.config.name
        results = require(data, "results", provider=name)
        if not isinstance(results, list) or not results:
            raise ProviderMalformedResponseError(name, "'results' is empty")

        heights = [
            as_number(require(r, "elevation", provider=name), "elevation", name)
            for r in results
        ]
        elevation = heights[0]
        # Neighbours are optional; a short answer still yields the point itself
        sampled = [
            (lat, lon, h) for (lat, lon), h in zip(points[1:], heights[1:])
        ]
        neighbour_heights = tuple(h for _, _, h in sampled)

        return ElevationPayload(
            elevation_m=elevation,
            proximity_to_water=proximity_from_terrain(elevation, neighbour_heights),
            slope_pct=mean_slope_pct((points[0][0], points[0][1], elevation), sampled),
            neighbour_elevations_m=neighbour_heights,
        )
