"""
geometry.py — Small spherical-geometry helpers for provider queries.

Provides:
    - Haversine distance between two (lat, lon) points
    - Fixed-radius bounding box around a point (InfrastructureClient input)
    - Cardinal neighbour sampling around a point (ElevationClient slope input)

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Haversine
=========
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Bounding box
============
The box fully contains the circle of ``radius_km`` around the centre.
The latitude half-height is the angular radius; the longitude half-width
is widened by 1 / cos(φ) because meridians converge toward the poles.
The default radius of 5 km gives roughly the ±0.045° box used for
infrastructure sampling near the equator.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple


EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius

# ~111 m at the equator
NEIGHBOUR_OFFSET_DEG: float = 0.001


@dataclass(frozen=True)
class BoundingBox:
    """A lat/lon rectangle, clamped to valid coordinate ranges."""
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def __post_init__(self) -> None:
        if self.min_lat > self.max_lat or self.min_lon > self.max_lon:
            raise ValueError(f"Degenerate bounding box: {self}")

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon

    def as_overpass(self) -> str:
        """Overpass QL ``(bbox:south,west,north,east)`` argument."""
        return f"{self.min_lat:.6f},{self.min_lon:.6f},{self.max_lat:.6f},{self.max_lon:.6f}"


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in km, rounded to 4 decimal places.

    >>> haversine(0.0, 0.0, 0.0, 0.0)
    0.0
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_lat = phi2 - phi1
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lon / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return round(EARTH_RADIUS_KM * c, 4)


def bounding_box(latitude: float, longitude: float, radius_km: float) -> BoundingBox:
    """
    Bounding box that contains the circle (centre, radius_km).

    Raises ValueError for a non-positive radius.
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    angular = radius_km / EARTH_RADIUS_KM
    d_lat = math.degrees(angular)

    lat_rad = math.radians(latitude)
    if math.cos(lat_rad) > 1e-10:
        d_lon = math.degrees(angular / math.cos(lat_rad))
    else:
        d_lon = 180.0  # at the poles every longitude is "near"

    return BoundingBox(
        min_lat=max(latitude - d_lat, -90.0),
        min_lon=max(longitude - d_lon, -180.0),
        max_lat=min(latitude + d_lat, 90.0),
        max_lon=min(longitude + d_lon, 180.0),
    )


def neighbour_points(
    latitude: float,
    longitude: float,
    offset_deg: float = NEIGHBOUR_OFFSET_DEG,
) -> List[Tuple[float, float]]:
    """
    North, south, east and west neighbours of a point, clamped to range.
    """
    return [
        (min(latitude + offset_deg, 90.0), longitude),
        (max(latitude - offset_deg, -90.0), longitude),
        (latitude, min(longitude + offset_deg, 180.0)),
        (latitude, max(longitude - offset_deg, -180.0)),
    ]
