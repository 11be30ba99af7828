"""
infrastructure.py — OpenStreetMap Overpass client.

Counts flood-relevant features inside a bounding box.  Only tags are
requested (``out tags``); geometry is not needed for counting.

OSM tag classification (first match wins)
=========================================
    waterway=river | stream                       → rivers
    natural=water | water=lake | landuse=reservoir → water_bodies
    waterway=drain | man_made=drain               → drainage_channels
    highway=* (except footway, path, cycleway,
               track, bridleway)                  → roads
    building=*                                    → buildings
    man_made=dyke | levee, barrier=flood_barrier  → flood_defenses
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Optional

from backend.app.core.errors import ProviderMalformedResponseError
from backend.app.providers.base import CallContext, ProviderClient, require
from backend.app.risk.models import InfrastructurePayload, ProviderKind
from backend.app.spatial.geometry import BoundingBox

EXCLUDED_HIGHWAYS = frozenset({"footway", "path", "cycleway", "track", "bridleway"})

OVERPASS_QUERY = """
[out:json][timeout:{timeout}][bbox:{bbox}];
(
  way["waterway"~"^(river|stream|drain)$"];
  relation["waterway"="river"];
  way["natural"="water"];
  way["landuse"="reservoir"];
  way["water"="lake"];
  way["man_made"~"^(drain|dyke|levee)$"];
  way["highway"]["highway"!~"^(footway|path|cycleway|track|bridleway)$"];
  way["building"];
  way["barrier"="flood_barrier"];
);
out tags;
"""


def classify_element(tags: Dict[str, Any]) -> Optional[str]:
    """Category name for one OSM element's tags, or None if irrelevant."""
    waterway = tags.get("waterway")
    man_made = tags.get("man_made")
    highway = tags.get("highway")

    if waterway in ("river", "stream"):
        return "rivers"
    if tags.get("natural") == "water" or tags.get("water") == "lake" or tags.get("landuse") == "reservoir":
        return "water_bodies"
    if waterway == "drain" or man_made == "drain":
        return "drainage_channels"
    if highway and highway not in EXCLUDED_HIGHWAYS:
        return "roads"
    if tags.get("building"):
        return "buildings"
    if man_made in ("dyke", "levee") or tags.get("barrier") == "flood_barrier":
        return "flood_defenses"
    return None


class InfrastructureClient(ProviderClient):
    """Feature counts (water, drainage, impervious surface, defences) in a box."""

    kind = ProviderKind.INFRASTRUCTURE

    def build_query(self, bbox: BoundingBox) -> str:
        return OVERPASS_QUERY.format(
            timeout=max(1, int(self.config.timeout_seconds)),
            bbox=bbox.as_overpass(),
        ).strip()

    async def _fetch_payload(self, query: BoundingBox, call: CallContext) -> InfrastructurePayload:
        data = await self._request_json(
            call,
            "POST",
            "/interpreter",
            content=self.build_query(query),
            headers={"Content-Type": "text/plain"},
        )
        return self.parse_elements(data)

    def parse_elements(self, data: Any) -> InfrastructurePayload:
        elements = require(data, "elements", provider=self.config.name)
        if not isinstance(elements, list):
            raise ProviderMalformedResponseError(self.config.name, "'elements' is not a list")

        counts: Counter = Counter()
        for element in elements:
            if not isinstance(element, dict):
                continue
            category = classify_element(element.get("tags") or {})
            if category:
                counts[category] += 1

        return InfrastructurePayload(**counts)
