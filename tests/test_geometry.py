"""
Tests for the spatial helpers used to build provider queries.
"""

from __future__ import annotations

import pytest

from backend.app.spatial.geometry import (
    NEIGHBOUR_OFFSET_DEG,
    BoundingBox,
    bounding_box,
    haversine,
    neighbour_points,
)


class TestHaversine:
    def test_same_point(self):
        assert haversine(21.0, 105.0, 21.0, 105.0) == 0.0

    def test_one_degree_latitude(self):
        assert haversine(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.19, abs=0.05)

    def test_hanoi_to_ho_chi_minh_city(self):
        d = haversine(21.0285, 105.8542, 10.8231, 106.6297)
        assert 1130 < d < 1150

    def test_symmetric(self):
        assert haversine(10, 20, 30, 40) == haversine(30, 40, 10, 20)


class TestBoundingBox:
    def test_contains_centre_and_radius(self):
        box = bounding_box(21.0285, 105.8542, 5.0)
        assert box.contains(21.0285, 105.8542)
        # ~0.045° each way near the equator, a little wider in longitude at 21°N
        assert box.max_lat - 21.0285 == pytest.approx(0.045, abs=0.001)
        assert box.max_lon - 105.8542 > box.max_lat - 21.0285

    def test_clamped_at_pole(self):
        box = bounding_box(89.99, 0.0, 50.0)
        assert box.max_lat == 90.0

    def test_non_positive_radius(self):
        with pytest.raises(ValueError):
            bounding_box(0.0, 0.0, 0.0)

    def test_degenerate_box_rejected(self):
        with pytest.raises(ValueError):
            BoundingBox(min_lat=1.0, min_lon=0.0, max_lat=0.0, max_lon=1.0)

    def test_overpass_order_is_south_west_north_east(self):
        box = BoundingBox(1.0, 2.0, 3.0, 4.0)
        assert box.as_overpass() == "1.000000,2.000000,3.000000,4.000000"


class TestNeighbourPoints:
    def test_four_cardinal_points(self):
        points = neighbour_points(10.0, 20.0)
        assert len(points) == 4
        (n_lat, _), (s_lat, _), (_, e_lon), (_, w_lon) = points
        assert n_lat == pytest.approx(10.0 + NEIGHBOUR_OFFSET_DEG)
        assert s_lat == pytest.approx(10.0 - NEIGHBOUR_OFFSET_DEG)
        assert e_lon == pytest.approx(20.0 + NEIGHBOUR_OFFSET_DEG)
        assert w_lon == pytest.approx(20.0 - NEIGHBOUR_OFFSET_DEG)

    def test_clamped_to_valid_range(self):
        points = neighbour_points(90.0, 180.0)
        assert all(-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0 for lat, lon in points)
