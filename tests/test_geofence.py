"""Tests for geofence containment."""

import pytest

from photo_atlas.catalog.geofence import contains, haversine_distance
from photo_atlas.catalog.models import LandmarkExtension


def test_haversine_known_distance():
    # One degree of longitude on the equator
    assert haversine_distance(0.0, 0.0, 0.0, 1.0) == pytest.approx(111_195, rel=1e-3)
    assert haversine_distance(10.0, 10.0, 10.0, 10.0) == 0.0


def test_point_inside_and_outside():
    landmark = LandmarkExtension(latitude=0.0, longitude=0.0, radius=1000.0)
    assert contains(landmark, 0.0, 0.008)
    assert not contains(landmark, 0.0, 0.02)


def test_boundary_is_inclusive():
    distance = haversine_distance(0.0, 0.0, 0.0, 0.005)
    landmark = LandmarkExtension(latitude=0.0, longitude=0.0, radius=distance)
    assert contains(landmark, 0.0, 0.005)


def test_degenerate_landmarks_contain_nothing():
    assert not contains(LandmarkExtension(latitude=0.0, longitude=0.0, radius=0.0), 0.0, 0.0)
    assert not contains(LandmarkExtension(latitude=0.0, longitude=0.0, radius=-5.0), 0.0, 0.0)
    assert not contains(LandmarkExtension(radius=1000.0), 0.0, 0.0)
    assert not contains(None, 0.0, 0.0)


def test_point_without_coordinates():
    landmark = LandmarkExtension(latitude=0.0, longitude=0.0, radius=1000.0)
    assert not contains(landmark, None, 0.0)
    assert not contains(landmark, 0.0, None)
