"""Great-circle containment tests for landmark geofences."""

import math
from typing import Optional

from photo_atlas.catalog.config import EARTH_RADIUS_M
from photo_atlas.catalog.models import LandmarkExtension


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in meters between two points given in decimal degrees."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def contains(landmark: Optional[LandmarkExtension], lat: Optional[float], lng: Optional[float]) -> bool:
    """Whether a point lies inside a landmark's circle (boundary inclusive).

    A landmark without coordinates or with a non-positive radius contains
    nothing, and neither does a point with a missing coordinate.
    """
    if landmark is None or not landmark.has_coordinates or landmark.radius <= 0:
        return False
    if lat is None or lng is None:
        return False
    distance = haversine_distance(landmark.latitude, landmark.longitude, lat, lng)
    return distance <= landmark.radius
