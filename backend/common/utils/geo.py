"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application.
"""

from math import radians, cos, sin, asin, sqrt
from typing import Any, Tuple, Union

EARTH_RADIUS_KM = 6371.0

PointLike = Union[Tuple[float, float], Any]


def _lat_lng(point: PointLike) -> Tuple[float, float]:
    """Accept (lat, lng) pairs, dicts with lat/lng keys or objects with lat/lng attributes."""
    if isinstance(point, (tuple, list)):
        return float(point[0]), float(point[1])
    if isinstance(point, dict):
        return float(point["lat"]), float(point["lng"])
    return float(point.lat), float(point.lng)


def distance_km(a: PointLike, b: PointLike) -> float:
    """
    Great-circle distance between two points in kilometers (Haversine formula).

    Args:
        a: First point
        b: Second point

    Returns:
        Distance in kilometers
    """
    lat1, lon1 = _lat_lng(a)
    lat2, lon2 = _lat_lng(b)
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * asin(min(1.0, sqrt(h)))

