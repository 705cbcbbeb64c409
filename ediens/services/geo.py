"""
Ediens Backend — Geo Helpers
==============================

What:  Great-circle distance and a lat/lng bounding box for radius searches.
How:   Nearby queries prefilter rows in SQL with the bounding box (index
       friendly), then compute exact haversine distances in Python and drop
       anything outside the circle.
"""

import math
from typing import Tuple

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bounding_box(lat: float, lng: float, radius_km: float) -> Tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lng, max_lng) enclosing the search circle."""
    d_lat = math.degrees(radius_km / EARTH_RADIUS_KM)
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    d_lng = min(math.degrees(radius_km / (EARTH_RADIUS_KM * cos_lat)), 180.0)
    return (
        max(lat - d_lat, -90.0),
        min(lat + d_lat, 90.0),
        lng - d_lng,
        lng + d_lng,
    )
