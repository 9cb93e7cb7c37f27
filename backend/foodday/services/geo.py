# foodday/services/geo.py
from math import radians, sin, cos, atan2
from typing import Optional, Union

from foodday.models.schemas import LatLng

EARTH_RADIUS_M = 6_371_000.0

Point = Union[LatLng, dict, tuple]


def _coords(p: Point) -> tuple[float, float]:
    if isinstance(p, LatLng):
        return p.lat, p.lng
    if isinstance(p, dict):
        return float(p["lat"]), float(p["lng"])
    lat, lng = p
    return float(lat), float(lng)


def distance_meters(a: Point, b: Point) -> float:
    """
    a, b: LatLng, {"lat", "lng"} dicts or (lat, lng) tuples, in degrees
    returns great-circle distance in meters
    """
    lat1, lng1 = _coords(a)
    lat2, lng2 = _coords(b)
    dlat = radians(lat2 - lat1)
    dlon = radians(lng2 - lng1)
    s = sin(dlat/2)**2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon/2)**2
    # rounding can push s a hair outside [0, 1] for antipodal points
    s = min(1.0, max(0.0, s))
    return 2 * EARTH_RADIUS_M * atan2(s**0.5, (1 - s)**0.5)


def distance_or_none(a: Optional[Point], b: Optional[Point]) -> Optional[float]:
    """Unknown location on either side means unknown distance, not zero."""
    if a is None or b is None:
        return None
    return distance_meters(a, b)


def format_distance(meters: Optional[float]) -> str:
    if meters is None:
        return ""
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"
