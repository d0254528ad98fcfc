"""
Geographic and statistical helpers shared by every scoring component.

Distances are great-circle meters. Direction and offset helpers work in
plain degree space, which is accurate enough at the city scale the
pattern detector operates on.
"""

import math
from typing import Any, Iterable, List, Optional, Sequence

from site_engine.geo.types import BoundingBox, Location

EARTH_RADIUS_M = 6371000
METERS_PER_DEGREE = 111000


def safe_float(value: Any, default: float = 0.0) -> float:
    """Convert a raw input to float, falling back on missing or bad values."""
    if value is None:
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result) or math.isinf(result):
        return default
    return result


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def normalize(value: float, min_value: float, max_value: float) -> float:
    """Scale value into [0, 1]; a degenerate range maps to 0."""
    if max_value == min_value:
        return 0.0
    return clamp((value - min_value) / (max_value - min_value), 0.0, 1.0)


def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    if lat is None or lng is None:
        return False
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        return False
    return -90 <= lat_f <= 90 and -180 <= lng_f <= 180


def haversine_distance(a: Location, b: Location) -> float:
    """Great-circle distance between two locations in meters."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def centroid(locations: Sequence[Location]) -> Location:
    """Arithmetic mean of the coordinates."""
    if not locations:
        raise ValueError("centroid requires at least one location")
    n = len(locations)
    return Location(
        lat=sum(loc.lat for loc in locations) / n,
        lng=sum(loc.lng for loc in locations) / n,
        country=locations[0].country,
    )


def bearing(origin: Location, target: Location) -> float:
    """Planar direction (radians) from origin to target; 0 points north."""
    return math.atan2(target.lng - origin.lng, target.lat - origin.lat)


def offset_location(location: Location, d_lat: float, d_lng: float) -> Location:
    return Location(
        lat=clamp(location.lat + d_lat, -90.0, 90.0),
        lng=clamp(location.lng + d_lng, -180.0, 180.0),
        country=location.country,
        region=location.region,
    )


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def variance(values: Sequence[float]) -> float:
    """Population variance."""
    if not values:
        return 0.0
    m = mean(values)
    return sum((v - m) ** 2 for v in values) / len(values)


def spacings(values: Sequence[float]) -> List[float]:
    """Absolute differences between consecutive values."""
    return [abs(values[i] - values[i - 1]) for i in range(1, len(values))]


def regularity(values: Sequence[float]) -> float:
    """
    1 minus the coefficient of variation, floored at 0.

    Fewer than two values carry no spacing information and score 0.
    A zero mean is treated as maximally irregular (CV = 1).
    """
    if len(values) < 2:
        return 0.0
    m = mean(values)
    std_dev = math.sqrt(variance(values))
    cv = std_dev / m if m > 0 else 1.0
    return max(0.0, 1.0 - cv)


def linearity(p1: Location, p2: Location, p3: Location) -> float:
    """
    How close three points are to a straight line through p2.

    Uses the slack in the triangle inequality: for collinear points
    d(p1, p3) == d(p1, p2) + d(p2, p3).
    """
    d12 = haversine_distance(p1, p2)
    d23 = haversine_distance(p2, p3)
    d13 = haversine_distance(p1, p3)

    expected = d12 + d23
    if expected == 0:
        return 0.0
    return max(0.0, 1.0 - abs(expected - d13) / expected)


def filter_by_radius(
    locations: Iterable[Location], center: Location, radius: float
) -> List[Location]:
    return [loc for loc in locations if haversine_distance(center, loc) <= radius]


def bounding_box(
    locations: Sequence[Location], margin_m: float = 0.0
) -> Optional[BoundingBox]:
    """Box enclosing all locations, widened by margin_m on every side."""
    if not locations:
        return None

    min_lat = min(loc.lat for loc in locations)
    max_lat = max(loc.lat for loc in locations)
    min_lng = min(loc.lng for loc in locations)
    max_lng = max(loc.lng for loc in locations)

    lat_margin = margin_m / METERS_PER_DEGREE
    widest_lat = max(abs(min_lat), abs(max_lat))
    cos_lat = math.cos(math.radians(min(widest_lat, 89.0)))
    lng_margin = margin_m / (METERS_PER_DEGREE * cos_lat)

    return BoundingBox(
        min_lat=clamp(min_lat - lat_margin, -90.0, 90.0),
        max_lat=clamp(max_lat + lat_margin, -90.0, 90.0),
        min_lng=clamp(min_lng - lng_margin, -180.0, 180.0),
        max_lng=clamp(max_lng + lng_margin, -180.0, 180.0),
    )
