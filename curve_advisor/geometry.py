"""Geometry utilities for GPS positions and route polylines."""

import math
from typing import List, Sequence, Tuple

from . import config

EARTH_RADIUS_M = 6371000.0

Point = Tuple[float, float]


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate great circle distance between two GPS points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance(p1: Point, p2: Point) -> float:
    """haversine_distance for (lat, lon) tuples."""
    return haversine_distance(p1[0], p1[1], p2[0], p2[1])


def bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate bearing from point 1 to point 2 in degrees (0-360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(
        delta_lambda
    )

    return (math.degrees(math.atan2(x, y)) + 360) % 360


def angle_difference(angle1: float, angle2: float) -> float:
    """
    Smallest signed rotation from angle1 to angle2 in degrees [-180, 180).

    Positive means clockwise when the angles are compass bearings.
    """
    return (angle2 - angle1 + 180) % 360 - 180


def point_along_bearing(
    lat: float, lon: float, bearing_deg: float, distance_m: float
) -> Point:
    """Calculate point at given distance and bearing from start point."""
    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    bearing_rad = math.radians(bearing_deg)
    angular = distance_m / EARTH_RADIUS_M

    lat2 = math.asin(
        math.sin(lat_rad) * math.cos(angular)
        + math.cos(lat_rad) * math.sin(angular) * math.cos(bearing_rad)
    )
    lon2 = lon_rad + math.atan2(
        math.sin(bearing_rad) * math.sin(angular) * math.cos(lat_rad),
        math.cos(angular) - math.sin(lat_rad) * math.sin(lat2),
    )

    return math.degrees(lat2), math.degrees(lon2)


class LocalProjection:
    """
    Equirectangular projection around an origin, in metres East/North.

    Accurate to well under a metre within a few kilometres of the origin.
    Callers that move further should rebase onto a new origin.
    """

    def __init__(self, origin: Point):
        self.origin = (float(origin[0]), float(origin[1]))
        self.cos_lat = math.cos(math.radians(self.origin[0]))

    def to_local(self, lat: float, lon: float) -> Tuple[float, float]:
        x = (lon - self.origin[1]) * config.METERS_PER_DEGREE_LAT * self.cos_lat
        y = (lat - self.origin[0]) * config.METERS_PER_DEGREE_LAT
        return x, y

    def to_geodetic(self, x: float, y: float) -> Point:
        lat = self.origin[0] + y / config.METERS_PER_DEGREE_LAT
        lon = self.origin[1] + x / (config.METERS_PER_DEGREE_LAT * self.cos_lat)
        return lat, lon


def closest_point_on_segment(
    point: Point,
    seg_start: Point,
    seg_end: Point,
) -> Tuple[Point, float]:
    """
    Find closest point on a line segment to a given point.

    Returns: (closest_point, distance_along_segment_fraction)
    """
    projection = LocalProjection(point)
    x1, y1 = projection.to_local(*seg_start)
    x2, y2 = projection.to_local(*seg_end)

    dx = x2 - x1
    dy = y2 - y1
    if dx == 0 and dy == 0:
        return seg_start, 0.0

    # The point itself is the projection origin (0, 0)
    t = max(0.0, min(1.0, -((x1 * dx + y1 * dy) / (dx * dx + dy * dy))))

    closest = (
        seg_start[0] + t * (seg_end[0] - seg_start[0]),
        seg_start[1] + t * (seg_end[1] - seg_start[1]),
    )
    return closest, t


def distance_to_segment(point: Point, seg_start: Point, seg_end: Point) -> float:
    """Perpendicular (clamped) distance in metres from point to a segment."""
    closest, _ = closest_point_on_segment(point, seg_start, seg_end)
    return distance(point, closest)


def cumulative_distances(points: Sequence[Point]) -> List[float]:
    """Cumulative distance along a list of (lat, lon) points, starting at 0."""
    distances = [0.0]
    for i in range(1, len(points)):
        distances.append(distances[-1] + distance(points[i - 1], points[i]))
    return distances


def circumradius(p1: Point, p2: Point, p3: Point) -> float:
    """
    Radius of the circle through three points, in metres.

    Uses Heron's formula on the great-circle side lengths:
    R = abc / (4 * area). Collinear or coincident points give math.inf.
    """
    a = distance(p1, p2)
    b = distance(p2, p3)
    c = distance(p1, p3)

    s = (a + b + c) / 2
    # Clamp: rounding can push the product slightly negative for collinear points
    area_sq = max(0.0, s * (s - a) * (s - b) * (s - c))
    area = math.sqrt(area_sq)

    if area < 1e-9:
        return math.inf
    return (a * b * c) / (4.0 * area)


def find_index_at_distance(cum: Sequence[float], target: float) -> int:
    """Smallest index i such that cum[i] >= target (binary search)."""
    lo, hi = 0, len(cum) - 1
    while lo < hi:
        mid = (lo + hi) // 2
        if cum[mid] < target:
            lo = mid + 1
        else:
            hi = mid
    return lo


def interpolate_along(
    points: Sequence[Point],
    cum: Sequence[float],
    distance_from_start: float,
) -> Tuple[Point, int]:
    """
    Point at a given along-route distance, linearly interpolated.

    Returns: (point, base_index) where base_index is the vertex at the start
    of the segment containing the point.
    """
    if not points:
        raise ValueError("Cannot interpolate along an empty polyline")
    if distance_from_start <= 0:
        return points[0], 0
    total = cum[-1]
    if distance_from_start >= total:
        return points[-1], len(points) - 1

    i = max(0, find_index_at_distance(cum, distance_from_start) - 1)
    seg = cum[i + 1] - cum[i]
    t = (distance_from_start - cum[i]) / seg if seg > 0 else 0.0
    p1, p2 = points[i], points[i + 1]
    return (p1[0] + (p2[0] - p1[0]) * t, p1[1] + (p2[1] - p1[1]) * t), i
