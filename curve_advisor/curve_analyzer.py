"""
Discrete curve detection on route vertices (turn detection V1).

Works directly on the route polyline:

1. smooth_path() - centred moving average over neighbouring vertices
2. enhance_route() - signed turning angle at every vertex, raw and smoothed
3. CurveAnalyzer.analyze() - first curve after a start index: entry,
   apex, exit, length and circumradius
4. find_sharpest_turn() - single sharpest bearing change within a distance

Angles from this module are compass rotations (positive = clockwise =
right). CurveGeometry.signed_angle_deg is converted to the model
convention (positive = left).
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from . import config
from .geometry import Point, angle_difference, bearing, circumradius, distance
from .models import CurveGeometry

# Angles closer than this are treated as equal when picking the apex
APEX_TIE_TOLERANCE_DEG = 1e-6


@dataclass(frozen=True)
class EnhancedPoint:
    """A route vertex with its turning angle."""
    position: Point
    smooth_position: Point
    angle_real: float    # Bearing change at this vertex (degrees, +ve = right)
    angle_smooth: float  # Same, measured on the smoothed path


@dataclass(frozen=True)
class SharpTurn:
    """Sharpest single bearing change found by find_sharpest_turn()."""
    index: int
    angle: float
    position: Point
    distance: float  # Metres from the start index along the route


def smooth_path(
    points: Sequence[Point],
    window: int = config.V1_SMOOTHING_WINDOW,
    max_distance: float = math.inf,
) -> List[Point]:
    """
    Moving-average smoothing of a polyline.

    Args:
        points: (lat, lon) vertices
        window: Number of neighbours on each side to average
        max_distance: Stop including vertices once the path is this long

    Returns:
        Smoothed vertices (same count as the truncated input)
    """
    if len(points) < 2:
        return []

    truncated = [points[0]]
    total = 0.0
    for i in range(1, len(points)):
        truncated.append(points[i])
        total += distance(points[i - 1], points[i])
        if total > max_distance:
            break

    smoothed = []
    n = len(truncated)
    for i in range(n):
        lo = max(0, i - window)
        hi = min(n - 1, i + window)
        count = hi - lo + 1
        lat = sum(p[0] for p in truncated[lo:hi + 1]) / count
        lon = sum(p[1] for p in truncated[lo:hi + 1]) / count
        smoothed.append((lat, lon))
    return smoothed


def turning_angle(prev_point: Point, point: Point, next_point: Point) -> float:
    """Bearing change at `point` in degrees (positive = clockwise)."""
    bearing1 = bearing(prev_point[0], prev_point[1], point[0], point[1])
    bearing2 = bearing(point[0], point[1], next_point[0], next_point[1])
    return angle_difference(bearing1, bearing2)


def enhance_route(
    points: Sequence[Point],
    window: int = config.V1_SMOOTHING_WINDOW,
) -> List[EnhancedPoint]:
    """Annotate every route vertex with raw and smoothed turning angles."""
    if len(points) < 2:
        return []

    smoothed = smooth_path(points, window)
    enhanced = []
    last = len(points) - 1
    for i, point in enumerate(points):
        if i == 0 or i == last:
            angle_real = angle_smooth = 0.0
        else:
            angle_real = turning_angle(points[i - 1], point, points[i + 1])
            angle_smooth = turning_angle(smoothed[i - 1], smoothed[i], smoothed[i + 1])
        enhanced.append(EnhancedPoint(
            position=point,
            smooth_position=smoothed[i],
            angle_real=angle_real,
            angle_smooth=angle_smooth,
        ))
    return enhanced


def find_sharpest_turn(
    points: Sequence[Point],
    start_index: int,
    prediction_distance: float,
    min_angle: float,
) -> Optional[SharpTurn]:
    """
    Sharpest bearing change within prediction_distance of start_index.

    Walks consecutive segments, tracking the bearing delta between each
    segment and the previous one.

    Returns:
        SharpTurn if the sharpest |delta| exceeds min_angle, else None
    """
    if start_index >= len(points) - 1:
        return None

    previous_bearing = bearing(*points[start_index], *points[start_index + 1])
    total = 0.0
    best: Optional[SharpTurn] = None

    for i in range(start_index, len(points) - 1):
        total += distance(points[i], points[i + 1])
        if total > prediction_distance:
            break

        current_bearing = bearing(*points[i], *points[i + 1])
        delta = angle_difference(previous_bearing, current_bearing)
        if best is None or abs(delta) > abs(best.angle):
            # The bend is at the start of segment i
            best = SharpTurn(index=i, angle=delta, position=points[i], distance=total)
        previous_bearing = current_bearing

    if best is not None and abs(best.angle) > min_angle:
        return best
    return None


class CurveAnalyzer:
    """
    Extracts the geometry of the next curve on an enhanced route.

    Entry is the first vertex whose smoothed angle exceeds the threshold.
    Exit is the first later vertex whose angle falls back to the threshold
    or flips direction (a curve with no exit is a single vertex). Apex is the
    vertex of largest angle between them.
    """

    def analyze(
        self,
        enhanced: Sequence[EnhancedPoint],
        start_index: int,
        min_turn_angle: float,
        cum: Optional[Sequence[float]] = None,
    ) -> Optional[CurveGeometry]:
        """
        Find the first curve at or after start_index.

        Args:
            enhanced: Output of enhance_route()
            start_index: Vertex to start scanning from
            min_turn_angle: Entry/exit threshold in degrees
            cum: Cumulative vertex distances, to fill along-route fields

        Returns:
            CurveGeometry or None if no curve was found
        """
        n = len(enhanced)
        if n < 3 or start_index >= n - 2:
            return None
        start_index = max(0, start_index)

        start = None
        for i in range(start_index, n - 1):
            if abs(enhanced[i].angle_smooth) > min_turn_angle:
                start = i
                break
        if start is None:
            return None

        start_sign = math.copysign(1.0, enhanced[start].angle_smooth)
        end = start
        for i in range(start + 1, n - 1):
            angle = enhanced[i].angle_smooth
            if abs(angle) <= min_turn_angle or math.copysign(1.0, angle) != start_sign:
                end = i
                break

        apex = self._find_apex(enhanced, start, end)
        positions = [p.position for p in enhanced]

        length = sum(distance(positions[i], positions[i + 1]) for i in range(start, end))
        radius = self._radius(positions, start, apex, end)
        signed_angle = -self._heading_change(positions, start, end)

        if cum is not None:
            start_distance, end_distance = cum[start], cum[end]
        else:
            start_distance, end_distance = 0.0, length

        return CurveGeometry(
            start_point=positions[start],
            start_index=start,
            end_point=positions[end],
            end_index=end,
            apex_point=positions[apex],
            apex_index=apex,
            length_m=length,
            radius_m=radius,
            signed_angle_deg=signed_angle,
            start_distance_m=start_distance,
            end_distance_m=end_distance,
        )

    @staticmethod
    def _find_apex(enhanced: Sequence[EnhancedPoint], start: int, end: int) -> int:
        """Vertex of largest |angle|; the middle one when several tie."""
        peak = max(abs(enhanced[i].angle_smooth) for i in range(start, end + 1))
        tied = [
            i for i in range(start, end + 1)
            if peak - abs(enhanced[i].angle_smooth) <= APEX_TIE_TOLERANCE_DEG
        ]
        return tied[len(tied) // 2]

    @staticmethod
    def _radius(positions: Sequence[Point], start: int, apex: int, end: int) -> float:
        """
        Circumradius of start-apex-end.

        A curve collapsed to one or two vertices has no triangle of its own,
        so the apex and its route neighbours are used instead.
        """
        if start < apex < end:
            return circumradius(positions[start], positions[apex], positions[end])
        if 0 < apex < len(positions) - 1:
            return circumradius(positions[apex - 1], positions[apex], positions[apex + 1])
        return math.inf

    @staticmethod
    def _heading_change(positions: Sequence[Point], start: int, end: int) -> float:
        """Compass heading change from entering `start` to leaving `end`."""
        before = positions[max(0, start - 1)]
        after = positions[min(len(positions) - 1, end + 1)]
        if before == positions[start] or after == positions[end]:
            return 0.0
        bearing_in = bearing(*before, *positions[start])
        bearing_out = bearing(*positions[end], *after)
        return angle_difference(bearing_in, bearing_out)
