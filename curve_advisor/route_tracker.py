"""
Route tracker - maps vehicle positions onto the planned route polyline.

Uses a linear scan over route vertices; ties resolve to the first vertex
at the minimal distance.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .geometry import (
    Point,
    closest_point_on_segment,
    cumulative_distances,
    distance,
    distance_to_segment,
)

logger = logging.getLogger('curveAdvisor.route')


@dataclass(frozen=True)
class RouteMatch:
    """Result of a nearest route vertex query."""
    index: int
    distance: float  # Meters from position to the vertex


def find_closest_point_on_route(position: Point, route: Sequence[Point]) -> RouteMatch:
    """
    Find the nearest route vertex to a position.

    Args:
        position: (lat, lon) of the vehicle
        route: Route polyline

    Returns:
        RouteMatch with the first minimal-distance index

    Raises:
        ValueError: If the route is empty
    """
    if not route:
        raise ValueError("Cannot match a position against an empty route")

    min_dist = float('inf')
    nearest_idx = 0
    for i, point in enumerate(route):
        dist = distance(position, point)
        if dist < min_dist:
            min_dist = dist
            nearest_idx = i

    return RouteMatch(index=nearest_idx, distance=min_dist)


def is_off_route(deviation_m: float, max_deviation_m: float) -> bool:
    return deviation_m > max_deviation_m


def segment_distance(position: Point, route: Sequence[Point], index: int) -> float:
    """
    Distance from position to the route segments adjacent to a vertex.

    Checks the segment arriving at `index` and the one leaving it, so a
    vehicle midway between two distant vertices is not judged off route.
    """
    if len(route) == 1:
        return distance(position, route[0])

    candidates = []
    if index > 0:
        candidates.append(distance_to_segment(position, route[index - 1], route[index]))
    if index < len(route) - 1:
        candidates.append(distance_to_segment(position, route[index], route[index + 1]))
    return min(candidates)


class RouteTracker:
    """
    Tracks progress along one route polyline at a time.

    Cumulative vertex distances are computed once per polyline and reused
    until a different polyline is passed in.
    """

    def __init__(self):
        self._route: Optional[Sequence[Point]] = None
        self._cum: List[float] = []

    def cumulative(self, route: Sequence[Point]) -> List[float]:
        """Cumulative distances of route vertices, cached per polyline."""
        if route is not self._route:
            self._route = route
            self._cum = cumulative_distances(route)
        return self._cum

    def find_closest_point_on_route(self, position: Point, route: Sequence[Point]) -> RouteMatch:
        return find_closest_point_on_route(position, route)

    def is_off_route(self, deviation_m: float, max_deviation_m: float) -> bool:
        return is_off_route(deviation_m, max_deviation_m)

    def segment_distance(self, position: Point, route: Sequence[Point], index: int) -> float:
        return segment_distance(position, route, index)

    def distance_along_route(
        self,
        position: Point,
        route: Sequence[Point],
        match: Optional[RouteMatch] = None,
    ) -> float:
        """
        Along-route distance of a position, in metres from the route start.

        Projects the position onto whichever segment adjacent to the nearest
        vertex is closer, so the value advances smoothly between vertices.
        """
        if match is None:
            match = find_closest_point_on_route(position, route)
        cum = self.cumulative(route)
        idx = match.index
        if len(route) == 1:
            return 0.0

        best_dist = float('inf')
        best_along = cum[idx]
        for seg in (idx - 1, idx):
            if seg < 0 or seg >= len(route) - 1:
                continue
            closest, t = closest_point_on_segment(position, route[seg], route[seg + 1])
            dist = distance(position, closest)
            if dist < best_dist:
                best_dist = dist
                best_along = cum[seg] + t * (cum[seg + 1] - cum[seg])
        return best_along
