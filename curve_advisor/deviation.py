"""Decide when the vehicle has left the route badly enough to reroute."""

import logging
from typing import Optional, Sequence

from . import config
from .geometry import Point
from .route_tracker import RouteTracker
from .settings import Settings

logger = logging.getLogger('curveAdvisor.deviation')


class RouteDeviationManager:
    """
    Gates automatic route recalculation.

    A recalculation is only considered when ALL of these hold:
    - a destination is set
    - the road info provider says the vehicle is on a road
    - the cooldown since the last recalculation has elapsed
    - the vehicle is moving faster than MIN_RECALCULATION_SPEED_MPS

    Only then is the distance to the route checked, using the two segments
    adjacent to the nearest vertex rather than the vertex itself.
    """

    def __init__(
        self,
        route_tracker: RouteTracker,
        cooldown_s: float = config.RECALCULATION_COOLDOWN_S,
        min_speed_mps: float = config.MIN_RECALCULATION_SPEED_MPS,
    ):
        self.route_tracker = route_tracker
        self.cooldown_s = cooldown_s
        self.min_speed_mps = min_speed_mps
        self._last_recalculation: Optional[float] = None

    def should_recalculate(
        self,
        position: Point,
        route: Sequence[Point],
        destination: Optional[Point],
        settings: Settings,
        is_on_road: bool,
        speed_mps: float,
        now: float,
    ) -> bool:
        if destination is None or not is_on_road or not route:
            return False
        if speed_mps <= self.min_speed_mps:
            return False
        if self._last_recalculation is not None and now - self._last_recalculation <= self.cooldown_s:
            return False

        match = self.route_tracker.find_closest_point_on_route(position, route)
        if match.distance <= settings.max_route_deviation:
            return False

        deviation = self.route_tracker.segment_distance(position, route, match.index)
        logger.debug(
            "Deviation check: vertex %.1fm, segment %.1fm, limit %.1fm (index %d/%d)",
            match.distance, deviation, settings.max_route_deviation,
            match.index, len(route),
        )
        if not self.route_tracker.is_off_route(deviation, settings.max_route_deviation):
            return False

        logger.info("Route deviation detected (%.0fm), should recalculate", deviation)
        return True

    def mark_recalculation(self, now: float):
        """Stamp a recalculation request, whether or not it succeeds."""
        self._last_recalculation = now

    def reset(self):
        self._last_recalculation = None
