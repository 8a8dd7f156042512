"""
Route planner - owns the current route and runs recalculations.

Asynchronous Route Requests
---------------------------
Routing calls can take seconds. To avoid blocking the scheduler:

- request_route() starts a background daemon thread
- the thread parks its result in _pending (route or RoutingError)
- apply_pending() is called from the scheduler and swaps the result in

Every request gets a sequence number. A worker only parks its result while
its request is still the latest, so a slow superseded request can never
overwrite a newer result. apply_pending() checks again in case a route
was installed in between.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple, Union

from . import config
from .errors import RoutingError
from .events import Channel
from .geometry import Point

logger = logging.getLogger('curveAdvisor.routing')


class RoutingService(Protocol):
    """Turn-by-turn routing backend (OSRM, Valhalla, ...)."""

    def get_route(self, origin: Point, destination: Point) -> Sequence[Point]:
        ...


@dataclass(frozen=True)
class RouteState:
    """
    The route everyone is working from.

    Attributes:
        origin: Where the route was requested from.
        destination: Where it leads, None when just following a track.
        polyline: Route vertices.
        generation: Incremented on every replacement.
    """
    origin: Optional[Point] = None
    destination: Optional[Point] = None
    polyline: Tuple[Point, ...] = ()
    generation: int = 0


@dataclass(frozen=True)
class _PendingResult:
    request_id: int
    origin: Point
    destination: Point
    result: Union[Tuple[Point, ...], RoutingError]


class RoutePlanner:
    """Route state plus background recalculation."""

    def __init__(self, routing_service: Optional[RoutingService] = None):
        self.routing_service = routing_service
        self.state = RouteState()
        self.notices: Channel[RoutingError] = Channel("route_notices")
        self.route_channel: Channel[RouteState] = Channel("route")

        self._lock = threading.Lock()
        self._request_id = 0
        self._pending: Optional[_PendingResult] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def route(self) -> Tuple[Point, ...]:
        return self.state.polyline

    @property
    def destination(self) -> Optional[Point]:
        return self.state.destination

    @property
    def busy(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _install(self, origin: Optional[Point], destination: Optional[Point], polyline: Tuple[Point, ...]):
        self.state = RouteState(
            origin=origin,
            destination=destination,
            polyline=polyline,
            generation=self.state.generation + 1,
        )
        logger.info("Route generation %d: %d points", self.state.generation, len(polyline))
        self.route_channel.publish(self.state)

    def set_route(self, polyline: Sequence[Point], destination: Optional[Point] = None) -> RouteState:
        """
        Install a route synchronously (GPX file, tests).

        Raises:
            RoutingError: If the polyline has fewer than two points
        """
        points = tuple((float(lat), float(lon)) for lat, lon in polyline)
        if len(points) < config.MIN_ROUTE_POINTS:
            raise RoutingError(f"Route needs at least {config.MIN_ROUTE_POINTS} points, got {len(points)}")
        with self._lock:
            # Any request in flight is for a route we no longer want
            self._request_id += 1
            self._pending = None
        self._install(points[0], destination if destination is not None else points[-1], points)
        return self.state

    def clear(self):
        with self._lock:
            self._request_id += 1
            self._pending = None
        self.state = RouteState(generation=self.state.generation + 1)
        self.route_channel.publish(self.state)

    def request_route(self, origin: Point, destination: Point) -> int:
        """
        Start a background route calculation.

        Returns:
            The request id; only the latest request's result is applied
        """
        if self.routing_service is None:
            error = RoutingError("No routing service configured")
            logger.warning("Route request ignored: %s", error)
            self.notices.publish(error)
            return self._request_id

        with self._lock:
            self._request_id += 1
            request_id = self._request_id
        service = self.routing_service
        # Destination is updated now so stale results can be recognised
        self.state = RouteState(
            origin=origin,
            destination=destination,
            polyline=self.state.polyline,
            generation=self.state.generation,
        )

        def fetch_in_background():
            try:
                logger.info("Requesting route %.5f,%.5f -> %.5f,%.5f", *origin, *destination)
                points = tuple(
                    (float(lat), float(lon))
                    for lat, lon in service.get_route(origin, destination)
                )
                if len(points) < config.MIN_ROUTE_POINTS:
                    result = RoutingError(f"Routing service returned {len(points)} points")
                else:
                    result = points
            except Exception as e:
                logger.warning("Route request %d failed: %s", request_id, e, exc_info=True)
                result = RoutingError(str(e))
            with self._lock:
                if request_id != self._request_id:
                    logger.debug("Dropping result of superseded route request %d", request_id)
                    return
                self._pending = _PendingResult(request_id, origin, destination, result)

        self._thread = threading.Thread(target=fetch_in_background, daemon=True)
        self._thread.start()
        return request_id

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the background request finishes. True if it did."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def apply_pending(self) -> bool:
        """
        Swap in a finished background result. Call from the scheduler.

        Returns:
            True if the route was replaced
        """
        with self._lock:
            pending = self._pending
            self._pending = None
            latest = self._request_id
        if pending is None:
            return False

        if pending.request_id != latest or pending.destination != self.state.destination:
            logger.debug("Discarding stale route result %d (latest %d)", pending.request_id, latest)
            return False

        if isinstance(pending.result, RoutingError):
            logger.warning("Routing failed, keeping current route: %s", pending.result)
            self.notices.publish(pending.result)
            return False

        self._install(pending.origin, pending.destination, pending.result)
        return True
