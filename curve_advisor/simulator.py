"""Route playback fix source for testing without GPS hardware."""

import logging
import xml.etree.ElementTree as ET
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from . import config
from .geometry import Point, bearing, distance
from .models import GpsFix

logger = logging.getLogger('curveAdvisor.simulator')

GPX_NS = {'gpx': 'http://www.topografix.com/GPX/1/1'}


class RouteSimulator:
    """
    Drives along a polyline at constant speed and reports noisy fixes.

    Position noise is Gaussian in metres, independent in East and North.
    A fraction of fixes can be dropped to mimic a receiver losing lock.
    """

    def __init__(
        self,
        points: Sequence[Point],
        speed_mps: float = 13.4,  # ~48 km/h
        noise_m: float = 0.0,
        seed: Optional[int] = None,
        dropout: float = 0.0,
        accuracy_m: Optional[float] = None,
    ):
        if len(points) < 2:
            raise ValueError("Route simulator needs at least two points")
        self.points: List[Point] = [(float(lat), float(lon)) for lat, lon in points]
        self.speed = speed_mps
        self.noise_m = noise_m
        self.dropout = dropout
        self.accuracy_m = accuracy_m
        self._rng = np.random.default_rng(seed)

        self.current_lat, self.current_lon = self.points[0]
        self.current_heading = bearing(*self.points[0], *self.points[1])
        self._route_index = 0
        self.travelled_m = 0.0
        self.time_s = 0.0

    @property
    def finished(self) -> bool:
        return self._route_index >= len(self.points) - 1

    @property
    def true_position(self) -> Point:
        return (self.current_lat, self.current_lon)

    def _advance(self, distance_to_travel: float):
        while distance_to_travel > 0 and not self.finished:
            next_pt = self.points[self._route_index + 1]
            dist_to_next = distance(self.true_position, next_pt)

            if distance_to_travel >= dist_to_next:
                distance_to_travel -= dist_to_next
                self.travelled_m += dist_to_next
                self._route_index += 1
                self.current_lat, self.current_lon = next_pt
            else:
                fraction = distance_to_travel / dist_to_next if dist_to_next > 0 else 0
                self.current_lat += fraction * (next_pt[0] - self.current_lat)
                self.current_lon += fraction * (next_pt[1] - self.current_lon)
                self.travelled_m += distance_to_travel
                distance_to_travel = 0

            if not self.finished:
                next_pt = self.points[self._route_index + 1]
                self.current_heading = bearing(self.current_lat, self.current_lon, *next_pt)

    def _noisy(self, lat: float, lon: float) -> Point:
        if self.noise_m <= 0:
            return lat, lon
        north, east = self._rng.normal(0.0, self.noise_m, size=2)
        cos_lat = np.cos(np.radians(lat))
        return (
            lat + north / config.METERS_PER_DEGREE_LAT,
            lon + east / (config.METERS_PER_DEGREE_LAT * cos_lat),
        )

    def step(self, dt: float) -> Optional[GpsFix]:
        """
        Move forward by dt seconds.

        Returns:
            The fix for the new position, or None if this fix was dropped
        """
        self.time_s += dt
        self._advance(self.speed * dt)

        if self.dropout > 0 and self._rng.random() < self.dropout:
            return None

        lat, lon = self._noisy(self.current_lat, self.current_lon)
        return GpsFix(
            lat=float(lat),
            lon=float(lon),
            timestamp=self.time_s,
            speed=0.0 if self.finished else self.speed,
            heading=self.current_heading,
            accuracy=self.accuracy_m,
        )

    def fixes(self, rate_hz: float = 1.0) -> Iterator[GpsFix]:
        """Fixes at a fixed rate until the end of the route."""
        dt = 1.0 / rate_hz
        while not self.finished:
            fix = self.step(dt)
            if fix is not None:
                yield fix


def load_gpx_route(gpx_path: str) -> List[Tuple[float, float]]:
    """
    Parse track points (or route points) from a GPX file.

    Handles files with and without the GPX 1.1 namespace. Parse errors are
    logged and give an empty list.
    """
    points: List[Tuple[float, float]] = []

    try:
        root = ET.parse(gpx_path).getroot()

        for query, ns in (
            ('.//gpx:trkpt', GPX_NS),
            ('.//gpx:rtept', GPX_NS),
            ('.//trkpt', None),
            ('.//rtept', None),
        ):
            for element in root.findall(query, ns):
                points.append((float(element.get('lat')), float(element.get('lon'))))
            if points:
                break

    except ET.ParseError as e:
        logger.error("Error parsing GPX file %s: %s", gpx_path, e)
    except (OSError, TypeError, ValueError) as e:
        logger.error("Error reading GPX file %s: %s", gpx_path, e)

    logger.info("Loaded %d points from %s", len(points), gpx_path)
    return points
