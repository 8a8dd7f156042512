"""
Core data structures for the curve advisor.

Unit Conventions
----------------
All measurements in this module use SI units unless otherwise noted:

- Time: seconds (float, monotonic or Unix timestamps)
- Distance: metres
- Speed: metres per second, except fields suffixed _kmh
- Angles: degrees (0-360 for headings, signed for turn angles)
- Coordinates: decimal degrees (WGS84), (lat, lon) tuples
- Deceleration: g units, negative = braking required

Signed turn angles are positive for left (counter-clockwise) turns and
negative for right turns.

Everything published to consumers is a frozen dataclass. Components that
need to change a value produce a new one with dataclasses.replace().
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

LatLon = Tuple[float, float]
Polyline = Tuple[LatLon, ...]


class TurnClassification(Enum):
    UTURN = "uturn"
    HAIRPIN = "hairpin"
    TIGHT = "tight"
    INTERSECTION = "intersection"
    WIDE = "wide"
    CURVE = "curve"


class Direction(Enum):
    LEFT = "left"
    RIGHT = "right"
    UNKNOWN = "unknown"


class DrivingStyle(Enum):
    PRUDENT = "prudent"
    NORMAL = "normal"
    SPORTIF = "sportif"


class TurnDetectionVersion(Enum):
    V1 = "v1"
    V2 = "v2"


@dataclass(frozen=True)
class GpsFix:
    """
    One raw position sample from a GPS receiver or a simulated drive.

    Attributes:
        lat: Latitude in decimal degrees.
        lon: Longitude in decimal degrees.
        timestamp: Time of the fix in seconds.
        speed: Reported ground speed in m/s, if the source provides one.
        heading: Reported course over ground in degrees (0=North, 90=East).
        accuracy: Reported horizontal accuracy in metres. Used as the
            measurement noise for this fix when present.
    """
    lat: float
    lon: float
    timestamp: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    accuracy: Optional[float] = None

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)

    def is_valid(self) -> bool:
        """True when position and timestamp are finite numbers."""
        return all(
            isinstance(v, (int, float)) and math.isfinite(v)
            for v in (self.lat, self.lon, self.timestamp)
        )


@dataclass(frozen=True)
class VehicleState:
    """
    Smoothed vehicle state published by the estimator at 10Hz.

    Attributes:
        lat: Filtered latitude in decimal degrees.
        lon: Filtered longitude in decimal degrees.
        speed: Filtered ground speed in m/s.
        heading: Heading in degrees [0, 360), 0=North, 90=East. Held at the
            last valid value while the vehicle is nearly stationary.
        acceleration: Smoothed longitudinal acceleration in m/s².
        timestamp: Time the state was produced, in seconds.
    """
    lat: float
    lon: float
    speed: float
    heading: float
    acceleration: float
    timestamp: float

    @property
    def position(self) -> LatLon:
        return (self.lat, self.lon)

    @property
    def speed_kmh(self) -> float:
        return self.speed * 3.6


@dataclass(frozen=True)
class CurveGeometry:
    """
    Geometry of one curve extracted from the route.

    Indices reference vertices of the route polyline the curve was found on.
    """
    start_point: LatLon
    start_index: int
    end_point: LatLon
    end_index: int
    apex_point: LatLon
    apex_index: int
    length_m: float
    radius_m: float
    signed_angle_deg: float
    start_distance_m: float = 0.0  # Along-route distance of the start point
    end_distance_m: float = 0.0    # Along-route distance of the end point


@dataclass(frozen=True)
class Turn:
    """
    An upcoming turn with its speed advisory.

    Attributes:
        start_point, end_point, apex_point: Turn geometry (lat, lon).
        start_index, end_index, apex_index: Route vertex indices. start_index
            is the deduplication key.
        length_m: Length of the turn along the route.
        radius_m: Estimated radius, math.inf for a straight.
        signed_angle_deg: Total heading change, positive = left.
        classification: Turn type from TurnClassification.
        start_distance_m: Along-route distance of the turn start.
        end_distance_m: Along-route distance of the turn end.
        distance_to_start_m: Distance from the vehicle to the turn start,
            0 while the vehicle is inside the turn.
        distance_to_exit_m: Distance to the turn end, populated only while
            the vehicle is inside the turn.
        speed_limit_kmh: Speed limit at the turn, if known.
        optimal_speed_kmh: Recommended speed through the turn.
        required_deceleration_g: Deceleration needed to reach the optimal
            speed at the turn start. None when no braking is needed.
        braking_point_m: Distance from the vehicle at which braking should
            begin, 0 when it is already due. None without an optimal speed.
    """
    start_point: LatLon
    start_index: int
    end_point: LatLon
    end_index: int
    apex_point: LatLon
    apex_index: int
    length_m: float
    radius_m: float
    signed_angle_deg: float
    classification: TurnClassification
    start_distance_m: float
    end_distance_m: float
    distance_to_start_m: float
    distance_to_exit_m: Optional[float] = None
    speed_limit_kmh: Optional[float] = None
    optimal_speed_kmh: Optional[float] = None
    required_deceleration_g: Optional[float] = None
    braking_point_m: Optional[float] = None

    @property
    def is_inside(self) -> bool:
        return self.distance_to_start_m == 0 and self.distance_to_exit_m is not None

    @property
    def direction(self) -> Direction:
        if not math.isfinite(self.signed_angle_deg) or abs(self.signed_angle_deg) < 1:
            return Direction.UNKNOWN
        return Direction.LEFT if self.signed_angle_deg > 0 else Direction.RIGHT


@dataclass(frozen=True)
class Prediction:
    """What the prediction channel publishes on every cycle."""
    current: Optional[Turn]
    turns: Tuple[Turn, ...] = ()


EMPTY_PREDICTION = Prediction(current=None, turns=())
