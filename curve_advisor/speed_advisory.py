"""
Speed advisory physics.

Converts curve radius and driving style into a recommended speed, and
current speed / target speed / distance into the braking required.

Speeds in and out of this module are km/h; distances are metres.
"""

import math
from dataclasses import dataclass
from typing import Optional

from . import config
from .models import DrivingStyle


@dataclass(frozen=True)
class CurveAdvice:
    """Advisory figures for one curve."""
    max_curve_speed_kmh: float
    optimal_speed_kmh: float
    braking_distance_m: float
    braking_point_m: float
    required_deceleration_g: Optional[float]


def style_factor(style: DrivingStyle) -> float:
    return config.DRIVING_STYLE_FACTORS[style.value]


def max_curve_speed(radius_m: float) -> float:
    """Highest speed the tyres can hold through a radius, capped at 180 km/h."""
    if radius_m <= 0:
        return 0.0
    if math.isinf(radius_m):
        return config.MAX_CURVE_SPEED_KMH
    v_ms = math.sqrt(radius_m * config.GRAVITY * config.ADHESION_COEFFICIENT)
    return min(v_ms * 3.6, config.MAX_CURVE_SPEED_KMH)


def optimal_speed(max_speed_kmh: float, style: DrivingStyle) -> float:
    return max_speed_kmh * style_factor(style)


def required_deceleration(
    current_kmh: float,
    target_kmh: float,
    distance_m: float,
) -> Optional[float]:
    """
    Deceleration in g needed to slow from current to target over a distance.

    Returns:
        Negative value in g when braking is needed, None when the current
        speed is already at or below the target
    """
    if current_kmh <= target_kmh:
        return None
    vc = current_kmh / 3.6
    vt = target_kmh / 3.6
    # Inside or at the turn start: treat as one metre left to avoid /0
    d = max(distance_m, 1.0)
    return (vt * vt - vc * vc) / (2 * d * config.GRAVITY)


def braking_distance(
    current_kmh: float,
    target_kmh: float,
    max_deceleration: float = config.MAX_DECELERATION_MPS2,
) -> float:
    if current_kmh <= target_kmh:
        return 0.0
    vc = current_kmh / 3.6
    vt = target_kmh / 3.6
    return (vc * vc - vt * vt) / (2 * max_deceleration)


def braking_point(current_kmh: float, target_kmh: float, distance_to_start_m: float) -> float:
    """Distance from the vehicle at which braking should begin."""
    return max(0.0, distance_to_start_m - braking_distance(current_kmh, target_kmh))


def angle_based_speed(
    angle_deg: float,
    speed_limit_kmh: Optional[float],
    default_speed_kmh: float,
    min_turn_speed_kmh: float,
    max_turn_angle_deg: float,
) -> float:
    """
    Legacy recommended speed from turn angle alone.

    Interpolates linearly from the speed limit (or default speed) at 0° down
    to min_turn_speed at max_turn_angle and beyond. Used when a turn has no
    usable radius.
    """
    base = speed_limit_kmh or default_speed_kmh
    abs_angle = abs(angle_deg)
    if abs_angle >= max_turn_angle_deg:
        return min_turn_speed_kmh
    ratio = abs_angle / max_turn_angle_deg
    return base - ratio * (base - min_turn_speed_kmh)


class CurveSpeedCalculator:
    """Bundles the advisory figures for a curve with the user's settings."""

    def __init__(
        self,
        style: DrivingStyle = DrivingStyle.PRUDENT,
        min_turn_speed_kmh: float = 0.0,
        default_speed_kmh: Optional[float] = None,
    ):
        self.style = style
        self.min_turn_speed_kmh = min_turn_speed_kmh
        self.default_speed_kmh = default_speed_kmh

    def target_speed(self, radius_m: float, speed_limit_kmh: Optional[float] = None) -> float:
        """
        Optimal speed, capped by the speed limit (or default speed) and
        floored at the minimum turn speed.
        """
        speed = optimal_speed(max_curve_speed(radius_m), self.style)
        cap = speed_limit_kmh or self.default_speed_kmh
        if cap is not None:
            speed = min(speed, cap)
        return max(speed, self.min_turn_speed_kmh)

    def advise(
        self,
        current_kmh: float,
        distance_to_start_m: float,
        radius_m: float,
        speed_limit_kmh: Optional[float] = None,
    ) -> CurveAdvice:
        max_speed = max_curve_speed(radius_m)
        target = self.target_speed(radius_m, speed_limit_kmh)
        return CurveAdvice(
            max_curve_speed_kmh=max_speed,
            optimal_speed_kmh=target,
            braking_distance_m=braking_distance(current_kmh, target),
            braking_point_m=braking_point(current_kmh, target, distance_to_start_m),
            required_deceleration_g=required_deceleration(current_kmh, target, distance_to_start_m),
        )
