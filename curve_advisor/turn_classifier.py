"""Classify turns from their heading change, length and radius."""

from .models import TurnClassification

# (minimum |heading delta| in degrees, label) checked top to bottom
UTURN_MIN_DEG = 165.0
HAIRPIN_MIN_DEG = 115.0
HAIRPIN_MAX_RADIUS_M = 35.0
INTERSECTION_MIN_DEG = 70.0
INTERSECTION_MAX_DEG = 110.0
INTERSECTION_MAX_LENGTH_M = 90.0
WIDE_MIN_DEG = 35.0
WIDE_MIN_RADIUS_M = 120.0


def classify_turn(delta_heading_deg: float, length_m: float, radius_m: float) -> TurnClassification:
    """
    Classify a turn.

    Works on the total heading change rather than radius alone, which keeps
    city intersections (≈90°, short, radius often meaningless) separate from
    open-road bends.

    Args:
        delta_heading_deg: Total heading change (sign ignored)
        length_m: Length of the turn along the route
        radius_m: Estimated radius, math.inf for straights

    Returns:
        TurnClassification
    """
    delta = abs(delta_heading_deg)

    if delta >= UTURN_MIN_DEG:
        return TurnClassification.UTURN
    if delta >= HAIRPIN_MIN_DEG:
        if 0 < radius_m < HAIRPIN_MAX_RADIUS_M:
            return TurnClassification.HAIRPIN
        return TurnClassification.TIGHT
    if INTERSECTION_MIN_DEG <= delta <= INTERSECTION_MAX_DEG:
        if length_m <= INTERSECTION_MAX_LENGTH_M:
            return TurnClassification.INTERSECTION
        return TurnClassification.TIGHT
    if delta >= WIDE_MIN_DEG:
        if radius_m >= WIDE_MIN_RADIUS_M:
            return TurnClassification.WIDE
        return TurnClassification.TIGHT
    return TurnClassification.CURVE
