"""
Turn detection strategies.

The road predictor holds exactly one strategy object, chosen from the
turn_detection_version setting and replaced only when that setting changes.
Each strategy turns a PredictionContext into a Prediction.
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from . import config
from .geometry import Point
from .models import Prediction, Turn, TurnDetectionVersion, VehicleState
from .route_tracker import RouteMatch
from .settings import Settings
from .speed_advisory import braking_point, required_deceleration


@dataclass(frozen=True)
class PredictionContext:
    """
    Everything one prediction cycle knows about the vehicle and route.

    Attributes:
        state: Latest vehicle state snapshot.
        route: Current route polyline.
        cum: Cumulative vertex distances of the route.
        match: Nearest route vertex to the vehicle.
        along_m: Vehicle's along-route distance in metres.
        settings: Settings snapshot for this cycle.
        speed_limit_kmh: Speed limit at the vehicle, if known.
    """
    state: VehicleState
    route: Tuple[Point, ...]
    cum: Sequence[float]
    match: RouteMatch
    along_m: float
    settings: Settings
    speed_limit_kmh: Optional[float] = None


def locate_turn(turn: Turn, along_m: float) -> Turn:
    """Recompute the vehicle-relative distances of a turn."""
    if turn.start_distance_m <= along_m <= turn.end_distance_m:
        return replace(
            turn,
            distance_to_start_m=0.0,
            distance_to_exit_m=turn.end_distance_m - along_m,
        )
    return replace(
        turn,
        distance_to_start_m=max(0.0, turn.start_distance_m - along_m),
        distance_to_exit_m=None,
    )


def rank_turns(turns: Sequence[Turn], limit: int = config.MAX_TRACKED_TURNS) -> List[Turn]:
    """Drop duplicate start indices, sort by distance and cap the list."""
    unique: Dict[int, Turn] = {}
    for turn in turns:
        unique.setdefault(turn.start_index, turn)
    ordered = sorted(unique.values(), key=lambda t: (t.distance_to_start_m, t.start_distance_m))
    return ordered[:limit]


def _advise(turn: Turn, speed_kmh: float) -> Turn:
    if turn.optimal_speed_kmh is None:
        return replace(turn, required_deceleration_g=None, braking_point_m=None)
    return replace(
        turn,
        required_deceleration_g=required_deceleration(
            speed_kmh, turn.optimal_speed_kmh, turn.distance_to_start_m,
        ),
        braking_point_m=braking_point(
            speed_kmh, turn.optimal_speed_kmh, turn.distance_to_start_m,
        ),
    )


def build_prediction(turns: Sequence[Turn], speed_kmh: float) -> Prediction:
    """
    Attach the braking figures and pick the current prediction.

    Every turn gets the deceleration needed to reach its optimal speed at
    its start and the point where braking should begin; the nearest turn is
    the current prediction.
    """
    advised = tuple(_advise(turn, speed_kmh) for turn in turns)
    return Prediction(current=advised[0] if advised else None, turns=advised)


class TurnDetectionStrategy:
    """Base class for the V1 and V2 prediction managers."""

    version: TurnDetectionVersion

    def update(self, context: PredictionContext) -> Prediction:
        raise NotImplementedError

    def reset(self):
        """Forget all tracked turns."""
        raise NotImplementedError
