"""
Turn prediction V2: detection window management and the sticky active turn.

Detection runs over a window around the vehicle and is only repeated when
the window goes stale. Between rebuilds the detected turns are kept and
only their distances move. When a rebuild happens while the vehicle is
inside a turn, that turn is carried over so the warning never blinks out.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from . import config
from .geometry import Point, distance
from .models import EMPTY_PREDICTION, Prediction, Turn, TurnDetectionVersion
from .route_tracker import is_off_route, segment_distance
from .strategy import (
    PredictionContext,
    TurnDetectionStrategy,
    build_prediction,
    locate_turn,
    rank_turns,
)
from .turn_detector_v2 import TurnDetectionV2Config, detect_turns_v2

logger = logging.getLogger('curveAdvisor.turns.v2')


def route_key(points: Sequence[Point]) -> str:
    """Cheap identity for a route: vertex count plus both end points."""
    if not points:
        return "empty"
    first, last = points[0], points[-1]
    return f"{len(points)}:{first[0]:.6f},{first[1]:.6f}:{last[0]:.6f},{last[1]:.6f}"


def overlap_ratio(a: Turn, b: Turn) -> float:
    """Along-route overlap of two turns relative to the shorter one."""
    overlap = min(a.end_distance_m, b.end_distance_m) - max(a.start_distance_m, b.start_distance_m)
    if overlap <= 0:
        return 0.0
    shortest = min(a.end_distance_m - a.start_distance_m, b.end_distance_m - b.start_distance_m)
    if shortest <= 0:
        return 1.0
    return overlap / shortest


def find_matching_turn(
    active: Turn,
    candidates: Sequence[Turn],
    min_overlap: float = config.V2_MATCH_OVERLAP_RATIO,
    max_apex_distance_m: float = config.V2_MATCH_APEX_DISTANCE_M,
) -> Optional[Turn]:
    """New turn describing the same bend as `active`, if any."""
    for turn in candidates:
        if overlap_ratio(active, turn) >= min_overlap:
            return turn
        if distance(active.apex_point, turn.apex_point) <= max_apex_distance_m:
            return turn
    return None


@dataclass
class WindowState:
    route_key: str
    base_distance_m: float
    window_end_m: float
    turns: List[Turn]


class PredictionStateManagerV2(TurnDetectionStrategy):
    """V2 strategy: windowed detection with sticky active turn."""

    version = TurnDetectionVersion.V2

    def __init__(self, cfg: Optional[TurnDetectionV2Config] = None):
        self.cfg = cfg or TurnDetectionV2Config()
        self.window: Optional[WindowState] = None
        self.sticky: Optional[Turn] = None
        self.current_prediction: Optional[Turn] = None
        self.rebuilds = 0

    def reset(self):
        self.window = None
        self.sticky = None
        self.current_prediction = None

    @property
    def all_turns(self) -> List[Turn]:
        return list(self.window.turns) if self.window else []

    def needs_rebuild(self, key: str, along_m: float) -> bool:
        if self.window is None or self.window.route_key != key:
            return True
        if along_m >= self.window.base_distance_m + self.cfg.rebuild_every_m:
            return True
        return along_m >= self.window.window_end_m - config.V2_REBUILD_EDGE_MARGIN_M

    def update(self, context: PredictionContext) -> Prediction:
        route = context.route
        settings = context.settings
        if len(route) < 3:
            self.reset()
            return EMPTY_PREDICTION

        deviation = segment_distance(context.state.position, route, context.match.index)
        if is_off_route(deviation, settings.max_route_deviation):
            self.current_prediction = None
            return EMPTY_PREDICTION

        key = route_key(route)
        along = context.along_m

        if self.needs_rebuild(key, along):
            if self.window is not None and self.window.route_key == key:
                active = self._active_turn(along)
            else:
                active = None
                self.sticky = None
            detected = detect_turns_v2(
                route,
                context.match.index,
                along,
                self.cfg,
                speed_limit_kmh=context.speed_limit_kmh,
                default_speed_kmh=settings.default_speed,
                min_turn_speed_kmh=settings.min_turn_speed,
                cum=context.cum,
            )
            self._carry_over(active, detected, along)
            self.window = WindowState(
                route_key=key,
                base_distance_m=along,
                window_end_m=min(context.cum[-1], along + self.cfg.look_ahead_m),
                turns=detected,
            )
            self.rebuilds += 1

        self.window.turns = self._visible_turns(along)
        ranked = rank_turns(self.window.turns, self.cfg.max_turns)
        prediction = build_prediction(ranked, context.state.speed_kmh)
        self.current_prediction = prediction.current
        return prediction

    def _active_turn(self, along_m: float) -> Optional[Turn]:
        for turn in self.window.turns:
            if locate_turn(turn, along_m).is_inside:
                return turn
        return None

    def _carry_over(self, active: Optional[Turn], detected: List[Turn], along_m: float):
        """Keep the turn the vehicle is in alive across a rebuild."""
        if active is None:
            return
        match = find_matching_turn(active, detected)
        if match is not None:
            self.sticky = None
            return
        if along_m <= active.end_distance_m:
            logger.debug(
                "Active turn at %.0fm not redetected, keeping it until %.0fm",
                active.start_distance_m, active.end_distance_m,
            )
            self.sticky = active

    def _visible_turns(self, along_m: float) -> List[Turn]:
        turns = [locate_turn(t, along_m) for t in self.window.turns]

        if self.sticky is not None:
            if along_m > self.sticky.end_distance_m:
                self.sticky = None
            elif all(t.start_index != self.sticky.start_index for t in turns):
                turns.append(locate_turn(self.sticky, along_m))

        # Keep turns the vehicle has not completely passed, within 10 km
        turns = [
            t for t in turns
            if t.end_distance_m > along_m - config.V2_BEHIND_MARGIN_M
            and t.start_distance_m - along_m < 10000
        ]
        turns.sort(key=lambda t: (t.distance_to_start_m, t.start_distance_m))
        return turns
