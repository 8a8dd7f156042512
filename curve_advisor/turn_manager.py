"""
Turn prediction V1: rolling list of curves found by the discrete analyzer.

Each cycle the tracked turns have their distances recomputed, turns the
vehicle has left behind are dropped, and the analyzer continues from the end
of the furthest known turn to fill the look-ahead.
"""

import logging
import math
from typing import List, Optional, Sequence

from . import config
from .curve_analyzer import CurveAnalyzer, EnhancedPoint, SharpTurn, enhance_route, find_sharpest_turn
from .geometry import Point
from .models import CurveGeometry, Prediction, Turn, TurnDetectionVersion
from .speed_advisory import CurveSpeedCalculator, angle_based_speed
from .strategy import (
    PredictionContext,
    TurnDetectionStrategy,
    build_prediction,
    locate_turn,
    rank_turns,
)
from .turn_classifier import classify_turn

logger = logging.getLogger('curveAdvisor.turns.v1')


class TurnPredictionManager:
    """Keeps up to MAX_TRACKED_TURNS turns ahead of the vehicle."""

    def __init__(
        self,
        analyzer: Optional[CurveAnalyzer] = None,
        max_new_turns: int = config.V1_MAX_NEW_TURNS,
        max_turns: int = config.MAX_TRACKED_TURNS,
    ):
        self.analyzer = analyzer or CurveAnalyzer()
        self.max_new_turns = max_new_turns
        self.max_turns = max_turns
        self.turns: List[Turn] = []
        self._route: Optional[Sequence[Point]] = None
        self._enhanced: List[EnhancedPoint] = []
        # Sharpest raw bearing change within the horizon, refreshed every update
        self.sharpest: Optional[SharpTurn] = None

    def reset(self):
        self.turns = []
        self.sharpest = None
        self._route = None
        self._enhanced = []

    def _set_route(self, route: Sequence[Point]):
        if route is self._route:
            return
        if self._route is not None:
            logger.debug("Route changed, dropping %d tracked turns", len(self.turns))
        self._route = route
        self._enhanced = enhance_route(route)
        self.turns = []

    def update_turn_distances(self, along_m: float):
        self.turns = [locate_turn(t, along_m) for t in self.turns]

    def remove_past_turns(self, current_index: int, along_m: float):
        self.turns = [
            t for t in self.turns
            if t.end_index >= current_index and t.end_distance_m >= along_m
        ]

    def find_new_turns(self, context: PredictionContext) -> int:
        """
        Scan ahead of the last known turn.

        Returns:
            Number of turns added
        """
        settings = context.settings
        horizon = min(settings.prediction_distance, config.V1_SEARCH_HORIZON_M)
        calculator = CurveSpeedCalculator(
            settings.driving_style, settings.min_turn_speed, settings.default_speed,
        )

        if self.turns:
            next_index = max(t.end_index for t in self.turns) + 1
        else:
            next_index = context.match.index
        next_index = max(next_index, context.match.index)

        added = 0
        while added < self.max_new_turns:
            geometry = self.analyzer.analyze(
                self._enhanced, next_index, settings.min_turn_angle, context.cum,
            )
            if geometry is None:
                break
            if geometry.start_distance_m - context.along_m > horizon:
                break

            turn = self._make_turn(geometry, context, calculator)
            self.turns.append(turn)
            added += 1
            logger.debug(
                "New turn at index %d: %.0f°, R=%.0fm, %s, %.0fm ahead",
                turn.start_index, turn.signed_angle_deg, turn.radius_m,
                turn.classification.value, turn.distance_to_start_m,
            )
            next_index = geometry.end_index + 1
        return added

    @staticmethod
    def _make_turn(
        geometry: CurveGeometry,
        context: PredictionContext,
        calculator: CurveSpeedCalculator,
    ) -> Turn:
        settings = context.settings
        if math.isinf(geometry.radius_m):
            optimal = angle_based_speed(
                geometry.signed_angle_deg, context.speed_limit_kmh,
                settings.default_speed, settings.min_turn_speed, settings.max_turn_angle,
            )
        else:
            optimal = calculator.target_speed(geometry.radius_m, context.speed_limit_kmh)

        turn = Turn(
            start_point=geometry.start_point,
            start_index=geometry.start_index,
            end_point=geometry.end_point,
            end_index=geometry.end_index,
            apex_point=geometry.apex_point,
            apex_index=geometry.apex_index,
            length_m=geometry.length_m,
            radius_m=geometry.radius_m,
            signed_angle_deg=geometry.signed_angle_deg,
            classification=classify_turn(
                geometry.signed_angle_deg, geometry.length_m, geometry.radius_m,
            ),
            start_distance_m=geometry.start_distance_m,
            end_distance_m=geometry.end_distance_m,
            distance_to_start_m=0.0,
            speed_limit_kmh=context.speed_limit_kmh,
            optimal_speed_kmh=optimal,
        )
        return locate_turn(turn, context.along_m)

    def find_sharpest(self, context: PredictionContext) -> Optional[SharpTurn]:
        settings = context.settings
        horizon = min(settings.prediction_distance, config.V1_SEARCH_HORIZON_M)
        sharpest = find_sharpest_turn(
            context.route, context.match.index, horizon, settings.min_turn_angle,
        )
        if sharpest is not None:
            logger.debug(
                "Sharpest bend %.0f° at index %d, %.0fm ahead",
                sharpest.angle, sharpest.index, sharpest.distance,
            )
        return sharpest

    def update(self, context: PredictionContext) -> List[Turn]:
        self._set_route(context.route)
        self.update_turn_distances(context.along_m)
        self.remove_past_turns(context.match.index, context.along_m)
        self.find_new_turns(context)
        self.sharpest = self.find_sharpest(context)
        self.turns = rank_turns(self.turns, self.max_turns)
        return list(self.turns)

    def get_next_turn(self) -> Optional[Turn]:
        return self.turns[0] if self.turns else None


class PredictionStateManager(TurnDetectionStrategy):
    """V1 strategy: turn list plus the current prediction."""

    version = TurnDetectionVersion.V1

    def __init__(self, turn_manager: Optional[TurnPredictionManager] = None):
        self.turn_manager = turn_manager or TurnPredictionManager()
        self.current_prediction: Optional[Turn] = None

    def update(self, context: PredictionContext) -> Prediction:
        turns = self.turn_manager.update(context)
        prediction = build_prediction(turns, context.state.speed_kmh)
        self.current_prediction = prediction.current
        return prediction

    def reset(self):
        self.turn_manager.reset()
        self.current_prediction = None
