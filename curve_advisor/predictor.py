"""
Road predictor - the ~1Hz prediction cycle.

Each cycle:
1. Apply any finished route recalculation
2. Read the latest vehicle state and a settings snapshot
3. Refresh road info (speed limit, on-road)
4. Check for route deviation and request a new route if needed
5. Run the active turn detection strategy and publish the prediction
"""

import logging
import time
from typing import Callable, Optional

from . import config
from .deviation import RouteDeviationManager
from .estimator import VehicleStateEstimator
from .events import Channel
from .models import EMPTY_PREDICTION, Prediction, TurnDetectionVersion
from .prediction_v2 import PredictionStateManagerV2
from .road_info import RoadInfoManager
from .route_planner import RoutePlanner
from .route_tracker import RouteTracker
from .settings import SettingsManager
from .strategy import PredictionContext, TurnDetectionStrategy
from .turn_manager import PredictionStateManager

logger = logging.getLogger('curveAdvisor.predictor')


def create_strategy(version: TurnDetectionVersion) -> TurnDetectionStrategy:
    if version == TurnDetectionVersion.V2:
        return PredictionStateManagerV2()
    return PredictionStateManager()


class RoadPredictor:
    """
    Runs the prediction cycle and publishes on prediction_channel.

    The cycle never raises: any failure is logged and an empty prediction
    is published instead.
    """

    def __init__(
        self,
        estimator: VehicleStateEstimator,
        route_planner: RoutePlanner,
        settings_manager: SettingsManager,
        road_info: Optional[RoadInfoManager] = None,
        route_tracker: Optional[RouteTracker] = None,
        deviation_manager: Optional[RouteDeviationManager] = None,
        strategy_factory: Callable[[TurnDetectionVersion], TurnDetectionStrategy] = create_strategy,
    ):
        self.estimator = estimator
        self.route_planner = route_planner
        self.settings_manager = settings_manager
        self.road_info = road_info
        self.route_tracker = route_tracker or RouteTracker()
        self.deviation_manager = deviation_manager or RouteDeviationManager(self.route_tracker)
        self._strategy_factory = strategy_factory
        self.strategy: Optional[TurnDetectionStrategy] = None

        self.prediction_channel: Channel[Prediction] = Channel("prediction")
        self.last_prediction: Prediction = EMPTY_PREDICTION
        self._route_generation = -1

        # Statistics
        self.cycles = 0
        self.errors = 0
        self.recalculations = 0

    def _select_strategy(self, version: TurnDetectionVersion) -> TurnDetectionStrategy:
        if self.strategy is None or self.strategy.version != version:
            logger.info("Turn detection %s", version.value)
            self.strategy = self._strategy_factory(version)
        return self.strategy

    def _publish(self, prediction: Prediction) -> Prediction:
        self.last_prediction = prediction
        self.prediction_channel.publish(prediction)
        return prediction

    def update(self, now: Optional[float] = None) -> Prediction:
        """Run one prediction cycle."""
        now = time.monotonic() if now is None else now
        self.cycles += 1
        try:
            return self._publish(self._cycle(now))
        except Exception as e:
            self.errors += 1
            logger.error("Prediction cycle failed: %s", e, exc_info=True)
            return self._publish(EMPTY_PREDICTION)

    def _cycle(self, now: float) -> Prediction:
        self.route_planner.apply_pending()

        state = self.estimator.get_state()
        settings = self.settings_manager.snapshot()
        route_state = self.route_planner.state
        route = route_state.polyline

        if state is None or len(route) < config.MIN_ROUTE_POINTS:
            return EMPTY_PREDICTION

        strategy = self._select_strategy(settings.turn_detection_version)
        if route_state.generation != self._route_generation:
            self._route_generation = route_state.generation
            strategy.reset()

        position = state.position
        speed_limit = None
        on_road = True
        if self.road_info is not None:
            info = self.road_info.refresh(position, now)
            speed_limit = info.speed_limit_kmh
            on_road = info.is_on_road

        if settings.enable_auto_recalculate and self.deviation_manager.should_recalculate(
            position, route, route_state.destination, settings, on_road, state.speed, now,
        ):
            self.route_planner.request_route(position, route_state.destination)
            self.deviation_manager.mark_recalculation(now)
            self.recalculations += 1
            return EMPTY_PREDICTION

        match = self.route_tracker.find_closest_point_on_route(position, route)
        context = PredictionContext(
            state=state,
            route=route,
            cum=self.route_tracker.cumulative(route),
            match=match,
            along_m=self.route_tracker.distance_along_route(position, route, match),
            settings=settings,
            speed_limit_kmh=speed_limit,
        )
        return strategy.update(context)
