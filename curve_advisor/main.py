"""
Curve advisor application.

Wires the estimator, route planner, road info and predictor together and
drives them from one scheduler loop:

- estimator tick at ESTIMATOR_OUTPUT_HZ (10Hz)
- position fixes fed in as the source produces them
- prediction cycle every PREDICTION_INTERVAL_S (1s)

Usage:
    python -m curve_advisor --gpx route.gpx [--detector v2] [--noise 3]
"""

import argparse
import logging
import sys
import time
from typing import Callable, List, Optional, Protocol, Sequence

from . import config
from .errors import RoutingError
from .estimator import VehicleStateEstimator
from .models import DrivingStyle, GpsFix, Prediction, Turn, TurnDetectionVersion
from .predictor import RoadPredictor
from .road_info import RoadInfoManager, RoadInfoProvider, StaticRoadInfoProvider
from .route_planner import RoutePlanner, RoutingService
from .settings import SettingsManager
from .simulator import RouteSimulator, load_gpx_route

logger = logging.getLogger('curveAdvisor')


class FixSource(Protocol):
    """Anything that produces position fixes: a receiver or a simulator."""

    @property
    def finished(self) -> bool:
        ...

    def step(self, dt: float) -> Optional[GpsFix]:
        ...


def describe_turn(turn: Turn) -> str:
    """One-line driver-facing summary of a turn."""
    where = (
        f"inside, exit in {turn.distance_to_exit_m:.0f}m"
        if turn.is_inside else f"in {turn.distance_to_start_m:.0f}m"
    )
    text = (
        f"{turn.classification.value} {turn.direction.value} "
        f"{abs(turn.signed_angle_deg):.0f}° {where}"
    )
    if turn.optimal_speed_kmh is not None:
        text += f", {turn.optimal_speed_kmh:.0f} km/h"
    if turn.required_deceleration_g is not None:
        text += f" (brake {turn.required_deceleration_g:.2f} g)"
    return text


class CurveAdvisor:
    """
    Composition root.

    Owns exactly one estimator and injects it, with the route planner and
    road info, into the predictor. Nothing here is a singleton.
    """

    def __init__(
        self,
        settings_manager: Optional[SettingsManager] = None,
        fix_source: Optional[FixSource] = None,
        routing_service: Optional[RoutingService] = None,
        road_info_providers: Sequence[RoadInfoProvider] = (),
        gps_rate_hz: float = 1.0,
        realtime: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings_manager = settings_manager or SettingsManager()
        self.fix_source = fix_source
        self.gps_rate_hz = gps_rate_hz
        self.realtime = realtime
        self._sleep = sleep

        self.estimator = VehicleStateEstimator()
        self.route_planner = RoutePlanner(routing_service)
        self.road_info = RoadInfoManager(road_info_providers) if road_info_providers else None
        self.predictor = RoadPredictor(
            self.estimator,
            self.route_planner,
            self.settings_manager,
            road_info=self.road_info,
        )

        self.predictions: List[Prediction] = []
        self.running = False
        self.predictor.prediction_channel.subscribe(self._on_prediction)
        self.route_planner.notices.subscribe(self._on_route_notice)

    def _on_prediction(self, prediction: Prediction):
        self.predictions.append(prediction)
        if prediction.current is not None:
            logger.info("Next turn: %s", describe_turn(prediction.current))

    @staticmethod
    def _on_route_notice(error: RoutingError):
        logger.warning("Route unavailable: %s", error)

    def set_route(self, points: Sequence) -> None:
        self.route_planner.set_route(points)

    def run(self, max_duration_s: Optional[float] = None) -> int:
        """
        Scheduler loop.

        Runs until the fix source is exhausted, stop() is called or
        max_duration_s of loop time has passed.

        Returns:
            Number of prediction cycles run
        """
        tick_dt = 1.0 / config.ESTIMATOR_OUTPUT_HZ
        ticks_per_fix = max(1, int(round(config.ESTIMATOR_OUTPUT_HZ / self.gps_rate_hz)))
        ticks_per_prediction = max(1, int(round(config.PREDICTION_INTERVAL_S / tick_dt)))
        fix_dt = ticks_per_fix * tick_dt

        self.running = True
        tick = 0
        cycles = 0
        logger.info("Curve advisor running (%s fixes at %.1fHz)",
                    "simulated" if self.fix_source else "no", self.gps_rate_hz)

        try:
            while self.running:
                now = tick * tick_dt
                if max_duration_s is not None and now > max_duration_s:
                    break

                if self.fix_source is not None and tick % ticks_per_fix == 0:
                    if self.fix_source.finished:
                        break
                    # The first fix is the starting position; later ones cover one fix interval
                    fix = self.fix_source.step(fix_dt if tick else 0.0)
                    if fix is not None:
                        self.estimator.on_fix(fix)

                self.estimator.tick(now)

                if tick % ticks_per_prediction == 0:
                    self.predictor.update(now)
                    cycles += 1

                tick += 1
                if self.realtime:
                    self._sleep(tick_dt)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.running = False

        logger.info(
            "Stopped after %d prediction cycles (%d hard resets, %d errors)",
            cycles, self.estimator.hard_resets, self.predictor.errors,
        )
        return cycles

    def stop(self):
        self.running = False


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Curve advisor - recommended speeds for the road ahead"
    )
    parser.add_argument("--gpx", required=True, help="GPX file with the route to replay")
    parser.add_argument("--speed", type=float, default=50.0,
                        help="Replay speed in km/h (default: 50)")
    parser.add_argument("--noise", type=float, default=3.0,
                        help="GPS position noise in metres (default: 3)")
    parser.add_argument("--seed", type=int, default=None, help="Noise random seed")
    parser.add_argument("--gps-rate", type=float, default=1.0,
                        help="Fix rate in Hz (default: 1)")
    parser.add_argument("--settings", default=None, help="JSON settings file")
    parser.add_argument("--detector", choices=[v.value for v in TurnDetectionVersion],
                        default=None, help="Turn detection version")
    parser.add_argument("--style", choices=[s.value for s in DrivingStyle],
                        default=None, help="Driving style")
    parser.add_argument("--speed-limit", type=float, default=None,
                        help="Fixed speed limit in km/h for the whole route")
    parser.add_argument("--realtime", action="store_true",
                        help="Run at wall-clock speed instead of as fast as possible")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    points = load_gpx_route(args.gpx)
    if len(points) < config.MIN_ROUTE_POINTS:
        logger.error("No usable route in %s", args.gpx)
        return 1

    settings_manager = SettingsManager(args.settings)
    changes = {}
    if args.detector:
        changes["turn_detection_version"] = TurnDetectionVersion(args.detector)
    if args.style:
        changes["driving_style"] = DrivingStyle(args.style)
    if changes:
        settings_manager.update(**changes)

    simulator = RouteSimulator(
        points,
        speed_mps=args.speed / 3.6,
        noise_m=args.noise,
        seed=args.seed,
        accuracy_m=args.noise if args.noise > 0 else None,
    )
    advisor = CurveAdvisor(
        settings_manager,
        fix_source=simulator,
        road_info_providers=[StaticRoadInfoProvider(args.speed_limit)],
        gps_rate_hz=args.gps_rate,
        realtime=args.realtime,
    )
    advisor.set_route(points)
    advisor.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
