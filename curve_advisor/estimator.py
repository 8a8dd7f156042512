"""
Vehicle state estimator.

Implements a constant velocity Kalman filter that turns sparse, noisy GPS
fixes into a smooth 10Hz vehicle state for the prediction pipeline.
"""

import logging
import math
from typing import Optional

import numpy as np

from . import config
from .errors import SensorFixInvalid
from .events import Channel
from .geometry import LocalProjection
from .models import GpsFix, VehicleState

logger = logging.getLogger('curveAdvisor.estimator')

# Measurement matrix: we only measure position, not velocity
H = np.array([
    [1.0, 0.0, 0.0, 0.0],
    [0.0, 1.0, 0.0, 0.0],
])


def velocity_to_heading(vx: float, vy: float) -> float:
    """Compass heading of an East/North velocity (0=North, 90=East)."""
    return (math.degrees(math.atan2(vx, vy)) + 360.0) % 360.0


def heading_to_velocity(heading: float, speed: float) -> np.ndarray:
    """East/North velocity for a compass heading and speed."""
    rad = math.radians(heading)
    return np.array([math.sin(rad) * speed, math.cos(rad) * speed])


class VehicleStateEstimator:
    """
    Kalman filter smoother for irregular position fixes.

    Uses constant velocity model with 4D state vector in a local planar
    projection (metres):
    [x_east, y_north, velocity_east, velocity_north]

    Two entry points drive the filter:

    - on_fix(): called whenever a raw fix arrives (1Hz GPS, simulated
      playback, ...). Runs predict + correct, or a hard reset when the fix
      is further than HARD_RESET_THRESHOLD_M from the prediction.
    - tick(): called at ESTIMATOR_OUTPUT_HZ by the scheduler. Runs
      predict only, never a correction, and publishes a VehicleState on
      state_channel.

    The projection origin is rebased onto the current estimate whenever the
    state drifts more than RECENTER_ORIGIN_THRESHOLD_M from it, keeping the
    planar approximation error bounded on long drives.
    """

    def __init__(
        self,
        sigma_accel: float = config.KALMAN_SIGMA_ACCEL_MPS2,
        sigma_pos: float = config.KALMAN_SIGMA_POS_M,
        hard_reset_threshold: float = config.HARD_RESET_THRESHOLD_M,
        min_heading_speed: float = config.MIN_HEADING_SPEED_MPS,
    ):
        """
        Initialise the estimator.

        Args:
            sigma_accel: Process noise as acceleration std-dev in m/s²
            sigma_pos: Default measurement noise in metres, used for fixes
                that do not report an accuracy
            hard_reset_threshold: Innovation distance in metres above which
                the filter snaps to the measurement
            min_heading_speed: Speed in m/s below which heading is held
        """
        self.sigma_accel = sigma_accel
        self.sigma_pos = sigma_pos
        self.hard_reset_threshold = hard_reset_threshold
        self.min_heading_speed = min_heading_speed

        self.state_channel: Channel[VehicleState] = Channel("vehicle_state")

        self.state: Optional[np.ndarray] = None
        self.covariance: Optional[np.ndarray] = None
        self.projection: Optional[LocalProjection] = None

        self._filter_time: Optional[float] = None
        self._heading = 0.0
        self._acceleration = 0.0
        self._last_speed: Optional[float] = None
        self._last_speed_time: Optional[float] = None
        self._last_published: Optional[VehicleState] = None

        self.hard_resets = 0
        self.rebases = 0

    def reset(self):
        """Forget all state. The next fix re-initialises the filter."""
        self.state = None
        self.covariance = None
        self.projection = None
        self._filter_time = None
        self._acceleration = 0.0
        self._last_speed = None
        self._last_speed_time = None
        self._last_published = None

    @property
    def initialised(self) -> bool:
        return self.state is not None

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    def on_fix(self, fix: GpsFix) -> bool:
        """
        Feed one raw fix into the filter.

        Args:
            fix: Position fix. Speed and heading are only used to seed the
                velocity on initialisation or hard reset.

        Returns:
            True if the fix was used, False if it was dropped as invalid
        """
        try:
            self._validate(fix)
        except SensorFixInvalid as e:
            logger.warning("Dropping fix: %s", e)
            return False

        if self.state is None:
            self._initialise(fix)
            return True

        mx, my = self.projection.to_local(fix.lat, fix.lon)

        # Fixes can be stamped slightly before the last output tick
        dt = fix.timestamp - self._filter_time
        if dt > 0:
            self._predict(dt)
            self._filter_time = fix.timestamp

        innovation = math.hypot(mx - self.state[0], my - self.state[1])
        if innovation > self.hard_reset_threshold:
            self._hard_reset(mx, my, fix, innovation)
        else:
            sigma = fix.accuracy if fix.accuracy and fix.accuracy > 0 else self.sigma_pos
            self._update_measurement(mx, my, sigma)

        self._rebase_if_needed()
        return True

    @staticmethod
    def _validate(fix: GpsFix):
        if not fix.is_valid():
            raise SensorFixInvalid(
                f"non-finite fix lat={fix.lat!r} lon={fix.lon!r} t={fix.timestamp!r}"
            )
        if abs(fix.lat) > 90 or abs(fix.lon) > 180:
            raise SensorFixInvalid(f"fix out of range lat={fix.lat} lon={fix.lon}")

    def _seed_velocity(self, fix: GpsFix) -> np.ndarray:
        speed = fix.speed if fix.speed is not None and math.isfinite(fix.speed) else 0.0
        if speed > self.min_heading_speed and fix.heading is not None and math.isfinite(fix.heading):
            self._heading = fix.heading % 360.0
            return heading_to_velocity(fix.heading, speed)
        return np.zeros(2)

    def _initialise(self, fix: GpsFix):
        """Initialise filter with first measurement."""
        self.projection = LocalProjection(fix.position)
        velocity = self._seed_velocity(fix)
        self.state = np.array([0.0, 0.0, velocity[0], velocity[1]])
        self.covariance = np.diag([
            config.KALMAN_INITIAL_POS_VAR,
            config.KALMAN_INITIAL_POS_VAR,
            config.KALMAN_INITIAL_VEL_VAR,
            config.KALMAN_INITIAL_VEL_VAR,
        ])
        self._filter_time = fix.timestamp
        logger.info("Estimator initialised at %.6f, %.6f", fix.lat, fix.lon)

    def _hard_reset(self, mx: float, my: float, fix: GpsFix, innovation: float):
        """Snap to the measurement after a divergent fix."""
        velocity = self._seed_velocity(fix)
        self.state = np.array([mx, my, velocity[0], velocity[1]])
        self.covariance = np.diag([
            config.KALMAN_RESET_POS_VAR,
            config.KALMAN_RESET_POS_VAR,
            config.KALMAN_RESET_VEL_VAR,
            config.KALMAN_RESET_VEL_VAR,
        ])
        self.hard_resets += 1
        logger.debug("Hard reset: innovation %.1fm > %.1fm", innovation, self.hard_reset_threshold)

    # ------------------------------------------------------------------
    # Kalman steps
    # ------------------------------------------------------------------

    def _predict(self, dt: float):
        """
        Prediction step: advance the state with the motion model.

        position(t+dt) = position(t) + velocity(t) * dt
        velocity(t+dt) = velocity(t)
        """
        F = np.array([
            [1.0, 0.0, dt, 0.0],
            [0.0, 1.0, 0.0, dt],
            [0.0, 0.0, 1.0, 0.0],
            [0.0, 0.0, 0.0, 1.0],
        ])

        sa2 = self.sigma_accel ** 2
        q11 = dt ** 4 / 4 * sa2
        q13 = dt ** 3 / 2 * sa2
        q33 = dt ** 2 * sa2
        Q = np.array([
            [q11, 0.0, q13, 0.0],
            [0.0, q11, 0.0, q13],
            [q13, 0.0, q33, 0.0],
            [0.0, q13, 0.0, q33],
        ])

        self.state = F @ self.state
        self.covariance = F @ self.covariance @ F.T + Q

    def _update_measurement(self, mx: float, my: float, sigma_pos: float):
        """Correction step with a 2D position measurement in metres."""
        R = np.diag([sigma_pos ** 2, sigma_pos ** 2])

        innovation = np.array([mx, my]) - H @ self.state
        S = H @ self.covariance @ H.T + R
        if abs(np.linalg.det(S)) < 1e-9:
            logger.debug("Singular innovation covariance, skipping correction")
            return

        K = self.covariance @ H.T @ np.linalg.inv(S)
        self.state = self.state + K @ innovation
        self.covariance = (np.eye(4) - K @ H) @ self.covariance

    def _rebase_if_needed(self):
        if math.hypot(self.state[0], self.state[1]) <= config.RECENTER_ORIGIN_THRESHOLD_M:
            return
        new_origin = self.projection.to_geodetic(self.state[0], self.state[1])
        self.projection = LocalProjection(new_origin)
        self.state[0] = 0.0
        self.state[1] = 0.0
        self.rebases += 1
        logger.info("Projection origin rebased to %.6f, %.6f", *new_origin)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def tick(self, now: float) -> Optional[VehicleState]:
        """
        Advance the filter to `now` (predict only) and publish the state.

        Returns:
            The published VehicleState, or None before the first fix
        """
        if self.state is None:
            return None

        dt = min(max(now - self._filter_time, config.TICK_MIN_DT_S), config.TICK_MAX_DT_S)
        self._predict(dt)
        self._filter_time = now
        self._rebase_if_needed()

        vehicle_state = self._snapshot(now)
        self._last_published = vehicle_state
        self.state_channel.publish(vehicle_state)
        return vehicle_state

    def _snapshot(self, now: float) -> VehicleState:
        lat, lon = self.projection.to_geodetic(self.state[0], self.state[1])
        vx, vy = float(self.state[2]), float(self.state[3])
        speed = math.hypot(vx, vy)

        if speed >= self.min_heading_speed:
            self._heading = velocity_to_heading(vx, vy)

        if self._last_speed is not None:
            dts = max(config.TICK_MIN_DT_S, now - self._last_speed_time)
            accel = (speed - self._last_speed) / dts
            self._acceleration = (
                config.ACCEL_EMA_KEEP * self._acceleration
                + (1 - config.ACCEL_EMA_KEEP) * accel
            )
        self._last_speed = speed
        self._last_speed_time = now

        return VehicleState(
            lat=lat,
            lon=lon,
            speed=speed,
            heading=self._heading,
            acceleration=self._acceleration,
            timestamp=now,
        )

    def get_state(self) -> Optional[VehicleState]:
        """Last published state, or None if nothing has been published."""
        return self._last_published

    def position_uncertainty(self) -> float:
        """RMS position uncertainty in metres."""
        if self.covariance is None:
            return math.inf
        return float(np.sqrt(self.covariance[0, 0] + self.covariance[1, 1]))
