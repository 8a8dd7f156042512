"""
Unit tests for the vehicle state estimator (constant velocity Kalman filter).
"""

import pytest
import math

from curve_advisor.estimator import (
    VehicleStateEstimator,
    heading_to_velocity,
    velocity_to_heading,
)
from curve_advisor.geometry import haversine_distance, point_along_bearing
from curve_advisor.models import GpsFix
from curve_advisor.simulator import RouteSimulator
from fixtures.route_data import ORIGIN, straight_route


def heading_error(a, b):
    diff = abs(a - b) % 360
    return min(diff, 360 - diff)


def drive(estimator, simulator, seconds, tick_hz=10, fix_hz=1):
    """Feed simulator fixes at fix_hz and tick at tick_hz; returns states."""
    states = []
    ticks_per_fix = tick_hz // fix_hz
    estimator.on_fix(simulator.step(0.0))
    for k in range(1, seconds * tick_hz + 1):
        now = k / tick_hz
        if k % ticks_per_fix == 0:
            fix = simulator.step(1.0 / fix_hz)
            if fix is not None:
                estimator.on_fix(fix)
        states.append(estimator.tick(now))
    return states


class TestHeadingConversion:

    @pytest.mark.unit
    def test_north_and_east(self):
        """Test compass heading from east/north velocity components."""
        assert velocity_to_heading(0.0, 10.0) == pytest.approx(0.0)
        assert velocity_to_heading(10.0, 0.0) == pytest.approx(90.0)
        assert velocity_to_heading(-10.0, 0.0) == pytest.approx(270.0)

    @pytest.mark.unit
    def test_round_trip(self):
        """Test that heading and speed survive conversion to velocity and back."""
        vx, vy = heading_to_velocity(135.0, 12.0)
        assert velocity_to_heading(vx, vy) == pytest.approx(135.0)
        assert math.hypot(vx, vy) == pytest.approx(12.0)


class TestEstimatorLifecycle:

    @pytest.mark.unit
    def test_tick_before_first_fix_publishes_nothing(self):
        """Test that ticking an uninitialised filter publishes no state."""
        estimator = VehicleStateEstimator()
        received = []
        estimator.state_channel.subscribe(received.append)

        assert estimator.tick(1.0) is None
        assert received == []
        assert estimator.get_state() is None

    @pytest.mark.unit
    def test_first_fix_initialises_at_measurement(self):
        """Test that the first fix places the filter at the measurement."""
        estimator = VehicleStateEstimator()
        assert estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0))
        state = estimator.tick(0.1)

        assert estimator.initialised
        assert haversine_distance(state.lat, state.lon, *ORIGIN) < 0.01
        assert state.speed == pytest.approx(0.0)

    @pytest.mark.unit
    def test_first_fix_seeds_velocity_from_reported_heading(self):
        """Test that reported speed and heading seed the initial velocity."""
        estimator = VehicleStateEstimator()
        estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0, speed=10.0, heading=90.0))
        state = estimator.tick(0.1)
        assert state.speed == pytest.approx(10.0, rel=0.01)
        assert state.heading == pytest.approx(90.0, abs=0.5)

    @pytest.mark.unit
    def test_tick_publishes_to_subscribers(self):
        """Test that each tick publishes the state snapshot."""
        estimator = VehicleStateEstimator()
        received = []
        estimator.state_channel.subscribe(received.append)
        estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0))

        state = estimator.tick(0.1)
        assert received == [state]
        assert estimator.get_state() is state

    @pytest.mark.unit
    def test_reset_forgets_state(self):
        """Test that reset returns the filter to uninitialised."""
        estimator = VehicleStateEstimator()
        estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0))
        estimator.tick(0.1)
        estimator.reset()
        assert not estimator.initialised
        assert estimator.get_state() is None


class TestInvalidFixes:

    @pytest.mark.unit
    @pytest.mark.parametrize("lat,lon", [
        (float('nan'), -0.1278),
        (51.5, float('inf')),
        (95.0, 0.0),
    ])
    def test_invalid_fix_dropped(self, lat, lon):
        """Test that NaN, infinite and out of range fixes leave the state untouched."""
        estimator = VehicleStateEstimator()
        estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0))
        before = estimator.state.copy()

        assert estimator.on_fix(GpsFix(lat=lat, lon=lon, timestamp=1.0)) is False
        assert (estimator.state == before).all()

    @pytest.mark.unit
    def test_invalid_first_fix_leaves_filter_uninitialised(self):
        """Test that an invalid first fix does not initialise the filter."""
        estimator = VehicleStateEstimator()
        assert estimator.on_fix(GpsFix(lat=float('nan'), lon=0.0, timestamp=0.0)) is False
        assert not estimator.initialised


class TestConvergence:
    """The filter settles on the true speed and heading with noisy 1Hz fixes."""

    @pytest.mark.unit
    def test_converges_on_speed_and_heading(self):
        """Test speed and heading convergence with 3m noise at 1Hz."""
        route = straight_route(ORIGIN, heading=0.0, length_m=2000.0, step_m=50.0)
        simulator = RouteSimulator(route, speed_mps=15.0, noise_m=3.0, seed=42)
        estimator = VehicleStateEstimator()

        states = drive(estimator, simulator, seconds=60)
        tail = states[-100:]
        mean_speed = sum(s.speed for s in tail) / len(tail)

        assert mean_speed == pytest.approx(15.0, abs=1.5)
        mean_heading = math.degrees(math.atan2(
            sum(math.sin(math.radians(s.heading)) for s in tail),
            sum(math.cos(math.radians(s.heading)) for s in tail),
        ))
        assert heading_error(mean_heading, 0.0) < 10.0
        assert estimator.hard_resets == 0

    @pytest.mark.unit
    def test_position_follows_truth(self):
        """Test that the estimated position stays within 10m of the truth."""
        route = straight_route(ORIGIN, heading=90.0, length_m=2000.0, step_m=50.0)
        simulator = RouteSimulator(route, speed_mps=20.0, noise_m=2.0, seed=7)
        estimator = VehicleStateEstimator()

        states = drive(estimator, simulator, seconds=40)
        error = haversine_distance(states[-1].lat, states[-1].lon, *simulator.true_position)
        assert error < 10.0

    @pytest.mark.unit
    def test_heading_held_when_stationary(self):
        """Test that heading is kept from the last motion when speed drops to zero."""
        estimator = VehicleStateEstimator()
        estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0, speed=10.0, heading=45.0))
        estimator.tick(0.1)
        # Snap to a standstill by a large jump with no reported speed
        far = point_along_bearing(ORIGIN[0], ORIGIN[1], 200.0, 100.0)
        estimator.on_fix(GpsFix(lat=far[0], lon=far[1], timestamp=1.0, speed=0.0))
        state = estimator.tick(1.1)

        assert state.speed < 0.5
        assert state.heading == pytest.approx(45.0, abs=0.5)


class TestHardReset:

    @pytest.mark.unit
    def test_single_jump_causes_hard_reset_not_divergence(self):
        """Test that a 100m jump triggers a hard reset instead of divergence."""
        route = straight_route(ORIGIN, heading=0.0, length_m=2000.0, step_m=50.0)
        simulator = RouteSimulator(route, speed_mps=15.0, noise_m=1.0, seed=1)
        estimator = VehicleStateEstimator()
        drive(estimator, simulator, seconds=20)
        assert estimator.hard_resets == 0

        # One fix 100m to the East of where the car really is
        truth = simulator.true_position
        jump = point_along_bearing(truth[0], truth[1], 90.0, 100.0)
        estimator.on_fix(GpsFix(lat=jump[0], lon=jump[1], timestamp=20.5, speed=15.0, heading=0.0))
        state = estimator.tick(20.5)

        assert estimator.hard_resets == 1
        assert haversine_distance(state.lat, state.lon, *jump) < 1.0
        assert math.isfinite(state.speed)

        # The next good fix snaps straight back rather than diverging
        estimator.on_fix(GpsFix(lat=truth[0], lon=truth[1], timestamp=21.0))
        state = estimator.tick(21.0)
        assert estimator.hard_resets == 2
        assert haversine_distance(state.lat, state.lon, *truth) < 10.0
        assert estimator.position_uncertainty() < 10.0

    @pytest.mark.unit
    def test_small_innovation_does_not_reset(self):
        """Test that a 5m innovation is filtered normally."""
        estimator = VehicleStateEstimator()
        estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0))
        near = point_along_bearing(ORIGIN[0], ORIGIN[1], 0.0, 5.0)
        estimator.on_fix(GpsFix(lat=near[0], lon=near[1], timestamp=1.0))
        assert estimator.hard_resets == 0

    @pytest.mark.unit
    def test_fix_accuracy_overrides_measurement_noise(self):
        """A very accurate fix pulls the estimate almost onto the measurement."""
        loose = VehicleStateEstimator()
        tight = VehicleStateEstimator()
        near = point_along_bearing(ORIGIN[0], ORIGIN[1], 0.0, 15.0)
        for estimator, accuracy in ((loose, 50.0), (tight, 0.1)):
            estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0, accuracy=5.0))
            estimator.on_fix(GpsFix(lat=near[0], lon=near[1], timestamp=1.0, accuracy=accuracy))

        def error(estimator):
            state = estimator.tick(1.0)
            return haversine_distance(state.lat, state.lon, *near)

        assert error(tight) < 0.5
        assert error(loose) > error(tight)


class TestRebase:

    @pytest.mark.unit
    def test_origin_rebased_after_10km(self):
        """Test that the local origin is moved once the vehicle is 10km away."""
        estimator = VehicleStateEstimator()
        estimator.on_fix(GpsFix(lat=ORIGIN[0], lon=ORIGIN[1], timestamp=0.0, speed=30.0, heading=0.0))

        # Drive North at 30 m/s with perfect fixes for ~7 minutes
        for second in range(1, 400):
            truth = point_along_bearing(ORIGIN[0], ORIGIN[1], 0.0, 30.0 * second)
            estimator.on_fix(GpsFix(lat=truth[0], lon=truth[1], timestamp=float(second)))
            state = estimator.tick(float(second))

        assert estimator.rebases >= 1
        assert math.hypot(estimator.state[0], estimator.state[1]) <= 10000
        assert haversine_distance(state.lat, state.lon, *truth) < 5.0
        assert state.speed == pytest.approx(30.0, abs=1.0)
