"""
Unit tests for V1 discrete curve detection.
"""

import pytest
import math

from curve_advisor.curve_analyzer import (
    CurveAnalyzer,
    EnhancedPoint,
    enhance_route,
    find_sharpest_turn,
    smooth_path,
    turning_angle,
)
from curve_advisor.geometry import cumulative_distances, haversine_distance, point_along_bearing
from fixtures.route_data import ORIGIN, straight_route, straight_then_arc


def square_corner(leg_m=100.0, step_m=10.0, turn_to=90.0):
    """North for leg_m, then a sharp corner onto turn_to."""
    route = straight_route(ORIGIN, 0.0, leg_m, step_m)
    exit_leg = straight_route(route[-1], turn_to, leg_m, step_m)
    return route + exit_leg[1:]


class TestSmoothPath:

    @pytest.mark.unit
    def test_straight_line_unchanged(self):
        """Test that smoothing leaves a straight line in place."""
        route = straight_route(ORIGIN, 0.0, 100.0, 10.0)
        smoothed = smooth_path(route, window=1)
        assert len(smoothed) == len(route)
        for raw, smooth in zip(route[1:-1], smoothed[1:-1]):
            assert haversine_distance(*raw, *smooth) < 0.01

    @pytest.mark.unit
    def test_corner_is_cut(self):
        """Test that the moving average pulls a sharp corner inwards."""
        route = square_corner()
        smoothed = smooth_path(route, window=1)
        corner = 10
        assert haversine_distance(*route[corner], *smoothed[corner]) > 1.0

    @pytest.mark.unit
    def test_truncated_at_max_distance(self):
        """Test that smoothing stops once max_distance is covered."""
        route = straight_route(ORIGIN, 0.0, 100.0, 10.0)
        assert len(smooth_path(route, window=1, max_distance=35.0)) == 5

    @pytest.mark.unit
    def test_too_short(self):
        """Test that a single point cannot be smoothed."""
        assert smooth_path([ORIGIN]) == []


class TestEnhanceRoute:

    @pytest.mark.unit
    def test_ends_have_zero_angle(self):
        """Test that the first and last vertices carry no turning angle."""
        enhanced = enhance_route(square_corner())
        assert enhanced[0].angle_real == 0.0
        assert enhanced[-1].angle_smooth == 0.0

    @pytest.mark.unit
    def test_right_corner_positive(self):
        """Compass convention: a right (clockwise) corner is positive."""
        enhanced = enhance_route(square_corner(turn_to=90.0))
        assert enhanced[10].angle_real == pytest.approx(90.0, abs=0.5)

    @pytest.mark.unit
    def test_left_corner_negative(self):
        """Test that a left corner is negative in compass convention."""
        enhanced = enhance_route(square_corner(turn_to=270.0))
        assert enhanced[10].angle_real == pytest.approx(-90.0, abs=0.5)

    @pytest.mark.unit
    def test_turning_angle(self):
        """Test the bearing change across three points."""
        a = ORIGIN
        b = point_along_bearing(a[0], a[1], 0.0, 10.0)
        c = point_along_bearing(b[0], b[1], 45.0, 10.0)
        assert turning_angle(a, b, c) == pytest.approx(45.0, abs=0.1)


class TestFindSharpestTurn:

    @pytest.mark.unit
    def test_finds_corner(self):
        """Test that the 90 degree corner is the sharpest bend found."""
        route = square_corner()
        turn = find_sharpest_turn(route, 0, 500.0, 30.0)
        assert turn is not None
        assert turn.index == 10
        assert turn.angle == pytest.approx(90.0, abs=0.5)
        assert turn.position == route[10]

    @pytest.mark.unit
    def test_below_min_angle(self):
        """Test that a 20 degree kink is ignored with a 30 degree minimum."""
        route = square_corner(turn_to=20.0)
        assert find_sharpest_turn(route, 0, 500.0, 30.0) is None

    @pytest.mark.unit
    def test_outside_prediction_distance(self):
        """Test that a corner beyond the look-ahead is not reported."""
        route = square_corner(leg_m=300.0)
        assert find_sharpest_turn(route, 0, 200.0, 30.0) is None

    @pytest.mark.unit
    def test_start_at_end_of_route(self):
        """Test that scanning from the last vertex finds nothing."""
        route = square_corner()
        assert find_sharpest_turn(route, len(route) - 1, 500.0, 30.0) is None


class TestCurveAnalyzer:

    @pytest.fixture
    def analyzer(self):
        return CurveAnalyzer()

    @pytest.mark.unit
    def test_straight_route_has_no_curve(self, analyzer):
        """Test that a straight route yields no curve."""
        enhanced = enhance_route(straight_route(ORIGIN, 0.0, 500.0, 10.0))
        assert analyzer.analyze(enhanced, 0, 2.0) is None

    @pytest.mark.unit
    @pytest.mark.parametrize("radius", [20.0, 60.0])
    def test_arc_radius_within_ten_percent(self, analyzer, radius):
        """Test that the circumradius of a circular arc is within 10% of its radius."""
        route = straight_then_arc(radius_m=radius)
        enhanced = enhance_route(route)
        # Threshold below the per-vertex angle of a 1m-step arc
        threshold = 0.7 * math.degrees(1.0 / radius)
        curve = analyzer.analyze(enhanced, 0, threshold, cumulative_distances(route))

        assert curve is not None
        assert curve.radius_m == pytest.approx(radius, rel=0.10)

    @pytest.mark.unit
    def test_left_arc_geometry(self, analyzer):
        """Test start, end, length and angle of a 90 degree left arc."""
        route = straight_then_arc()
        cum = cumulative_distances(route)
        curve = analyzer.analyze(enhance_route(route), 0, 2.0, cum)

        assert curve.start_index < curve.apex_index < curve.end_index
        # Arc begins 200m in; its length is ~31m for 90° at R=20
        assert curve.start_distance_m == pytest.approx(200.0, abs=5.0)
        assert curve.end_distance_m == pytest.approx(231.4, abs=5.0)
        assert curve.length_m == pytest.approx(curve.end_distance_m - curve.start_distance_m, rel=0.01)
        # Positive = left
        assert curve.signed_angle_deg == pytest.approx(90.0, abs=10.0)

    @pytest.mark.unit
    def test_right_arc_is_negative(self, analyzer):
        """Test that a right arc has a negative signed angle."""
        route = straight_then_arc(direction='right')
        curve = analyzer.analyze(enhance_route(route), 0, 2.0)
        assert curve.signed_angle_deg < 0

    @pytest.mark.unit
    def test_sharp_corner_radius_from_neighbours(self, analyzer):
        """Apex on the entry vertex: radius comes from the apex and its neighbours."""
        route = square_corner()
        curve = analyzer.analyze(enhance_route(route), 0, 30.0)

        assert curve is not None
        assert curve.start_index == curve.apex_index == 10
        assert curve.end_index == 11
        # Right angle with 10m legs: hypotenuse / 2
        assert curve.radius_m == pytest.approx(math.hypot(10.0, 10.0) / 2, rel=0.02)

    @pytest.mark.unit
    def test_curve_without_exit_collapses_to_one_vertex(self, analyzer):
        """Test that a curve running off the end of the scan is a single vertex."""
        route = square_corner(leg_m=20.0)
        angles = [0.0, 0.0, 45.0, 50.0, 0.0]
        enhanced = [
            EnhancedPoint(position=p, smooth_position=p, angle_real=a, angle_smooth=a)
            for p, a in zip(route, angles)
        ]
        curve = analyzer.analyze(enhanced, 0, 30.0)

        assert curve.start_index == curve.end_index == curve.apex_index == 2
        assert curve.length_m == 0.0
        assert math.isfinite(curve.radius_m)

    @pytest.mark.unit
    def test_scan_starts_at_index(self, analyzer):
        """Test that scanning past the only curve finds nothing more."""
        route = straight_then_arc()
        enhanced = enhance_route(route)
        first = analyzer.analyze(enhanced, 0, 2.0)
        assert analyzer.analyze(enhanced, first.end_index + 1, 2.0) is None

    @pytest.mark.unit
    def test_start_index_past_route(self, analyzer):
        """Test that a start index beyond the route returns None."""
        enhanced = enhance_route(straight_then_arc())
        assert analyzer.analyze(enhanced, len(enhanced), 2.0) is None
