"""
Shared pytest fixtures for curve advisor tests.
"""

import os
import sys
import pytest
import tempfile
import json

# Add project root (package imports) and tests dir (fixtures.*) to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
TESTS_DIR = os.path.join(PROJECT_ROOT, 'tests')
sys.path.insert(0, PROJECT_ROOT)
sys.path.insert(0, TESTS_DIR)

from curve_advisor.geometry import interpolate_along  # noqa: E402
from curve_advisor.models import VehicleState  # noqa: E402
from curve_advisor.route_tracker import RouteTracker  # noqa: E402
from curve_advisor.settings import Settings  # noqa: E402
from curve_advisor.strategy import PredictionContext  # noqa: E402
from fixtures.route_data import straight_route, straight_then_arc  # noqa: E402


@pytest.fixture
def temp_settings_file():
    """Create a temporary settings file for testing SettingsManager."""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        f.write('{}')
        temp_path = f.name
    yield temp_path
    # Cleanup
    if os.path.exists(temp_path):
        os.remove(temp_path)


@pytest.fixture
def temp_settings_with_data():
    """Create a temporary settings file with pre-populated data."""
    test_data = {
        "speed": {
            "default_kmh": 70,
            "min_turn_kmh": 25
        },
        "turns": {
            "detection_version": "v2",
            "driving_style": "sportif"
        },
        "route": {
            "max_deviation_m": 35,
            "auto_recalculate": False
        }
    }
    with tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False) as f:
        json.dump(test_data, f)
        temp_path = f.name
    yield temp_path
    # Cleanup
    if os.path.exists(temp_path):
        os.remove(temp_path)


@pytest.fixture
def north_route():
    """1km straight route heading due North, vertices every 10m."""
    return tuple(straight_route(length_m=1000.0, step_m=10.0))


@pytest.fixture
def turn_route():
    """200m straight, 90° left of radius 20m, 100m exit."""
    return tuple(straight_then_arc())


@pytest.fixture
def scenario_settings():
    """Settings that let V1 see a turn drawn with 1m arc vertices."""
    from curve_advisor.models import DrivingStyle
    return Settings(
        default_speed=90.0,
        min_turn_speed=20.0,
        min_turn_angle=2.0,
        prediction_distance=500.0,
        driving_style=DrivingStyle.NORMAL,
    )


@pytest.fixture
def make_context():
    """
    Build a PredictionContext with the vehicle placed on the route.

    Usage: make_context(route, along_m, speed_kmh=54, settings=None,
    position=None) where position replaces the on-route position.
    """
    tracker = RouteTracker()

    def _make(route, along_m, speed_kmh=54.0, settings=None, position=None,
              speed_limit_kmh=None, timestamp=0.0):
        route = tuple(route)
        cum = tracker.cumulative(route)
        if position is None:
            position, _ = interpolate_along(route, cum, along_m)
        match = tracker.find_closest_point_on_route(position, route)
        state = VehicleState(
            lat=position[0],
            lon=position[1],
            speed=speed_kmh / 3.6,
            heading=0.0,
            acceleration=0.0,
            timestamp=timestamp,
        )
        return PredictionContext(
            state=state,
            route=route,
            cum=cum,
            match=match,
            along_m=tracker.distance_along_route(position, route, match),
            settings=settings or Settings(),
            speed_limit_kmh=speed_limit_kmh,
        )

    return _make


@pytest.fixture
def gpx_file():
    """Write a GPX file for the given points; returns its path."""
    paths = []

    def _write(points, namespace=True, element='trkpt'):
        ns = ' xmlns="http://www.topografix.com/GPX/1/1"' if namespace else ''
        body = "\n".join(
            f'      <{element} lat="{lat:.7f}" lon="{lon:.7f}"></{element}>'
            for lat, lon in points
        )
        if element == 'trkpt':
            inner = f"  <trk>\n    <trkseg>\n{body}\n    </trkseg>\n  </trk>"
        else:
            inner = f"  <rte>\n{body}\n  </rte>"
        content = f'<?xml version="1.0" encoding="UTF-8"?>\n<gpx version="1.1"{ns}>\n{inner}\n</gpx>\n'
        with tempfile.NamedTemporaryFile(mode='w', suffix='.gpx', delete=False) as f:
            f.write(content)
            paths.append(f.name)
        return f.name

    yield _write
    for path in paths:
        if os.path.exists(path):
            os.remove(path)
