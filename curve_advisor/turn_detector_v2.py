"""
Turn detection V2: curvature differential signal on a resampled window.

Pipeline:
1. Resample the route at a fixed step over [current - behind, current + ahead]
2. Project samples to local East/North metres
3. Heading per sample step, wrapped heading change, curvature = dtheta / step
4. Differential = wheel_track * |curvature| (speed difference between the
   inside and outside wheel per unit speed), smoothed by a moving average
5. Hysteresis segmentation into turn episodes
6. Heading delta, radius (wheel_track / peak differential), classification
   and suggested speed for each episode
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from . import config
from .geometry import LocalProjection, Point, cumulative_distances, find_index_at_distance, interpolate_along
from .models import Turn
from .strategy import locate_turn
from .turn_classifier import classify_turn

logger = logging.getLogger('curveAdvisor.turns.v2')


@dataclass(frozen=True)
class TurnDetectionV2Config:
    sample_step_m: float = config.V2_SAMPLE_STEP_M
    look_ahead_m: float = config.V2_LOOK_AHEAD_M
    look_behind_m: float = config.V2_LOOK_BEHIND_M
    rebuild_every_m: float = config.V2_REBUILD_EVERY_M
    wheel_track_m: float = config.V2_WHEEL_TRACK_M
    max_lateral_accel: float = config.V2_MAX_LATERAL_ACCEL
    diff_on: float = config.V2_DIFF_ON
    diff_off: float = config.V2_DIFF_OFF
    off_hold_m: float = config.V2_OFF_HOLD_M
    min_turn_length_m: float = config.V2_MIN_TURN_LENGTH_M
    smooth_window_m: float = config.V2_SMOOTH_WINDOW_M
    max_turns: int = config.MAX_TRACKED_TURNS


def detection_window(
    total_m: float,
    current_distance_m: float,
    cfg: TurnDetectionV2Config,
) -> Tuple[float, float]:
    """Along-route (start, end) of the detection window, clamped to the route."""
    start = max(0.0, current_distance_m - cfg.look_behind_m)
    end = min(total_m, current_distance_m + cfg.look_ahead_m)
    return start, end


def wrap_angle(angles: np.ndarray) -> np.ndarray:
    """Wrap radians to [-pi, pi)."""
    return (angles + np.pi) % (2 * np.pi) - np.pi


def moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Centred moving average; edges average over the samples available."""
    if window <= 1 or len(values) == 0:
        return values.copy()
    kernel = np.ones(window)
    sums = np.convolve(values, kernel, mode='same')
    counts = np.convolve(np.ones(len(values)), kernel, mode='same')
    return sums / counts


def segment_episodes(
    signal: np.ndarray,
    on: float,
    off: float,
    hold_samples: int,
) -> List[Tuple[int, int]]:
    """
    Hysteresis segmentation.

    An episode opens when the signal reaches `on` and closes once it has
    stayed at or below `off` for `hold_samples` consecutive samples. The
    episode ends on the last sample before that quiet run. An episode still
    open at the end of the signal is closed there.

    Returns:
        List of (start, end) sample indices, inclusive
    """
    episodes = []
    active = False
    start = 0
    below = 0

    for i, value in enumerate(signal):
        if not active:
            if value >= on:
                active = True
                start = i
                below = 0
            continue

        if value <= off:
            below += 1
            if below >= hold_samples:
                episodes.append((start, i - below))
                active = False
                below = 0
        else:
            below = 0

    if active:
        episodes.append((start, len(signal) - 1 - below))
    return episodes


def suggested_speed(
    radius_m: float,
    max_lateral_accel: float,
    speed_limit_kmh: Optional[float],
    default_speed_kmh: float,
    min_turn_speed_kmh: float,
) -> float:
    """clamp(sqrt(a_lat * R) in km/h, min turn speed, speed limit or default)."""
    cap = speed_limit_kmh or default_speed_kmh
    if math.isinf(radius_m):
        return max(min_turn_speed_kmh, cap)
    speed = math.sqrt(max_lateral_accel * radius_m) * 3.6
    return max(min_turn_speed_kmh, min(speed, cap))


def resample(
    points: Sequence[Point],
    cum: np.ndarray,
    start_m: float,
    end_m: float,
    step_m: float,
    projection: LocalProjection,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Resample a polyline between two along-route distances.

    Returns:
        (distances, x, y) arrays, x/y in the projection's local metres
    """
    distances = np.arange(start_m, end_m + 1e-9, step_m)

    lo = max(0, find_index_at_distance(cum, start_m) - 1)
    hi = min(len(points) - 1, find_index_at_distance(cum, end_m) + 1)
    local = np.array([projection.to_local(*points[i]) for i in range(lo, hi + 1)])
    xp = cum[lo:hi + 1]

    # np.interp needs strictly increasing sample positions
    keep = np.concatenate(([True], np.diff(xp) > 0))
    x = np.interp(distances, xp[keep], local[keep, 0])
    y = np.interp(distances, xp[keep], local[keep, 1])
    return distances, x, y


def detect_turns_v2(
    points: Sequence[Point],
    current_index: int,
    current_distance_m: float,
    cfg: Optional[TurnDetectionV2Config] = None,
    speed_limit_kmh: Optional[float] = None,
    default_speed_kmh: float = 50.0,
    min_turn_speed_kmh: float = 30.0,
    cum: Optional[Sequence[float]] = None,
) -> List[Turn]:
    """
    Detect turns around the vehicle with the curvature differential signal.

    Args:
        points: Route polyline
        current_index: Nearest route vertex to the vehicle
        current_distance_m: Vehicle's along-route distance
        cfg: Detection parameters
        speed_limit_kmh: Caps the suggested speed when known
        default_speed_kmh: Cap when no speed limit is known
        min_turn_speed_kmh: Floor for the suggested speed
        cum: Precomputed cumulative vertex distances

    Returns:
        Every turn in the window not entirely behind the vehicle, nearest
        first. Callers cap the list they publish with cfg.max_turns
    """
    cfg = cfg or TurnDetectionV2Config()
    if len(points) < 3:
        return []

    cum_arr = np.asarray(cum if cum is not None else cumulative_distances(points), dtype=float)
    start_m, end_m = detection_window(float(cum_arr[-1]), current_distance_m, cfg)
    if end_m - start_m < config.V2_MIN_WINDOW_M:
        return []

    step = cfg.sample_step_m
    projection = LocalProjection(points[min(max(current_index, 0), len(points) - 1)])
    distances, x, y = resample(points, cum_arr, start_m, end_m, step, projection)
    n = len(distances)
    if n < 3:
        return []

    # heading[i] is the direction of sample step i -> i+1
    heading = np.arctan2(np.diff(y), np.diff(x))
    curvature = np.zeros(n)
    curvature[1:-1] = wrap_angle(np.diff(heading)) / step

    differential = cfg.wheel_track_m * np.abs(curvature)
    smooth_samples = max(1, int(round(cfg.smooth_window_m / step)))
    smoothed = moving_average(differential, smooth_samples)

    hold_samples = max(1, int(round(cfg.off_hold_m / step)))
    episodes = segment_episodes(smoothed, cfg.diff_on, cfg.diff_off, hold_samples)

    cum_list = cum_arr.tolist()
    turns = []
    for first, last in episodes:
        length = (last - first) * step
        if length < cfg.min_turn_length_m:
            continue

        delta_deg = math.degrees(float(np.sum(curvature[first:last + 1])) * step)
        segment = smoothed[first:last + 1]
        apex = first + int(np.argmax(segment))
        peak = float(segment.max())
        radius = cfg.wheel_track_m / peak if peak > 0 else math.inf

        start_d = float(distances[first])
        end_d = float(distances[last])
        if end_d < current_distance_m - config.V2_BEHIND_MARGIN_M:
            continue

        start_point, start_index = interpolate_along(points, cum_list, start_d)
        end_point, end_index = interpolate_along(points, cum_list, end_d)
        apex_point, apex_index = interpolate_along(points, cum_list, float(distances[apex]))

        turn = Turn(
            start_point=start_point,
            start_index=start_index,
            end_point=end_point,
            end_index=end_index,
            apex_point=apex_point,
            apex_index=apex_index,
            length_m=length,
            radius_m=radius,
            signed_angle_deg=delta_deg,
            classification=classify_turn(delta_deg, length, radius),
            start_distance_m=start_d,
            end_distance_m=end_d,
            distance_to_start_m=0.0,
            speed_limit_kmh=speed_limit_kmh,
            optimal_speed_kmh=suggested_speed(
                radius, cfg.max_lateral_accel, speed_limit_kmh,
                default_speed_kmh, min_turn_speed_kmh,
            ),
        )
        turns.append(locate_turn(turn, current_distance_m))

    logger.debug(
        "V2 window %.0f-%.0fm: %d samples, %d episodes, %d turns",
        start_m, end_m, n, len(episodes), len(turns),
    )
    turns.sort(key=lambda t: (t.distance_to_start_m, t.start_distance_m))
    return turns
