"""
Configuration constants for the curve advisor.

Organised into sections:
1. Scheduling (estimator and prediction rates)
2. Vehicle state estimator (Kalman noise, reset thresholds)
3. Route tracking and rerouting
4. Turn detection V1 (discrete curve scan)
5. Turn detection V2 (windowed curvature signal)
6. Speed advisory physics
7. Road info providers

User-adjustable values live in curve_advisor.settings; everything here is
fixed tuning that only changes with the algorithm.
"""

# ==============================================================================
# 1. SCHEDULING
# ==============================================================================

ESTIMATOR_OUTPUT_HZ = 10         # Smoothed vehicle state publish rate
PREDICTION_INTERVAL_S = 1.0      # Route tracking -> turn detection -> advisory

# ==============================================================================
# 2. VEHICLE STATE ESTIMATOR
# ==============================================================================

KALMAN_SIGMA_ACCEL_MPS2 = 2.0    # Process noise (white acceleration, m/s²)
                                 # Lower = smoother but slower response
KALMAN_SIGMA_POS_M = 6.0         # Measurement noise when a fix has no accuracy
KALMAN_INITIAL_POS_VAR = 1000.0  # Initial position variance (m²)
KALMAN_INITIAL_VEL_VAR = 100.0   # Initial velocity variance (m²/s²)
KALMAN_RESET_POS_VAR = 25.0      # Position variance after a hard reset
KALMAN_RESET_VEL_VAR = 100.0     # Velocity variance after a hard reset

HARD_RESET_THRESHOLD_M = 20.0    # Innovation beyond this snaps state to the fix
MIN_HEADING_SPEED_MPS = 0.5      # Below this, heading is held, not derived
RECENTER_ORIGIN_THRESHOLD_M = 10000.0  # Rebase local projection beyond this
METERS_PER_DEGREE_LAT = 111000.0

TICK_MIN_DT_S = 0.001            # Clamp for predict-only steps
TICK_MAX_DT_S = 0.5
ACCEL_EMA_KEEP = 0.6             # Acceleration smoothing (weight of old value)

# ==============================================================================
# 3. ROUTE TRACKING & REROUTING
# ==============================================================================

RECALCULATION_COOLDOWN_S = 10.0  # Minimum time between reroute requests
MIN_RECALCULATION_SPEED_MPS = 5.0  # Never reroute while crawling or stopped
MIN_ROUTE_POINTS = 2

# ==============================================================================
# 4. TURN DETECTION V1
# ==============================================================================

V1_SMOOTHING_WINDOW = 1          # +/- vertices in the moving average
V1_MAX_NEW_TURNS = 10            # Analyzer passes per prediction cycle
V1_SEARCH_HORIZON_M = 2000.0     # Stop scanning beyond this distance
MAX_TRACKED_TURNS = 5

# ==============================================================================
# 5. TURN DETECTION V2
# ==============================================================================

V2_SAMPLE_STEP_M = 1.0           # Resample spacing
V2_LOOK_AHEAD_M = 1000.0
V2_LOOK_BEHIND_M = 200.0
V2_REBUILD_EVERY_M = 500.0       # Rebuild window after advancing this far
V2_REBUILD_EDGE_MARGIN_M = 50.0  # ...or when this close to the window end
V2_WHEEL_TRACK_M = 1.8           # Inside/outside wheel spacing
V2_MAX_LATERAL_ACCEL = 3.5       # m/s², curvature -> speed conversion
V2_DIFF_ON = 0.012               # Hysteresis: start a turn episode
V2_DIFF_OFF = 0.006              # Hysteresis: end a turn episode
V2_OFF_HOLD_M = 10.0             # Distance below DIFF_OFF required to end
V2_MIN_TURN_LENGTH_M = 12.0
V2_SMOOTH_WINDOW_M = 5.0
V2_MIN_WINDOW_M = 20.0           # Skip detection on shorter windows
V2_MATCH_OVERLAP_RATIO = 0.5     # Sticky matching: index span overlap
V2_MATCH_APEX_DISTANCE_M = 15.0  # Sticky matching: apex proximity
V2_BEHIND_MARGIN_M = 5.0         # Keep turns this far behind before dropping

# ==============================================================================
# 6. SPEED ADVISORY
# ==============================================================================

GRAVITY = 9.81
ADHESION_COEFFICIENT = 0.7
MAX_CURVE_SPEED_KMH = 180.0
MAX_DECELERATION_MPS2 = 5.0      # Used for braking distance / braking point

DRIVING_STYLE_FACTORS = {
    "prudent": 0.7,
    "normal": 0.8,
    "sportif": 0.9,
}

# ==============================================================================
# 7. ROAD INFO
# ==============================================================================

ROAD_INFO_CACHE_TTL_S = 30.0     # Cached speed limit / on-road validity
ROAD_INFO_CACHE_PRECISION = 5    # Decimal places for cache keys (~1 m)
ROAD_INFO_MIN_UPDATE_INTERVAL_S = 5.0
ROAD_INFO_MIN_UPDATE_DISTANCE_M = 10.0
