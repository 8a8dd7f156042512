"""
User settings for the curve advisor.

Settings are read from an optional JSON file of overrides on startup and
exposed to the prediction pipeline as a frozen Settings snapshot, taken once
per prediction cycle. If the settings file is corrupt (invalid JSON) it is
ignored and defaults are used. A warning is logged in this case.

Example file:
    {
        "speed": {"default_kmh": 50, "min_turn_kmh": 30},
        "turns": {"detection_version": "v2", "driving_style": "normal"},
        "route": {"max_deviation_m": 50, "auto_recalculate": true}
    }
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from .models import DrivingStyle, TurnDetectionVersion

logger = logging.getLogger('curveAdvisor.settings')


@dataclass(frozen=True)
class Settings:
    """
    Read-only settings snapshot.

    Attributes:
        default_speed: Speed in km/h assumed when no speed limit is known.
        min_turn_speed: Floor for any recommended turn speed (km/h).
        max_turn_angle: Angle (degrees) at which the angle-based speed
            reaches min_turn_speed.
        min_turn_angle: Smallest smoothed vertex angle (degrees) that V1
            treats as the start of a turn.
        prediction_distance: V1 look-ahead distance in metres.
        max_route_deviation: Off-route threshold in metres.
        driving_style: Scales the physical curve speed limit.
        turn_detection_version: Which turn detector runs.
        enable_auto_recalculate: Request a new route when off-route.
    """
    default_speed: float = 50.0
    min_turn_speed: float = 30.0
    max_turn_angle: float = 90.0
    min_turn_angle: float = 30.0
    prediction_distance: float = 500.0
    max_route_deviation: float = 50.0
    driving_style: DrivingStyle = DrivingStyle.PRUDENT
    turn_detection_version: TurnDetectionVersion = TurnDetectionVersion.V1
    enable_auto_recalculate: bool = True


# JSON key (dot notation) -> (Settings field, converter)
_KEY_MAP = {
    "speed.default_kmh": ("default_speed", float),
    "speed.min_turn_kmh": ("min_turn_speed", float),
    "turns.max_angle_deg": ("max_turn_angle", float),
    "turns.min_angle_deg": ("min_turn_angle", float),
    "turns.prediction_distance_m": ("prediction_distance", float),
    "turns.driving_style": ("driving_style", DrivingStyle),
    "turns.detection_version": ("turn_detection_version", TurnDetectionVersion),
    "route.max_deviation_m": ("max_route_deviation", float),
    "route.auto_recalculate": ("enable_auto_recalculate", bool),
}


class SettingsManager:
    """
    Holds the current settings and notifies observers when they change.

    Not a singleton: the application composition root owns one instance and
    passes it to the components that need it.
    """

    def __init__(self, file_path: Optional[str] = None):
        self._file_path = file_path
        self._raw: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._observers: List[Callable[[Settings], None]] = []
        self._load()
        self._settings = self._build(self._raw)

    def _load(self):
        """Load overrides from the JSON file, if one was given."""
        if not self._file_path:
            return
        try:
            if os.path.exists(self._file_path):
                with open(self._file_path, 'r', encoding='utf-8') as f:
                    self._raw = json.load(f)
                logger.info("Settings loaded from %s", self._file_path)
            else:
                logger.debug("No settings file found, using defaults")
        except json.JSONDecodeError as e:
            logger.warning("Corrupt settings file ignored, using defaults: %s", e)
            self._raw = {}
        except OSError as e:
            logger.warning("Could not load settings: %s", e)
            self._raw = {}

    def _build(self, raw: Dict[str, Any]) -> Settings:
        overrides = {}
        for key, (field_name, convert) in _KEY_MAP.items():
            value = self._lookup(raw, key)
            if value is None:
                continue
            try:
                overrides[field_name] = convert(value)
            except (TypeError, ValueError) as e:
                logger.warning("Ignoring invalid setting %s=%r: %s", key, value, e)
        return replace(Settings(), **overrides)

    @staticmethod
    def _lookup(raw: Dict[str, Any], key: str) -> Any:
        value: Any = raw
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return None
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a raw setting value.

        Args:
            key: Setting key using dot notation, e.g. "route.max_deviation_m"
            default: Value returned when the key is not set

        Returns:
            Setting value or default
        """
        value = self._lookup(self._raw, key)
        return default if value is None else value

    def snapshot(self) -> Settings:
        """Current settings. Safe to hold across ticks."""
        return self._settings

    def update(self, **changes) -> Settings:
        """
        Replace individual settings fields in memory and notify observers.

        Raises:
            TypeError: If a field name is not a Settings field
        """
        with self._lock:
            self._settings = replace(self._settings, **changes)
            settings = self._settings
        logger.info("Settings updated: %s", ", ".join(sorted(changes)))
        for observer in list(self._observers):
            observer(settings)
        return settings

    def add_observer(self, observer: Callable[[Settings], None]) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Callable[[Settings], None]) -> None:
        self._observers = [o for o in self._observers if o is not observer]
