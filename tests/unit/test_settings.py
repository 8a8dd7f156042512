"""
Unit tests for the SettingsManager class.
Tests dot-notation access, file overrides and change notification.
"""

import pytest
import dataclasses

from curve_advisor.models import DrivingStyle, TurnDetectionVersion
from curve_advisor.settings import Settings, SettingsManager


class TestSettingsDefaults:

    @pytest.mark.unit
    def test_defaults(self):
        """Test the default settings values."""
        settings = Settings()
        assert settings.default_speed == 50.0
        assert settings.min_turn_speed == 30.0
        assert settings.max_route_deviation == 50.0
        assert settings.driving_style == DrivingStyle.PRUDENT
        assert settings.turn_detection_version == TurnDetectionVersion.V1
        assert settings.enable_auto_recalculate is True

    @pytest.mark.unit
    def test_snapshot_is_frozen(self):
        """Test that a settings snapshot cannot be mutated."""
        settings = SettingsManager().snapshot()
        with pytest.raises(dataclasses.FrozenInstanceError):
            settings.default_speed = 90.0

    @pytest.mark.unit
    def test_no_file_uses_defaults(self):
        """Test that no settings file gives the defaults."""
        assert SettingsManager().snapshot() == Settings()


class TestSettingsFile:
    """Tests for loading overrides from JSON."""

    @pytest.mark.unit
    def test_empty_file_uses_defaults(self, temp_settings_file):
        """Test that an empty JSON object gives the defaults."""
        assert SettingsManager(temp_settings_file).snapshot() == Settings()

    @pytest.mark.unit
    def test_overrides_loaded(self, temp_settings_with_data):
        """Test that file values override the defaults they name."""
        settings = SettingsManager(temp_settings_with_data).snapshot()
        assert settings.default_speed == 70.0
        assert settings.min_turn_speed == 25.0
        assert settings.turn_detection_version == TurnDetectionVersion.V2
        assert settings.driving_style == DrivingStyle.SPORTIF
        assert settings.max_route_deviation == 35.0
        assert settings.enable_auto_recalculate is False
        # Untouched fields keep their defaults
        assert settings.prediction_distance == 500.0

    @pytest.mark.unit
    def test_missing_file_uses_defaults(self, tmp_path):
        """Test that a missing file falls back to defaults."""
        manager = SettingsManager(str(tmp_path / "nonexistent.json"))
        assert manager.snapshot() == Settings()

    @pytest.mark.unit
    def test_corrupt_file_uses_defaults(self, temp_settings_file):
        """Test that invalid JSON falls back to defaults."""
        with open(temp_settings_file, 'w') as f:
            f.write('{ not valid json')
        assert SettingsManager(temp_settings_file).snapshot() == Settings()

    @pytest.mark.unit
    def test_invalid_value_ignored(self, temp_settings_file):
        """Test that an invalid value is skipped while valid ones load."""
        with open(temp_settings_file, 'w') as f:
            f.write('{"turns": {"driving_style": "reckless"}, "speed": {"default_kmh": 60}}')
        settings = SettingsManager(temp_settings_file).snapshot()
        assert settings.driving_style == DrivingStyle.PRUDENT
        assert settings.default_speed == 60.0


class TestSettingsGet:
    """Tests for raw dot-notation access."""

    @pytest.mark.unit
    def test_get_nested_key(self, temp_settings_with_data):
        """Test dot-notation access to a nested key."""
        manager = SettingsManager(temp_settings_with_data)
        assert manager.get('speed.default_kmh') == 70

    @pytest.mark.unit
    def test_get_missing_key_returns_default(self, temp_settings_with_data):
        """Test that a missing key returns the supplied default."""
        manager = SettingsManager(temp_settings_with_data)
        assert manager.get('nonexistent', default='fallback') == 'fallback'

    @pytest.mark.unit
    def test_get_partial_path_missing(self, temp_settings_with_data):
        """Test that a partially missing path returns the default."""
        manager = SettingsManager(temp_settings_with_data)
        assert manager.get('speed.nonexistent.value', default='missing') == 'missing'

    @pytest.mark.unit
    def test_get_missing_key_default_none(self):
        """Test that the default for a missing key is None."""
        assert SettingsManager().get('speed.default_kmh') is None


class TestSettingsUpdate:

    @pytest.mark.unit
    def test_update_replaces_snapshot(self):
        """Test that update publishes a new snapshot and leaves the old one intact."""
        manager = SettingsManager()
        before = manager.snapshot()
        after = manager.update(default_speed=90.0)

        assert after.default_speed == 90.0
        assert manager.snapshot() is after
        assert before.default_speed == 50.0

    @pytest.mark.unit
    def test_observers_notified(self):
        """Test that observers see updates until removed."""
        manager = SettingsManager()
        seen = []
        observer = seen.append
        manager.add_observer(observer)

        manager.update(turn_detection_version=TurnDetectionVersion.V2)
        assert [s.turn_detection_version for s in seen] == [TurnDetectionVersion.V2]

        manager.remove_observer(observer)
        manager.update(default_speed=60.0)
        assert len(seen) == 1

    @pytest.mark.unit
    def test_unknown_field_raises(self):
        """Test that updating an unknown field raises TypeError."""
        with pytest.raises(TypeError):
            SettingsManager().update(not_a_setting=1)
