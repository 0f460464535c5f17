"""
Tests for application settings
"""

import pytest
from pydantic import ValidationError

from geotrack.config import Settings


class TestSettingsDefaults:
    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.app_name == "GeoTrack"
        assert settings.location_retention_days == 90
        assert settings.audit_retention_days == 730
        assert settings.online_threshold_minutes == 10
        assert settings.idle_threshold_minutes == 60
        assert settings.max_clock_skew_seconds == 300
        assert settings.timeline_max_days == 366
        assert settings.geocoder_url is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LOCATION_RETENTION_DAYS", "30")
        monkeypatch.setenv("GEOCODER_URL", "https://geocoder.test/reverse")

        settings = Settings(_env_file=None)

        assert settings.location_retention_days == 30
        assert settings.geocoder_url == "https://geocoder.test/reverse"


class TestSettingsValidation:
    def test_audit_must_outlive_location_data(self):
        with pytest.raises(ValidationError, match="audit_retention_days"):
            Settings(_env_file=None, location_retention_days=400, audit_retention_days=365)

    def test_equal_retention_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, location_retention_days=365, audit_retention_days=365)

    def test_idle_threshold_not_below_online(self):
        with pytest.raises(ValidationError, match="idle_threshold_minutes"):
            Settings(_env_file=None, online_threshold_minutes=30, idle_threshold_minutes=20)

    def test_accuracy_tiers_ordered(self):
        with pytest.raises(ValidationError, match="medium_accuracy_meters"):
            Settings(_env_file=None, high_accuracy_meters=600, medium_accuracy_meters=500)

    def test_valid_custom_policy(self):
        settings = Settings(_env_file=None, location_retention_days=30, audit_retention_days=400)
        assert settings.audit_retention_days == 400
