"""Tests for infragraph.config module.

This module tests configuration management including environment
variable loading, schedule presets, validation and caching behavior.
"""

from __future__ import annotations

import logging
import os
import pytest
from unittest.mock import patch

from infragraph.config import Settings, get_settings, resolve_schedule
from infragraph.errors import ConfigurationError
from infragraph.logging_config import configure_logging


class TestSettings:
    """Tests for Settings class."""

    def test_settings_default_values(self, clean_environment):
        """Test Settings with all default values."""
        settings = Settings()

        assert settings.sync_interval_seconds == 3600
        assert settings.alert_cooldown_seconds == 1800
        assert settings.max_alerts_per_cycle == 50
        assert settings.alert_history_size == 1000
        assert settings.neo4j_uri == "bolt://localhost:7687"
        assert settings.neo4j_user == "neo4j"
        assert settings.webhook_url is None
        assert settings.webhook_timeout is None
        assert settings.orphan_critical_cost == 1000.0
        assert settings.cost_anomaly_threshold == 0.20
        assert settings.log_level == "INFO"
        assert settings.azure_subscription_id is None
        assert settings.azure_resource_groups == []

    def test_settings_from_environment(self, clean_environment):
        """Test Settings loads from environment variables."""
        os.environ["INFRAGRAPH_SYNC_INTERVAL_SECONDS"] = "900"
        os.environ["INFRAGRAPH_NEO4J_URI"] = "bolt://neo4j:7687"
        os.environ["INFRAGRAPH_WEBHOOK_URL"] = "https://hooks.example.com/alerts"
        os.environ["INFRAGRAPH_MAX_ALERTS_PER_CYCLE"] = "10"

        settings = Settings()

        assert settings.sync_interval_seconds == 900
        assert settings.neo4j_uri == "bolt://neo4j:7687"
        assert settings.webhook_url == "https://hooks.example.com/alerts"
        assert settings.max_alerts_per_cycle == 10

    def test_settings_case_insensitive(self, clean_environment):
        """Test Settings is case insensitive for env vars."""
        with patch.dict(os.environ, {"infragraph_alert_cooldown_seconds": "60"}):
            settings = Settings()

        assert settings.alert_cooldown_seconds == 60

    def test_settings_ignores_unprefixed(self, clean_environment):
        """Test variables without the INFRAGRAPH_ prefix are ignored."""
        with patch.dict(os.environ, {"MAX_ALERTS_PER_CYCLE": "3"}):
            settings = Settings()

        assert settings.max_alerts_per_cycle == 50


class TestSettingsGetAwsRegions:
    """Tests for Settings.get_aws_regions method."""

    def test_default_regions(self, clean_environment):
        """Test the default region list."""
        assert Settings().get_aws_regions() == ["us-east-1"]

    def test_comma_separated_env(self, clean_environment):
        """Test comma-separated regions are parsed at runtime."""
        settings = Settings()

        # Set env var AFTER creating settings (bypasses pydantic validation)
        os.environ["INFRAGRAPH_AWS_REGIONS"] = "us-east-1 , eu-west-1,,"

        assert settings.get_aws_regions() == ["us-east-1", "eu-west-1"]


class TestValidateMonitoring:
    """Tests for monitoring configuration validation."""

    def test_valid_defaults(self, clean_environment):
        """Test default settings validate."""
        Settings().validate_monitoring()

    def test_non_positive_interval(self, clean_environment):
        """Test a zero interval is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(sync_interval_seconds=0).validate_monitoring()
        assert exc_info.value.field == "sync_interval_seconds"

    def test_negative_cooldown(self, clean_environment):
        """Test a negative cooldown is rejected."""
        with pytest.raises(ConfigurationError):
            Settings(alert_cooldown_seconds=-1).validate_monitoring()

    def test_zero_alert_cap(self, clean_environment):
        """Test max_alerts_per_cycle below one is rejected."""
        with pytest.raises(ConfigurationError):
            Settings(max_alerts_per_cycle=0).validate_monitoring()


class TestResolveSchedule:
    """Tests for schedule presets."""

    @pytest.mark.parametrize("preset,seconds", [
        ("5min", 300),
        ("15min", 900),
        ("hourly", 3600),
        ("daily", 86400),
    ])
    def test_presets(self, preset, seconds):
        """Test every preset maps to its interval."""
        assert resolve_schedule(preset) == seconds

    def test_numeric_interval(self):
        """Test numbers pass through as floats."""
        assert resolve_schedule(42) == 42.0

    def test_unknown_preset(self):
        """Test unknown presets raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            resolve_schedule("weekly")

    def test_non_positive_interval(self):
        """Test zero and negative intervals are rejected."""
        with pytest.raises(ConfigurationError):
            resolve_schedule(0)


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_returns_settings(self, clean_environment):
        """Test get_settings returns Settings instance."""
        get_settings.cache_clear()

        settings = get_settings()

        assert isinstance(settings, Settings)

    def test_get_settings_is_cached(self, clean_environment):
        """Test get_settings returns same instance (cached)."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

    def test_get_settings_cache_clear(self, clean_environment):
        """Test get_settings cache can be cleared."""
        get_settings.cache_clear()
        settings1 = get_settings()

        get_settings.cache_clear()
        os.environ["INFRAGRAPH_LOG_LEVEL"] = "DEBUG"
        settings2 = get_settings()

        assert settings1 is not settings2
        assert settings2.log_level == "DEBUG"
        get_settings.cache_clear()


class TestConfigureLogging:
    """Tests for logging setup."""

    def test_quiets_botocore(self):
        """Test botocore is raised to WARNING."""
        configure_logging("DEBUG")
        assert logging.getLogger("botocore").level == logging.WARNING
