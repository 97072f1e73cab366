"""Tests for environment-driven configuration."""

import pytest

from config.settings import SchedulerSettings, Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.scheduler.odds_interval_seconds == 5.0
        assert settings.scheduler.cache_grace_seconds == 300.0
        assert settings.detection.history_size == 100
        assert settings.detection.steam_threshold == 20
        assert "basketball_nba" in settings.scheduler.sports

    def test_nested_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ODDS_API__API_KEY", "abc123")
        monkeypatch.setenv("SCHEDULER__ODDS_INTERVAL_SECONDS", "2.5")
        monkeypatch.setenv("SERVER__PORT", "9001")

        settings = Settings(_env_file=None)

        assert settings.odds_api.api_key == "abc123"
        assert settings.scheduler.odds_interval_seconds == 2.5
        assert settings.server.port == 9001

    def test_sports_are_normalized(self):
        scheduler = SchedulerSettings(sports=[" Basketball_NBA ", "", "ICEHOCKEY_NHL"])
        assert scheduler.sports == ["basketball_nba", "icehockey_nhl"]

    def test_cycle_timeout_covers_provider_timeout(self):
        scheduler = SchedulerSettings()
        assert scheduler.fetch_timeout_seconds > scheduler.provider_timeout_seconds

        with pytest.raises(ValueError):
            SchedulerSettings(provider_timeout_seconds=10, fetch_timeout_seconds=10)
