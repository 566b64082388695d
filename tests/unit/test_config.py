"""Test Settings loading and per-user preference validation."""

import pytest
from pydantic import ValidationError

from behavioral_analytics.core.config import (
    AnalysisConfig,
    BehavioralSettings,
    Settings,
    load_settings,
    resolve_analysis_config,
)
from behavioral_analytics.core.enums import CacheBackendKind, Sensitivity
from behavioral_analytics.storage.memory import MemoryBehaviorRepository


class TestSettingsDefaults:
    def test_detection_windows(self):
        detection = Settings().detection
        assert detection.revenge_window_minutes == 120
        assert detection.activity_window_minutes == 60
        assert detection.trigger_lookback_minutes == 120
        assert detection.account_lookback_days == 30
        assert detection.overconfidence_min_trades == 10
        assert detection.loss_aversion_min_trades == 10

    def test_enrichment_bounds(self):
        enrichment = Settings().enrichment
        assert enrichment.pro_sample_size == 25
        assert enrichment.standard_sample_size == 10
        assert enrichment.unconfigured_sample_size == 2

    def test_cache_defaults(self):
        cache = Settings().cache
        assert cache.backend == CacheBackendKind.MEMORY
        assert cache.default_ttl_minutes == 60
        assert cache.top_missed_ttl_minutes == 240
        assert cache.top_missed_empty_ttl_minutes == 15


class TestLoadSettings:
    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "absent.toml")
        assert settings.cache.default_ttl_minutes == 60

    def test_toml_file(self, tmp_path):
        path = tmp_path / "behavior.toml"
        path.write_text(
            '[cache]\ndefault_ttl_minutes = 30\n\n'
            '[observability]\nlog_format = "console"\n'
        )
        settings = load_settings(path)
        assert settings.cache.default_ttl_minutes == 30
        assert settings.observability.log_format == "console"

    def test_overrides_win(self, tmp_path):
        settings = load_settings(overrides={"redis_url": "redis://cache:6379/1"})
        assert settings.redis_url == "redis://cache:6379/1"

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("BEHAVIOR_CACHE__DEFAULT_TTL_MINUTES", "90")
        assert Settings().cache.default_ttl_minutes == 90


class TestBehavioralSettings:
    def test_defaults(self):
        prefs = BehavioralSettings(user_id="u1")
        assert prefs.revenge_trading_sensitivity == Sensitivity.MEDIUM
        assert prefs.min_streak_length == 4
        assert prefs.position_increase_threshold == 40.0
        assert prefs.default_stop_loss_percent == 0.0

    @pytest.mark.parametrize(
        "field, value",
        [
            ("min_streak_length", 2),
            ("position_increase_threshold", 0),
            ("cooling_period_minutes", 1441),
            ("cooling_period_minutes", -1),
            ("default_stop_loss_percent", 100),
        ],
    )
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            BehavioralSettings(user_id="u1", **{field: value})


class TestAnalysisConfig:
    def test_is_frozen(self):
        config = AnalysisConfig.defaults("u1")
        with pytest.raises(ValidationError):
            config.min_streak_length = 6

    @pytest.mark.asyncio
    async def test_resolves_stored_preferences(self):
        repo = MemoryBehaviorRepository()
        await repo.save_settings(BehavioralSettings(
            user_id="u1", revenge_trading_sensitivity=Sensitivity.HIGH, min_streak_length=5,
        ))
        config = await resolve_analysis_config(repo, Settings(), "u1")
        assert config.revenge_sensitivity == Sensitivity.HIGH
        assert config.min_streak_length == 5

        fallback = await resolve_analysis_config(repo, Settings(), "u2")
        assert fallback == AnalysisConfig.defaults("u2")
