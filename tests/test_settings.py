"""Tests for settings, source configuration and logging config."""

import pytest
from pydantic import ValidationError

from conftest import make_settings
from trendbot.core.errors import ConfigurationError
from trendbot.core.logging import get_logging_config
from trendbot.core.models import DataType, Platform
from trendbot.core.settings import PlatformSettings, Settings, load_sources_config


class TestSettings:

    def test_ttl_per_data_type(self):
        settings = make_settings()
        assert settings.ttl_for(DataType.HASHTAGS) == 900
        assert settings.ttl_for(DataType.VIRAL_CONTENT) == 600

    @pytest.mark.parametrize("ttl", [599, 901])
    def test_ttl_outside_window_rejected(self, ttl):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, cache_ttl_keywords_seconds=ttl)

    def test_env_nested_platform_settings(self, monkeypatch):
        monkeypatch.setenv("TRENDBOT_YOUTUBE__API_KEY", "from-env")
        monkeypatch.setenv("TRENDBOT_QUERY_TIMEOUT_SECONDS", "2.5")

        settings = Settings(_env_file=None)

        assert settings.youtube.api_key.get_secret_value() == "from-env"
        assert settings.youtube.has_credentials
        assert settings.youtube.base_url == "https://www.googleapis.com/youtube/v3"
        assert settings.youtube.rate_limit == 100
        assert settings.youtube.rate_window_seconds == 100.0
        assert settings.query_timeout_seconds == 2.5

    def test_env_override_keeps_other_platform_defaults(self, monkeypatch):
        monkeypatch.setenv("TRENDBOT_TWITTER__RATE_LIMIT", "30")

        settings = Settings(_env_file=None)

        assert settings.twitter.rate_limit == 30
        assert settings.twitter.base_url == "https://api.twitter.com/1.1"
        assert settings.twitter.rate_window_seconds == 900.0
        assert settings.tiktok.base_url == "https://open.tiktokapis.com/v2"

    def test_api_key_not_leaked_in_repr(self):
        config = PlatformSettings(api_key="super-secret")
        assert "super-secret" not in repr(config)


class TestRequireCredentials:

    def test_missing_credentials_raise(self):
        settings = make_settings(
            youtube=PlatformSettings(api_key="k"),
            tiktok=PlatformSettings(),
            twitter=PlatformSettings(),
        )

        with pytest.raises(ConfigurationError) as exc_info:
            settings.require_credentials([Platform.YOUTUBE, Platform.TIKTOK, Platform.TWITTER])

        assert str(exc_info.value) == "Missing API credentials for: tiktok, twitter"

    def test_scrape_url_is_enough(self):
        settings = make_settings(instagram=PlatformSettings(scrape_url="https://instagram.test/explore"))
        settings.require_credentials([Platform.INSTAGRAM])

    def test_disabled_platforms_skipped(self):
        settings = make_settings()
        settings.require_credentials(list(Platform))


class TestSourcesConfig:

    def test_yaml_overrides_merged(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text(
            "platforms:\n"
            "  twitter:\n"
            "    region: GB\n"
            "    rate_limit: 10\n"
            "    scrape_url: https://x.test/explore\n"
        )
        settings = make_settings(twitter=PlatformSettings(api_key="tw", base_url="https://twitter.test/1.1"))

        merged = load_sources_config(settings, path)

        assert merged.twitter.region == "GB"
        assert merged.twitter.rate_limit == 10
        assert merged.twitter.scrape_url == "https://x.test/explore"
        assert merged.twitter.api_key.get_secret_value() == "tw"
        assert merged.twitter.base_url == "https://twitter.test/1.1"
        assert settings.twitter.rate_limit == 60

    def test_invalid_override_rejected(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text("platforms:\n  youtube:\n    rate_limit: 0\n")

        with pytest.raises(ValidationError):
            load_sources_config(make_settings(), path)

    def test_unknown_platform_rejected(self, tmp_path):
        path = tmp_path / "sources.yaml"
        path.write_text("platforms:\n  myspace:\n    rate_limit: 1\n")

        with pytest.raises(ConfigurationError, match="myspace"):
            load_sources_config(make_settings(), path)

    def test_missing_file_returns_settings_unchanged(self, tmp_path):
        settings = make_settings()
        assert load_sources_config(settings, tmp_path / "absent.yaml") is settings


class TestLoggingConfig:

    def test_json_formatter_in_production(self):
        settings = Settings(_env_file=None, environment="production")
        config = get_logging_config("trendbot", settings)

        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["formatters"]["json"]["class"] == "pythonjsonlogger.json.JsonFormatter"
        assert "trendbot" in config["formatters"]["json"]["format"]

    def test_console_formatter_in_development(self):
        config = get_logging_config(settings=Settings(_env_file=None, environment="development"))

        assert config["handlers"]["console"]["formatter"] == "console"
        assert config["loggers"]["httpx"]["level"] == "WARNING"

    def test_upstream_loggers_follow_source_level(self):
        settings = Settings(_env_file=None, log_level="INFO", source_log_level="DEBUG")
        config = get_logging_config(settings=settings)

        assert config["loggers"]["trendbot"]["level"] == "INFO"
        for name in ("trendbot.sources", "trendbot.scraper", "trendbot.resilience"):
            assert config["loggers"][name]["level"] == "DEBUG"
            assert config["loggers"][name]["propagate"] is True
            assert "handlers" not in config["loggers"][name]
        assert "level" not in config["handlers"]["console"]

    @pytest.mark.parametrize("name", ["httpx", "httpcore", "redis", "uvicorn.access"])
    def test_request_level_library_loggers_quieted(self, name):
        config = get_logging_config(settings=Settings(_env_file=None, log_level="DEBUG"))

        assert config["loggers"][name]["level"] == "WARNING"
        assert config["loggers"][name]["propagate"] is False
