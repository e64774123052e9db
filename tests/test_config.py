"""Tests for configuration module."""

import json
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from boxbuild.config import DEFAULT_PLAN_FILE, Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.cache is True
        assert settings.persist_cache is True
        assert "sqlite" in settings.cache_db_url
        assert settings.cache_db_url.endswith("cache.sqlite")
        assert settings.default_plan == DEFAULT_PLAN_FILE
        assert settings.log_level == "WARNING"
        assert settings.poll_interval == 0.25
        assert settings.docker_timeout == 600

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "BOX_CACHE": "false",
                "BOX_LOG_LEVEL": "DEBUG",
                "BOX_POLL_INTERVAL": "0.5",
                "BOX_DEFAULT_PLAN": "build.box",
            },
        ):
            settings = Settings(_env_file=None)
            assert settings.cache is False
            assert settings.log_level == "DEBUG"
            assert settings.poll_interval == 0.5
            assert settings.default_plan == "build.box"

    def test_invalid_poll_interval_rejected(self) -> None:
        """Poll interval must be positive."""
        with patch.dict(os.environ, {"BOX_POLL_INTERVAL": "0"}):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)


class TestCacheEnabled:
    """Test cache flag precedence."""

    def test_flag_wins_over_env(self) -> None:
        with patch.dict(os.environ, {"NO_CACHE": "1"}):
            settings = Settings(_env_file=None)
            assert settings.cache_enabled(True) is True

    def test_no_cache_env_disables(self) -> None:
        with patch.dict(os.environ, {"NO_CACHE": "1"}):
            settings = Settings(_env_file=None)
            assert settings.cache_enabled() is False

    def test_empty_no_cache_env_ignored(self) -> None:
        with patch.dict(os.environ, {"NO_CACHE": ""}):
            settings = Settings(cache=True, _env_file=None)
            assert settings.cache_enabled() is True

    def test_setting_used_without_flag(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(cache=False, _env_file=None)
            assert settings.cache_enabled() is False
            assert settings.cache_enabled(False) is False


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings(_env_file=None)
        parsed = json.loads(print_settings_json(settings))

        assert "cache" in parsed
        assert "cache_db_url" in parsed
        assert "poll_interval" in parsed
        assert "docker_timeout" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        parsed = json.loads(print_settings_json())
        assert "default_plan" in parsed
