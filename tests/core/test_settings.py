"""Tests for ToolspineSettings and the settings cache."""

import pydantic
import pytest

from toolspine.core.settings import (
    DEFAULT_MAX_CONCURRENCY,
    ToolspineSettings,
    clear_settings_cache,
    get_settings,
)


class TestDefaults:
    def test_defaults(self):
        settings = ToolspineSettings(_env_file=None)
        assert settings.max_concurrency == DEFAULT_MAX_CONCURRENCY == 10
        assert settings.cancel_grace_seconds == 5.0
        assert settings.batch_timeout_seconds is None
        assert settings.operation_timeout_seconds is None
        assert settings.max_output_chars == 100_000
        assert settings.log_level == "INFO"
        assert settings.log_format == "auto"


class TestEnvironment:
    """TOOLSPINE_* variables override defaults."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TOOLSPINE_MAX_CONCURRENCY", "4")
        monkeypatch.setenv("TOOLSPINE_BATCH_TIMEOUT_SECONDS", "30")
        settings = ToolspineSettings(_env_file=None)
        assert settings.max_concurrency == 4
        assert settings.batch_timeout_seconds == 30.0

    def test_init_kwargs_win_over_env(self, monkeypatch):
        monkeypatch.setenv("TOOLSPINE_MAX_CONCURRENCY", "4")
        assert ToolspineSettings(_env_file=None, max_concurrency=2).max_concurrency == 2

    def test_unknown_keys_ignored(self, monkeypatch):
        monkeypatch.setenv("TOOLSPINE_NOT_A_SETTING", "x")
        ToolspineSettings(_env_file=None)


class TestValidation:
    @pytest.mark.parametrize(
        "field, value",
        [
            ("max_concurrency", 0),
            ("cancel_grace_seconds", 0),
            ("batch_timeout_seconds", -1),
            ("operation_timeout_seconds", 0),
            ("log_level", "LOUD"),
            ("log_format", "xml"),
        ],
    )
    def test_rejects_invalid(self, field, value):
        with pytest.raises(pydantic.ValidationError):
            ToolspineSettings(_env_file=None, **{field: value})

    def test_log_level_normalized(self):
        assert ToolspineSettings(_env_file=None, log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize("fmt, expected", [("json", True), ("console", False), ("auto", None)])
    def test_json_logs(self, fmt, expected):
        assert ToolspineSettings(_env_file=None, log_format=fmt).json_logs is expected


class TestCache:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("TOOLSPINE_MAX_CONCURRENCY", "3")
        assert get_settings().max_concurrency == first.max_concurrency
        assert get_settings(_force_reload=True).max_concurrency == 3

    def test_clear(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
