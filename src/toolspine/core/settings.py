"""
Centralized settings for toolspine.

Manifesto:
    The engine itself never reads ambient configuration.  A validated
    ``ToolspineSettings`` snapshot is loaded once (environment + ``.env``)
    and handed explicitly to the dispatcher, so the scheduler and the
    dispatch policy stay pure and testable in isolation.

Fields
──────
max_concurrency            : Concurrency window of the fan-out scheduler
cancel_grace_seconds       : How long an active operation may take to honor cancellation
batch_timeout_seconds      : Optional whole-batch deadline (cancels the batch token)
operation_timeout_seconds  : Optional per-operation deadline
max_output_chars           : Truncation bound for tool outputs
log_level / log_format     : structlog configuration

Examples:
    >>> import os
    >>> os.environ["TOOLSPINE_MAX_CONCURRENCY"] = "4"
    >>> get_settings(_force_reload=True).max_concurrency
    4

Tags:
    toolspine, configuration, settings, pydantic, caching
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_CONCURRENCY = 10


class ToolspineSettings(BaseSettings):
    """Toolspine configuration.

    All fields can be set via ``TOOLSPINE_*`` environment variables (e.g.
    ``TOOLSPINE_MAX_CONCURRENCY=4``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Scheduling ───────────────────────────────────────────────
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, ge=1)
    cancel_grace_seconds: float = Field(default=5.0, gt=0)

    # ── Deadlines ────────────────────────────────────────────────
    batch_timeout_seconds: float | None = Field(default=None, gt=0)
    operation_timeout_seconds: float | None = Field(default=None, gt=0)

    # ── Tools ────────────────────────────────────────────────────
    max_output_chars: int = Field(default=100_000, ge=1)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="auto", description="json | console | auto")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in {"json", "console", "auto"}:
            raise ValueError(f"unknown log format: {value}")
        return fmt

    @property
    def json_logs(self) -> bool | None:
        """``configure_logging`` flag derived from ``log_format``."""
        return {"json": True, "console": False}.get(self.log_format)


_settings_cache: dict[str, ToolspineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> ToolspineSettings:
    """Load, validate, and cache a :class:`ToolspineSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = ToolspineSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "DEFAULT_MAX_CONCURRENCY",
    "ToolspineSettings",
    "get_settings",
    "clear_settings_cache",
]
