"""
Shared pytest fixtures and configuration for toolspine tests.

This module provides:
- Location-based markers (unit / integration)
- Settings and structlog isolation between tests
- Factories for scripted operations and tool registries

Usage:
    Fixtures are auto-discovered by pytest::

        async def test_something(scripted, tracker):
            op = scripted("a", delay=0.01)
"""

import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

# Ensure toolspine and tests._support are importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from tests._support import ScriptedOperation, Tracker  # noqa: E402
from toolspine.core.settings import ToolspineSettings, clear_settings_cache  # noqa: E402
from toolspine.tools import ToolRegistry, default_registry  # noqa: E402


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        # Tools and CLI touch the file system or spawn processes
        if test_path.parts[0] in {"tools", "cli"}:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Drop cached settings and any TOOLSPINE_* variables from the environment."""
    import os

    for key in list(os.environ):
        if key.startswith("TOOLSPINE_"):
            monkeypatch.delenv(key)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo configure_logging() calls so no test writes to another test's stream."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Operation Fixtures
# =============================================================================


@pytest.fixture
def tracker() -> Tracker:
    return Tracker()


@pytest.fixture
def scripted(tracker: Tracker) -> Callable[..., ScriptedOperation]:
    """
    Factory for scripted operations sharing one tracker.

        op = scripted("a", delay=0.05, read_only=False)
    """

    def make(op_id: str, **kwargs: Any) -> ScriptedOperation:
        kwargs.setdefault("tracker", tracker)
        return ScriptedOperation(op_id, **kwargs)

    return make


# =============================================================================
# Tool Fixtures
# =============================================================================


@pytest.fixture
def settings() -> ToolspineSettings:
    return ToolspineSettings(_env_file=None)


@pytest.fixture
def registry(tmp_path: Path, settings: ToolspineSettings) -> ToolRegistry:
    """Default registry rooted at a fresh temporary directory."""
    return default_registry(tmp_path, settings)
