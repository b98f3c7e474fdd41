"""Toolspine Core -- ambient primitives shared by the engine, tools and CLI.

Architecture::

    errors.py      Structured error hierarchy (ToolspineError + subclasses)
    logging.py     structlog configuration and context binding
    settings.py    ToolspineSettings snapshot (pydantic-settings)
"""

from toolspine.core.errors import (
    ContractViolation,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    InvalidToolInputError,
    OperationCancelled,
    OperationError,
    TimeoutExpired,
    ToolNotFoundError,
    ToolspineError,
    wrap_exception,
)
from toolspine.core.logging import configure_logging, get_logger
from toolspine.core.settings import ToolspineSettings, get_settings

__all__ = [
    "ContractViolation",
    "ErrorCategory",
    "ErrorContext",
    "InvalidConfigError",
    "InvalidToolInputError",
    "OperationCancelled",
    "OperationError",
    "TimeoutExpired",
    "ToolNotFoundError",
    "ToolspineError",
    "wrap_exception",
    "configure_logging",
    "get_logger",
    "ToolspineSettings",
    "get_settings",
]
