"""
Structured error types for toolspine.

Operations fail in many ways: a file is missing, a command is cancelled,
a timer expires, a tool call names a tool nobody registered.  The engine
never lets these escape as control flow out of a batch; it carries them
as data inside terminal ``Failed`` items.  To make that data useful,
every failure is normalized into a ``ToolspineError`` that knows its
category, whether a retry could help, and which operation it came from.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ToolspineError                             │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  OperationError     OperationCancelled    TimeoutExpired         │
        │  (EXECUTION)        (CANCELLED)           (TIMEOUT, retryable)   │
        │                                                                  │
        │  ContractViolation  ToolError             ConfigError            │
        │  (CONTRACT)         (EXECUTION)           (CONFIG)               │
        │                         │                     │                  │
        │                  ToolNotFoundError     InvalidConfigError        │
        │                  InvalidToolInputError                           │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = OperationError("read failed").with_context(operation_id="call-1")
    >>> error.context.operation_id
    'call-1'
    >>> wrap_exception(FileNotFoundError("missing.txt")).category
    <ErrorCategory.NOT_FOUND: 'NOT_FOUND'>

Guardrails:
    ❌ DON'T: Put raw exceptions into Failed items
    ✅ DO: Normalize with wrap_exception() so category and context survive

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, errors-as-data, toolspine
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import pydantic


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    EXECUTION = "EXECUTION"       # Operation's own logic failed
    CANCELLED = "CANCELLED"       # Cooperative cancellation
    TIMEOUT = "TIMEOUT"           # Timer-triggered cancellation
    VALIDATION = "VALIDATION"     # Bad tool input, bad arguments
    NOT_FOUND = "NOT_FOUND"       # Missing file, unknown tool
    IO = "IO"                     # Disk, pipe, subprocess
    CONFIG = "CONFIG"             # Invalid settings
    CONTRACT = "CONTRACT"         # Operation broke the item-stream contract
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        batch_id: Batch the failing operation belonged to
        operation_id: Identity of the failing operation
        tool_name: Tool behind the operation, when there is one
        index: Submission position of the operation in its batch
        metadata: Additional key-value pairs
    """

    batch_id: str | None = None
    operation_id: str | None = None
    tool_name: str | None = None
    index: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging, dropping unset fields."""
        result = {}
        for key in ["batch_id", "operation_id", "tool_name", "index"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ToolspineError(Exception):
    """
    Base exception for all toolspine errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their domain; callers can still override both
    per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ToolspineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ToolNotFoundError("no such tool").with_context(tool_name="fetch")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class OperationError(ToolspineError):
    """An operation's own logic failed (missing file, bad command, ...)."""

    default_category = ErrorCategory.EXECUTION


class OperationCancelled(ToolspineError):
    """Raised inside an operation when its cancellation token has fired."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "Operation cancelled", **kwargs: Any):
        super().__init__(message, **kwargs)


class TimeoutExpired(ToolspineError):
    """An operation or batch ran past its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        operation: Name/description of what timed out
    """

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(self, timeout: float, operation: str = "operation", **kwargs: Any):
        self.timeout = timeout
        self.operation = operation
        super().__init__(f"Operation '{operation}' timed out after {timeout}s", **kwargs)


class ContractViolation(ToolspineError):
    """An operation broke the item-stream contract."""

    default_category = ErrorCategory.CONTRACT


# =============================================================================
# TOOL ERRORS
# =============================================================================


class ToolError(ToolspineError):
    """Base for errors raised while resolving or building tool calls."""

    default_category = ErrorCategory.EXECUTION


class ToolNotFoundError(ToolError):
    """A tool call named a tool that is not registered."""

    default_category = ErrorCategory.NOT_FOUND


class InvalidToolInputError(ToolError):
    """A tool call's input failed validation."""

    default_category = ErrorCategory.VALIDATION


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(ToolspineError):
    """Configuration is missing or invalid."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """A configuration value is out of range or malformed."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ToolspineError):
        return error.category
    if isinstance(error, asyncio.CancelledError):
        return ErrorCategory.CANCELLED
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (FileNotFoundError, NotADirectoryError)):
        return ErrorCategory.NOT_FOUND
    if isinstance(error, OSError):
        return ErrorCategory.IO
    if isinstance(error, (ValueError, TypeError, pydantic.ValidationError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ToolspineError):
        return error.retryable
    return categorize_error(error) in (ErrorCategory.TIMEOUT, ErrorCategory.IO)


def wrap_exception(error: BaseException, **context: Any) -> ToolspineError:
    """Normalize any exception into a ``ToolspineError``.

    Toolspine errors are returned as-is (with the extra context applied);
    anything else becomes an ``OperationError`` whose category is derived
    from the exception type and whose ``cause`` is the original.
    """
    if isinstance(error, ToolspineError):
        wrapped = error
    else:
        message = str(error) or type(error).__name__
        wrapped = OperationError(
            message,
            category=categorize_error(error),
            retryable=is_retryable(error),
            cause=error,
        )
    if context:
        wrapped.with_context(**{k: v for k, v in context.items() if v is not None})
    return wrapped


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ToolspineError",
    "OperationError",
    "OperationCancelled",
    "TimeoutExpired",
    "ContractViolation",
    "ToolError",
    "ToolNotFoundError",
    "InvalidToolInputError",
    "ConfigError",
    "InvalidConfigError",
    "categorize_error",
    "is_retryable",
    "wrap_exception",
]
