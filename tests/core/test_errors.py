"""Tests for the toolspine error hierarchy and helpers."""

import asyncio

import pydantic
import pytest

from toolspine.core.errors import (
    ContractViolation,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    InvalidToolInputError,
    OperationCancelled,
    OperationError,
    TimeoutExpired,
    ToolError,
    ToolNotFoundError,
    ToolspineError,
    categorize_error,
    is_retryable,
    wrap_exception,
)


class TestErrorDefaults:
    """Each subclass carries its own category and retry default."""

    @pytest.mark.parametrize(
        "error, category",
        [
            (OperationError("x"), ErrorCategory.EXECUTION),
            (OperationCancelled(), ErrorCategory.CANCELLED),
            (TimeoutExpired(1.5), ErrorCategory.TIMEOUT),
            (ContractViolation("x"), ErrorCategory.CONTRACT),
            (ToolNotFoundError("x"), ErrorCategory.NOT_FOUND),
            (InvalidToolInputError("x"), ErrorCategory.VALIDATION),
            (InvalidConfigError("x"), ErrorCategory.CONFIG),
        ],
    )
    def test_category(self, error, category):
        assert error.category is category

    def test_only_timeouts_are_retryable_by_default(self):
        assert TimeoutExpired(1.0).retryable is True
        assert OperationError("x").retryable is False

    def test_overrides(self):
        error = OperationError("x", category=ErrorCategory.IO, retryable=True)
        assert error.category is ErrorCategory.IO
        assert error.retryable is True

    def test_tool_errors_share_base(self):
        assert isinstance(ToolNotFoundError("x"), ToolError)
        assert isinstance(InvalidToolInputError("x"), ToolspineError)

    def test_timeout_message(self):
        error = TimeoutExpired(2.0, operation="bash")
        assert error.timeout == 2.0
        assert error.message == "Operation 'bash' timed out after 2.0s"

    def test_cancelled_default_message(self):
        assert OperationCancelled().message == "Operation cancelled"


class TestErrorContext:
    """Context is attached fluently and serialized without unset fields."""

    def test_with_context_known_fields(self):
        error = OperationError("boom").with_context(operation_id="c1", tool_name="grep", index=2)
        assert error.context.operation_id == "c1"
        assert error.context.tool_name == "grep"
        assert error.context.index == 2

    def test_with_context_unknown_goes_to_metadata(self):
        error = OperationError("boom").with_context(path="/tmp/x")
        assert error.context.metadata == {"path": "/tmp/x"}

    def test_context_to_dict_drops_none(self):
        ctx = ErrorContext(operation_id="c1", metadata={"k": "v"})
        assert ctx.to_dict() == {"operation_id": "c1", "k": "v"}

    def test_to_dict(self):
        cause = FileNotFoundError("missing.txt")
        error = OperationError("read failed", cause=cause).with_context(operation_id="c1")
        d = error.to_dict()
        assert d["error_type"] == "OperationError"
        assert d["message"] == "read failed"
        assert d["category"] == "EXECUTION"
        assert d["retryable"] is False
        assert d["context"] == {"operation_id": "c1"}
        assert d["cause"] == "FileNotFoundError: missing.txt"

    def test_cause_chained(self):
        cause = ValueError("bad")
        error = OperationError("wrapped", cause=cause)
        assert error.__cause__ is cause

    def test_repr(self):
        assert repr(ContractViolation("no terminal")) == "ContractViolation('no terminal', category=CONTRACT)"


class TestCategorize:
    """Raw exceptions map onto categories."""

    @pytest.mark.parametrize(
        "error, category",
        [
            (FileNotFoundError("x"), ErrorCategory.NOT_FOUND),
            (NotADirectoryError("x"), ErrorCategory.NOT_FOUND),
            (KeyError("x"), ErrorCategory.UNKNOWN),
            (IndexError(0), ErrorCategory.UNKNOWN),
            (PermissionError("x"), ErrorCategory.IO),
            (TimeoutError(), ErrorCategory.TIMEOUT),
            (asyncio.CancelledError(), ErrorCategory.CANCELLED),
            (ValueError("x"), ErrorCategory.VALIDATION),
            (TypeError("x"), ErrorCategory.VALIDATION),
            (RuntimeError("x"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_categorize(self, error, category):
        assert categorize_error(error) is category

    def test_pydantic_validation_error(self):
        class Model(pydantic.BaseModel):
            n: int

        with pytest.raises(pydantic.ValidationError) as exc_info:
            Model(n="not a number")
        assert categorize_error(exc_info.value) is ErrorCategory.VALIDATION

    def test_is_retryable(self):
        assert is_retryable(TimeoutError()) is True
        assert is_retryable(OSError("disk")) is True
        assert is_retryable(ValueError("x")) is False
        assert is_retryable(TimeoutExpired(1.0)) is True


class TestWrapException:
    """wrap_exception normalizes anything into a ToolspineError."""

    def test_wraps_raw_exception(self):
        raw = FileNotFoundError("missing.txt")
        wrapped = wrap_exception(raw, operation_id="c1")
        assert isinstance(wrapped, OperationError)
        assert wrapped.cause is raw
        assert wrapped.category is ErrorCategory.NOT_FOUND
        assert wrapped.context.operation_id == "c1"

    def test_keeps_toolspine_error(self):
        original = ToolNotFoundError("nope")
        wrapped = wrap_exception(original, tool_name="fetch")
        assert wrapped is original
        assert wrapped.context.tool_name == "fetch"

    def test_skips_none_context(self):
        wrapped = wrap_exception(ValueError("x"), operation_id=None, tool_name="grep")
        assert wrapped.context.operation_id is None
        assert wrapped.context.tool_name == "grep"

    def test_empty_message_uses_type_name(self):
        assert wrap_exception(RuntimeError()).message == "RuntimeError"
