"""Tests for the Operation contract, item types and envelopes."""

import asyncio
import threading
import time

import pytest

from tests._support import collect
from toolspine.core.errors import ErrorCategory, OperationCancelled, OperationError, ToolspineError
from toolspine.execution import (
    CancellationToken,
    Cancelled,
    Completed,
    Failed,
    FunctionOperation,
    Operation,
    Progress,
    ResultEnvelope,
    SupportsExecute,
    as_item,
    run_to_completion,
)


class Producer(Operation):
    """Operation whose produce() is supplied as a function."""

    def __init__(self, fn, *, read_only=True):
        super().__init__("p", read_only=read_only)
        self._fn = fn

    def produce(self, token):
        return self._fn(token)


# ── Items ────────────────────────────────────────────────────────────


class TestItems:
    def test_terminal_flags(self):
        assert Progress(1).is_terminal is False
        assert Completed(1).is_terminal is True
        assert Failed(OperationError("x")).is_terminal is True
        assert Cancelled("x").is_terminal is True

    def test_to_dict(self):
        assert Completed({"a": 1}).to_dict() == {"status": "completed", "value": {"a": 1}}
        assert Cancelled("stop").to_dict() == {"status": "cancelled", "reason": "stop"}
        assert Failed(OperationError("x")).to_dict()["error"]["message"] == "x"

    def test_as_item_bare_value_is_progress(self):
        assert as_item("line") == Progress("line")

    def test_as_item_wraps_raw_error(self):
        item = as_item(Failed(ValueError("bad")), operation_id="c1")
        assert isinstance(item.error, ToolspineError)
        assert item.error.context.operation_id == "c1"

    def test_envelope(self):
        envelope = ResultEnvelope(2, "c", Completed("v"))
        assert envelope.is_terminal
        assert envelope.to_dict() == {"index": 2, "operation_id": "c", "status": "completed", "value": "v"}


# ── Contract ─────────────────────────────────────────────────────────


class TestContract:
    def test_read_only_fixed(self, scripted):
        op = scripted("a", read_only=False)
        assert op.is_read_only() is False
        assert op.read_only is False
        assert isinstance(op, SupportsExecute)

    @pytest.mark.asyncio
    async def test_lazy_until_pulled(self, scripted, tracker):
        op = scripted("a")
        stream = op.execute(CancellationToken())
        assert op.started is True
        assert tracker.started == []
        await collect(stream)
        assert tracker.started == ["a"]

    @pytest.mark.asyncio
    async def test_single_use(self, scripted):
        op = scripted("a")
        await collect(op.execute(CancellationToken()))
        with pytest.raises(RuntimeError):
            op.execute(CancellationToken())

    @pytest.mark.asyncio
    async def test_progress_then_terminal(self, scripted):
        items = await collect(scripted("a", progress=[1, 2]).execute(CancellationToken()))
        assert items == [Progress(1), Progress(2), Completed("a")]

    @pytest.mark.asyncio
    async def test_exception_becomes_failed(self, scripted):
        items = await collect(scripted("a", error=FileNotFoundError("gone")).execute(CancellationToken()))
        (terminal,) = items
        assert isinstance(terminal, Failed)
        assert terminal.error.category is ErrorCategory.NOT_FOUND
        assert terminal.error.context.operation_id == "a"

    @pytest.mark.asyncio
    async def test_operation_cancelled_becomes_cancelled(self, scripted):
        items = await collect(scripted("a", error=OperationCancelled("user stop")).execute(CancellationToken()))
        assert items == [Cancelled("user stop")]

    @pytest.mark.asyncio
    async def test_exhaustion_completes_with_none(self):
        async def produce(token):
            yield "working"

        items = await collect(Producer(produce).execute(CancellationToken()))
        assert items == [Progress("working"), Completed(None)]

    @pytest.mark.asyncio
    async def test_items_after_terminal_ignored(self):
        async def produce(token):
            yield Completed(1)
            yield Completed(2)

        assert await collect(Producer(produce).execute(CancellationToken())) == [Completed(1)]

    @pytest.mark.asyncio
    async def test_failed_item_passed_through(self):
        error = OperationError("explicit")

        async def produce(token):
            yield Failed(error)

        (terminal,) = await collect(Producer(produce).execute(CancellationToken()))
        assert terminal.error is error


# ── Cancellation ─────────────────────────────────────────────────────


class TestCancellation:
    @pytest.mark.asyncio
    async def test_pre_cancelled_token_never_runs(self, scripted, tracker):
        token = CancellationToken()
        token.cancel("too late")
        items = await collect(scripted("a").execute(token))
        assert items == [Cancelled("too late")]
        assert tracker.started == []

    @pytest.mark.asyncio
    async def test_blocked_step_is_interrupted(self, scripted, tracker):
        token = CancellationToken()
        op = scripted("a", delay=10.0)
        asyncio.get_running_loop().call_later(0.05, token.cancel, "interrupted")
        items = await asyncio.wait_for(collect(op.execute(token)), 2.0)
        assert items == [Cancelled("interrupted")]
        assert tracker.finished == ["a"]

    @pytest.mark.asyncio
    async def test_token_checked_between_items(self):
        token = CancellationToken()

        async def produce(tok):
            yield "first"
            token.cancel("stop")
            yield "second"
            yield Completed("never")

        items = await collect(Producer(produce).execute(token))
        assert items[0] == Progress("first")
        assert items[-1] == Cancelled("stop")
        assert Completed("never") not in items


class TestFunctionOperation:
    @pytest.mark.asyncio
    async def test_value(self):
        async def fetch(token):
            return 42

        op = FunctionOperation("f", fetch, read_only=True)
        assert op.name == "fetch"
        assert await collect(op.execute(CancellationToken())) == [Completed(42)]

    @pytest.mark.asyncio
    async def test_raises(self):
        async def broken(token):
            raise ValueError("bad input")

        (terminal,) = await collect(FunctionOperation("f", broken).execute(CancellationToken()))
        assert isinstance(terminal, Failed)
        assert terminal.error.category is ErrorCategory.VALIDATION


class TestRunToCompletion:
    @pytest.mark.asyncio
    async def test_returns_value(self):
        assert await run_to_completion(sum, [1, 2, 3]) == 6

    @pytest.mark.asyncio
    async def test_interrupted_step_finishes_and_completes(self):
        token = CancellationToken()
        done = threading.Event()

        def blocking_write() -> str:
            time.sleep(0.2)
            done.set()
            return "written"

        async def write(tok):
            return await run_to_completion(blocking_write)

        asyncio.get_running_loop().call_later(0.02, token.cancel, "stop")
        items = await collect(FunctionOperation("w", write).execute(token))
        assert done.is_set()
        assert items == [Completed("written")]

    @pytest.mark.asyncio
    async def test_interrupted_step_error_is_reported(self):
        token = CancellationToken()

        def failing_write() -> None:
            time.sleep(0.1)
            raise PermissionError("read-only file system")

        async def write(tok):
            return await run_to_completion(failing_write)

        asyncio.get_running_loop().call_later(0.02, token.cancel, "stop")
        (terminal,) = await collect(FunctionOperation("w", write).execute(token))
        assert isinstance(terminal, Failed)
        assert terminal.error.category is ErrorCategory.IO
