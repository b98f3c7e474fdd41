"""Timeout policy layered on cancellation.

The scheduler has no timeout of its own.  A deadline is just a timer
that fires the same cancellation signal a user interrupt would:

- ``cancel_after(token, seconds)``  ─ arm a timer on any token
- ``deadline(token, seconds)``      ─ async context manager form, disarmed on exit
- ``TimeoutOperation(inner, s)``    ─ per-operation deadline; a cancellation
  caused by its own timer is reported as ``Failed(TimeoutExpired)``, while
  a cancellation coming from the batch token stays ``Cancelled``.  An
  operation that finishes its step anyway keeps its ``Completed`` outcome.

Examples:
    Whole-batch deadline:

    >>> async with deadline(token, 30.0, reason="batch timed out"):
    ...     result = await policy.execute(batch, token)

    Single slow operation:

    >>> op = TimeoutOperation(registry.build(call), seconds=10.0)

Tags:
    timeout, deadline, cancellation, toolspine
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from toolspine.core.errors import TimeoutExpired
from toolspine.core.logging import get_logger
from toolspine.execution.cancellation import CancellationToken
from toolspine.execution.operation import Cancelled, Completed, Failed, Operation, SupportsExecute

logger = get_logger(__name__)


def _validate(seconds: float) -> None:
    if seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {seconds}")


def cancel_after(
    token: CancellationToken,
    seconds: float,
    reason: str | None = None,
) -> asyncio.TimerHandle:
    """Cancel ``token`` after ``seconds``; returns the handle to disarm it.

    Must be called from a running event loop.
    """
    _validate(seconds)
    loop = asyncio.get_running_loop()
    return loop.call_later(seconds, token.cancel, reason or f"timed out after {seconds}s")


@asynccontextmanager
async def deadline(
    token: CancellationToken,
    seconds: float,
    reason: str | None = None,
):
    """Scope a deadline to a block; the timer is disarmed on exit."""
    handle = cancel_after(token, seconds, reason)
    try:
        yield handle
    finally:
        handle.cancel()


class TimeoutOperation(Operation):
    """Wrap an operation with its own deadline.

    Identity, name and the read-only flag are those of the inner
    operation, so wrapping never changes how a batch is classified.
    """

    def __init__(self, inner: SupportsExecute, seconds: float) -> None:
        _validate(seconds)
        super().__init__(
            inner.id,
            read_only=inner.is_read_only(),
            name=getattr(inner, "name", None),
        )
        self.inner = inner
        self.seconds = seconds
        self._expired = False

    @property
    def expired(self) -> bool:
        """Whether this operation's own timer fired."""
        return self._expired

    def _expire(self, child: CancellationToken) -> None:
        self._expired = True
        child.cancel(f"timed out after {self.seconds}s")

    async def produce(self, token: CancellationToken) -> AsyncIterator[Any]:
        child = token.child()
        handle = asyncio.get_running_loop().call_later(self.seconds, self._expire, child)
        stream = self.inner.execute(child)
        try:
            async for item in stream:
                if isinstance(item, Cancelled) and self._expired and not token.cancelled:
                    logger.info("operation.timed_out", operation_id=self.id, seconds=self.seconds)
                    yield Failed(
                        TimeoutExpired(self.seconds, operation=self.name).with_context(
                            operation_id=self.id, tool_name=self.name
                        )
                    )
                    return
                if isinstance(item, Completed) and self._expired:
                    logger.info(
                        "operation.finished_past_deadline", operation_id=self.id, seconds=self.seconds
                    )
                yield item
                if item.is_terminal:
                    return
        finally:
            handle.cancel()
            child.detach()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None and not getattr(stream, "ag_running", False):
                await aclose()


__all__ = ["cancel_after", "deadline", "TimeoutOperation"]
