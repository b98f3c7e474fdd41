"""Operation contract — lazy item streams with exactly one terminal outcome.

WHY
───
The scheduler must treat a file read, a regex search and a shell command
the same way.  Each is an ``Operation``: it declares up front whether it
is read-only, and when pulled it produces zero or more ``Progress``
items followed by exactly one terminal item (``Completed``, ``Failed``
or ``Cancelled``).  Failures are items, not exceptions, so the
scheduler's control flow is uniform: it always "gets an item".

ARCHITECTURE
────────────
::

    Operation (abstract)
      ├── id / read_only / name      ─ fixed at construction
      ├── produce(token)             ─ subclass hook (async generator)
      └── execute(token)             ─ contract driver, single use
            ├── checks the token before every pull
            ├── races each pull against token.wait()
            ├── exception  → Failed(ToolspineError)
            ├── interrupt  → Cancelled(reason), unless the step
            │                finishes anyway (run_to_completion)
            └── exhaustion → Completed(None)

    Items                            Envelope
    ─────                            ────────
    Progress(data)     non-terminal  ResultEnvelope(index, operation_id, item)
    Completed(value)   terminal        tags an item with its submission
    Failed(error)      terminal        position for later reordering
    Cancelled(reason)  terminal

Related modules:
    scheduler.py  — pulls items from many operations at once
    dispatch.py   — classifies batches by ``is_read_only()``
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol, TypeVar, runtime_checkable

from toolspine.core.errors import (
    OperationCancelled,
    ToolspineError,
    wrap_exception,
)
from toolspine.core.logging import get_logger
from toolspine.execution.cancellation import DEFAULT_REASON, CancellationToken

logger = get_logger(__name__)

T = TypeVar("T")


# ── Items ────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Progress:
    """Intermediate, non-terminal item."""

    data: Any = None

    is_terminal: ClassVar[bool] = False
    status: ClassVar[str] = "progress"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "data": self.data}


@dataclass(frozen=True, slots=True)
class Completed:
    """Successful terminal outcome."""

    value: Any = None

    is_terminal: ClassVar[bool] = True
    status: ClassVar[str] = "completed"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "value": self.value}


@dataclass(frozen=True, slots=True)
class Failed:
    """Failed terminal outcome; the error is data, never raised by the engine."""

    error: ToolspineError

    is_terminal: ClassVar[bool] = True
    status: ClassVar[str] = "failed"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "error": self.error.to_dict()}


@dataclass(frozen=True, slots=True)
class Cancelled:
    """Terminal outcome of an operation stopped by its cancellation token."""

    reason: str = DEFAULT_REASON

    is_terminal: ClassVar[bool] = True
    status: ClassVar[str] = "cancelled"

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "reason": self.reason}


Item = Progress | Completed | Failed | Cancelled
Outcome = Completed | Failed | Cancelled


def as_item(raw: Any, *, operation_id: str | None = None) -> Item:
    """Normalize a produced value into an ``Item``.

    Bare values count as progress; ``Failed`` items carrying a raw
    exception get it wrapped into a ``ToolspineError``.
    """
    if isinstance(raw, Failed):
        if isinstance(raw.error, ToolspineError):
            if operation_id and raw.error.context.operation_id is None:
                raw.error.with_context(operation_id=operation_id)
            return raw
        return Failed(wrap_exception(raw.error, operation_id=operation_id))
    if isinstance(raw, (Progress, Completed, Cancelled)):
        return raw
    return Progress(raw)


@dataclass(frozen=True, slots=True)
class ResultEnvelope:
    """An item tagged with the submission position of its operation."""

    index: int
    operation_id: str
    item: Item

    @property
    def is_terminal(self) -> bool:
        return self.item.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "operation_id": self.operation_id, **self.item.to_dict()}


# ── Contract ─────────────────────────────────────────────────────────


@runtime_checkable
class SupportsExecute(Protocol):
    """Structural contract the scheduler relies on.

    ``Operation`` is the canonical implementation; anything else with
    the same shape can be scheduled too, and the scheduler guards
    against it breaking the item-stream contract.
    """

    @property
    def id(self) -> str: ...

    def is_read_only(self) -> bool: ...

    def execute(self, token: CancellationToken) -> AsyncIterator[Item]: ...


_EXHAUSTED = object()


async def _pull(stream: AsyncIterator[Any]) -> Any:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


class _Interrupted(Exception):
    """The pending pull lost the race against the cancellation token."""


class Operation(ABC):
    """Base class for units of work.

    Subclasses implement :meth:`produce` as an async generator that
    yields ``Progress`` items (or bare values) and finally a terminal
    item, or simply raises on failure.  :meth:`execute` wraps it so the
    contract holds no matter what ``produce`` does.

    Parameters
    ----------
    id : str
        Stable identity, used only to line results up with requests.
    read_only : bool
        ``True`` if the operation has no side effects.  Fixed for life.
    name : str, optional
        Human-readable kind (tool name) for logs.
    """

    name: str = "operation"

    def __init__(self, id: str, *, read_only: bool = False, name: str | None = None) -> None:
        self._id = id
        self._read_only = bool(read_only)
        if name is not None:
            self.name = name
        self._claimed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self._id!r}, read_only={self._read_only})"

    @property
    def id(self) -> str:
        return self._id

    @property
    def read_only(self) -> bool:
        return self._read_only

    def is_read_only(self) -> bool:
        return self._read_only

    @property
    def started(self) -> bool:
        """Whether :meth:`execute` has been called."""
        return self._claimed

    @abstractmethod
    def produce(self, token: CancellationToken) -> AsyncIterator[Any]:
        """Yield progress items and a terminal item (async generator)."""

    def execute(self, token: CancellationToken) -> AsyncIterator[Item]:
        """Return the lazy, single-use item stream of this operation.

        Nothing runs until the first item is pulled.

        Raises:
            RuntimeError: If the operation was already executed.
        """
        if self._claimed:
            raise RuntimeError(f"operation {self._id!r} has already been executed")
        self._claimed = True
        return self._drive(token)

    async def _drive(self, token: CancellationToken) -> AsyncIterator[Item]:
        if token.cancelled:
            yield Cancelled(token.reason or DEFAULT_REASON)
            return

        logger.debug("operation.started", operation_id=self._id, tool=self.name)
        stream = self.produce(token)
        pending: list[asyncio.Future] = []
        terminal: Item | None = None
        try:
            while terminal is None:
                if token.cancelled:
                    terminal = Cancelled(token.reason or DEFAULT_REASON)
                    break
                try:
                    raw = await self._next_or_interrupt(stream, token, pending)
                except _Interrupted:
                    terminal = Cancelled(token.reason or DEFAULT_REASON)
                    break
                except OperationCancelled as exc:
                    terminal = Cancelled(exc.message)
                    break
                except Exception as exc:
                    terminal = Failed(wrap_exception(exc, operation_id=self._id, tool_name=self.name))
                    break

                if raw is _EXHAUSTED:
                    terminal = Completed(None)
                    break
                item = as_item(raw, operation_id=self._id)
                if item.is_terminal:
                    terminal = item
                else:
                    yield item
        finally:
            if not any(not f.done() for f in pending):
                await stream.aclose()

        if isinstance(terminal, Failed):
            logger.warning(
                "operation.failed",
                operation_id=self._id,
                tool=self.name,
                **terminal.error.to_dict(),
            )
        else:
            logger.debug("operation.finished", operation_id=self._id, status=terminal.status)
        yield terminal

    @staticmethod
    async def _next_or_interrupt(
        stream: AsyncIterator[Any],
        token: CancellationToken,
        pending: list[asyncio.Future],
    ) -> Any:
        step = asyncio.ensure_future(_pull(stream))
        waiter = asyncio.ensure_future(token.wait())
        pending[:] = [step]
        try:
            await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            step.cancel()
            waiter.cancel()
            raise

        if not step.done():
            # Cancelled mid-step: interrupt the blocking await inside produce().
            step.cancel()
            await asyncio.wait({step})
            if step.cancelled():
                raise _Interrupted()
            # The step ran to completion anyway (see run_to_completion).
            return step.result()

        waiter.cancel()
        if step.cancelled():
            raise _Interrupted()
        return step.result()


async def run_to_completion(fn: Callable[..., T], /, *args: Any) -> T:
    """Run blocking ``fn(*args)`` in a worker thread and always wait for it.

    A worker thread cannot be interrupted.  Operations with side effects
    use this so that no terminal item is produced while the thread is
    still changing things.  If the awaiting task is cancelled meanwhile,
    the cancellation is withdrawn and the call's own result is returned
    (or its own exception raised).
    """
    work = asyncio.ensure_future(asyncio.to_thread(fn, *args))
    interrupts = 0
    try:
        while True:
            try:
                return await asyncio.shield(work)
            except asyncio.CancelledError:
                if work.cancelled():
                    raise
                interrupts += 1
    finally:
        task = asyncio.current_task()
        if interrupts and task is not None and not work.cancelled():
            for _ in range(interrupts):
                task.uncancel()
            logger.debug("operation.ran_to_completion", fn=getattr(fn, "__name__", repr(fn)))


class FunctionOperation(Operation):
    """Adapt ``async def fn(token) -> value`` into an operation.

    Example::

        op = FunctionOperation("call-1", fetch_page, read_only=True)
    """

    def __init__(
        self,
        id: str,
        fn: Callable[[CancellationToken], Awaitable[Any]],
        *,
        read_only: bool = False,
        name: str | None = None,
    ) -> None:
        super().__init__(id, read_only=read_only, name=name or getattr(fn, "__name__", None))
        self._fn = fn

    async def produce(self, token: CancellationToken) -> AsyncIterator[Any]:
        yield Completed(await self._fn(token))


Batch = Sequence[SupportsExecute]


__all__ = [
    "Progress",
    "Completed",
    "Failed",
    "Cancelled",
    "Item",
    "Outcome",
    "as_item",
    "ResultEnvelope",
    "SupportsExecute",
    "Operation",
    "FunctionOperation",
    "run_to_completion",
    "Batch",
]
