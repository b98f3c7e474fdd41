"""Bounded Fan-Out Scheduler — race many operations, keep the window full.

WHY
───
An agent loop often asks for several independent reads at once.  Running
them one by one wastes wall-clock time; running all of them at once is
unbounded.  The scheduler runs at most ``max_concurrency`` operations,
yields every item the moment it is produced, and starts the next queued
operation in the same step a slot frees up, so the window never idles
while work is waiting.

ARCHITECTURE
────────────
::

    FanOutScheduler(max_concurrency=10, cancel_grace_seconds=5.0)
      └── .run(batch, token)  ─ async generator of ResultEnvelope

    queue (FIFO)        active slots (≤ max_concurrency)
    ────────────        ─────────────────────────────────
    op3 op4 op5   ──►   op1: pull-task ┐
                        op2: pull-task ├─ asyncio.wait(FIRST_COMPLETED)
                        token.wait()   ┘
         ▲                     │
         │    terminal item    │ non-terminal item
         └──── refill slot ◄───┤───► re-pull same op
                               ▼
                      yield ResultEnvelope(index, id, item)

    Cancellation
      1. stop starting queued operations, report them Cancelled
      2. keep draining active operations until their own terminal item
      3. after cancel_grace_seconds, abandon stragglers as Cancelled

Related modules:
    operation.py  — item types and the per-operation contract
    serial.py     — the same loop with a window of one
    dispatch.py   — decides which runner a batch gets
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import Any

from toolspine.core.errors import ContractViolation, InvalidConfigError
from toolspine.core.logging import get_logger
from toolspine.core.settings import DEFAULT_MAX_CONCURRENCY
from toolspine.execution.cancellation import DEFAULT_REASON, CancellationToken
from toolspine.execution.operation import (
    _EXHAUSTED,
    _pull,
    Cancelled,
    Failed,
    ResultEnvelope,
    SupportsExecute,
    as_item,
)

logger = get_logger(__name__)

# Pull tasks given up on after the grace period; held until they finish.
_abandoned: set[asyncio.Task] = set()


def _abandon(task: asyncio.Task) -> None:
    task.cancel()
    _abandoned.add(task)

    def _reap(t: asyncio.Task) -> None:
        _abandoned.discard(t)
        if not t.cancelled():
            t.exception()

    task.add_done_callback(_reap)


@dataclass
class _Slot:
    index: int
    operation: SupportsExecute
    stream: AsyncIterator[Any]

    @property
    def operation_id(self) -> str:
        return self.operation.id


@dataclass
class SchedulerStats:
    """Counters of one scheduler run, for logging and assertions."""

    started: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    abandoned: int = 0
    peak_active: int = 0
    started_order: list[str] = field(default_factory=list)

    def record(self, status: str) -> None:
        if status == "completed":
            self.completed += 1
        elif status == "failed":
            self.failed += 1
        elif status == "cancelled":
            self.cancelled += 1


class FanOutScheduler:
    """Runs up to ``max_concurrency`` operations at once.

    Parameters
    ----------
    max_concurrency : int
        Size of the concurrency window (default 10).
    cancel_grace_seconds : float
        After cancellation, how long an active operation may take to
        surface its own terminal item before it is abandoned.
    """

    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        cancel_grace_seconds: float = 5.0,
    ) -> None:
        if max_concurrency < 1:
            raise InvalidConfigError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if cancel_grace_seconds <= 0:
            raise InvalidConfigError(
                f"cancel_grace_seconds must be positive, got {cancel_grace_seconds}"
            )
        self._max_concurrency = max_concurrency
        self._grace = cancel_grace_seconds
        self.stats = SchedulerStats()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    async def run(
        self,
        batch: Iterable[SupportsExecute],
        token: CancellationToken | None = None,
    ) -> AsyncIterator[ResultEnvelope]:
        """Yield result envelopes in completion order.

        Every operation in ``batch`` ends with exactly one terminal
        envelope: completed, failed, or cancelled.  An empty batch yields
        nothing and starts nothing.
        """
        token = token or CancellationToken()
        queue = deque(enumerate(batch))
        if not queue:
            return

        self.stats = stats = SchedulerStats()
        active: dict[asyncio.Future, _Slot] = {}
        cancel_waiter = asyncio.ensure_future(token.wait())
        window = min(len(queue), self._max_concurrency)
        logger.debug(
            "scheduler.started",
            size=len(queue),
            max_concurrency=self._max_concurrency,
            window=window,
        )

        try:
            for envelope in self._fill(queue, active, token):
                yield envelope

            while active and not token.cancelled:
                done, _ = await asyncio.wait(
                    set(active) | {cancel_waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in sorted(
                    (t for t in done if t in active), key=lambda t: active[t].index
                ):
                    slot = active.pop(task)
                    envelope = self._take(slot, task)
                    if envelope.is_terminal:
                        await self._close(slot)
                        stats.record(envelope.item.status)
                        # Refill before yielding so the window stays full
                        # while the consumer handles this envelope.
                        refill = self._fill(queue, active, token)
                        yield envelope
                        for extra in refill:
                            yield extra
                    else:
                        self._schedule(slot, active)
                        yield envelope

            if token.cancelled:
                async for envelope in self._drain(queue, active, token):
                    yield envelope
        finally:
            cancel_waiter.cancel()
            for task in list(active):
                _abandon(task)
            active.clear()

        logger.debug(
            "scheduler.finished",
            started=stats.started,
            completed=stats.completed,
            failed=stats.failed,
            cancelled=stats.cancelled,
            abandoned=stats.abandoned,
            peak_active=stats.peak_active,
        )

    # ── Slot management ──────────────────────────────────────────────

    def _fill(
        self,
        queue: deque,
        active: dict[asyncio.Future, _Slot],
        token: CancellationToken,
    ) -> list[ResultEnvelope]:
        """Start queued operations until the window is full.

        Returns envelopes for operations that failed to start at all.
        """
        failures: list[ResultEnvelope] = []
        while queue and len(active) < self._max_concurrency and not token.cancelled:
            index, operation = queue.popleft()
            self.stats.started += 1
            self.stats.started_order.append(operation.id)
            try:
                stream = operation.execute(token)
            except Exception as exc:
                error = ContractViolation(
                    f"operation {operation.id!r} could not be started: {exc}", cause=exc
                ).with_context(operation_id=operation.id, index=index)
                logger.error("scheduler.start_failed", operation_id=operation.id, error=str(exc))
                self.stats.record("failed")
                failures.append(ResultEnvelope(index, operation.id, Failed(error)))
                continue
            self._schedule(_Slot(index, operation, stream), active)
            self.stats.peak_active = max(self.stats.peak_active, len(active))
        return failures

    @staticmethod
    def _schedule(slot: _Slot, active: dict[asyncio.Future, _Slot]) -> None:
        active[asyncio.ensure_future(_pull(slot.stream))] = slot

    @staticmethod
    def _take(slot: _Slot, task: asyncio.Future) -> ResultEnvelope:
        """Turn a finished pull into an envelope, enforcing the contract."""
        if task.cancelled():
            item = Cancelled(DEFAULT_REASON)
        elif (exc := task.exception()) is not None:
            error = ContractViolation(
                f"operation {slot.operation_id!r} raised instead of yielding a failure: {exc}",
                cause=exc,
            ).with_context(operation_id=slot.operation_id, index=slot.index)
            logger.error("scheduler.contract_violation", operation_id=slot.operation_id, error=str(exc))
            item = Failed(error)
        elif (raw := task.result()) is _EXHAUSTED:
            error = ContractViolation(
                f"operation {slot.operation_id!r} ended without a terminal item"
            ).with_context(operation_id=slot.operation_id, index=slot.index)
            logger.error("scheduler.contract_violation", operation_id=slot.operation_id, error=error.message)
            item = Failed(error)
        else:
            item = as_item(raw, operation_id=slot.operation_id)
        return ResultEnvelope(slot.index, slot.operation_id, item)

    @staticmethod
    async def _close(slot: _Slot) -> None:
        aclose = getattr(slot.stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as exc:
            logger.warning("scheduler.close_failed", operation_id=slot.operation_id, error=str(exc))

    # ── Cancellation ─────────────────────────────────────────────────

    async def _drain(
        self,
        queue: deque,
        active: dict[asyncio.Future, _Slot],
        token: CancellationToken,
    ) -> AsyncIterator[ResultEnvelope]:
        reason = token.reason or DEFAULT_REASON
        logger.info(
            "scheduler.cancelling",
            reason=reason,
            active=len(active),
            queued=len(queue),
        )
        while queue:
            index, operation = queue.popleft()
            self.stats.record("cancelled")
            yield ResultEnvelope(index, operation.id, Cancelled(reason))

        deadline = time.monotonic() + self._grace
        while active:
            remaining = deadline - time.monotonic()
            done: set[asyncio.Future] = set()
            if remaining > 0:
                done, _ = await asyncio.wait(
                    set(active), timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
            if not done:
                for task, slot in sorted(active.items(), key=lambda kv: kv[1].index):
                    logger.warning(
                        "scheduler.abandoned",
                        operation_id=slot.operation_id,
                        grace_seconds=self._grace,
                    )
                    _abandon(task)
                    self.stats.abandoned += 1
                    self.stats.record("cancelled")
                    yield ResultEnvelope(slot.index, slot.operation_id, Cancelled(reason))
                active.clear()
                return

            for task in sorted(done, key=lambda t: active[t].index):
                slot = active.pop(task)
                envelope = self._take(slot, task)
                if envelope.is_terminal:
                    await self._close(slot)
                    self.stats.record(envelope.item.status)
                else:
                    self._schedule(slot, active)
                yield envelope


async def fan_out(
    batch: Iterable[SupportsExecute],
    token: CancellationToken | None = None,
    *,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    cancel_grace_seconds: float = 5.0,
) -> AsyncIterator[ResultEnvelope]:
    """Functional form of :meth:`FanOutScheduler.run`."""
    scheduler = FanOutScheduler(max_concurrency, cancel_grace_seconds)
    async for envelope in scheduler.run(batch, token):
        yield envelope


__all__ = ["FanOutScheduler", "SchedulerStats", "fan_out"]
