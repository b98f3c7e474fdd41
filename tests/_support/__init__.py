"""
Test support utilities for toolspine tests.

Scripted operations with controllable timing, a tracker that records how
many operations are inside ``produce`` at once, and small helpers for
draining item streams.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from typing import Any

from toolspine.execution import (
    CancellationToken,
    Completed,
    Item,
    Operation,
    Progress,
    ResultEnvelope,
)


class Tracker:
    """Records start/finish order and peak concurrency of scripted operations."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self.started: list[str] = []
        self.finished: list[str] = []
        self.events: list[tuple[str, str]] = []

    def enter(self, op_id: str) -> None:
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.started.append(op_id)
        self.events.append(("start", op_id))

    def exit(self, op_id: str) -> None:
        self.active -= 1
        self.finished.append(op_id)
        self.events.append(("finish", op_id))


class ScriptedOperation(Operation):
    """Operation whose behaviour is fixed up front.

    Yields ``progress`` items, sleeps ``delay`` seconds, then either
    raises ``error`` or completes with ``value`` (its own id by default).
    With ``hold`` set it swallows cancellation until that many seconds
    have passed, which models an operation that ignores interrupts.
    """

    def __init__(
        self,
        op_id: str,
        *,
        read_only: bool = True,
        delay: float = 0.0,
        progress: Iterable[Any] = (),
        value: Any = None,
        error: BaseException | None = None,
        hold: float | None = None,
        tracker: Tracker | None = None,
    ) -> None:
        super().__init__(op_id, read_only=read_only, name="scripted")
        self.delay = delay
        self.progress = list(progress)
        self.value = op_id if value is None else value
        self.error = error
        self.hold = hold
        self.tracker = tracker or Tracker()

    async def produce(self, token: CancellationToken) -> AsyncIterator[Any]:
        self.tracker.enter(self.id)
        try:
            for data in self.progress:
                yield Progress(data)
                await asyncio.sleep(0)
            if self.hold is not None:
                await _stubborn_sleep(self.hold)
            elif self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            yield Completed(self.value)
        finally:
            self.tracker.exit(self.id)


async def _stubborn_sleep(seconds: float) -> None:
    loop = asyncio.get_running_loop()
    end = loop.time() + seconds
    while (remaining := end - loop.time()) > 0:
        try:
            await asyncio.sleep(remaining)
        except asyncio.CancelledError:
            continue


async def collect(stream: AsyncIterator[Item]) -> list[Item]:
    """Drain an operation's item stream."""
    return [item async for item in stream]


async def collect_envelopes(stream: AsyncIterator[ResultEnvelope]) -> list[ResultEnvelope]:
    return [envelope async for envelope in stream]


def terminals(envelopes: Iterable[ResultEnvelope]) -> list[ResultEnvelope]:
    """Terminal envelopes only, in the order they were yielded."""
    return [e for e in envelopes if e.is_terminal]
