"""Strictly sequential runner for batches that mutate state.

One operation at a time, in submission order; the next one is not
started until the previous one has produced its terminal item and its
stream has been closed.  Built on ``FanOutScheduler`` with a window of
one, so cancellation, contract enforcement and the grace period behave
exactly as on the concurrent path.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable

from toolspine.execution.cancellation import CancellationToken
from toolspine.execution.operation import ResultEnvelope, SupportsExecute
from toolspine.execution.scheduler import FanOutScheduler, SchedulerStats


class SerialRunner:
    """Runs a batch one operation at a time."""

    def __init__(self, cancel_grace_seconds: float = 5.0) -> None:
        self._scheduler = FanOutScheduler(max_concurrency=1, cancel_grace_seconds=cancel_grace_seconds)

    @property
    def stats(self) -> SchedulerStats:
        return self._scheduler.stats

    async def run(
        self,
        batch: Iterable[SupportsExecute],
        token: CancellationToken | None = None,
    ) -> AsyncIterator[ResultEnvelope]:
        async for envelope in self._scheduler.run(batch, token):
            yield envelope


async def run_serially(
    batch: Iterable[SupportsExecute],
    token: CancellationToken | None = None,
    *,
    cancel_grace_seconds: float = 5.0,
) -> AsyncIterator[ResultEnvelope]:
    """Functional form of :meth:`SerialRunner.run`."""
    async for envelope in SerialRunner(cancel_grace_seconds).run(batch, token):
        yield envelope


__all__ = ["SerialRunner", "run_serially"]
