"""Dispatch Policy — classify a batch, run it, hand results back in order.

WHY
───
Tool-result messages must line up positionally with tool-call requests,
but concurrent operations finish in whatever order the world allows.
The policy therefore works in two layers: out of order inside (the
scheduler yields in completion order), in order outside (every terminal
outcome is placed by its submission index before the caller sees it).

ARCHITECTURE
────────────
::

    DispatchPolicy(settings)
      ├── classify(batch)        ─ all read-only → CONCURRENT, else SERIAL
      ├── stream(batch, token)   ─ envelopes in completion order
      └── execute(batch, token)  ─ BatchResult in submission order

    Received → Classified{Concurrent|Serial} → Executing → Reordering → Done
                    │                              │
                    ├─ CONCURRENT → FanOutScheduler(max_concurrency)
                    └─ SERIAL     → SerialRunner

    Deadlines (optional, from settings or per call)
      batch_timeout_seconds      ─ timer on a child of the caller's token
      operation_timeout_seconds  ─ every operation wrapped in TimeoutOperation

Example::

    policy = DispatchPolicy(get_settings())
    result = await policy.execute([read_a, read_b, read_c])
    for outcome in result.outcomes:        # same order as the batch
        print(outcome.status)
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from toolspine.core.errors import ToolspineError
from toolspine.core.logging import LogContext, get_logger
from toolspine.core.settings import ToolspineSettings
from toolspine.execution.cancellation import CancellationToken
from toolspine.execution.operation import (
    Cancelled,
    Completed,
    Failed,
    Outcome,
    ResultEnvelope,
    SupportsExecute,
)
from toolspine.execution.scheduler import FanOutScheduler
from toolspine.execution.serial import SerialRunner
from toolspine.execution.timeout import TimeoutOperation, deadline

logger = get_logger(__name__)


class ExecutionMode(str, Enum):
    CONCURRENT = "concurrent"
    SERIAL = "serial"


class BatchPhase(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    EXECUTING = "executing"
    REORDERING = "reordering"
    DONE = "done"


def classify(batch: Sequence[SupportsExecute]) -> ExecutionMode | None:
    """Pick the execution strategy for a batch.

    Returns ``None`` for an empty batch, which has nothing to classify.
    """
    if not batch:
        return None
    if all(op.is_read_only() for op in batch):
        return ExecutionMode.CONCURRENT
    return ExecutionMode.SERIAL


@dataclass
class BatchRun:
    """Bookkeeping of one dispatch invocation."""

    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    mode: ExecutionMode | None = None
    phase: BatchPhase = BatchPhase.RECEIVED
    phases: list[BatchPhase] = field(default_factory=lambda: [BatchPhase.RECEIVED])
    timed_out: bool = False

    def advance(self, phase: BatchPhase) -> None:
        self.phase = phase
        self.phases.append(phase)
        logger.debug("dispatch.phase", batch_id=self.batch_id, phase=phase.value)


@dataclass
class BatchResult:
    """Ordered outcome of a batch: ``outcomes[i]`` belongs to ``batch[i]``."""

    batch_id: str
    mode: ExecutionMode | None
    operation_ids: list[str]
    outcomes: list[Outcome]
    started_at: datetime
    completed_at: datetime
    cancelled: bool = False
    timed_out: bool = False
    phases: list[BatchPhase] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        """Number of operations that completed."""
        return sum(1 for o in self.outcomes if isinstance(o, Completed))

    @property
    def failed(self) -> int:
        """Number of operations that failed."""
        return sum(1 for o in self.outcomes if isinstance(o, Failed))

    @property
    def cancelled_count(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Cancelled))

    @property
    def ok(self) -> bool:
        """True when every operation completed."""
        return self.succeeded == self.total

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def values(self) -> list[Any]:
        """Completed values in batch order, ``None`` where not completed."""
        return [o.value if isinstance(o, Completed) else None for o in self.outcomes]

    def errors(self) -> list[tuple[int, ToolspineError]]:
        """``(index, error)`` for every failed operation."""
        return [(i, o.error) for i, o in enumerate(self.outcomes) if isinstance(o, Failed)]

    def raise_first_error(self) -> None:
        """Fail-fast view: raise the error of the first failed operation, if any."""
        for _, error in self.errors():
            raise error

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / CLI output."""
        return {
            "batch_id": self.batch_id,
            "mode": self.mode.value if self.mode else None,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled_count,
            "batch_cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "duration_seconds": self.duration_seconds,
            "outcomes": [
                {"index": i, "operation_id": op_id, **outcome.to_dict()}
                for i, (op_id, outcome) in enumerate(zip(self.operation_ids, self.outcomes))
            ],
        }


def _pick(override: Any, default: Any) -> Any:
    return default if override is None else override


class DispatchPolicy:
    """Routes a batch to the concurrent or serial runner.

    Configuration comes from an explicit ``ToolspineSettings`` snapshot;
    keyword arguments override individual fields for one policy.
    """

    def __init__(
        self,
        settings: ToolspineSettings | None = None,
        *,
        max_concurrency: int | None = None,
        cancel_grace_seconds: float | None = None,
        batch_timeout_seconds: float | None = None,
        operation_timeout_seconds: float | None = None,
    ) -> None:
        settings = settings or ToolspineSettings()
        self.max_concurrency = _pick(max_concurrency, settings.max_concurrency)
        self.cancel_grace_seconds = _pick(cancel_grace_seconds, settings.cancel_grace_seconds)
        self.batch_timeout_seconds = _pick(batch_timeout_seconds, settings.batch_timeout_seconds)
        self.operation_timeout_seconds = _pick(
            operation_timeout_seconds, settings.operation_timeout_seconds
        )
        # Validates the window eagerly rather than on first batch.
        FanOutScheduler(self.max_concurrency, self.cancel_grace_seconds)

    def classify(self, batch: Sequence[SupportsExecute]) -> ExecutionMode | None:
        return classify(batch)

    def _runner(self, mode: ExecutionMode) -> FanOutScheduler | SerialRunner:
        if mode is ExecutionMode.CONCURRENT:
            return FanOutScheduler(self.max_concurrency, self.cancel_grace_seconds)
        return SerialRunner(self.cancel_grace_seconds)

    def _prepare(self, batch: Sequence[SupportsExecute]) -> list[SupportsExecute]:
        if self.operation_timeout_seconds is None:
            return list(batch)
        return [TimeoutOperation(op, self.operation_timeout_seconds) for op in batch]

    async def stream(
        self,
        batch: Sequence[SupportsExecute],
        token: CancellationToken | None = None,
        *,
        run: BatchRun | None = None,
    ) -> AsyncIterator[ResultEnvelope]:
        """Yield every envelope (progress and terminal) in completion order."""
        run = run or BatchRun()
        parent = token or CancellationToken()
        operations = list(batch)

        async with LogContext(batch_id=run.batch_id):
            logger.info("dispatch.received", size=len(operations))
            run.mode = self.classify(operations)
            if run.mode is None:
                return
            run.advance(BatchPhase.CLASSIFIED)
            logger.info(
                "dispatch.classified",
                mode=run.mode.value,
                size=len(operations),
                max_concurrency=self.max_concurrency if run.mode is ExecutionMode.CONCURRENT else 1,
            )

            batch_token = parent.child()
            try:
                run.advance(BatchPhase.EXECUTING)
                runner = self._runner(run.mode)
                if self.batch_timeout_seconds is None:
                    async for envelope in runner.run(self._prepare(operations), batch_token):
                        yield envelope
                else:
                    reason = f"batch timed out after {self.batch_timeout_seconds}s"
                    async with deadline(batch_token, self.batch_timeout_seconds, reason):
                        async for envelope in runner.run(self._prepare(operations), batch_token):
                            yield envelope
                    run.timed_out = batch_token.cancelled and batch_token.reason == reason
            finally:
                batch_token.detach()

    async def execute(
        self,
        batch: Sequence[SupportsExecute],
        token: CancellationToken | None = None,
    ) -> BatchResult:
        """Run a batch and return its outcomes in submission order.

        Never raises for per-operation failures or cancellation; those
        are reported inside the result.
        """
        run = BatchRun()
        token = token or CancellationToken()
        operations = list(batch)
        started_at = datetime.now(UTC)

        collected: dict[int, Outcome] = {}
        async for envelope in self.stream(operations, token, run=run):
            if envelope.is_terminal:
                collected[envelope.index] = envelope.item

        if run.mode is not None:
            run.advance(BatchPhase.REORDERING)
        outcomes: list[Outcome] = []
        for index in range(len(operations)):
            outcome = collected.get(index)
            if outcome is None:
                outcome = Cancelled(token.reason or "not reached")
            outcomes.append(outcome)
        run.advance(BatchPhase.DONE)

        result = BatchResult(
            batch_id=run.batch_id,
            mode=run.mode,
            operation_ids=[op.id for op in operations],
            outcomes=outcomes,
            started_at=started_at,
            completed_at=datetime.now(UTC),
            cancelled=token.cancelled or run.timed_out,
            timed_out=run.timed_out,
            phases=list(run.phases),
        )
        logger.info(
            "dispatch.complete",
            batch_id=run.batch_id,
            mode=run.mode.value if run.mode else None,
            succeeded=result.succeeded,
            failed=result.failed,
            cancelled=result.cancelled_count,
            duration_seconds=result.duration_seconds,
        )
        return result


async def run_batch(
    batch: Sequence[SupportsExecute],
    *,
    settings: ToolspineSettings | None = None,
    token: CancellationToken | None = None,
) -> BatchResult:
    """Convenience entry point: ``DispatchPolicy(settings).execute(batch, token)``."""
    return await DispatchPolicy(settings).execute(batch, token)


__all__ = [
    "ExecutionMode",
    "BatchPhase",
    "BatchRun",
    "BatchResult",
    "DispatchPolicy",
    "classify",
    "run_batch",
]
