"""Toolspine Execution — bounded-concurrency tool execution engine.

WHY
───
An agent loop hands over a batch of requested operations (tool calls)
and needs one outcome per request, in request order.  Read-only batches
can run concurrently; anything that mutates state must run one at a
time.  Cancellation has to reach every operation, queued or running,
without losing the results that already finished.

ARCHITECTURE
────────────
::

    Batch[Operation]
      │
      ▼
    DispatchPolicy ─ classify: all read-only? ─┬─ yes → FanOutScheduler (≤ N at once)
      │                                         └─ no  → SerialRunner (one at a time)
      │                       ResultEnvelope(index, id, item) in completion order
      ▼
    reorder by index → BatchResult.outcomes (submission order)

    CancellationToken ─ shared by reference with every operation
    timeout.py        ─ timers that fire the same token

MODULE MAP (recommended reading order)
──────────────────────────────────────
  1. cancellation.py  ─ CancellationToken
  2. operation.py     ─ item types, Operation, ResultEnvelope
  3. scheduler.py     ─ FanOutScheduler (bounded race + refill)
  4. serial.py        ─ SerialRunner
  5. timeout.py       ─ cancel_after, deadline, TimeoutOperation
  6. dispatch.py      ─ DispatchPolicy, BatchResult, run_batch
"""

from toolspine.execution.cancellation import CancellationToken
from toolspine.execution.dispatch import (
    BatchPhase,
    BatchResult,
    BatchRun,
    DispatchPolicy,
    ExecutionMode,
    classify,
    run_batch,
)
from toolspine.execution.operation import (
    Batch,
    Cancelled,
    Completed,
    Failed,
    FunctionOperation,
    Item,
    Operation,
    Outcome,
    Progress,
    ResultEnvelope,
    SupportsExecute,
    as_item,
    run_to_completion,
)
from toolspine.execution.scheduler import FanOutScheduler, SchedulerStats, fan_out
from toolspine.execution.serial import SerialRunner, run_serially
from toolspine.execution.timeout import TimeoutOperation, cancel_after, deadline

__all__ = [
    # Cancellation
    "CancellationToken",
    # Operations and items
    "Batch",
    "Cancelled",
    "Completed",
    "Failed",
    "FunctionOperation",
    "Item",
    "Operation",
    "Outcome",
    "Progress",
    "ResultEnvelope",
    "SupportsExecute",
    "as_item",
    "run_to_completion",
    # Runners
    "FanOutScheduler",
    "SchedulerStats",
    "fan_out",
    "SerialRunner",
    "run_serially",
    # Deadlines
    "TimeoutOperation",
    "cancel_after",
    "deadline",
    # Dispatch
    "BatchPhase",
    "BatchResult",
    "BatchRun",
    "DispatchPolicy",
    "ExecutionMode",
    "classify",
    "run_batch",
]
