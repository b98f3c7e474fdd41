"""
toolspine — bounded-concurrency tool execution for agent loops.

An agent loop hands over a batch of tool calls; toolspine runs read-only
batches concurrently (at most ``max_concurrency`` at once), anything that
mutates state one at a time, and returns one outcome per call in call
order.  Cancellation reaches every call, queued or running.

Quick start::

    from toolspine import CancellationToken, DispatchPolicy, default_registry

    registry = default_registry(".")
    batch = registry.build_batch([
        {"id": "a", "name": "read_file", "input": {"path": "README.md"}},
        {"id": "b", "name": "grep", "input": {"pattern": "TODO"}},
    ])
    result = await DispatchPolicy().execute(batch, CancellationToken())

Packages:
    core        errors, logging, settings
    execution   cancellation, operations, scheduler, dispatch
    tools       built-in tools and the registry
    cli         typer front end
"""

__version__ = "0.1.0"

from toolspine.core.errors import ToolspineError
from toolspine.core.settings import ToolspineSettings, get_settings
from toolspine.execution import (
    BatchResult,
    Cancelled,
    CancellationToken,
    Completed,
    DispatchPolicy,
    Failed,
    FunctionOperation,
    Operation,
    Progress,
    ResultEnvelope,
    run_batch,
)
from toolspine.tools import ToolCall, ToolRegistry, default_registry

__all__ = [
    "__version__",
    "ToolspineError",
    "ToolspineSettings",
    "get_settings",
    "BatchResult",
    "Cancelled",
    "CancellationToken",
    "Completed",
    "DispatchPolicy",
    "Failed",
    "FunctionOperation",
    "Operation",
    "Progress",
    "ResultEnvelope",
    "run_batch",
    "ToolCall",
    "ToolRegistry",
    "default_registry",
]
