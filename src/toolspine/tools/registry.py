"""Tool Registry — injectable name → tool lookup, and call binding.

The registry turns ``ToolCall`` records from the agent loop into
operations the dispatcher can schedule.

ARCHITECTURE
────────────
::

    ToolRegistry(root, settings)
      ├── .register(tool_cls)      ─ instantiate and store under tool_cls.name
      ├── .get(name)               ─ lookup, ToolNotFoundError if missing
      ├── .names() / .describe()   ─ listing for the CLI
      ├── .build(call)             ─ ToolCall → operation
      └── .build_batch(calls)      ─ list of operations, submission order kept

    build(call)
      ├── malformed call   → RejectedOperation(InvalidToolInputError)
      ├── unknown name     → RejectedOperation(ToolNotFoundError)
      ├── invalid input    → RejectedOperation(InvalidToolInputError)
      ├── tool timeout set → TimeoutOperation(ToolOperation)
      └── otherwise        → ToolOperation

    default_registry(root)  ─ registry preloaded with the built-in tools

BEST PRACTICES
──────────────
- Build a fresh registry per working directory; tools resolve relative
  paths against ``root``.
- Pass explicit ``settings`` in tests instead of relying on the
  environment.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import pydantic

from toolspine.core.errors import InvalidToolInputError, ToolNotFoundError
from toolspine.core.logging import get_logger
from toolspine.core.settings import ToolspineSettings, get_settings
from toolspine.execution.operation import SupportsExecute
from toolspine.execution.timeout import TimeoutOperation
from toolspine.tools.base import RejectedOperation, Tool, ToolCall, ToolOperation
from toolspine.tools.filesystem import FILESYSTEM_TOOLS
from toolspine.tools.shell import BashTool

logger = get_logger(__name__)

BUILTIN_TOOLS: tuple[type[Tool], ...] = (*FILESYSTEM_TOOLS, BashTool)


def _describe_validation(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "input"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


class ToolRegistry:
    """Injectable tool registry.

    Example:
        >>> registry = ToolRegistry(Path("."))
        >>> registry.register(ReadFileTool)
        >>> op = registry.build(ToolCall("c1", "read_file", {"path": "README.md"}))
        >>> op.is_read_only()
        True
    """

    def __init__(self, root: Path | str | None = None, settings: ToolspineSettings | None = None):
        self.root = Path(root or Path.cwd()).resolve()
        self.settings = settings or get_settings()
        self._tools: dict[str, Tool] = {}

    def register(self, tool_cls: type[Tool]) -> Tool:
        """Instantiate ``tool_cls`` for this registry's root and store it.

        Registering a second tool under the same name replaces the first.
        """
        tool = tool_cls(self.root, self.settings)
        if tool.name in self._tools:
            logger.debug("tool.replaced", tool=tool.name)
        self._tools[tool.name] = tool
        return tool

    def get(self, name: str) -> Tool:
        """Get a tool.

        Raises:
            ToolNotFoundError: If no tool is registered under ``name``.
        """
        if name not in self._tools:
            raise ToolNotFoundError(
                f"No tool registered for {name!r}. Available tools: {self.names() or 'none'}"
            ).with_context(tool_name=name)
        return self._tools[name]

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return sorted(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        """Name, description, read-only flag and input schema of every tool."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "read_only": tool.read_only,
                "input_schema": tool.input_model.model_json_schema(),
            }
            for tool in (self._tools[name] for name in self.names())
        ]

    def build(self, call: ToolCall | Mapping[str, Any]) -> SupportsExecute:
        """Bind one call to its tool.

        Never raises for a bad call: malformed calls, unknown tools and
        invalid input become operations that fail with the corresponding
        error.
        """
        if not isinstance(call, ToolCall):
            try:
                call = ToolCall.from_dict(call)
            except InvalidToolInputError as exc:
                return self._reject_malformed(call, exc)

        try:
            tool = self.get(call.name)
        except ToolNotFoundError as exc:
            logger.warning("tool.not_found", operation_id=call.id, tool=call.name)
            return RejectedOperation(call, exc.with_context(operation_id=call.id))

        try:
            params = tool.input_model.model_validate(call.input)
        except pydantic.ValidationError as exc:
            error = InvalidToolInputError(
                f"Invalid input for {tool.name}: {_describe_validation(exc)}", cause=exc
            ).with_context(operation_id=call.id, tool_name=tool.name)
            logger.warning("tool.invalid_input", operation_id=call.id, tool=tool.name)
            return RejectedOperation(call, error)

        operation: SupportsExecute = ToolOperation(call, tool, params)
        timeout = tool.timeout_for(params)
        if timeout is not None:
            operation = TimeoutOperation(operation, timeout)
        return operation

    def build_batch(self, calls: Iterable[ToolCall | Mapping[str, Any]]) -> list[SupportsExecute]:
        return [self.build(call) for call in calls]

    @staticmethod
    def _reject_malformed(raw: Any, exc: InvalidToolInputError) -> RejectedOperation:
        fields = raw if isinstance(raw, Mapping) else {}
        call = ToolCall(id=str(fields.get("id", "")), name=str(fields.get("name", "")))
        logger.warning("tool.malformed_call", operation_id=call.id, error=exc.message)
        return RejectedOperation(call, exc.with_context(operation_id=call.id or None))


def default_registry(
    root: Path | str | None = None,
    settings: ToolspineSettings | None = None,
) -> ToolRegistry:
    """Registry with every built-in tool registered."""
    registry = ToolRegistry(root, settings)
    for tool_cls in BUILTIN_TOOLS:
        registry.register(tool_cls)
    return registry


__all__ = ["BUILTIN_TOOLS", "ToolRegistry", "default_registry"]
