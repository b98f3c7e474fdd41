"""Tool base classes — turning tool calls into operations.

A ``Tool`` is a named, described capability with a pydantic input model
and a fixed read-only flag.  The agent loop sends ``ToolCall`` records;
the registry validates each call's input and binds it to the tool as a
``ToolOperation``, which is what the dispatcher schedules.

Calls that cannot be bound (malformed call, unknown tool, invalid input)
still become operations: ``RejectedOperation`` yields a single ``Failed``
item, so a bad call occupies its position in the batch like any other
failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from toolspine.core.errors import InvalidToolInputError, ToolspineError
from toolspine.core.settings import ToolspineSettings
from toolspine.execution.cancellation import CancellationToken
from toolspine.execution.operation import Failed, Operation


class ToolInput(BaseModel):
    """Base input model; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class ToolCall:
    """A tool-call request as produced by the agent loop."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ToolCall:
        """Build a call from its JSON form.

        Raises:
            InvalidToolInputError: If ``data`` is not an object, ``id`` or
                ``name`` is missing, or ``input`` is not an object.
        """
        if not isinstance(data, Mapping):
            raise InvalidToolInputError(f"Tool call must be an object, got {type(data).__name__}")
        missing = [key for key in ("id", "name") if key not in data]
        if missing:
            raise InvalidToolInputError(f"Tool call is missing {' and '.join(missing)}")
        raw_input = data.get("input")
        if raw_input is None:
            raw_input = {}
        if not isinstance(raw_input, Mapping):
            raise InvalidToolInputError(
                f"Tool call input must be an object, got {type(raw_input).__name__}"
            )
        return cls(id=str(data["id"]), name=str(data["name"]), input=dict(raw_input))


class Tool(ABC):
    """A capability the agent can call.

    Subclasses set ``name``, ``description``, ``read_only`` and
    ``input_model``, and implement :meth:`run` as an async generator.
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""
    read_only: ClassVar[bool] = False
    input_model: ClassVar[type[ToolInput]] = ToolInput

    def __init__(self, root: Path, settings: ToolspineSettings) -> None:
        self.root = root
        self.settings = settings

    def resolve(self, path: str | None) -> Path:
        """Resolve a tool path against the working directory."""
        candidate = Path(path or ".").expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        return candidate.resolve()

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root.resolve()))
        except ValueError:
            return str(path)

    def truncate(self, text: str) -> str:
        limit = self.settings.max_output_chars
        if len(text) <= limit:
            return text
        return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"

    def timeout_for(self, params: ToolInput) -> float | None:
        """Per-call deadline requested through the input, if the tool has one."""
        return None

    @abstractmethod
    def run(self, params: Any, token: CancellationToken) -> AsyncIterator[Any]:
        """Yield progress and a terminal item for one validated call."""


class ToolOperation(Operation):
    """A validated tool call bound to its tool."""

    def __init__(self, call: ToolCall, tool: Tool, params: ToolInput) -> None:
        super().__init__(call.id, read_only=tool.read_only, name=tool.name)
        self.call = call
        self.tool = tool
        self.params = params

    async def produce(self, token: CancellationToken) -> AsyncIterator[Any]:
        async with aclosing(self.tool.run(self.params, token)) as stream:
            async for item in stream:
                yield item


class RejectedOperation(Operation):
    """A call that could not be bound; fails without side effects."""

    def __init__(self, call: ToolCall, error: ToolspineError) -> None:
        super().__init__(call.id, read_only=True, name=call.name)
        self.call = call
        self.error = error

    async def produce(self, token: CancellationToken) -> AsyncIterator[Any]:
        yield Failed(self.error)


__all__ = [
    "ToolInput",
    "ToolCall",
    "Tool",
    "ToolOperation",
    "RejectedOperation",
]
