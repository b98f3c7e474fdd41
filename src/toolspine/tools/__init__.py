"""Toolspine Tools -- built-in tools and the registry that binds calls.

Architecture::

    base.py        ToolInput, ToolCall, Tool, ToolOperation, RejectedOperation
    filesystem.py  read_file, list_dir, glob, grep (read-only); write_file, edit_file
    shell.py       bash
    registry.py    ToolRegistry, default_registry
"""

from toolspine.tools.base import RejectedOperation, Tool, ToolCall, ToolInput, ToolOperation
from toolspine.tools.filesystem import (
    EditFileTool,
    GlobTool,
    GrepTool,
    ListDirTool,
    ReadFileTool,
    WriteFileTool,
)
from toolspine.tools.registry import BUILTIN_TOOLS, ToolRegistry, default_registry
from toolspine.tools.shell import BashTool

__all__ = [
    "RejectedOperation",
    "Tool",
    "ToolCall",
    "ToolInput",
    "ToolOperation",
    "EditFileTool",
    "GlobTool",
    "GrepTool",
    "ListDirTool",
    "ReadFileTool",
    "WriteFileTool",
    "BashTool",
    "BUILTIN_TOOLS",
    "ToolRegistry",
    "default_registry",
]
