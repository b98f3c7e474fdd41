"""File-system tools: read_file, list_dir, glob, grep (read-only) and
write_file, edit_file (mutating).

Blocking file I/O runs in worker threads via ``asyncio.to_thread`` so
a slow disk never stalls the scheduler's event loop.  Multi-file tools
check the cancellation token between files.  The mutating tools wait for
their worker thread even when interrupted, so a write is never still in
progress once its outcome has been reported.
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
import re
from collections.abc import AsyncIterator
from pathlib import Path

from pydantic import Field, field_validator

from toolspine.core.errors import ErrorCategory, InvalidToolInputError, OperationError
from toolspine.execution.cancellation import CancellationToken
from toolspine.execution.operation import Completed, Progress, run_to_completion
from toolspine.tools.base import Tool, ToolInput

MAX_LINE_LENGTH = 2000
DEFAULT_READ_LIMIT = 2000
MAX_GREP_HITS = 500


# ── read_file ────────────────────────────────────────────────────────


class ReadFileInput(ToolInput):
    path: str
    offset: int = Field(default=1, ge=1, description="Starting line number (1-indexed)")
    limit: int = Field(default=DEFAULT_READ_LIMIT, ge=1, description="Maximum lines to read")


def _read_lines(path: Path) -> list[str]:
    with path.open(encoding="utf-8", errors="replace") as fh:
        return fh.read().splitlines()


class ReadFileTool(Tool):
    name = "read_file"
    description = "Read a text file; lines are prefixed with their line number."
    read_only = True
    input_model = ReadFileInput

    async def run(self, params: ReadFileInput, token: CancellationToken) -> AsyncIterator[object]:
        path = self.resolve(params.path)
        if not path.is_file():
            raise OperationError(
                f"File not found: {self.relative(path)}", category=ErrorCategory.NOT_FOUND
            ).with_context(path=str(path))
        lines = await asyncio.to_thread(_read_lines, path)
        token.raise_if_cancelled()

        start = params.offset - 1
        window = lines[start : start + params.limit]
        numbered = "\n".join(
            f"{start + i + 1:6d}\t{line[:MAX_LINE_LENGTH]}" for i, line in enumerate(window)
        )
        yield Completed(
            {
                "path": self.relative(path),
                "content": self.truncate(numbered),
                "total_lines": len(lines),
                "lines_returned": len(window),
            }
        )


# ── list_dir ─────────────────────────────────────────────────────────


class ListDirInput(ToolInput):
    path: str = "."


def _list_dir(path: Path) -> list[str]:
    entries = []
    for entry in sorted(path.iterdir(), key=lambda p: p.name):
        entries.append(entry.name + "/" if entry.is_dir() else entry.name)
    return entries


class ListDirTool(Tool):
    name = "list_dir"
    description = "List a directory; subdirectories end with '/'."
    read_only = True
    input_model = ListDirInput

    async def run(self, params: ListDirInput, token: CancellationToken) -> AsyncIterator[object]:
        path = self.resolve(params.path)
        if not path.is_dir():
            raise OperationError(f"Not a directory: {self.relative(path)}")
        entries = await asyncio.to_thread(_list_dir, path)
        yield Completed({"path": self.relative(path), "entries": entries})


# ── glob ─────────────────────────────────────────────────────────────


class GlobInput(ToolInput):
    pattern: str
    path: str = "."


def _glob(base: Path, pattern: str) -> list[Path]:
    matches = [p for p in base.glob(pattern) if p.is_file()]
    matches.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return matches


class GlobTool(Tool):
    name = "glob"
    description = "Find files by glob pattern, newest first."
    read_only = True
    input_model = GlobInput

    async def run(self, params: GlobInput, token: CancellationToken) -> AsyncIterator[object]:
        base = self.resolve(params.path)
        if not base.is_dir():
            raise OperationError(f"Not a directory: {self.relative(base)}")
        matches = await asyncio.to_thread(_glob, base, params.pattern)
        yield Completed({"pattern": params.pattern, "files": [self.relative(p) for p in matches]})


# ── grep ─────────────────────────────────────────────────────────────


class GrepInput(ToolInput):
    pattern: str
    path: str = "."
    include: str | None = Field(default=None, description="Glob filter on file names, e.g. '*.py'")

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regular expression: {exc}") from exc
        return value


def _candidate_files(base: Path, include: str | None) -> list[Path]:
    if base.is_file():
        return [base]
    files = []
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if include and not fnmatch.fnmatch(filename, include):
                continue
            files.append(Path(dirpath) / filename)
    return files


def _search_file(path: Path, regex: re.Pattern[str]) -> list[tuple[int, str]]:
    hits = []
    try:
        with path.open(encoding="utf-8", errors="strict") as fh:
            for number, line in enumerate(fh, start=1):
                if regex.search(line):
                    hits.append((number, line.rstrip("\n")[:MAX_LINE_LENGTH]))
    except (UnicodeDecodeError, OSError):
        return []
    return hits


class GrepTool(Tool):
    name = "grep"
    description = "Search file contents with a regular expression."
    read_only = True
    input_model = GrepInput

    async def run(self, params: GrepInput, token: CancellationToken) -> AsyncIterator[object]:
        base = self.resolve(params.path)
        if not base.exists():
            raise OperationError(
                f"Path not found: {self.relative(base)}", category=ErrorCategory.NOT_FOUND
            )
        regex = re.compile(params.pattern)
        files = await asyncio.to_thread(_candidate_files, base, params.include)

        hits: list[str] = []
        truncated = False
        for path in files:
            token.raise_if_cancelled()
            matches = await asyncio.to_thread(_search_file, path, regex)
            if not matches:
                continue
            rel = self.relative(path)
            yield Progress({"file": rel, "matches": len(matches)})
            hits.extend(f"{rel}:{number}:{text}" for number, text in matches)
            if len(hits) >= MAX_GREP_HITS:
                truncated = len(hits) > MAX_GREP_HITS or path != files[-1]
                break

        yield Completed(
            {
                "pattern": params.pattern,
                "hits": hits[:MAX_GREP_HITS],
                "truncated": truncated,
            }
        )


# ── write_file ───────────────────────────────────────────────────────


class WriteFileInput(ToolInput):
    path: str
    content: str


def _write(path: Path, content: str) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8")
    path.write_bytes(data)
    return len(data)


class WriteFileTool(Tool):
    name = "write_file"
    description = "Create or overwrite a file."
    read_only = False
    input_model = WriteFileInput

    async def run(self, params: WriteFileInput, token: CancellationToken) -> AsyncIterator[object]:
        path = self.resolve(params.path)
        token.raise_if_cancelled()
        written = await run_to_completion(_write, path, params.content)
        yield Completed({"path": self.relative(path), "bytes_written": written})


# ── edit_file ────────────────────────────────────────────────────────


class EditFileInput(ToolInput):
    path: str
    old_string: str = Field(min_length=1)
    new_string: str


def _edit(path: Path, old: str, new: str) -> int:
    text = path.read_text(encoding="utf-8")
    count = text.count(old)
    if count == 1:
        path.write_text(text.replace(old, new, 1), encoding="utf-8")
    return count


class EditFileTool(Tool):
    name = "edit_file"
    description = "Replace one exact, unique occurrence of old_string with new_string."
    read_only = False
    input_model = EditFileInput

    async def run(self, params: EditFileInput, token: CancellationToken) -> AsyncIterator[object]:
        path = self.resolve(params.path)
        if not path.is_file():
            raise OperationError(
                f"File not found: {self.relative(path)}", category=ErrorCategory.NOT_FOUND
            )
        token.raise_if_cancelled()
        count = await run_to_completion(_edit, path, params.old_string, params.new_string)
        if count == 0:
            raise InvalidToolInputError(f"old_string not found in {self.relative(path)}")
        if count > 1:
            raise InvalidToolInputError(
                f"old_string occurs {count} times in {self.relative(path)}; it must be unique"
            )
        yield Completed({"path": self.relative(path), "replacements": 1})


FILESYSTEM_TOOLS: tuple[type[Tool], ...] = (
    ReadFileTool,
    ListDirTool,
    GlobTool,
    GrepTool,
    WriteFileTool,
    EditFileTool,
)

__all__ = [
    "ReadFileTool",
    "ListDirTool",
    "GlobTool",
    "GrepTool",
    "WriteFileTool",
    "EditFileTool",
    "FILESYSTEM_TOOLS",
]
