"""Tests for the bash tool."""

import asyncio
import sys

import pytest

from tests._support import collect
from toolspine.core.errors import TimeoutExpired
from toolspine.execution import CancellationToken, Cancelled, Completed, Failed, Progress
from toolspine.tools import ToolCall

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


def bash(registry, command, **extra):
    return registry.build(ToolCall("sh", "bash", {"command": command, **extra}))


class TestBash:
    @pytest.mark.asyncio
    async def test_stdout_lines_as_progress(self, registry):
        items = await collect(bash(registry, "echo hello; echo world").execute(CancellationToken()))
        assert [i.data["line"] for i in items if isinstance(i, Progress)] == ["hello", "world"]
        assert items[-1] == Completed({"exit_code": 0, "stdout": "hello\nworld", "stderr": ""})

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_completed(self, registry):
        items = await collect(bash(registry, "echo oops 1>&2; exit 3").execute(CancellationToken()))
        terminal = items[-1]
        assert isinstance(terminal, Completed)
        assert terminal.value["exit_code"] == 3
        assert terminal.value["stderr"] == "oops"

    @pytest.mark.asyncio
    async def test_runs_in_root(self, registry, tmp_path):
        (tmp_path / "marker.txt").write_text("")
        items = await collect(bash(registry, "ls").execute(CancellationToken()))
        assert "marker.txt" in items[-1].value["stdout"]

    @pytest.mark.asyncio
    async def test_cancel_terminates_process(self, registry, tmp_path):
        token = CancellationToken()
        op = bash(registry, "echo started; sleep 30; touch finished")
        asyncio.get_running_loop().call_later(0.3, token.cancel, "interrupted")
        items = await asyncio.wait_for(collect(op.execute(token)), 10.0)
        assert items[-1] == Cancelled("interrupted")
        await asyncio.sleep(0.1)
        assert not (tmp_path / "finished").exists()

    @pytest.mark.asyncio
    async def test_timeout_seconds(self, registry):
        op = bash(registry, "sleep 30", timeout_seconds=0.2)
        items = await asyncio.wait_for(collect(op.execute(CancellationToken())), 10.0)
        terminal = items[-1]
        assert isinstance(terminal, Failed)
        assert isinstance(terminal.error, TimeoutExpired)
        assert terminal.error.context.tool_name == "bash"

    def test_is_mutating(self, registry):
        assert bash(registry, "true").is_read_only() is False
