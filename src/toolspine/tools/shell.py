"""Shell tool — run a command, stream its stdout as progress.

A non-zero exit status is still a completed call: the agent gets the
exit code, stdout and stderr and decides what it means.  Only failing
to spawn the process is a ``Failed`` outcome.

On cancellation (or when the generator is closed early) the process
group receives SIGTERM, then SIGKILL if it has not exited within
``TERMINATE_GRACE_SECONDS``.
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import AsyncIterator

from pydantic import Field

from toolspine.core.errors import OperationError
from toolspine.core.logging import get_logger
from toolspine.execution.cancellation import CancellationToken
from toolspine.execution.operation import Completed, Progress
from toolspine.tools.base import Tool, ToolInput

logger = get_logger(__name__)

TERMINATE_GRACE_SECONDS = 2.0


class BashInput(ToolInput):
    command: str = Field(min_length=1)
    timeout_seconds: float | None = Field(default=None, gt=0)


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Stop a running process: SIGTERM, then SIGKILL after a grace period."""
    _signal_group(proc, signal.SIGTERM)
    try:
        await asyncio.wait_for(proc.wait(), TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        logger.warning("bash.kill", pid=proc.pid)
        _signal_group(proc, signal.SIGKILL)
        await proc.wait()


class BashTool(Tool):
    name = "bash"
    description = "Run a shell command in the working directory."
    read_only = False
    input_model = BashInput

    def timeout_for(self, params: BashInput) -> float | None:
        return params.timeout_seconds

    async def run(self, params: BashInput, token: CancellationToken) -> AsyncIterator[object]:
        token.raise_if_cancelled()
        try:
            proc = await asyncio.create_subprocess_shell(
                params.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.root,
                start_new_session=True,
            )
        except OSError as exc:
            raise OperationError(f"Could not start command: {exc}", cause=exc) from exc

        logger.debug("bash.started", pid=proc.pid, command=params.command)
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        stdout_lines: list[str] = []
        try:
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\n")
                stdout_lines.append(line)
                yield Progress({"stream": "stdout", "line": line})
            exit_code = await proc.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
        finally:
            if proc.returncode is None:
                logger.info("bash.terminate", pid=proc.pid)
                await _terminate(proc)
            if not stderr_task.done():
                stderr_task.cancel()

        logger.debug("bash.exited", pid=proc.pid, exit_code=exit_code)
        yield Completed(
            {
                "exit_code": exit_code,
                "stdout": self.truncate("\n".join(stdout_lines)),
                "stderr": self.truncate(stderr.rstrip("\n")),
            }
        )


__all__ = ["BashTool", "BashInput"]
