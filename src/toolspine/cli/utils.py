"""
CLI utility helpers — loading tool calls and rendering batch results.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from toolspine.execution import BatchResult, Cancelled, Completed, Failed, Outcome

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLE = {
    "completed": "green",
    "failed": "bold red",
    "cancelled": "yellow",
}


# ── Input ────────────────────────────────────────────────────────────────


def load_calls(source: str) -> list[dict[str, Any]]:
    """Read a JSON array of ``{id, name, input}`` tool calls from a file or ``-``."""
    try:
        text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
    except OSError as e:
        err_console.print(f"[bold red]Error[/bold red]: cannot read {source}: {e}")
        raise typer.Exit(code=2) from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        err_console.print(f"[bold red]Error[/bold red]: {source} is not valid JSON: {e}")
        raise typer.Exit(code=2) from e

    if not isinstance(data, list):
        err_console.print("[bold red]Error[/bold red]: expected a JSON array of tool calls")
        raise typer.Exit(code=2)
    for position, call in enumerate(data):
        if not isinstance(call, dict) or "id" not in call or "name" not in call:
            err_console.print(
                f"[bold red]Error[/bold red]: call #{position} needs 'id' and 'name' fields"
            )
            raise typer.Exit(code=2)
    return data


# ── Output helpers ───────────────────────────────────────────────────────


def _summarize(outcome: Outcome, width: int = 80) -> str:
    if isinstance(outcome, Completed):
        text = json.dumps(outcome.value, default=str)
    elif isinstance(outcome, Failed):
        text = f"{type(outcome.error).__name__}: {outcome.error.message}"
    elif isinstance(outcome, Cancelled):
        text = outcome.reason
    else:
        text = str(outcome)
    return text if len(text) <= width else text[: width - 3] + "..."


def output_batch(result: BatchResult, *, as_json: bool = False) -> None:
    """Render a ``BatchResult`` to the terminal, outcomes in call order."""
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
        return

    if not result.outcomes:
        console.print("[dim]No tool calls.[/dim]")
        return

    table = Table(title=f"Batch {result.batch_id}", show_lines=False, pad_edge=False)
    table.add_column("#", justify="right")
    table.add_column("id")
    table.add_column("status")
    table.add_column("result", overflow="fold")
    for index, (op_id, outcome) in enumerate(zip(result.operation_ids, result.outcomes)):
        style = _STATUS_STYLE.get(outcome.status, "")
        table.add_row(
            str(index),
            op_id,
            f"[{style}]{outcome.status}[/{style}]" if style else outcome.status,
            _summarize(outcome),
        )
    console.print(table)
    console.print(
        f"\n[dim]{result.mode.value if result.mode else '-'}: "
        f"{result.succeeded} completed, {result.failed} failed, "
        f"{result.cancelled_count} cancelled in {result.duration_seconds:.2f}s[/dim]"
    )


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
