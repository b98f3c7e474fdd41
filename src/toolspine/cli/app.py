"""
Root Typer application for the toolspine CLI.

Commands::

    toolspine run CALLS     dispatch a JSON batch of tool calls
    toolspine tools         list the built-in tools
    toolspine config        show effective settings
"""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path

import pydantic
import typer
from rich.table import Table
from typer import Typer

from toolspine import __version__
from toolspine.cli.utils import console, err_console, load_calls, output_batch, print_dict
from toolspine.core.logging import configure_logging, get_logger
from toolspine.core.settings import ToolspineSettings, get_settings
from toolspine.execution import BatchResult, CancellationToken, DispatchPolicy, SupportsExecute
from toolspine.tools import default_registry

logger = get_logger(__name__)

app = Typer(
    name="toolspine",
    help="toolspine — bounded-concurrency tool execution for agent loops.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"toolspine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """toolspine CLI — run tool-call batches, inspect tools and settings."""


# ── Helpers ──────────────────────────────────────────────────────────────


def _load_settings(**overrides: object) -> ToolspineSettings:
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return ToolspineSettings(**values) if values else get_settings()
    except pydantic.ValidationError as e:
        err_console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(code=2) from e


async def _dispatch(batch: list[SupportsExecute], settings: ToolspineSettings) -> BatchResult:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        handler_installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # No signal handlers off the main thread or on some platforms.
        handler_installed = False
    try:
        return await DispatchPolicy(settings).execute(batch, token)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run_calls(
    calls: str = typer.Argument(..., help="JSON file with an array of tool calls, or '-' for stdin"),
    root: Path = typer.Option(Path("."), "--root", "-r", help="Working directory for tools"),
    max_concurrency: int | None = typer.Option(
        None, "--max-concurrency", "-c", help="Concurrency window for read-only batches"
    ),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Whole-batch deadline in seconds"),
    op_timeout: float | None = typer.Option(None, "--op-timeout", help="Per-call deadline in seconds"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="DEBUG, INFO, WARNING, ERROR"),
) -> None:
    """Dispatch a batch of tool calls and print the outcomes in call order."""
    settings = _load_settings(
        max_concurrency=max_concurrency,
        batch_timeout_seconds=timeout,
        operation_timeout_seconds=op_timeout,
        log_level=log_level,
    )
    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    if not root.is_dir():
        err_console.print(f"[bold red]Error[/bold red]: root is not a directory: {root}")
        raise typer.Exit(code=2)

    raw_calls = load_calls(calls)
    registry = default_registry(root, settings)
    batch = registry.build_batch(raw_calls)
    logger.debug("cli.run", calls=len(batch), root=str(registry.root))

    result = asyncio.run(_dispatch(batch, settings))
    output_batch(result, as_json=as_json)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("tools")
def list_tools(
    as_json: bool = typer.Option(False, "--json", help="Output JSON, including input schemas"),
) -> None:
    """List the built-in tools and whether they are read-only."""
    registry = default_registry(settings=get_settings())
    described = registry.describe()

    if as_json:
        typer.echo(json.dumps(described, indent=2))
        return

    table = Table(title="Tools")
    table.add_column("Name")
    table.add_column("Read-only")
    table.add_column("Description", overflow="fold")
    for tool in described:
        table.add_row(tool["name"], "yes" if tool["read_only"] else "no", tool["description"])
    console.print(table)


@app.command("config")
def show_config(
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show the effective settings (environment and .env applied)."""
    settings = _load_settings()

    if as_json:
        typer.echo(settings.model_dump_json(indent=2))
        return

    print_dict(settings.model_dump(), title="Settings")
