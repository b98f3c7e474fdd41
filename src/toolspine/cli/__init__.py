"""
CLI layer for toolspine.

Provides a Typer application that builds tool-call batches with the
default registry and hands them to the dispatcher.  All execution logic
lives in ``toolspine.execution`` and ``toolspine.tools``; this package
handles only terminal transport: argument parsing, coloured output, and
table formatting.

Entry point::

    toolspine --help
"""

from toolspine.cli.app import app

__all__ = ["app"]
