"""
Result delivery.

A host process drives the scan and reads line-delimited JSON events from
stdout: progress, success and error. ConsoleSink renders the same three
events for a person at a terminal.
"""

from __future__ import annotations

import json
from typing import IO, Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


class JsonLineSink:
    """One JSON object per line: {"type": "progress" | "success" | "error", ...}."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream

    def _emit(self, event: dict) -> None:
        click.echo(json.dumps(event, default=str), file=self.stream)

    def progress(self, message: str, percent: float | None = None) -> None:
        event: dict[str, Any] = {"type": "progress", "message": message}
        if percent is not None:
            event["percent"] = round(percent, 1)
        self._emit(event)

    def success(self, data: Any) -> None:
        self._emit({"type": "success", "data": data})

    def error(self, message: str) -> None:
        self._emit({"type": "error", "message": message})


class ConsoleSink:
    """Human-readable rendering of the event stream."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def progress(self, message: str, percent: float | None = None) -> None:
        line = Text(f"{percent:5.1f}% " if percent is not None else "       ", style="cyan")
        line.append(message, style="dim")
        self.console.print(line, highlight=False)

    def success(self, data: Any) -> None:
        message = data.get("message", "") if isinstance(data, dict) else str(data)
        table_data = data.get("table") if isinstance(data, dict) else None

        if table_data and table_data.get("rows"):
            table = Table(show_header=True, header_style="bold", show_lines=False)
            for header in table_data.get("headers", []):
                table.add_column(header, overflow="fold")
            for row in table_data["rows"]:
                table.add_row(*[Text(str(cell)) for cell in row])
            self.console.print(table)

        if message:
            self.console.print(Panel(Text(message), title="[bold cyan]Shadow-IT Audit[/bold cyan]", border_style="cyan"))

    def error(self, message: str) -> None:
        self.console.print(Panel(Text(message, style="red"), title="[red]Scan Failed[/red]", border_style="red"))
