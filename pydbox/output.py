"""Console and JSON output for the command line interface."""

import json
import sys
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .models import Changelist


class OutputFormatter:
    """Formats command output for humans (rich) or machines (JSON).

    Args:
        json_output: Print results as JSON instead of rich text
        quiet: Suppress informational messages
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    def print(self, message: str = "") -> None:
        if not self.json_output:
            self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def output_json(self, data: Any) -> None:
        sys.stdout.write(json.dumps(data, indent=2) + "\n")
        sys.stdout.flush()

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a two-column summary table."""
        if self.json_output:
            self.output_json({key: value for key, value in items})
            return
        table = Table(title=title, show_header=False, title_justify="left")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in items:
            table.add_row(key, value)
        self.console.print(table)

    def print_changelist(self, changes: Changelist, title: str = "Changes") -> None:
        """Print the actions of one reconciliation pass."""
        if self.json_output:
            self.output_json(changes.to_dict())
            return

        if changes.is_empty():
            self.info(f"{title}: nothing to do")
            return

        self.print(f"{title}:")
        for label, paths in (
            ("created", changes.created),
            ("updated", changes.updated),
            ("deleted", changes.deleted),
        ):
            for path in paths:
                self.print(f"  {label:<8} {path}")
        for move in changes.moved:
            self.print(f"  {'moved':<8} {move['from']} -> {move['to']}")
        for conflict in changes.conflicts:
            self.warning(
                f"  conflict {conflict['original']} kept as {conflict['renamed']}"
            )
        for failure in changes.failed:
            self.error(
                f"{failure['operation']} {failure['path']} failed: {failure['error']}"
            )
