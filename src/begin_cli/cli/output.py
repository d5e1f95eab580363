"""Output context threaded through every CLI command.

JSON mode prints exactly one ``{"success": ...}`` object on stdout and
never prompts; interactive mode renders with rich.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, NoReturn, Optional

import typer
from rich.console import Console

from begin_cli.errors import BeginCliError


@dataclass
class OutputContext:
    json_mode: bool = False
    console: Console = field(default_factory=Console)
    err_console: Console = field(default_factory=lambda: Console(stderr=True))

    @property
    def interactive(self) -> bool:
        return not self.json_mode and sys.stdin.isatty()

    def success(self, data: dict[str, Any], render: Optional[Callable[[], None]] = None) -> None:
        if self.json_mode:
            typer.echo(json.dumps({"success": True, "data": data}, default=str))
        elif render is not None:
            render()

    def warn(self, message: str) -> None:
        if not self.json_mode:
            self.err_console.print(f"[yellow]{message}[/yellow]")

    def fail(self, error: BeginCliError) -> NoReturn:
        """Report *error* and exit with its exit code."""
        if self.json_mode:
            typer.echo(json.dumps(error.to_dict(), default=str))
        else:
            self.err_console.print(f"[red]Error:[/red] {error.message}")
            if error.stage:
                self.err_console.print(f"[dim]Stage reached: {error.stage}[/dim]")
            if error.tx_id:
                self.err_console.print(f"Transaction id: [cyan]{error.tx_id}[/cyan]")
        raise typer.Exit(error.exit_code)

