"""Rich terminal formatting for CalcGrid CLI output."""

import json
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class CLIFormatter:
    """Handles all terminal output formatting."""

    STATUS_COLORS: dict[str, str] = {
        "pending": "yellow",
        "completed": "green",
    }

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def _status(self, status: str) -> str:
        color = self.STATUS_COLORS.get(status, "white")
        return f"[{color}]{status}[/{color}]"

    @staticmethod
    def _result_markup(result: Optional[str]) -> str:
        if result is None:
            return "[dim]—[/dim]"
        if result.startswith("Error:"):
            return f"[red]{result}[/red]"
        return f"[bold]{result}[/bold]"

    # ── health ───────────────────────────────────────────────────────

    def print_health(self, data: dict[str, Any]) -> None:
        """Format and print the coordinator health check."""
        status = data.get("status", "unknown")
        color = "green" if status == "ok" else "red"
        lines = [
            f"[bold {color}]Status:[/bold {color}] {status}",
            f"[dim]Mode:[/dim] {data.get('mode', '?')}",
        ]
        for name in ("expressions", "pending_expressions", "jobs", "ready_jobs"):
            if name in data:
                lines.append(f"  {name}: {data[name]}")
        self.console.print(Panel("\n".join(lines), title="Health", border_style=color))

    # ── expressions ──────────────────────────────────────────────────

    def print_submitted(self, data: dict[str, Any]) -> None:
        """Print a submission confirmation (or the inline result in sync mode)."""
        lines = [f"[bold]ID:[/bold]     {data.get('id', '?')}"]
        if "result" in data:
            lines.append(f"[bold]Result:[/bold] {self._result_markup(data['result'])}")
        self.console.print(Panel("\n".join(lines), title="Expression Submitted", border_style="green"))

    def print_expression(self, data: dict[str, Any]) -> None:
        """Print one expression's details."""
        status = data.get("status", "?")
        lines = [
            f"[bold]ID:[/bold]         {data.get('id', '?')}",
            f"[bold]Expression:[/bold] {data.get('expression', '')}",
            f"[bold]Status:[/bold]     {self._status(status)}",
            f"[bold]Result:[/bold]     {self._result_markup(data.get('result'))}",
        ]
        self.console.print(
            Panel("\n".join(lines), title="Expression", border_style=self.STATUS_COLORS.get(status, "white"))
        )

    def print_expressions(self, expressions: list[dict[str, Any]]) -> None:
        """Print the expression list as a table, sorted by numeric id."""
        table = Table(
            title=f"Expressions ({len(expressions)})",
            box=box.ROUNDED,
            border_style="cyan",
        )
        table.add_column("ID", style="bold")
        table.add_column("Expression")
        table.add_column("Status", justify="center")
        table.add_column("Result", justify="right")

        for item in sorted(expressions, key=_id_sort_key):
            table.add_row(
                item.get("id", ""),
                item.get("expression", ""),
                self._status(item.get("status", "?")),
                self._result_markup(item.get("result")),
            )
        self.console.print(table)

    def print_json(self, data: Any, title: str = "Response") -> None:
        """Pretty-print any JSON response."""
        formatted = json.dumps(data, indent=2, default=str)
        self.console.print(
            Panel(Syntax(formatted, "json", theme="monokai"), title=title, border_style="dim")
        )

    # ── messages ─────────────────────────────────────────────────────

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]✗[/bold red] {message}")


def _id_sort_key(item: dict[str, Any]) -> tuple[int, str]:
    """Order ``expr_2`` before ``expr_10``."""
    expression_id = item.get("id", "")
    _, _, suffix = expression_id.rpartition("_")
    return (int(suffix) if suffix.isdigit() else 0, expression_id)
