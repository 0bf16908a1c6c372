"""
Output formatting with Rich console.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table
from rich.theme import Theme


custom_theme = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "red",
    "success": "green",
})

RISK_STYLES = {
    "LOW_RISK": "green",
    "MEDIUM_RISK": "yellow",
    "HIGH_RISK": "dark_orange",
    "VERY_HIGH_RISK": "red",
}


class ConsoleOutput:
    """Console output with Rich formatting."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(theme=custom_theme)

    def print(self, text: Any = "", **kwargs):
        """Print text to console."""
        self.console.print(text, **kwargs)

    def print_json(self, data: Any):
        self.console.print_json(data=data)

    def print_error(self, text: str):
        self.console.print(f"[red]Error:[/red] {text}")

    def print_success(self, text: str):
        self.console.print(f"[green]Success:[/green] {text}")

    def print_warning(self, text: str):
        self.console.print(f"[yellow]Warning:[/yellow] {text}")

    def print_dim(self, text: str):
        self.console.print(f"[dim]{text}[/dim]")

    def print_mapping(self, title: str, rows: Dict[str, Any]):
        """Two-column key/value table."""
        table = Table(title=title, show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        for key, value in rows.items():
            table.add_row(str(key), str(value))
        self.console.print(table)


def risk_markup(level: str) -> str:
    style = RISK_STYLES.get(level, "white")
    return f"[{style}]{level}[/{style}]"
