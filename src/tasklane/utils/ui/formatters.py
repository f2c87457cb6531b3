"""Output formatters for different formats."""

import json
from typing import Any

import yaml
from rich.markup import escape
from rich.table import Table

from .console import get_console


def format_output(data: Any, output_format: str = "table") -> None:
    """Format and display output based on format."""
    if output_format == "json":
        print(json.dumps(data, indent=2, default=str))
    elif output_format == "yaml":
        print(yaml.dump(data, default_flow_style=False, sort_keys=False))
    else:
        format_table(data)


def _cell(value: Any) -> str:
    if isinstance(value, bool):
        return "✓" if value else "✗"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if value is None:
        return "-"
    return str(value)


def format_table(data: Any) -> None:
    """Format data as a table."""
    console = get_console()
    if not data:
        console.print("[yellow]No data to display[/yellow]")
        return

    if isinstance(data, dict):
        format_single_item(data)
        return

    if not isinstance(data[0], dict):
        for item in data:
            console.print(item)
        return

    columns = list(data[0].keys())
    table = Table(show_header=True, header_style="bold magenta")
    for col in columns:
        table.add_column(col.replace("_", " ").title())
    for item in data:
        table.add_row(*(_cell(item.get(col)) for col in columns))

    console.print(table)


def format_single_item(item: dict) -> None:
    """Format a single item as key-value pairs."""
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")

    for key, value in item.items():
        table.add_row(key.replace("_", " ").title(), _cell(value))

    get_console().print(table)


def format_error(message: str) -> None:
    """Format and display an error message."""
    get_console().print(f"[bold red]Error:[/bold red] {escape(message)}")


def format_info(message: str) -> None:
    """Format and display an info message."""
    get_console().print(f"[bold blue]Info:[/bold blue] {message}")
