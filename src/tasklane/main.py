"""Main entry point for the tasklane CLI."""

import typer
from rich.console import Console

from tasklane import __version__
from tasklane.commands import recurrence_command

app = typer.Typer(
    name="tasklane",
    help="Recurring task scheduling and optimistic task mutations",
    no_args_is_help=True,
)

console = Console()

app.add_typer(recurrence_command.app, name="recurrence", help="Recurrence rule tools")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[bold]tasklane[/bold] version [cyan]{__version__}[/cyan]")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
