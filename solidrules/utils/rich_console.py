from typing import Any, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table


# Singleton Console instance
def get_console() -> Console:
    if not hasattr(get_console, "_console"):
        get_console._console = Console()
    return get_console._console


def print_panel(content: str, title: str | None = None, style: str = "bold blue", border_style: str | None = None):
    """Print a styled panel with optional title using Rich library.

    Args:
        content (str): The text content to display in the panel.
        title (str | None, optional): Title of the panel. Defaults to None.
        style (str, optional): Rich styling for the panel's content. Defaults to "bold blue".
        border_style (str | None, optional): Styling for the panel's border. Defaults to None.
    """
    console = get_console()
    border_style = border_style or style
    panel = Panel(content, title=title, style=style, border_style=border_style)
    console.print(panel)


def print_table(headers: list[str], rows: list[list[Any]], title: str | None = None, empty_message: str | None = None):
    """Print rows as a Rich table. None cells render blank.

    Args:
        headers (list[str]): Column headers for the table.
        rows (list[list[Any]]): Data rows to display in the table.
        title (str | None, optional): Title of the table. Defaults to None.
        empty_message (str | None, optional): Printed instead of an empty table. Defaults to None.
    """
    console = get_console()
    if not rows and empty_message:
        console.print(empty_message)
        return
    table = Table(title=title, header_style="bold cyan")
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*["" if cell is None else str(cell) for cell in row])
    console.print(table)


def rich_log_handler() -> RichHandler:
    """A RichHandler on the shared console, usable as a loguru sink."""
    return RichHandler(console=get_console(), rich_tracebacks=True, show_path=False)


class ConsoleProgress:
    """Progress sink that prints refresh progress text on the shared console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()
        self.total = 0.0

    def report(self, message: str, increment: Optional[float] = None) -> None:
        if increment:
            self.total = min(100.0, self.total + increment)
            self.console.print(f"[dim]{self.total:5.1f}%[/dim] {message}")
        else:
            self.console.print(f"[cyan]>[/cyan] {message}")
