"""Console output and logging setup shared by the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text

console = Console()
err_console = Console(stderr=True)


def setup_rich_logging(log_level: str = "info", *, console: Console | None = None) -> None:
    """Configure logging to use Rich for consistent, pretty output.

    Args:
        log_level: Logging level (debug, info, warning, error).
        console: Optional Rich console to use (defaults to stderr).

    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    handler = RichHandler(
        console=console or err_console,
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Suppress noisy logs from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def print_error_message(message: str, suggestion: str | None = None) -> None:
    """Print an error panel to stderr."""
    body = f"[bold red]{message}[/bold red]"
    if suggestion:
        body += f"\n\n{suggestion}"
    err_console.print(Panel(body, title="Error", border_style="red"))


def print_output_panel(text: str, *, title: str, subtitle: str | None = None) -> None:
    """Print ``text`` in a titled panel."""
    console.print(Panel(Text(text), title=title, subtitle=subtitle, border_style="green"))
