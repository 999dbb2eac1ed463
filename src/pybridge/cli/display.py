"""Consolidated display utilities for CLI commands."""
from typing import Any

from rich.console import Console
from rich.markup import escape

console = Console()
err_console = Console(stderr=True)


def warning(message: str) -> None:
    """Print warning message."""
    err_console.print(f"[yellow]⚠️  {escape(message)}[/yellow]")


def error(message: str) -> None:
    """Print error message."""
    err_console.print(f"[red]❌ {escape(message)}[/red]", highlight=False)


def info(message: str) -> None:
    """Print info message."""
    console.print(message)


def section(title: str) -> None:
    """Print section header."""
    console.print(f"\n[bold]{title}[/bold]")


def dim(message: str) -> None:
    """Print dimmed output (for remote tracebacks)."""
    err_console.print(f"[dim]{escape(message)}[/dim]", highlight=False)


def result(value: Any) -> None:
    """Print a value returned by the companion."""
    console.print(repr(value), markup=False, highlight=True)
