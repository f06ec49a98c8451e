"""Shared utilities for bodhilab CLI modules."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from bodhilab.core.runner import is_mock

__all__ = [
    "PIHOLE_CONFIG_PATHS",
    "find_pihole_config",
    "is_mock",
    "setup_file_logging",
    "confirm_action",
    "handle_cli_error",
    "print_header",
    "print_success",
    "print_error",
    "print_warning",
    "print_info",
]

# Default Pi-hole config search paths (ordered by proximity to current run)
PIHOLE_CONFIG_PATHS = [
    "./pihole.yml",
    "/etc/bodhilab/pihole.yml",
]


def find_pihole_config(config_path: Optional[str] = None) -> Optional[str]:
    """Locate the active Pi-hole configuration file.

    Returns None when no file exists; built-in defaults apply then.
    """
    if config_path:
        return config_path

    if env_config := os.environ.get("BODHI_PIHOLE_CONFIG"):
        return env_config

    for path in PIHOLE_CONFIG_PATHS:
        if Path(path).exists():
            return path

    return None


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> Path:
    """Set up file logging for CLI commands.

    Args:
        log_file: Path to log file (optional)
        verbose: Enable verbose logging
    """
    from bodhilab.core.logger import setup_file_logging as _setup_file_logging
    return _setup_file_logging(log_file=log_file, verbose=verbose)


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode.

    Args:
        message: Confirmation message to display
        yes_flag: Skip prompt if True (from --yes flag)
        mock: Skip prompt if True (mock mode)

    Returns:
        True if confirmed, False otherwise
    """
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {e}")
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_header(console: Console, title: str) -> None:
    """Print a section banner."""
    console.print()
    console.print(Panel(f"[bold]{title}[/bold]", border_style="blue", expand=True))


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    """Print success message with consistent formatting.

    Args:
        console: Rich console for output
        message: Success message
        prefix: Prefix symbol (default: ✓)
    """
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    """Print error message with consistent formatting.

    Args:
        console: Rich console for output
        message: Error message
        prefix: Prefix symbol (default: ✗)
    """
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    """Print warning message with consistent formatting.

    Args:
        console: Rich console for output
        message: Warning message
        prefix: Prefix symbol (default: ⚠)
    """
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    """Print info message with consistent formatting.

    Args:
        console: Rich console for output
        message: Info message
        prefix: Prefix symbol (default: ℹ)
    """
    console.print(f"[cyan]{prefix}[/cyan] {message}")
