"""Shared helpers for CLI commands."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, tzinfo
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console

from focusflow.infrastructure import ConfigManager, Database, setup_logging
from focusflow.infrastructure.exceptions import FocusFlowError, format_error

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


async def open_database(db_path: Path | None = None) -> tuple[Database, ConfigManager]:
    """Load configuration, set up logging and open the task store.

    Args:
        db_path: Overrides the configured database path
    """
    config_manager = ConfigManager()
    config = config_manager.load_config()
    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    database = Database(
        db_path or config_manager.get_database_path(),
        busy_timeout_ms=config.database.busy_timeout_ms,
        lock_timeout_seconds=config.database.lock_timeout_seconds,
        tz=config_manager.get_timezone(),
    )
    await database.initialize()
    return database, config_manager


def run_command(command: Callable[[], Awaitable[T]]) -> T:
    """Run an async command body, turning FocusFlowError into exit code 1."""
    try:
        return asyncio.run(command())
    except FocusFlowError as e:
        err_console.print(f"[red]Error:[/red] {format_error(e)}")
        if e.remediation:
            err_console.print(f"[dim]{e.remediation}[/dim]")
        raise typer.Exit(1) from e


def format_ms(ms: int | None, tz: tzinfo | None = None) -> str:
    """Wall time of an epoch-millisecond instant in ``tz``, '-' for None.

    ``tz=None`` renders system local time.
    """
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz).strftime("%Y-%m-%d %H:%M")
