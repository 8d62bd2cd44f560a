"""Database management commands."""

from pathlib import Path

import typer
from rich.table import Table

from focusflow.cli.utils import console, open_database, run_command

db_app = typer.Typer(help="Task store management", no_args_is_help=True)


@db_app.command("init")
def init(
    db_path: Path | None = typer.Option(  # noqa: B008
        None, help="Custom database path (default: .focusflow/focusflow.db)"
    ),
) -> None:
    """Create the task store, or migrate an existing one to the latest schema.

    Examples:
        focusflow db init
        focusflow db init --db-path /tmp/focusflow.db
    """

    async def _init() -> None:
        database, _ = await open_database(db_path)
        try:
            version = await database.schema_version()
        finally:
            await database.close()
        console.print(f"[green]✓[/green] Task store ready at [cyan]{database.db_path}[/cyan]")
        console.print(f"[dim]Schema version: {version}[/dim]")

    run_command(_init)


@db_app.command("health")
def health(
    db_path: Path | None = typer.Option(None, help="Custom database path"),  # noqa: B008
) -> None:
    """Show tables, schema version and whether the store holds data."""

    async def _health() -> None:
        database, _ = await open_database(db_path)
        try:
            report = await database.health()
        finally:
            await database.close()

        table = Table(title="Task Store Health")
        table.add_column("Check", style="cyan")
        table.add_column("Value")
        table.add_row("Path", report.db_path)
        table.add_row("Schema version", str(report.schema_version))
        table.add_row("Tables", ", ".join(report.tables))
        table.add_row("Has projects", "yes" if report.has_projects else "no")
        table.add_row("Has tasks", "yes" if report.has_tasks else "no")
        console.print(table)

    run_command(_health)
