"""FocusFlow CLI - maintenance and inspection of the task store."""

from datetime import tzinfo
from pathlib import Path

import typer
from rich.table import Table

from focusflow import __version__
from focusflow.cli.db_commands import db_app
from focusflow.cli.utils import console, format_ms, open_database, run_command
from focusflow.services import EventBus, ReminderDue, ReminderScheduler, TrackerService

app = typer.Typer(
    name="focusflow",
    help="FocusFlow - personal task and focus tracker",
    no_args_is_help=True,
)

app.add_typer(db_app, name="db")

reminders_app = typer.Typer(help="Task reminders", no_args_is_help=True)
app.add_typer(reminders_app, name="reminders")


# ===== Version =====
@app.command()
def version() -> None:
    """Show FocusFlow version."""
    console.print(f"[bold]FocusFlow[/bold] version [cyan]{__version__}[/cyan]")


# ===== Stats =====
@app.command()
def stats(
    days: int = typer.Option(7, help="Days of completion history to show"),  # noqa: B008
    db_path: Path | None = typer.Option(None, help="Custom database path"),  # noqa: B008
) -> None:
    """Show productivity statistics and the recent completion series."""

    async def _stats() -> None:
        database, _ = await open_database(db_path)
        try:
            service = TrackerService(database, EventBus())
            snapshot = await service.get_stats()
            series = await service.get_completion_series(days)
        finally:
            await database.close()

        table = Table(title="Productivity")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Tasks", str(snapshot.total_tasks))
        table.add_row("Completed", str(snapshot.completed_tasks))
        table.add_row("Completed today", str(snapshot.completed_today))
        table.add_row("Completed this week", str(snapshot.completed_week))
        table.add_row("Created today", str(snapshot.tasks_today))
        table.add_row("Created this week", str(snapshot.tasks_week))
        table.add_row("Focus minutes", str(snapshot.total_focus_minutes))
        table.add_row("Current streak", str(snapshot.current_streak))
        table.add_row("Best streak", str(snapshot.best_streak))
        table.add_row("Level", str(snapshot.level))
        table.add_row("Points", str(snapshot.points))
        console.print(table)

        if not series:
            console.print(f"[dim]No completions in the last {max(days, 1)} day(s)[/dim]")
            return
        history = Table(title=f"Completions, last {max(days, 1)} day(s)")
        history.add_column("Day", style="cyan")
        history.add_column("Completed", justify="right")
        for day in series:
            history.add_row(day.day, str(day.count))
        console.print(history)

    run_command(_stats)


# ===== Backup =====
@app.command("export")
def export_backup(
    output: Path | None = typer.Option(  # noqa: B008
        None, "--output", "-o", help="Write to file instead of stdout"
    ),
    db_path: Path | None = typer.Option(None, help="Custom database path"),  # noqa: B008
) -> None:
    """Export projects, tasks and settings as a JSON backup."""

    async def _export() -> None:
        database, _ = await open_database(db_path)
        try:
            bundle = await TrackerService(database, EventBus()).export_data()
        finally:
            await database.close()

        payload = bundle.model_dump_json(indent=2)
        if output is None:
            typer.echo(payload)
            return
        output.write_text(payload, encoding="utf-8")
        console.print(
            f"[green]✓[/green] Exported {len(bundle.projects)} project(s) and "
            f"{len(bundle.tasks)} task(s) to [cyan]{output}[/cyan]"
        )

    run_command(_export)


@app.command("import")
def import_backup(
    backup_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup JSON file"),  # noqa: B008
    db_path: Path | None = typer.Option(None, help="Custom database path"),  # noqa: B008
) -> None:
    """Import a JSON backup. Rows are upserted by id, all or nothing."""

    async def _import() -> None:
        database, _ = await open_database(db_path)
        try:
            counts = await TrackerService(database, EventBus()).import_data(
                backup_file.read_text(encoding="utf-8")
            )
        finally:
            await database.close()
        console.print(
            f"[green]✓[/green] Imported {counts['projects']} project(s), "
            f"{counts['tasks']} task(s), {counts['subtasks']} subtask(s)"
        )

    run_command(_import)


# ===== Reminders =====
def _print_reminder(event: ReminderDue, tz: tzinfo | None = None) -> None:
    console.print(
        f"[yellow]⏰[/yellow] [bold]{event.title}[/bold] "
        f"[dim](deadline {format_ms(event.deadline, tz)}, id {event.task_id})[/dim]"
    )


@reminders_app.command("watch")
def watch(
    interval: float | None = typer.Option(  # noqa: B008
        None, help="Poll interval in seconds (default from config)"
    ),
    once: bool = typer.Option(False, help="Run a single poll and exit"),  # noqa: B008
    db_path: Path | None = typer.Option(None, help="Custom database path"),  # noqa: B008
) -> None:
    """Print reminders as they come due, until interrupted."""

    async def _watch() -> None:
        database, config_manager = await open_database(db_path)
        config = config_manager.load_config()
        tz = config_manager.get_timezone()
        bus = EventBus()
        queue = bus.subscribe()
        scheduler = ReminderScheduler(
            database,
            bus,
            interval_seconds=interval or config.reminders.poll_interval_seconds,
            batch_size=config.reminders.batch_size,
        )
        try:
            if once:
                fired = await scheduler.tick()
                for event in fired:
                    _print_reminder(event, tz)
                if not fired:
                    console.print("[dim]No reminders due[/dim]")
                return

            console.print("[blue]Watching for reminders...[/blue]")
            console.print("[dim]Press Ctrl+C to stop[/dim]")
            await scheduler.start()
            while True:
                event = await queue.get()
                if isinstance(event, ReminderDue):
                    _print_reminder(event, tz)
        finally:
            await scheduler.stop()
            await database.close()

    try:
        run_command(_watch)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
