"""Integration tests for the focusflow command line."""

import asyncio
import json
from pathlib import Path

import pytest
from focusflow.cli.main import app
from focusflow.domain.models import NewTask
from focusflow.infrastructure.database import Database
from typer.testing import CliRunner

runner = CliRunner()


@pytest.fixture
def cli_db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run from a scratch directory so config and logs stay out of the repo."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for var in ("FOCUSFLOW_DB_PATH", "FOCUSFLOW_TIMEZONE", "FOCUSFLOW_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path / "cli.db"


def seed(db_path: Path, *tasks: NewTask) -> None:
    async def _seed() -> None:
        db = Database(db_path)
        await db.initialize()
        try:
            for task in tasks:
                await db.add_task(task)
        finally:
            await db.close()

    asyncio.run(_seed())


@pytest.mark.integration
class TestCli:
    """End-to-end command tests against a temporary store."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "FocusFlow" in result.stdout

    def test_db_init_creates_store(self, cli_db_path: Path) -> None:
        result = runner.invoke(app, ["db", "init", "--db-path", str(cli_db_path)])

        assert result.exit_code == 0, result.output
        assert cli_db_path.exists()
        assert "Schema version: 4" in result.stdout
        assert (cli_db_path.parent / ".focusflow" / "logs" / "focusflow.log").exists()

    def test_db_health(self, cli_db_path: Path) -> None:
        seed(cli_db_path, NewTask(title="x"))

        result = runner.invoke(app, ["db", "health", "--db-path", str(cli_db_path)])

        assert result.exit_code == 0, result.output
        assert "Schema version" in result.stdout
        assert "Has tasks" in result.stdout

    def test_stats(self, cli_db_path: Path) -> None:
        seed(cli_db_path, NewTask(title="x"))

        result = runner.invoke(app, ["stats", "--days", "3", "--db-path", str(cli_db_path)])

        assert result.exit_code == 0, result.output
        assert "Best streak" in result.stdout
        assert "No completions in the last 3 day(s)" in result.stdout

    def test_export_then_import(self, cli_db_path: Path, tmp_path: Path) -> None:
        seed(cli_db_path, NewTask(title="first"), NewTask(title="second"))
        backup = tmp_path / "backup.json"

        result = runner.invoke(
            app, ["export", "--output", str(backup), "--db-path", str(cli_db_path)]
        )
        assert result.exit_code == 0, result.output
        assert "Exported 0 project(s) and 2 task(s)" in result.stdout
        data = json.loads(backup.read_text(encoding="utf-8"))
        assert sorted(t["title"] for t in data["tasks"]) == ["first", "second"]

        restored = tmp_path / "restored.db"
        result = runner.invoke(app, ["import", str(backup), "--db-path", str(restored)])
        assert result.exit_code == 0, result.output
        assert "Imported 0 project(s), 2 task(s), 0 subtask(s)" in result.stdout

    def test_import_invalid_backup_exits_1(self, cli_db_path: Path, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text('{"tasks": "nope"}', encoding="utf-8")

        result = runner.invoke(app, ["import", str(bad), "--db-path", str(cli_db_path)])

        assert result.exit_code == 1
        assert "Invalid backup file" in result.output

    def test_reminders_watch_once(self, cli_db_path: Path) -> None:
        seed(cli_db_path, NewTask(title="Call the bank", remind_at=1000))

        result = runner.invoke(
            app, ["reminders", "watch", "--once", "--db-path", str(cli_db_path)]
        )
        assert result.exit_code == 0, result.output
        assert "Call the bank" in result.stdout

        result = runner.invoke(
            app, ["reminders", "watch", "--once", "--db-path", str(cli_db_path)]
        )
        assert result.exit_code == 0, result.output
        assert "No reminders due" in result.stdout
