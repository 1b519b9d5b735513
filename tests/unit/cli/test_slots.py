"""Unit tests for the slots command group."""

import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from statevault.cli.main import app
from statevault.config.models import StorageConfig
from statevault.storage import DurableStorageEngine, FileBackend

runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point STATEVAULT_HOME at a temporary directory and return its data dir."""
    home = tmp_path / ".statevault"
    monkeypatch.setenv("STATEVAULT_HOME", str(home))
    return home / "data"


def seed(data_dir: Path, slot: str = "main", data: dict | None = None, times: int = 1) -> None:
    engine = DurableStorageEngine(FileBackend(data_dir), StorageConfig())

    async def _save() -> None:
        for n in range(times):
            await engine.save(slot, data or {"player": {"jade": n}, "settings": {}})

    asyncio.run(_save())


class TestList:
    """Tests for slots list."""

    def test_empty(self, data_dir: Path) -> None:
        """An empty data dir reports no slots."""
        result = runner.invoke(app, ["slots", "list"])
        assert result.exit_code == 0
        assert "No save slots found." in result.output

    def test_lists_slots(self, data_dir: Path) -> None:
        """Stored slots appear in the table."""
        seed(data_dir, "main")
        seed(data_dir, "alt")
        result = runner.invoke(app, ["slots", "list"])
        assert result.exit_code == 0
        assert "main" in result.output
        assert "alt" in result.output
        assert "1.0.0" in result.output

    def test_explicit_data_dir(self, tmp_path: Path, data_dir: Path) -> None:
        """--data-dir overrides the configured directory."""
        other = tmp_path / "elsewhere"
        seed(other, "side")
        result = runner.invoke(app, ["slots", "list", "--data-dir", str(other)])
        assert "side" in result.output


class TestShow:
    """Tests for slots show."""

    def test_shows_record(self, data_dir: Path) -> None:
        """Details include the version and backup count."""
        seed(data_dir, times=3)
        result = runner.invoke(app, ["slots", "show", "main"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output
        assert "Backups" in result.output
        assert "player, settings" in result.output

    def test_missing_slot(self, data_dir: Path) -> None:
        """An unknown slot exits with 1."""
        result = runner.invoke(app, ["slots", "show", "nope"])
        assert result.exit_code == 1
        assert "No loadable save" in result.output


class TestExportImport:
    """Tests for slots export and import."""

    def test_export_to_stdout(self, data_dir: Path) -> None:
        """Without --output the document goes to stdout."""
        seed(data_dir, data={"player": {"jade": 12}})
        result = runner.invoke(app, ["slots", "export", "main"])
        assert result.exit_code == 0
        document = json.loads(result.stdout)
        assert document["data"] == {"player": {"jade": 12}}

    def test_export_missing_slot(self, data_dir: Path) -> None:
        """Exporting nothing fails."""
        result = runner.invoke(app, ["slots", "export", "main"])
        assert result.exit_code == 1

    def test_export_then_import(self, tmp_path: Path, data_dir: Path) -> None:
        """A file written by export imports into another slot."""
        seed(data_dir, data={"player": {"jade": 12}})
        target = tmp_path / "save.json"

        exported = runner.invoke(app, ["slots", "export", "main", "-o", str(target)])
        imported = runner.invoke(app, ["slots", "import", str(target), "--slot", "copy"])

        assert exported.exit_code == 0
        assert target.exists()
        assert imported.exit_code == 0
        assert "Imported into slot 'copy'" in imported.output
        shown = runner.invoke(app, ["slots", "show", "copy"])
        assert shown.exit_code == 0

    def test_import_refuses_overwrite(self, tmp_path: Path, data_dir: Path) -> None:
        """--no-overwrite keeps an existing slot."""
        seed(data_dir)
        target = tmp_path / "save.json"
        runner.invoke(app, ["slots", "export", "main", "-o", str(target)])
        result = runner.invoke(app, ["slots", "import", str(target), "--no-overwrite"])
        assert result.exit_code == 1
        assert "Import failed" in result.output

    def test_import_invalid_document(self, tmp_path: Path, data_dir: Path) -> None:
        """A malformed file is rejected."""
        target = tmp_path / "bad.json"
        target.write_text("{oops", encoding="utf-8")
        result = runner.invoke(app, ["slots", "import", str(target)])
        assert result.exit_code == 1


class TestVerify:
    """Tests for slots verify."""

    def test_intact(self, data_dir: Path) -> None:
        """A fresh save verifies."""
        seed(data_dir)
        result = runner.invoke(app, ["slots", "verify", "main"])
        assert result.exit_code == 0
        assert "is intact" in result.output

    def test_corrupted(self, data_dir: Path) -> None:
        """A damaged primary record fails even if backups exist."""
        seed(data_dir, times=2)
        FileBackend(data_dir).set_item("statevault_main", "{garbage")
        result = runner.invoke(app, ["slots", "verify", "main"])
        assert result.exit_code == 1
        assert "failed verification" in result.output


class TestDelete:
    """Tests for slots delete."""

    def test_confirmation_declined(self, data_dir: Path) -> None:
        """Answering no keeps the slot."""
        seed(data_dir)
        result = runner.invoke(app, ["slots", "delete", "main"], input="n\n")
        assert result.exit_code == 1
        assert FileBackend(data_dir).get_item("statevault_main") is not None

    def test_delete_with_yes(self, data_dir: Path) -> None:
        """--yes deletes the slot and its backups."""
        seed(data_dir, times=2)
        result = runner.invoke(app, ["slots", "delete", "main", "--yes"])
        assert result.exit_code == 0
        assert FileBackend(data_dir).keys() == []

    def test_delete_missing(self, data_dir: Path) -> None:
        """Deleting an unknown slot exits with 1."""
        result = runner.invoke(app, ["slots", "delete", "ghost", "-y"])
        assert result.exit_code == 1
        assert "does not exist" in result.output
