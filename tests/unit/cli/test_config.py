"""Unit tests for the config command group."""

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from statevault.cli.main import app

runner = CliRunner()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point STATEVAULT_HOME at a temporary directory."""
    config_dir = tmp_path / ".statevault"
    monkeypatch.setenv("STATEVAULT_HOME", str(config_dir))
    return config_dir


class TestConfigInit:
    """Tests for config init."""

    def test_creates_file(self, home: Path) -> None:
        """init writes config.yaml."""
        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 0
        content = yaml.safe_load((home / "config.yaml").read_text(encoding="utf-8"))
        assert content["slot"] == "main"

    def test_refuses_existing_without_force(self, home: Path) -> None:
        """A second init fails unless --force is given."""
        runner.invoke(app, ["config", "init"])
        again = runner.invoke(app, ["config", "init"])
        forced = runner.invoke(app, ["config", "init", "--force"])
        assert again.exit_code == 1
        assert "--force" in again.output
        assert forced.exit_code == 0


class TestConfigShow:
    """Tests for config show."""

    def test_overview(self, home: Path) -> None:
        """Without a section an overview is shown."""
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "Current Configuration" in result.output
        assert "log_mode" in result.output

    def test_section(self, home: Path) -> None:
        """A named section lists its fields."""
        result = runner.invoke(app, ["config", "show", "storage"])
        assert result.exit_code == 0
        assert "chunk_size" in result.output
        assert "statevault_" in result.output

    def test_reflects_file(self, home: Path) -> None:
        """Values from config.yaml are displayed."""
        home.mkdir(parents=True)
        (home / "config.yaml").write_text("auto_save:\n  interval: 12.5\n", encoding="utf-8")
        result = runner.invoke(app, ["config", "show", "auto_save"])
        assert "12.5" in result.output

    def test_unknown_section(self, home: Path) -> None:
        """An unknown section exits with 1."""
        result = runner.invoke(app, ["config", "show", "bogus"])
        assert result.exit_code == 1
        assert "Unknown section" in result.output

    def test_invalid_file(self, home: Path) -> None:
        """An invalid config.yaml exits with 1."""
        home.mkdir(parents=True)
        (home / "config.yaml").write_text("storage:\n  chunk_size: 1\n", encoding="utf-8")
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 1
