"""Unit tests for CLI main module."""

import re

from typer.testing import CliRunner

from statevault import __version__
from statevault.cli.main import app

runner = CliRunner()


def strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


class TestMainApp:
    """Tests for the main Typer application."""

    def test_app_has_help(self) -> None:
        """--help describes the tool."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "durable, migratable save slots" in result.output

    def test_app_version_option(self) -> None:
        """--version prints the package version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"statevault version {__version__}" in strip_ansi(result.output)

    def test_app_version_short_option(self) -> None:
        """-V is an alias for --version."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in strip_ansi(result.output)

    def test_no_args_shows_help(self) -> None:
        """Running without arguments shows help."""
        result = runner.invoke(app, [])
        assert result.exit_code == 2
        assert "slots" in result.output


class TestCommandGroups:
    """Tests for command group registration."""

    def test_slots_group_registered(self) -> None:
        """The slots group is available."""
        result = runner.invoke(app, ["slots", "--help"])
        assert result.exit_code == 0
        assert "Manage save slots" in result.output

    def test_config_group_registered(self) -> None:
        """The config group is available."""
        result = runner.invoke(app, ["config", "--help"])
        assert result.exit_code == 0
        assert "Manage statevault configuration" in result.output
