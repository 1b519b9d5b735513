"""statevault CLI module.

This module provides the command-line interface for statevault,
built with Typer for CLI framework and Rich for output.
"""

from statevault.cli.main import app

__all__ = ["app"]
