"""statevault CLI main entry point.

This module defines the main Typer application and registers
all command groups for the statevault CLI.
"""

from typing import Annotated

import typer

from statevault import __version__
from statevault.cli.commands import config, slots
from statevault.cli.formatters import console
from statevault.observability.logging import set_console_logging

app = typer.Typer(
    name="statevault",
    help="statevault - durable, migratable save slots",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(slots.app, name="slots")
app.add_typer(config.app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]statevault[/] version [green]{__version__}[/]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Print log events to stderr."),
    ] = False,
) -> None:
    """statevault - durable, migratable save slots.

    Use [bold cyan]statevault COMMAND --help[/] for command-specific help.
    """
    set_console_logging(verbose)


__all__ = ["app", "main"]
