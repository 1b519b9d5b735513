"""Config command group for statevault.

Create and display the YAML configuration.
"""

from typing import Annotated

import typer

from statevault.cli.formatters.panels import print_error, print_success
from statevault.cli.formatters.tables import create_key_value_table, print_table
from statevault.config.loader import create_default_config, get_data_dir, load_config_or_default
from statevault.config.models import get_config_dir
from statevault.core.errors import ConfigError

app = typer.Typer(
    name="config",
    help="Manage statevault configuration.",
    no_args_is_help=True,
)

SECTIONS = ("storage", "migration", "snapshots", "auto_save", "logging")


@app.command()
def init(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing config.yaml."),
    ] = False,
) -> None:
    """Create a default config.yaml in the statevault home directory."""
    try:
        path = create_default_config(overwrite=force)
    except ConfigError as e:
        print_error(f"{e.message}. Use --force to overwrite.")
        raise typer.Exit(1) from e
    print_success(f"Created configuration at {path}")


@app.command()
def show(
    section: Annotated[
        str | None,
        typer.Argument(help="Configuration section to display (e.g., 'storage')."),
    ] = None,
) -> None:
    """Display the effective configuration.

    Shows an overview if no section is specified.
    """
    try:
        config = load_config_or_default()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1) from e

    if section is None:
        overview = {
            "config_dir": get_config_dir(),
            "data_dir": get_data_dir(config),
            "slot": config.slot,
            "current_version": config.storage.current_version,
            "auto_save": config.auto_save.enabled,
            "log_mode": config.logging.mode.value,
        }
        print_table(create_key_value_table(overview, "Current Configuration"))
        return

    if section not in SECTIONS:
        print_error(f"Unknown section '{section}'. Choose from: {', '.join(SECTIONS)}")
        raise typer.Exit(1)
    values = getattr(config, section).model_dump(mode="json")
    print_table(create_key_value_table(values, f"{section} settings"))


__all__ = ["app"]
