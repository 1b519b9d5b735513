"""Slots command group for statevault.

Inspect, export, import, verify and delete save slots in a data directory.
"""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from statevault.cli.formatters.panels import print_error, print_info, print_success
from statevault.cli.formatters.tables import (
    create_key_value_table,
    create_slots_table,
    format_size,
    format_timestamp,
    print_table,
)
from statevault.config.loader import get_data_dir, load_config_or_default
from statevault.core.errors import ConfigError, PersistenceError
from statevault.migration import MigrationEngine, register_builtin_migrations
from statevault.storage import DurableStorageEngine, FileBackend

app = typer.Typer(
    name="slots",
    help="Manage save slots.",
    no_args_is_help=True,
)

DataDirOption = Annotated[
    Path | None,
    typer.Option(
        "--data-dir",
        "-d",
        help="Storage directory. Defaults to the configured data directory.",
    ),
]


def open_engine(data_dir: Path | None) -> DurableStorageEngine:
    """Build a storage engine over a FileBackend for CLI use.

    Raises:
        typer.Exit: If the configuration cannot be loaded.
    """
    try:
        config = load_config_or_default()
    except ConfigError as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(1) from e

    migration_engine = MigrationEngine(config.migration)
    if config.migration.register_builtin:
        register_builtin_migrations(migration_engine)
    return DurableStorageEngine(
        FileBackend(data_dir or get_data_dir(config)),
        config.storage,
        migration_engine=migration_engine,
    )


@app.command("list")
def list_slots(data_dir: DataDirOption = None) -> None:
    """List stored save slots, most recent first."""
    engine = open_engine(data_dir)
    slots = asyncio.run(engine.list_slots())
    if not slots:
        print_info("No save slots found.")
        return
    print_table(create_slots_table(slots))


@app.command()
def show(
    slot: Annotated[str, typer.Argument(help="Slot to inspect.")],
    data_dir: DataDirOption = None,
) -> None:
    """Show record details for a slot."""
    engine = open_engine(data_dir)

    async def _inspect() -> dict[str, object] | None:
        record = await engine.load_record(slot)
        if record is None:
            return None
        slots = {info.key: info for info in await engine.list_slots()}
        info = slots.get(slot)
        backups = await engine.backup_keys(slot)
        data = record.data or {}
        return {
            "Slot": slot,
            "Version": record.version,
            "Saved (UTC)": format_timestamp(record.timestamp),
            "Checksum": record.checksum,
            "Stored size": format_size(info.size) if info else "-",
            "Chunked": "yes" if info and info.is_chunked else "no",
            "Backups": len(backups),
            "Sections": ", ".join(sorted(data)) or "-",
        }

    details = asyncio.run(_inspect())
    if details is None:
        print_error(f"No loadable save found in slot '{slot}'.")
        raise typer.Exit(1)
    print_table(create_key_value_table(details, f"Slot {slot}"))


@app.command()
def export(
    slot: Annotated[str, typer.Argument(help="Slot to export.")],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write to this file instead of stdout."),
    ] = None,
    data_dir: DataDirOption = None,
) -> None:
    """Export a slot as a JSON document."""
    engine = open_engine(data_dir)
    try:
        document = asyncio.run(engine.export(slot))
    except PersistenceError as e:
        print_error(str(e))
        raise typer.Exit(1) from e

    if output is None:
        typer.echo(document)
        return
    output.write_text(document, encoding="utf-8")
    print_success(f"Exported slot '{slot}' to {output}")


@app.command("import")
def import_slot(
    source: Annotated[Path, typer.Argument(help="Exported JSON document.", exists=True)],
    slot: Annotated[str, typer.Option("--slot", "-s", help="Destination slot.")] = "main",
    overwrite: Annotated[
        bool,
        typer.Option("--overwrite/--no-overwrite", help="Replace an existing slot."),
    ] = True,
    data_dir: DataDirOption = None,
) -> None:
    """Import an exported document into a slot."""
    engine = open_engine(data_dir)
    result = asyncio.run(
        engine.import_(source.read_text(encoding="utf-8"), slot, overwrite=overwrite)
    )
    if result.is_err:
        print_error(f"Import failed: {result.error}")
        raise typer.Exit(1)
    receipt = result.value
    print_success(
        f"Imported into slot '{slot}' ({format_size(receipt.size)}, "
        f"{receipt.chunk_count or 'no'} chunks)"
    )


@app.command()
def verify(
    slot: Annotated[str, typer.Argument(help="Slot to verify.")],
    data_dir: DataDirOption = None,
) -> None:
    """Verify the checksum and chunks of a slot's primary record."""
    engine = open_engine(data_dir)
    result = asyncio.run(engine.verify(slot))
    if result.is_err:
        print_error(f"Slot '{slot}' failed verification: {result.error.message}")
        raise typer.Exit(1)
    print_success(f"Slot '{slot}' is intact (version {result.value.version}).")


@app.command()
def delete(
    slot: Annotated[str, typer.Argument(help="Slot to delete.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
    data_dir: DataDirOption = None,
) -> None:
    """Delete a slot with its chunks, backups and emergency record."""
    if not yes:
        typer.confirm(f"Delete slot '{slot}' and all its backups?", abort=True)
    engine = open_engine(data_dir)
    if not asyncio.run(engine.delete(slot)):
        print_error(f"Slot '{slot}' does not exist.")
        raise typer.Exit(1)
    print_success(f"Deleted slot '{slot}'.")


__all__ = ["app", "open_engine"]
