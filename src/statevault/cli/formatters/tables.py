"""Rich tables for structured data display."""

from datetime import UTC, datetime
from typing import Any

from rich.table import Table

from statevault.cli.formatters import console
from statevault.storage.records import SlotInfo


def create_table(
    title: str | None = None,
    *,
    show_header: bool = True,
    border_style: str = "blue",
    header_style: str = "bold cyan",
) -> Table:
    """Create a Rich Table with consistent statevault styling.

    Args:
        title: Optional table title.
        show_header: Whether to show the header row.
        border_style: Style for table borders.
        header_style: Style for header row.

    Returns:
        Configured Rich Table instance.
    """
    return Table(
        title=title,
        show_header=show_header,
        border_style=border_style,
        header_style=header_style,
        row_styles=["", "dim"],
    )


def create_key_value_table(
    data: dict[str, Any],
    title: str | None = None,
    *,
    key_style: str = "cyan",
) -> Table:
    """Create a two-column table for key-value data.

    Example:
        table = create_key_value_table({"Version": "1.0.0"}, "Slot main")
        print_table(table)
    """
    table = create_table(title, show_header=False)
    table.add_column("Key", style=key_style, no_wrap=True)
    table.add_column("Value", overflow="fold")

    for key, value in data.items():
        table.add_row(str(key), str(value))

    return table


def format_timestamp(epoch_ms: int) -> str:
    """Render epoch milliseconds as a UTC timestamp, or "-" for 0."""
    if not epoch_ms:
        return "-"
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KiB", "MiB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"


def create_slots_table(slots: list[SlotInfo], title: str | None = "Save Slots") -> Table:
    """Create a table listing save slots, newest first."""
    table = create_table(title)
    table.add_column("Slot", style="cyan", no_wrap=True)
    table.add_column("Version")
    table.add_column("Size", justify="right")
    table.add_column("Chunked", justify="center")
    table.add_column("Last Modified (UTC)")

    for slot in slots:
        table.add_row(
            slot.key,
            slot.version or "[error]unreadable[/]",
            format_size(slot.size),
            "yes" if slot.is_chunked else "no",
            format_timestamp(slot.last_modified),
        )

    return table


def print_table(table: Table) -> None:
    console.print(table)


__all__ = [
    "create_table",
    "create_key_value_table",
    "create_slots_table",
    "format_size",
    "format_timestamp",
    "print_table",
]
