"""statevault - client-side state persistence with integrity and migrations.

A validated in-memory state container backed by a durable storage engine
(chunking, checksums, backups, recovery) and a versioned migration graph.

Example:
    # Using CLI
    statevault slots list
    statevault slots export main -o main.json

    # Using Python
    from statevault.state import create_state_store
    store = create_state_store()
    store.update({"player": {"jade": 100}})
    await store.save()
"""

__version__ = "0.1.0"

__all__ = ["__version__", "main"]


def main() -> None:
    """Main entry point for the statevault CLI.

    This function invokes the Typer app from statevault.cli.main.
    """
    from statevault.cli.main import app

    app()
