"""Rich formatters for CLI output.

This module provides a shared Console instance and exports all formatters
for consistent terminal output across the statevault CLI.

Semantic Colors:
- green: success
- yellow: warning
- red: error
- blue: info
"""

from rich.console import Console
from rich.theme import Theme

STATEVAULT_THEME = Theme(
    {
        "success": "green",
        "warning": "yellow",
        "error": "red",
        "info": "blue",
        "muted": "dim",
        "highlight": "bold cyan",
    }
)

console = Console(theme=STATEVAULT_THEME)

__all__ = ["console", "STATEVAULT_THEME"]
