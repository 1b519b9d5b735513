"""CLI command implementations for statevault.

This module contains the command group implementations:
- slots: Inspect and manage save slots
- config: Manage configuration
"""
