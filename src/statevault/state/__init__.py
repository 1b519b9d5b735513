"""State container, auto-save policy and the default game template."""

from statevault.state.autosave import AutoSaver
from statevault.state.rules import ValidationRule, default_rules
from statevault.state.store import (
    ChangeEvent,
    Snapshot,
    SnapshotSource,
    StateStore,
    create_state_store,
)
from statevault.state.template import default_consistency_checker, default_state

__all__ = [
    "AutoSaver",
    "ChangeEvent",
    "Snapshot",
    "SnapshotSource",
    "StateStore",
    "ValidationRule",
    "create_state_store",
    "default_consistency_checker",
    "default_rules",
    "default_state",
]
