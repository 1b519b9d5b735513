"""Bundled save-format migrations for the cultivation game state.

Version history:
    1.0.0 -> 1.0.1  settings gain notifications and sound flags
    1.0.1 -> 1.0.2  cultivation paths gain multipliers, dual gains unlocked
    1.0.2 -> 1.1.0  sect and tutorial sections are introduced

Each step works on the copy the engine hands it and stamps meta.version.
"""

from __future__ import annotations

from statevault.core.types import StateTree
from statevault.migration.engine import MigrationContext, MigrationEngine

CULTIVATION_PATHS = ("qi", "body", "dual")


def _stamp_version(data: StateTree, version: str) -> None:
    meta = data.get("meta")
    if isinstance(meta, dict):
        meta["version"] = version


def add_settings_flags(data: StateTree, context: MigrationContext) -> StateTree:
    """1.0.0 -> 1.0.1: ensure settings.notifications and settings.sound exist."""
    settings = data.get("settings")
    if not isinstance(settings, dict):
        settings = {"autoSave": True, "theme": "dark"}
        data["settings"] = settings
    settings.setdefault("notifications", True)
    settings.setdefault("sound", True)
    _stamp_version(data, context.to_version)
    return data


def add_cultivation_multipliers(data: StateTree, context: MigrationContext) -> StateTree:
    """1.0.1 -> 1.0.2: add per-path multipliers and the dual unlocked flag."""
    cultivation = data.get("cultivation")
    if isinstance(cultivation, dict):
        dual = cultivation.get("dual")
        if isinstance(dual, dict) and "unlocked" not in dual:
            level = dual.get("level", 0)
            dual["unlocked"] = isinstance(level, (int, float)) and level > 0
        for path in CULTIVATION_PATHS:
            branch = cultivation.get(path)
            if isinstance(branch, dict):
                branch.setdefault("multiplier", 1.0)
    _stamp_version(data, context.to_version)
    return data


def add_sect_and_tutorial(data: StateTree, context: MigrationContext) -> StateTree:
    """1.0.2 -> 1.1.0: introduce the sect and tutorial sections."""
    if not data.get("sect"):
        data["sect"] = {
            "id": None,
            "name": None,
            "contribution": 0,
            "buffs": [],
            "lastDonation": 0,
        }
    if not data.get("tutorial"):
        data["tutorial"] = {
            "completed": False,
            "currentStep": 0,
            "completedSteps": [],
        }
    _stamp_version(data, context.to_version)
    return data


def remove_sect_and_tutorial(data: StateTree, context: MigrationContext) -> StateTree:
    """1.1.0 -> 1.0.2: drop the sections introduced by 1.1.0."""
    data.pop("sect", None)
    data.pop("tutorial", None)
    _stamp_version(data, context.to_version)
    return data


def register_builtin_migrations(engine: MigrationEngine) -> None:
    """Register the bundled migration chain on ``engine``."""
    engine.register_migration("1.0.0", "1.0.1", add_settings_flags)
    engine.register_migration("1.0.1", "1.0.2", add_cultivation_multipliers)
    engine.register_migration(
        "1.0.2", "1.1.0", add_sect_and_tutorial, remove_sect_and_tutorial
    )
