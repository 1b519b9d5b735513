"""Pydantic models for statevault configuration.

This module defines the configuration schema using Pydantic v2. All
configuration validation happens through these models.

Classes:
    StorageConfig: Durable storage engine settings
    MigrationConfig: Migration engine defaults
    SnapshotConfig: In-memory snapshot ring buffer
    AutoSaveConfig: Auto-save trigger policy
    StateVaultConfig: Top-level configuration combining all sections
"""

from __future__ import annotations

import os
from pathlib import Path
import re

from pydantic import BaseModel, Field, field_validator

from statevault.observability.logging import LoggingConfig

_VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*([-+][0-9A-Za-z.-]+)?$")

DEFAULT_SIGNIFICANT_SOURCES: tuple[str, ...] = (
    "realm:breakthrough",
    "cultivation:levelUp",
    "gacha:pull",
    "scripture:acquired",
    "combat:victory",
)


def _check_version(v: str) -> str:
    if not _VERSION_PATTERN.match(v):
        msg = f"Invalid version string: {v!r}"
        raise ValueError(msg)
    return v


class StorageConfig(BaseModel, frozen=True):
    """Durable storage engine configuration.

    Attributes:
        prefix: Namespace prepended to every physical key
        chunk_size: Serialized records longer than this (in characters) are
            split into fragments of this size
        max_backups: Backups retained per slot, oldest pruned first
        compression_enabled: Default for the save-time compression flag
        backup_on_save: Default for the save-time backup flag
        current_version: Save-format version stamped on new records
        quota_retry_wait: Seconds to wait before the post-reclaim retry
        data_dir: Directory for the file backend, relative to the config dir
    """

    prefix: str = "statevault_"
    chunk_size: int = Field(default=1024 * 1024, ge=16)
    max_backups: int = Field(default=5, ge=0)
    compression_enabled: bool = True
    backup_on_save: bool = True
    current_version: str = "1.0.0"
    quota_retry_wait: float = Field(default=0.05, ge=0.0)
    data_dir: str = "data"

    @field_validator("current_version")
    @classmethod
    def validate_current_version(cls, v: str) -> str:
        """Require a dotted numeric version such as 1.0.2."""
        return _check_version(v)


class MigrationConfig(BaseModel, frozen=True):
    """Migration engine defaults, overridable per migrate() call.

    Attributes:
        enable_rollback: Restore the pre-chain backup when post-validation fails
        validate_before: Run the consistency checker on the input
        validate_after: Run the consistency checker on the output
        create_backup: Capture a deep copy of the input before migrating
        max_history: Migration records retained, oldest dropped first
        register_builtin: Register the bundled 1.0.0 -> 1.1.0 migrations
    """

    enable_rollback: bool = True
    validate_before: bool = True
    validate_after: bool = True
    create_backup: bool = True
    max_history: int = Field(default=100, ge=1)
    register_builtin: bool = False


class SnapshotConfig(BaseModel, frozen=True):
    """Snapshot ring buffer configuration.

    Attributes:
        max_snapshots: Capacity of the ring buffer
        snapshot_before_load: Take an automatic snapshot before adopting a load
    """

    max_snapshots: int = Field(default=10, ge=1)
    snapshot_before_load: bool = True


class AutoSaveConfig(BaseModel, frozen=True):
    """Auto-save trigger policy.

    Attributes:
        enabled: Master switch for automatic saves
        interval: Seconds between interval-driven saves
        max_unsaved_changes: Save once this many updates are pending
        debounce: Seconds within which triggers coalesce into one save
        significant_sources: Update sources that trigger an immediate save
        save_on_background: Save when the host reports backgrounding
        emergency_on_unload: Write the synchronous emergency record on unload
    """

    enabled: bool = True
    interval: float = Field(default=30.0, gt=0)
    max_unsaved_changes: int = Field(default=100, ge=1)
    debounce: float = Field(default=1.0, ge=0)
    significant_sources: tuple[str, ...] = DEFAULT_SIGNIFICANT_SOURCES
    save_on_background: bool = True
    emergency_on_unload: bool = True


class StateVaultConfig(BaseModel, frozen=True):
    """Top-level statevault configuration.

    Validates against config.yaml in the statevault home directory.

    Attributes:
        slot: Save slot used by the state store
        storage: Durable storage configuration
        migration: Migration engine configuration
        snapshots: Snapshot ring buffer configuration
        auto_save: Auto-save policy
        logging: Logging configuration
    """

    slot: str = Field(default="main", min_length=1)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    migration: MigrationConfig = Field(default_factory=MigrationConfig)
    snapshots: SnapshotConfig = Field(default_factory=SnapshotConfig)
    auto_save: AutoSaveConfig = Field(default_factory=AutoSaveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("slot")
    @classmethod
    def validate_slot(cls, v: str) -> str:
        """Reject slot names that collide with derived key suffixes."""
        for marker in ("_chunk_", "_backup_", "_emergency"):
            if marker in v:
                msg = f"Slot name may not contain {marker!r}: {v!r}"
                raise ValueError(msg)
        return v


def get_default_config() -> StateVaultConfig:
    """Get the default configuration."""
    return StateVaultConfig()


def get_config_dir() -> Path:
    """Get the statevault home directory.

    Returns:
        Path from STATEVAULT_HOME, or ~/.statevault/ when unset.
    """
    env_home = os.environ.get("STATEVAULT_HOME", "").strip()
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".statevault"
