"""statevault core module - shared types, errors, paths and tree helpers."""

from statevault.core.errors import (
    ChecksumMismatch,
    ConfigError,
    CorruptRecord,
    CyclicMigrationGraph,
    MigrationError,
    MigrationNotFound,
    MigrationStepFailed,
    MissingChunk,
    NoMigrationPath,
    PersistenceError,
    SnapshotNotFound,
    StateVaultError,
    StorageQuotaExceeded,
    ValidationError,
)
from statevault.core.paths import MISSING, StatePath
from statevault.core.tree import (
    Change,
    ChangeKind,
    canonical_json,
    compute_checksum,
    compute_diff,
    deep_clone,
    deep_merge,
    ensure_serializable,
)
from statevault.core.types import Result, StateTree

__all__ = [
    # Types
    "Result",
    "StateTree",
    # Paths
    "MISSING",
    "StatePath",
    # Tree helpers
    "Change",
    "ChangeKind",
    "canonical_json",
    "compute_checksum",
    "compute_diff",
    "deep_clone",
    "deep_merge",
    "ensure_serializable",
    # Errors
    "StateVaultError",
    "ConfigError",
    "ValidationError",
    "SnapshotNotFound",
    "PersistenceError",
    "ChecksumMismatch",
    "CorruptRecord",
    "MissingChunk",
    "StorageQuotaExceeded",
    "MigrationError",
    "NoMigrationPath",
    "MigrationStepFailed",
    "MigrationNotFound",
    "CyclicMigrationGraph",
]
