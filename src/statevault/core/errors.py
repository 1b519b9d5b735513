"""Error hierarchy for statevault.

These exceptions are raised for caller misuse (invalid updates, unknown
snapshots, cyclic migration graphs) and used as error values inside Result
for expected failures (storage faults, unreachable versions).

Exception Hierarchy:
    StateVaultError (base)
    ├── ConfigError          - Configuration loading and validation
    ├── ValidationError      - A state update violated a rule
    ├── SnapshotNotFound     - Rollback to an unknown snapshot
    ├── PersistenceError     - Storage backend and record failures
    │   ├── ChecksumMismatch
    │   ├── MissingChunk
    │   ├── CorruptRecord
    │   └── StorageQuotaExceeded
    └── MigrationError       - Schema migration failures
        ├── NoMigrationPath
        ├── MigrationStepFailed
        ├── MigrationNotFound
        └── CyclicMigrationGraph
"""

from __future__ import annotations

from typing import Any


class StateVaultError(Exception):
    """Base exception for all statevault errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dict with additional context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error description.
            details: Optional dict with additional context about the error.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigError(StateVaultError):
    """Error from configuration loading or validation.

    Attributes:
        config_key: The configuration key that caused the error.
        config_file: Path to the config file if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_file: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.config_key = config_key
        self.config_file = config_file


class ValidationError(StateVaultError):
    """A candidate state failed a validation rule or is not a pure data tree.

    Attributes:
        path: Dotted path of the offending value, if known.
        value: The offending value, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        value: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Human-readable error description.
            path: Dotted path of the value that failed.
            value: The value that failed validation.
            details: Optional dict with additional context.
        """
        super().__init__(message, details)
        self.path = path
        self.value = value


class SnapshotNotFound(StateVaultError):
    """Rollback was requested to a snapshot that does not exist."""

    def __init__(self, snapshot_id: str | None) -> None:
        if snapshot_id is None:
            message = "No snapshots available for rollback"
        else:
            message = f"Snapshot not found: {snapshot_id}"
        super().__init__(message, {"snapshot_id": snapshot_id})
        self.snapshot_id = snapshot_id


class PersistenceError(StateVaultError):
    """Error from storage engine operations.

    Attributes:
        operation: The operation that failed (e.g., "save", "load").
        key: The storage key involved if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize persistence error.

        Args:
            message: Human-readable error description.
            operation: The storage operation that failed.
            key: The storage key involved.
            details: Optional dict with additional context.
        """
        super().__init__(message, details)
        self.operation = operation
        self.key = key


class ChecksumMismatch(PersistenceError):
    """Stored checksum does not match the recomputed checksum of the data."""


class CorruptRecord(PersistenceError):
    """A stored record could not be parsed or decompressed."""


class MissingChunk(PersistenceError):
    """A chunk of a chunked record is absent from the backend.

    Attributes:
        index: Zero-based index of the missing chunk.
    """

    def __init__(self, message: str, *, index: int, key: str | None = None) -> None:
        super().__init__(message, operation="load", key=key, details={"index": index})
        self.index = index


class StorageQuotaExceeded(PersistenceError):
    """The backend refused a write because its capacity is exhausted."""


class MigrationError(StateVaultError):
    """Base class for schema migration failures.

    Attributes:
        from_version: Version the data started at.
        to_version: Version the migration targeted.
    """

    def __init__(
        self,
        message: str,
        *,
        from_version: str | None = None,
        to_version: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.from_version = from_version
        self.to_version = to_version


class NoMigrationPath(MigrationError):
    """No chain of registered migrations connects the two versions."""


class MigrationStepFailed(MigrationError):
    """A single migration step raised or returned a non-mapping value."""


class MigrationNotFound(MigrationError):
    """A rollback referenced a migration id missing from history."""


class CyclicMigrationGraph(MigrationError):
    """Registering an edge would create a cycle in the migration graph."""
