"""Schema migration for persisted state trees."""

from statevault.migration.builtin import register_builtin_migrations
from statevault.migration.engine import (
    AppliedMigration,
    MigrationContext,
    MigrationEdge,
    MigrationEngine,
    MigrationRecord,
    MigrationResult,
    PathValidation,
    RollbackResult,
    compare_versions,
)

__all__ = [
    "AppliedMigration",
    "MigrationContext",
    "MigrationEdge",
    "MigrationEngine",
    "MigrationRecord",
    "MigrationResult",
    "PathValidation",
    "RollbackResult",
    "compare_versions",
    "register_builtin_migrations",
]
