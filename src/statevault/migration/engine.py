"""Versioned schema migration engine.

Migrations are directed edges between save-format version strings. The
engine keeps them in an insertion-ordered adjacency map, resolves the
shortest chain of edges between two versions with a breadth-first search,
and applies the chain step by step.

Guarantees:
- Registering an edge that would close a cycle raises CyclicMigrationGraph
  and leaves the graph unchanged, so path search always terminates.
- A failed migration never returns partially migrated data: the caller gets
  the original input (or the captured backup) with success=False.

Usage:
    engine = MigrationEngine()
    engine.register_migration("1.0.0", "1.0.1", add_notifications)
    result = await engine.migrate(data, "1.0.0", "1.0.1")
    if result.success:
        data = result.data
"""

from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import cmp_to_key
import inspect
import re
from typing import Any
from uuid import uuid4

from statevault.config.models import MigrationConfig
from statevault.core.clock import now_ms
from statevault.core.errors import (
    CyclicMigrationGraph,
    MigrationError,
    MigrationNotFound,
    MigrationStepFailed,
    NoMigrationPath,
)
from statevault.core.tree import deep_clone
from statevault.core.types import StateTree
from statevault.observability.logging import get_logger
from statevault.validation.consistency import ConsistencyChecker, Severity

log = get_logger(__name__)

DEFAULT_VERSION = "1.0.0"


@dataclass(frozen=True, slots=True)
class MigrationContext:
    """Context passed to every migrate and rollback function.

    Attributes:
        from_version: Source version of this step.
        to_version: Target version of this step.
        migration_id: Identifier of the whole migration run.
        is_chained: True when the run applies more than one step.
    """

    from_version: str
    to_version: str
    migration_id: str
    is_chained: bool


MigrateFn = Callable[[StateTree, MigrationContext], StateTree | Awaitable[StateTree]]


@dataclass(frozen=True, slots=True)
class MigrationEdge:
    """A registered transform from one version to another."""

    from_version: str
    to_version: str
    migrate: MigrateFn
    rollback: MigrateFn | None = None
    registered_at: int = 0

    @property
    def key(self) -> str:
        return f"{self.from_version}_to_{self.to_version}"


@dataclass(frozen=True, slots=True)
class AppliedMigration:
    """One step of a completed migration run."""

    from_version: str
    to_version: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"from": self.from_version, "to": self.to_version, "timestamp": self.timestamp}


@dataclass(frozen=True, slots=True)
class MigrationResult:
    """Outcome of migrate().

    Attributes:
        success: Whether ``data`` is at ``to_version``.
        data: Migrated data on success; the original input (or the restored
            backup when ``rolled_back``) on failure.
        from_version: Requested source version.
        to_version: Requested target version.
        migrations_applied: Steps applied, in order.
        migration_id: Identifier of this run.
        error: Failure cause, None on success.
        rolled_back: True if post-validation failed and the backup was restored.
    """

    success: bool
    data: StateTree
    from_version: str
    to_version: str
    migration_id: str
    migrations_applied: tuple[AppliedMigration, ...] = ()
    error: MigrationError | None = None
    rolled_back: bool = False


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """History entry for a migration run or a rollback.

    Attributes:
        migration_id: Identifier of the run (``rollback_<id>`` for rollbacks).
        from_version: Source version.
        to_version: Target version.
        applied: Steps applied, in order.
        backup: Deep copy of the pre-migration input, if retained.
        success: Whether the run succeeded.
        timestamp: Completion time in epoch milliseconds.
        error: Error message for failed runs.
        kind: "migration" or "rollback".
        original_migration_id: For rollbacks, the run that was reverted.
    """

    migration_id: str
    from_version: str
    to_version: str
    applied: tuple[AppliedMigration, ...]
    backup: StateTree | None
    success: bool
    timestamp: int
    error: str | None = None
    kind: str = "migration"
    original_migration_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.migration_id,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "applied": [step.to_dict() for step in self.applied],
            "has_backup": self.backup is not None,
            "success": self.success,
            "timestamp": self.timestamp,
            "error": self.error,
            "kind": self.kind,
            "original_migration_id": self.original_migration_id,
        }


@dataclass(frozen=True, slots=True)
class RollbackResult:
    """Outcome of rollback_migration()."""

    data: StateTree
    version: str
    rolled_back_migration: str


@dataclass(frozen=True, slots=True)
class PathValidation:
    """Outcome of validate_migration_path()."""

    is_valid: bool
    path: tuple[MigrationEdge, ...] | None
    error: str | None = None

    @property
    def step_count(self) -> int:
        return len(self.path) if self.path else 0


@dataclass
class MigrationStats:
    """Counters across the engine's lifetime."""

    total_migrations: int = 0
    successful_migrations: int = 0
    failed_migrations: int = 0
    rollbacks: int = 0
    last_migration_time: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_migrations": self.total_migrations,
            "successful_migrations": self.successful_migrations,
            "failed_migrations": self.failed_migrations,
            "rollbacks": self.rollbacks,
            "last_migration_time": self.last_migration_time,
        }


def _version_parts(version: str) -> list[int]:
    parts = []
    for part in version.split("."):
        match = re.match(r"\d+", part)
        parts.append(int(match.group()) if match else 0)
    return parts


def compare_versions(a: str, b: str) -> int:
    """Compare dotted version strings numerically.

    Missing trailing parts count as 0, so "1.0" == "1.0.0".

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b.
    """
    parts_a = _version_parts(a)
    parts_b = _version_parts(b)
    width = max(len(parts_a), len(parts_b))
    parts_a += [0] * (width - len(parts_a))
    parts_b += [0] * (width - len(parts_b))
    return (parts_a > parts_b) - (parts_a < parts_b)


version_key = cmp_to_key(compare_versions)


@dataclass
class MigrationEngine:
    """Registry and executor of version-to-version migrations.

    Attributes:
        config: Default options; each migrate() call may override them.
        consistency_checker: Optional checker run before and after a chain.
    """

    config: MigrationConfig = field(default_factory=MigrationConfig)
    consistency_checker: ConsistencyChecker | None = None
    _graph: dict[str, dict[str, MigrationEdge]] = field(default_factory=dict, init=False)
    _history: deque[MigrationRecord] = field(init=False)
    _stats: MigrationStats = field(default_factory=MigrationStats, init=False)

    def __post_init__(self) -> None:
        self._history = deque(maxlen=self.config.max_history)

    # -- registration -----------------------------------------------------

    def register_migration(
        self,
        from_version: str,
        to_version: str,
        migrate_fn: MigrateFn,
        rollback_fn: MigrateFn | None = None,
    ) -> MigrationEdge:
        """Add a directed edge to the migration graph.

        Re-registering an existing edge replaces its functions in place.

        Args:
            from_version: Source version.
            to_version: Target version.
            migrate_fn: ``fn(data, context) -> data``, sync or async.
            rollback_fn: Optional inverse with the same signature.

        Returns:
            The registered edge.

        Raises:
            TypeError: If migrate_fn or rollback_fn is not callable.
            CyclicMigrationGraph: If the edge would create a cycle.
        """
        if not callable(migrate_fn):
            msg = "migrate_fn must be callable"
            raise TypeError(msg)
        if rollback_fn is not None and not callable(rollback_fn):
            msg = "rollback_fn must be callable"
            raise TypeError(msg)

        if from_version == to_version or self._reachable(to_version, from_version):
            raise CyclicMigrationGraph(
                f"Migration {from_version} -> {to_version} would create a cycle",
                from_version=from_version,
                to_version=to_version,
            )

        edges = self._graph.setdefault(from_version, {})
        if to_version in edges:
            log.warning(
                "migration.edge.replaced",
                from_version=from_version,
                to_version=to_version,
            )
        edge = MigrationEdge(from_version, to_version, migrate_fn, rollback_fn, now_ms())
        edges[to_version] = edge
        log.debug("migration.edge.registered", from_version=from_version, to_version=to_version)
        return edge

    def _reachable(self, start: str, goal: str) -> bool:
        return start == goal or self.find_path(start, goal) is not None

    # -- path search ------------------------------------------------------

    def find_path(self, from_version: str, to_version: str) -> list[MigrationEdge] | None:
        """Find the shortest chain of edges between two versions.

        Breadth-first over the adjacency map; each version is enqueued at
        most once. Among equally short chains the one discovered first wins,
        which follows registration order.

        Returns:
            The edges to apply in order, [] when the versions are equal, or
            None when no chain exists.
        """
        if from_version == to_version:
            return []

        queue: deque[tuple[str, list[MigrationEdge]]] = deque([(from_version, [])])
        visited = {from_version}
        while queue:
            version, path = queue.popleft()
            for next_version, edge in self._graph.get(version, {}).items():
                if next_version == to_version:
                    return [*path, edge]
                if next_version not in visited:
                    visited.add(next_version)
                    queue.append((next_version, [*path, edge]))
        return None

    def can_migrate(self, from_version: str, to_version: str) -> bool:
        return self.find_path(from_version, to_version) is not None

    def get_available_target_versions(self, version: str) -> list[str]:
        """Return every version reachable from ``version``, sorted ascending."""
        reachable: set[str] = set()
        queue = deque([version])
        while queue:
            current = queue.popleft()
            for next_version in self._graph.get(current, {}):
                if next_version not in reachable:
                    reachable.add(next_version)
                    queue.append(next_version)
        reachable.discard(version)
        return sorted(reachable, key=version_key)

    def validate_migration_path(self, from_version: str, to_version: str) -> PathValidation:
        """Check that a chain exists without running it."""
        path = self.find_path(from_version, to_version)
        if path is None:
            return PathValidation(
                is_valid=False,
                path=None,
                error=f"No migration path found from {from_version} to {to_version}",
            )
        return PathValidation(is_valid=True, path=tuple(path))

    # -- execution --------------------------------------------------------

    async def migrate(
        self,
        data: StateTree,
        from_version: str,
        to_version: str,
        **options: Any,
    ) -> MigrationResult:
        """Migrate ``data`` from one version to another.

        Args:
            data: Tree at ``from_version``. Never modified.
            from_version: Version the data conforms to.
            to_version: Desired version.
            **options: Per-call overrides of MigrationConfig fields
                (enable_rollback, validate_before, validate_after, create_backup).

        Returns:
            MigrationResult. On failure ``data`` holds an unmodified copy of
            the input, or the restored backup if post-validation rolled back.
        """
        config = self._with_options(options)
        self._stats.total_migrations += 1
        migration_id = f"migration_{now_ms()}_{uuid4().hex[:8]}"

        if from_version == to_version:
            return MigrationResult(True, deep_clone(data), from_version, to_version, migration_id)

        backup: StateTree | None = None
        applied: list[AppliedMigration] = []
        try:
            path = self.find_path(from_version, to_version)
            if path is None:
                raise NoMigrationPath(
                    f"No migration path found from {from_version} to {to_version}",
                    from_version=from_version,
                    to_version=to_version,
                )

            if config.create_backup:
                backup = deep_clone(data)

            if config.validate_before and self._is_severely_corrupted(data):
                raise MigrationError(
                    "Data is severely corrupted and cannot be migrated safely",
                    from_version=from_version,
                    to_version=to_version,
                )

            current = deep_clone(data)
            for edge in path:
                context = MigrationContext(
                    from_version=edge.from_version,
                    to_version=edge.to_version,
                    migration_id=migration_id,
                    is_chained=len(path) > 1,
                )
                current = await self._apply_step(edge, edge.migrate, current, context)
                applied.append(AppliedMigration(edge.from_version, edge.to_version, now_ms()))
                log.info(
                    "migration.step.applied",
                    migration_id=migration_id,
                    from_version=edge.from_version,
                    to_version=edge.to_version,
                )

            if config.validate_after and self._is_severely_corrupted(current):
                error = MigrationError(
                    "Migration resulted in corrupted data",
                    from_version=from_version,
                    to_version=to_version,
                )
                if backup is not None and config.enable_rollback:
                    return self._rollback_after_validation(
                        backup, from_version, to_version, migration_id, applied, error
                    )
                raise error

        except MigrationError as e:
            return self._fail(data, from_version, to_version, migration_id, applied, e)

        self._record(
            MigrationRecord(
                migration_id=migration_id,
                from_version=from_version,
                to_version=to_version,
                applied=tuple(applied),
                backup=backup if config.enable_rollback else None,
                success=True,
                timestamp=now_ms(),
            )
        )
        self._stats.successful_migrations += 1
        self._stats.last_migration_time = now_ms()
        log.info(
            "migration.run.completed",
            migration_id=migration_id,
            from_version=from_version,
            to_version=to_version,
            steps=len(applied),
        )
        return MigrationResult(
            success=True,
            data=current,
            from_version=from_version,
            to_version=to_version,
            migration_id=migration_id,
            migrations_applied=tuple(applied),
        )

    async def _apply_step(
        self,
        edge: MigrationEdge,
        fn: MigrateFn,
        data: StateTree,
        context: MigrationContext,
    ) -> StateTree:
        try:
            result = fn(data, context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            raise MigrationStepFailed(
                f"Migration {edge.key} raised: {e}",
                from_version=edge.from_version,
                to_version=edge.to_version,
                details={"exception": type(e).__name__},
            ) from e

        if not isinstance(result, dict):
            raise MigrationStepFailed(
                f"Migration {edge.key} returned invalid result",
                from_version=edge.from_version,
                to_version=edge.to_version,
                details={"result_type": type(result).__name__},
            )
        return result

    def _is_severely_corrupted(self, data: Any) -> bool:
        if self.consistency_checker is None:
            return False
        report = self.consistency_checker.check_corruption(data)
        return report.severity >= Severity.SEVERE

    def _rollback_after_validation(
        self,
        backup: StateTree,
        from_version: str,
        to_version: str,
        migration_id: str,
        applied: list[AppliedMigration],
        error: MigrationError,
    ) -> MigrationResult:
        log.warning("migration.run.rolled_back", migration_id=migration_id, error=str(error))
        self._stats.failed_migrations += 1
        self._stats.rollbacks += 1
        self._record(
            MigrationRecord(
                migration_id=migration_id,
                from_version=from_version,
                to_version=to_version,
                applied=tuple(applied),
                backup=backup,
                success=False,
                timestamp=now_ms(),
                error=error.message,
            )
        )
        return MigrationResult(
            success=False,
            data=deep_clone(backup),
            from_version=from_version,
            to_version=to_version,
            migration_id=migration_id,
            migrations_applied=tuple(applied),
            error=error,
            rolled_back=True,
        )

    def _fail(
        self,
        data: StateTree,
        from_version: str,
        to_version: str,
        migration_id: str,
        applied: list[AppliedMigration],
        error: MigrationError,
    ) -> MigrationResult:
        log.error(
            "migration.run.failed",
            migration_id=migration_id,
            from_version=from_version,
            to_version=to_version,
            error=str(error),
        )
        self._stats.failed_migrations += 1
        self._record(
            MigrationRecord(
                migration_id=migration_id,
                from_version=from_version,
                to_version=to_version,
                applied=tuple(applied),
                backup=None,
                success=False,
                timestamp=now_ms(),
                error=error.message,
            )
        )
        return MigrationResult(
            success=False,
            data=deep_clone(data),
            from_version=from_version,
            to_version=to_version,
            migration_id=migration_id,
            migrations_applied=(),
            error=error,
        )

    async def rollback_migration(
        self,
        migration_id: str,
        data: StateTree | None = None,
    ) -> RollbackResult:
        """Revert a recorded migration run.

        The captured backup is restored when the run kept one. Otherwise, if
        ``data`` (the run's output) is given and every applied edge has a
        rollback function, those functions are applied in reverse order.

        Raises:
            MigrationNotFound: If ``migration_id`` is not in history.
            MigrationError: If neither a backup nor a full set of rollback
                functions is available, or the restored data is corrupted.
        """
        record = next(
            (
                entry
                for entry in self._history
                if entry.migration_id == migration_id and entry.kind == "migration"
            ),
            None,
        )
        if record is None:
            raise MigrationNotFound(f"Migration {migration_id} not found in history")

        if record.backup is not None:
            restored = deep_clone(record.backup)
        elif data is not None and record.applied:
            restored = await self._apply_rollback_functions(record, data)
        else:
            raise MigrationError(
                f"No backup available for migration {migration_id}",
                from_version=record.from_version,
                to_version=record.to_version,
            )

        if self._is_severely_corrupted(restored):
            self._record_rollback(record, success=False, error="Restored data is corrupted")
            raise MigrationError(
                "Backup data is corrupted and cannot be restored",
                from_version=record.from_version,
                to_version=record.to_version,
            )

        self._stats.rollbacks += 1
        self._record_rollback(record, success=True)
        log.info("migration.run.reverted", migration_id=migration_id)
        return RollbackResult(
            data=restored,
            version=record.from_version,
            rolled_back_migration=migration_id,
        )

    async def _apply_rollback_functions(
        self,
        record: MigrationRecord,
        data: StateTree,
    ) -> StateTree:
        current = deep_clone(data)
        for step in reversed(record.applied):
            edge = self._graph.get(step.from_version, {}).get(step.to_version)
            if edge is None or edge.rollback is None:
                raise MigrationError(
                    f"No backup or rollback function for {step.from_version} -> "
                    f"{step.to_version}",
                    from_version=record.from_version,
                    to_version=record.to_version,
                )
            context = MigrationContext(
                from_version=step.to_version,
                to_version=step.from_version,
                migration_id=record.migration_id,
                is_chained=len(record.applied) > 1,
            )
            current = await self._apply_step(edge, edge.rollback, current, context)
        return current

    def _record_rollback(
        self,
        record: MigrationRecord,
        *,
        success: bool,
        error: str | None = None,
    ) -> None:
        self._record(
            MigrationRecord(
                migration_id=f"rollback_{record.migration_id}",
                from_version=record.to_version,
                to_version=record.from_version,
                applied=(),
                backup=None,
                success=success,
                timestamp=now_ms(),
                error=error,
                kind="rollback",
                original_migration_id=record.migration_id,
            )
        )

    def _record(self, record: MigrationRecord) -> None:
        self._history.append(record)

    # -- introspection ----------------------------------------------------

    def get_migration_history(self, limit: int = 10) -> list[MigrationRecord]:
        """Return up to ``limit`` most recent records, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._history))[:limit]

    def clear_history(self, *, confirmed: bool = False) -> None:
        """Drop all history, which also discards rollback backups.

        Raises:
            ValueError: Unless confirmed=True.
        """
        if not confirmed:
            msg = "clear_history requires explicit confirmation"
            raise ValueError(msg)
        self._history.clear()
        log.info("migration.history.cleared")

    def get_registered_migrations(self) -> list[dict[str, Any]]:
        """Describe registered edges, sorted by source then target version."""
        edges = [edge for targets in self._graph.values() for edge in targets.values()]
        edges.sort(key=lambda e: (version_key(e.from_version), version_key(e.to_version)))
        return [
            {
                "key": edge.key,
                "from_version": edge.from_version,
                "to_version": edge.to_version,
                "has_rollback": edge.rollback is not None,
                "registered_at": edge.registered_at,
            }
            for edge in edges
        ]

    def get_latest_version(self) -> str:
        """Return the highest version named by any edge, or DEFAULT_VERSION."""
        versions = set(self._graph)
        for targets in self._graph.values():
            versions.update(targets)
        if not versions:
            return DEFAULT_VERSION
        return max(versions, key=version_key)

    def get_stats(self) -> dict[str, int]:
        return self._stats.to_dict()

    def reset_stats(self) -> None:
        self._stats = MigrationStats()

    def set_options(self, **options: Any) -> None:
        """Update default options (fields of MigrationConfig)."""
        self.config = self._with_options(options)
        if self._history.maxlen != self.config.max_history:
            self._history = deque(self._history, maxlen=self.config.max_history)

    def _with_options(self, options: dict[str, Any]) -> MigrationConfig:
        unknown = set(options) - set(MigrationConfig.model_fields)
        if unknown:
            msg = f"Unknown migration options: {sorted(unknown)}"
            raise TypeError(msg)
        if not options:
            return self.config
        return MigrationConfig.model_validate({**self.config.model_dump(), **options})
