"""StateStore - the canonical, validated application state.

The store owns exactly one state tree and is the only writer of it:
- update() validates a candidate copy before committing it
- Subscribers receive a structural diff of every committed update
- Snapshots in a bounded ring buffer allow fast in-memory rollback
- save()/load() orchestrate the storage and migration engines
- An AutoSaver decides when unsaved changes are written

Every read returns a deep copy; callers never hold the live tree.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import Any

from statevault.config.loader import get_data_dir
from statevault.config.models import AutoSaveConfig, StateVaultConfig
from statevault.core.clock import now_ms
from statevault.core.errors import (
    MigrationError,
    SnapshotNotFound,
    StateVaultError,
    ValidationError,
)
from statevault.core.paths import MISSING, StatePath
from statevault.core.tree import (
    Change,
    canonical_json,
    compute_diff,
    deep_clone,
    deep_merge,
    ensure_serializable,
)
from statevault.core.types import Result, StateTree
from statevault.migration.builtin import register_builtin_migrations
from statevault.migration.engine import MigrationEngine
from statevault.observability.logging import get_logger
from statevault.state.autosave import AutoSaver
from statevault.state.rules import Predicate, ValidationRule, default_rules
from statevault.state.template import default_consistency_checker, default_state
from statevault.storage.backends import FileBackend, StorageBackend
from statevault.storage.engine import DurableStorageEngine
from statevault.storage.records import SaveReceipt

log = get_logger(__name__)

PathLike = str | StatePath
UpdateFn = Callable[[StateTree], Mapping[str, Any]]


class SnapshotSource(StrEnum):
    """Who created a snapshot."""

    MANUAL = "manual"
    AUTOMATIC = "automatic"


@dataclass(frozen=True, slots=True)
class Snapshot:
    """In-memory copy of the state, never persisted."""

    snapshot_id: str
    label: str
    timestamp: int
    source: SnapshotSource
    state: StateTree


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Diff of one committed update, delivered to subscribers.

    Attributes:
        changes: Leaf-level changes, scoped to the listener's path if any.
        source: Label passed to update(), e.g. ``realm:breakthrough``.
        timestamp: Commit time in epoch milliseconds.
    """

    changes: tuple[Change, ...]
    source: str
    timestamp: int = field(default_factory=now_ms)

    @property
    def paths(self) -> list[str]:
        return [str(change.path) for change in self.changes]

    def scoped_to(self, path: StatePath) -> ChangeEvent:
        return replace(self, changes=tuple(c for c in self.changes if path.overlaps(c.path)))


Listener = Callable[[ChangeEvent], None]


@dataclass(eq=False, slots=True)
class _Subscription:
    listener: Listener
    path: StatePath | None


class StateStore:
    """Holds the canonical state and persists it through a storage engine.

    Example:
        store = StateStore(DurableStorageEngine(MemoryBackend()))
        store.update({"player": {"jade": 100}}, source="shop:purchase")
        unsubscribe = store.subscribe(on_jade, path="player.jade")
        await store.save()
    """

    def __init__(
        self,
        storage: DurableStorageEngine,
        *,
        migration_engine: MigrationEngine | None = None,
        config: StateVaultConfig | None = None,
        initial_state: StateTree | None = None,
        rules: Iterable[ValidationRule] = (),
    ) -> None:
        """Initialize the store.

        Args:
            storage: Engine used by save() and load().
            migration_engine: Engine used by load() to upgrade old records.
            config: Slot, snapshot and auto-save settings.
            initial_state: Starting state. Defaults to the game template.
            rules: Validation rules registered up front.
        """
        self._config = config or StateVaultConfig()
        self._storage = storage
        self._migration_engine = migration_engine
        self._template = deep_clone(initial_state) if initial_state is not None else default_state()
        ensure_serializable(self._template)
        self._state: StateTree = deep_clone(self._template)

        self._rules: dict[StatePath, list[ValidationRule]] = {}
        for rule in rules:
            self.add_rule(rule)

        self._subscriptions: list[_Subscription] = []
        self._snapshots: deque[Snapshot] = deque(maxlen=self._config.snapshots.max_snapshots)
        self._snapshot_seq = 0

        self._dirty = False
        self._unsaved_changes = 0
        self._revision = 0
        self._last_save_time = 0
        self._auto_saver = AutoSaver(
            lambda reason: self.save(reason=reason),
            self._config.auto_save,
            is_dirty=lambda: self._dirty,
        )

    # -- reads ------------------------------------------------------------

    @property
    def slot(self) -> str:
        return self._config.slot

    @property
    def storage(self) -> DurableStorageEngine:
        return self._storage

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def unsaved_changes(self) -> int:
        return self._unsaved_changes

    @property
    def last_save_time(self) -> int:
        return self._last_save_time

    @property
    def auto_saver(self) -> AutoSaver:
        return self._auto_saver

    def get(self, path: PathLike) -> Any:
        """Return a copy of the value at ``path``, or None if absent."""
        value = StatePath.parse(path).get(self._state)
        return None if value is MISSING else deep_clone(value)

    def get_state(self) -> StateTree:
        """Return a copy of the whole state tree."""
        return deep_clone(self._state)

    # -- updates ----------------------------------------------------------

    def update(
        self,
        updates: Mapping[str, Any] | UpdateFn,
        *,
        source: str = "unknown",
        validate: bool = True,
        emit: bool = True,
    ) -> list[Change]:
        """Apply a partial tree or an update function to the state.

        A mapping is deep-merged into the state: nested mappings merge, lists
        and scalars replace. A function receives a private copy of the state
        and must return the complete new state.

        Args:
            updates: Partial tree, or function from state to new state.
            source: Label describing where the update came from.
            validate: Run registered validation rules on the candidate.
            emit: Notify subscribers of the committed changes.

        Returns:
            The committed changes. Empty if the candidate equals the state.

        Raises:
            ValidationError: If the candidate is not a pure data tree or a
                rule rejects it. The state is left unchanged.
            TypeError: If ``updates`` is neither a mapping nor callable.
        """
        candidate = self._build_candidate(updates)
        try:
            ensure_serializable(candidate)
            if validate:
                self._validate(candidate)
        except ValidationError as e:
            log.warning("state.update.rejected", source=source, path=e.path, error=e.message)
            raise

        changes = compute_diff(self._state, candidate)
        if not changes:
            return []

        self._state = candidate
        self._mark_changed()
        log.debug("state.update.committed", source=source, changes=len(changes))
        if emit:
            self._notify(ChangeEvent(tuple(changes), source))
        self._auto_saver.notify_change(source, self._unsaved_changes)
        return changes

    def _build_candidate(self, updates: Mapping[str, Any] | UpdateFn) -> StateTree:
        if isinstance(updates, Mapping):
            return deep_merge(self._state, updates)
        if callable(updates):
            result = updates(deep_clone(self._state))
            if not isinstance(result, Mapping):
                raise ValidationError(
                    "Update function must return a mapping",
                    value=type(result).__name__,
                )
            return deep_clone(dict(result))
        msg = f"update() expects a mapping or a callable, got {type(updates).__name__}"
        raise TypeError(msg)

    def _mark_changed(self) -> None:
        self._dirty = True
        self._unsaved_changes += 1
        self._revision += 1

    def set(self, path: PathLike, value: Any, **options: Any) -> list[Change]:
        """Set the value at ``path``, creating intermediate mappings."""
        state_path = StatePath.parse(path)
        return self.update(lambda state: state_path.set(state, value), **options)

    def increment(self, path: PathLike, amount: int | float = 1, **options: Any) -> list[Change]:
        """Add ``amount`` to the number at ``path``. A missing value counts as 0.

        Raises:
            ValidationError: If the current value is not a number.
        """
        state_path = StatePath.parse(path)
        current = self.get(state_path)
        if current is None:
            current = 0
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            raise ValidationError(
                f"Cannot increment non-numeric value at {state_path}",
                path=str(state_path),
                value=current,
            )
        return self.set(state_path, current + amount, **options)

    # -- validation -------------------------------------------------------

    def add_validation(self, path: PathLike, predicate: Predicate, message: str) -> None:
        """Register a rule; every rule on a path must pass."""
        self.add_rule(ValidationRule(StatePath.parse(path), predicate, message))

    def add_rule(self, rule: ValidationRule) -> None:
        self._rules.setdefault(rule.path, []).append(rule)

    def get_rules(self) -> list[ValidationRule]:
        return [rule for rules in self._rules.values() for rule in rules]

    def _validate(self, candidate: StateTree) -> None:
        for path, rules in self._rules.items():
            for rule in rules:
                if not rule.check(candidate):
                    value = path.get(candidate)
                    raise ValidationError(
                        rule.message,
                        path=str(path),
                        value=None if value is MISSING else value,
                    )

    # -- subscriptions ----------------------------------------------------

    def subscribe(self, listener: Listener, *, path: PathLike | None = None) -> Callable[[], None]:
        """Register a listener for committed changes.

        Args:
            listener: Called synchronously with a ChangeEvent.
            path: Only deliver changes at, above or below this path.

        Returns:
            A function that removes the subscription. Calling it twice is a no-op.
        """
        subscription = _Subscription(listener, StatePath.parse(path) if path is not None else None)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    def _notify(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            scoped = event
            if subscription.path is not None:
                scoped = event.scoped_to(subscription.path)
                if not scoped.changes:
                    continue
            try:
                subscription.listener(scoped)
            except Exception:
                log.exception("state.listener.failed", source=event.source)

    # -- snapshots --------------------------------------------------------

    def create_snapshot(
        self,
        label: str | None = None,
        *,
        source: SnapshotSource = SnapshotSource.MANUAL,
    ) -> str:
        """Copy the current state into the snapshot ring buffer.

        Returns:
            The new snapshot's identifier.
        """
        self._snapshot_seq += 1
        timestamp = now_ms()
        snapshot_id = f"snap_{self._snapshot_seq}_{timestamp}"
        self._snapshots.append(
            Snapshot(
                snapshot_id=snapshot_id,
                label=label or f"snapshot {self._snapshot_seq}",
                timestamp=timestamp,
                source=source,
                state=deep_clone(self._state),
            )
        )
        log.debug("state.snapshot.created", snapshot_id=snapshot_id, source=source.value)
        return snapshot_id

    def rollback(self, snapshot_id: str | None = None, *, snapshot_current: bool = True) -> str:
        """Restore the state from a snapshot.

        Args:
            snapshot_id: Snapshot to restore. Defaults to the newest one.
            snapshot_current: Snapshot the pre-rollback state first, so the
                rollback itself can be undone.

        Returns:
            The identifier of the restored snapshot.

        Raises:
            SnapshotNotFound: If there is no such snapshot.
            ValidationError: If the snapshot no longer satisfies the rules.
        """
        target = self._find_snapshot(snapshot_id)
        restored = deep_clone(target.state)
        self._validate(restored)

        if snapshot_current:
            self.create_snapshot(
                f"before rollback to {target.snapshot_id}",
                source=SnapshotSource.AUTOMATIC,
            )
        self._replace_state(restored, source="rollback")
        log.info("state.snapshot.restored", snapshot_id=target.snapshot_id)
        return target.snapshot_id

    def _find_snapshot(self, snapshot_id: str | None) -> Snapshot:
        if snapshot_id is None:
            if not self._snapshots:
                raise SnapshotNotFound(None)
            return self._snapshots[-1]
        for snapshot in self._snapshots:
            if snapshot.snapshot_id == snapshot_id:
                return snapshot
        raise SnapshotNotFound(snapshot_id)

    def list_snapshots(self) -> list[Snapshot]:
        """Return copies of the retained snapshots, oldest first."""
        return [replace(s, state=deep_clone(s.state)) for s in self._snapshots]

    def clear_snapshots(self) -> int:
        count = len(self._snapshots)
        self._snapshots.clear()
        return count

    def _replace_state(self, new_state: StateTree, *, source: str, dirty: bool = True) -> None:
        changes = compute_diff(self._state, new_state)
        self._state = new_state
        self._revision += 1
        if dirty:
            self._dirty = True
            self._unsaved_changes += 1
        if changes:
            self._notify(ChangeEvent(tuple(changes), source))

    def reset(self, *, snapshot: bool = True) -> None:
        """Replace the state with a fresh copy of the template."""
        if snapshot:
            self.create_snapshot("before reset", source=SnapshotSource.AUTOMATIC)
        self._replace_state(deep_clone(self._template), source="reset")
        log.info("state.store.reset")

    # -- persistence ------------------------------------------------------

    async def save(
        self,
        *,
        force: bool = False,
        backup: bool | None = None,
        compress: bool | None = None,
        reason: str | None = None,
    ) -> Result[SaveReceipt | None, StateVaultError]:
        """Persist the state to this store's slot.

        Args:
            force: Save even if nothing changed (or storage is disabled).
            backup: Override the engine's backup-on-save setting.
            compress: Override the engine's compression setting.
            reason: Label recorded in logs.

        Returns:
            Result.ok(None) if there was nothing to save, Result.ok(receipt)
            after a save, or Result.err with the storage error.
        """
        if not self._dirty and not force:
            return Result.ok(None)

        revision = self._revision
        result = await self._storage.save(
            self.slot,
            self._state,
            backup=backup,
            compress=compress,
            force=force,
        )
        if result.is_err:
            log.error(
                "state.store.save_failed",
                slot=self.slot,
                reason=reason,
                error=str(result.error),
            )
            return Result.err(result.error)

        self._last_save_time = now_ms()
        self._auto_saver.mark_saved()
        if self._revision == revision:
            self._dirty = False
            self._unsaved_changes = 0
        log.info("state.store.saved", slot=self.slot, reason=reason or "manual", dirty=self._dirty)
        return Result.ok(result.value)

    async def force_save(
        self, reason: str = "manual"
    ) -> Result[SaveReceipt | None, StateVaultError]:
        return await self.save(force=True, reason=reason)

    async def load(
        self, *, validate: bool = True, migrate: bool = True
    ) -> Result[bool, StateVaultError]:
        """Adopt the stored state of this store's slot.

        The record is verified (and recovered from backups if needed),
        migrated to the current version, and validated before it replaces
        the state. The state is unchanged on failure.

        Returns:
            Result.ok(True) if a stored state was adopted, Result.ok(False)
            if nothing is stored, Result.err on migration or validation
            failure.
        """
        record = await self._storage.load_record(self.slot, validate=validate)
        if record is None:
            log.info("state.store.nothing_to_load", slot=self.slot)
            return Result.ok(False)

        data = deep_clone(record.data)
        migrated = False
        target = self._storage.current_version
        if migrate and record.version != target:
            if self._migration_engine is None:
                return Result.err(
                    MigrationError(
                        f"Stored version {record.version} needs migration to {target}",
                        from_version=record.version,
                        to_version=target,
                    )
                )
            result = await self._migration_engine.migrate(data, record.version, target)
            if not result.success:
                log.error("state.store.load_failed", slot=self.slot, error=str(result.error))
                return Result.err(result.error or MigrationError("Migration failed"))
            data = result.data
            migrated = True

        try:
            ensure_serializable(data)
            if validate:
                self._validate(data)
        except ValidationError as e:
            log.error("state.store.load_rejected", slot=self.slot, path=e.path, error=e.message)
            return Result.err(e)

        if self._config.snapshots.snapshot_before_load:
            self.create_snapshot("before load", source=SnapshotSource.AUTOMATIC)
        self._replace_state(data, source="load", dirty=migrated)
        if not migrated:
            self._dirty = False
            self._unsaved_changes = 0
        self._last_save_time = record.timestamp
        log.info("state.store.loaded", slot=self.slot, version=record.version, migrated=migrated)
        return Result.ok(True)

    async def export(self) -> str:
        """Save pending changes and export this store's slot as JSON."""
        if self._dirty:
            saved = await self.save(force=True, reason="export")
            if saved.is_err:
                raise saved.error
        return await self._storage.export(self.slot)

    async def import_(
        self, json_data: str, *, overwrite: bool = True
    ) -> Result[bool, StateVaultError]:
        """Import an exported document into this store's slot and adopt it."""
        imported = await self._storage.import_(json_data, self.slot, overwrite=overwrite)
        if imported.is_err:
            return Result.err(imported.error)
        return await self.load()

    def save_emergency(self) -> bool:
        """Synchronously write the state to the emergency record if dirty."""
        if not self._dirty:
            return False
        return self._storage.save_emergency(self.slot, self._state)

    # -- auto-save --------------------------------------------------------

    def notify_backgrounded(self) -> bool:
        """Tell the store its host moved to the background."""
        return self._auto_saver.notify_backgrounded()

    def notify_unload(self) -> bool:
        """Tell the store its host is about to terminate."""
        if not self._config.auto_save.emergency_on_unload:
            return False
        return self.save_emergency()

    async def configure_auto_save(self, **changes: Any) -> AutoSaveConfig:
        """Update auto-save settings, e.g. ``interval=10.0``.

        Raises:
            pydantic.ValidationError: If a value is invalid.
        """
        config = AutoSaveConfig.model_validate({**self._auto_saver.config.model_dump(), **changes})
        await self._auto_saver.reconfigure(config)
        return config

    def get_auto_save_stats(self) -> dict[str, Any]:
        stats = self._auto_saver.get_stats()
        stats.update(
            unsaved_changes=self._unsaved_changes,
            is_dirty=self._dirty,
            last_save_time=self._last_save_time,
        )
        return stats

    def get_debug_info(self) -> dict[str, Any]:
        return {
            "slot": self.slot,
            "version": self._storage.current_version,
            "is_dirty": self._dirty,
            "unsaved_changes": self._unsaved_changes,
            "revision": self._revision,
            "listeners": len(self._subscriptions),
            "validation_rules": len(self.get_rules()),
            "snapshots": len(self._snapshots),
            "last_save_time": self._last_save_time,
            "state_size": len(canonical_json(self._state)),
        }

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic auto-save task."""
        await self._auto_saver.start()

    async def dispose(self) -> None:
        """Stop auto-saving, wait for pending writes and drop subscribers."""
        await self._auto_saver.stop()
        await self._storage.queue.join()
        self._subscriptions.clear()
        log.debug("state.store.disposed", slot=self.slot)


def create_state_store(
    config: StateVaultConfig | None = None,
    *,
    backend: StorageBackend | None = None,
    config_dir: Path | None = None,
    initial_state: StateTree | None = None,
    with_default_rules: bool = True,
) -> StateStore:
    """Compose a StateStore with its storage and migration engines.

    Args:
        config: Full configuration. Defaults to the built-in defaults.
        backend: Physical medium. Defaults to a FileBackend in the data dir.
        config_dir: Base for a relative data_dir.
        initial_state: Starting state. Defaults to the game template.
        with_default_rules: Register the default game validation rules.

    Returns:
        A ready StateStore. Call ``await store.start()`` for periodic saves.
    """
    config = config or StateVaultConfig()
    checker = default_consistency_checker() if initial_state is None else None

    migration_engine = MigrationEngine(config.migration, consistency_checker=checker)
    if config.migration.register_builtin:
        register_builtin_migrations(migration_engine)

    if backend is None:
        backend = FileBackend(get_data_dir(config, config_dir))
    storage = DurableStorageEngine(
        backend,
        config.storage,
        migration_engine=migration_engine,
        consistency_checker=checker,
    )
    return StateStore(
        storage,
        migration_engine=migration_engine,
        config=config,
        initial_state=initial_state,
        rules=default_rules() if with_default_rules else (),
    )
