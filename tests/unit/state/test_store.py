"""Unit tests for statevault.state.store module."""

import asyncio
import json
from pathlib import Path

import pydantic
import pytest

from statevault.config.models import (
    AutoSaveConfig,
    SnapshotConfig,
    StateVaultConfig,
    StorageConfig,
)
from statevault.core.errors import MigrationError, SnapshotNotFound, ValidationError
from statevault.migration.builtin import add_settings_flags
from statevault.migration.engine import MigrationEngine
from statevault.state.rules import default_rules
from statevault.state.store import (
    ChangeEvent,
    SnapshotSource,
    StateStore,
    create_state_store,
)
from statevault.storage.backends import FileBackend, MemoryBackend
from statevault.storage.engine import DurableStorageEngine


def make_store(
    *,
    backend: MemoryBackend | None = None,
    storage: StorageConfig | None = None,
    migration_engine: MigrationEngine | None = None,
    max_snapshots: int = 10,
    **kwargs: object,
) -> StateStore:
    config = StateVaultConfig(
        storage=storage or StorageConfig(),
        snapshots=SnapshotConfig(max_snapshots=max_snapshots),
        auto_save=AutoSaveConfig(enabled=False),
    )
    engine = DurableStorageEngine(
        backend or MemoryBackend(), config.storage, migration_engine=migration_engine
    )
    kwargs.setdefault("rules", default_rules())
    return StateStore(engine, migration_engine=migration_engine, config=config, **kwargs)


class TestReads:
    """Test reading state."""

    def test_starts_from_template(self) -> None:
        """A new store holds the default game state."""
        store = make_store()
        assert store.get("player.jade") == 500
        assert store.get("realm.current") == "Body Refinement"
        assert not store.is_dirty

    def test_missing_path_is_none(self) -> None:
        """Absent paths read as None."""
        assert make_store().get("player.nothing.here") is None

    def test_reads_are_copies(self) -> None:
        """Mutating a read value does not touch the store."""
        store = make_store()
        store.get("player")["jade"] = 0
        store.get_state()["player"]["jade"] = 0
        assert store.get("player.jade") == 500

    def test_custom_initial_state(self) -> None:
        """initial_state replaces the template."""
        store = make_store(initial_state={"count": 1}, rules=())
        assert store.get_state() == {"count": 1}


class TestUpdate:
    """Test validated updates."""

    def test_sequential_updates(self) -> None:
        """The last update to a leaf wins."""
        store = make_store()
        store.update({"player": {"jade": 100}})
        store.update({"player": {"jade": 50}})
        assert store.get("player.jade") == 50

    def test_deep_merge_keeps_siblings(self) -> None:
        """Partial trees merge without dropping sibling keys."""
        store = make_store()
        store.update({"player": {"jade": 1}})
        assert store.get("player.spiritCrystals") == 100

    def test_lists_are_replaced(self) -> None:
        """Lists in an update replace the stored list."""
        store = make_store()
        store.update({"quests": {"active": ["a", "b"]}})
        store.update({"quests": {"active": ["c"]}})
        assert store.get("quests.active") == ["c"]

    def test_returns_changes_and_marks_dirty(self) -> None:
        """Committed updates report their changes and mark the store dirty."""
        store = make_store()
        changes = store.update({"player": {"jade": 7}}, source="shop:purchase")
        assert [str(c.path) for c in changes] == ["player.jade"]
        assert changes[0].old_value == 500
        assert changes[0].new_value == 7
        assert store.is_dirty
        assert store.unsaved_changes == 1

    def test_rule_violation_leaves_state_unchanged(self) -> None:
        """A rejected candidate is never committed."""
        store = make_store()
        events: list[ChangeEvent] = []
        store.subscribe(events.append)
        with pytest.raises(ValidationError) as exc_info:
            store.update({"player": {"jade": -5}})
        assert exc_info.value.path == "player.jade"
        assert store.get("player.jade") == 500
        assert not store.is_dirty
        assert events == []

    def test_validate_false_skips_rules(self) -> None:
        """validate=False bypasses rules but still requires a pure tree."""
        store = make_store()
        store.update({"player": {"jade": -5}}, validate=False)
        assert store.get("player.jade") == -5
        with pytest.raises(ValidationError):
            store.update({"player": {"jade": float("inf")}}, validate=False)

    def test_unserializable_values_rejected(self) -> None:
        """Values outside the data model are refused."""
        store = make_store()
        with pytest.raises(ValidationError):
            store.update({"player": {"tags": {"a", "b"}}})

    def test_lone_surrogate_rejected(self) -> None:
        """Strings that cannot be encoded as UTF-8 are refused before commit."""
        store = make_store()
        with pytest.raises(ValidationError) as exc_info:
            store.update({"player": {"name": "Lin\ud800"}})
        assert exc_info.value.path == "player.name"
        assert store.get("player.name") != "Lin\ud800"
        assert not store.is_dirty

    def test_update_function(self) -> None:
        """A function receives a copy and returns the new state."""
        store = make_store()

        def breakthrough(state: dict) -> dict:
            state["realm"]["stage"] += 1
            return state

        store.update(breakthrough, source="realm:breakthrough")
        assert store.get("realm.stage") == 2

    def test_update_function_must_return_mapping(self) -> None:
        """A function returning a non-mapping is rejected."""
        store = make_store()
        with pytest.raises(ValidationError):
            store.update(lambda state: None)  # type: ignore[arg-type,return-value]

    def test_update_function_cannot_mutate_live_state(self) -> None:
        """A function that raises leaves the state untouched."""
        store = make_store()

        def broken(state: dict) -> dict:
            state["player"]["jade"] = 0
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError):
            store.update(broken)
        assert store.get("player.jade") == 500

    def test_rejects_other_types(self) -> None:
        """Neither a mapping nor callable raises TypeError."""
        with pytest.raises(TypeError):
            make_store().update(5)  # type: ignore[arg-type]

    def test_no_op_update(self) -> None:
        """An update that changes nothing is not committed."""
        store = make_store()
        events: list[ChangeEvent] = []
        store.subscribe(events.append)
        assert store.update({"player": {"jade": 500}}) == []
        assert not store.is_dirty
        assert events == []

    def test_set_creates_intermediate_mappings(self) -> None:
        """set() writes a leaf at any depth."""
        store = make_store()
        store.set("inventory.pills.healing", 3)
        assert store.get("inventory") == {"pills": {"healing": 3}}

    def test_increment(self) -> None:
        """increment() adds to numbers and treats missing values as 0."""
        store = make_store()
        store.increment("player.jade", 25)
        store.increment("stats.kills")
        assert store.get("player.jade") == 525
        assert store.get("stats.kills") == 1

    def test_increment_non_numeric(self) -> None:
        """Incrementing a string raises ValidationError."""
        with pytest.raises(ValidationError):
            make_store().increment("realm.current")

    def test_increment_respects_rules(self) -> None:
        """increment() goes through validation."""
        store = make_store()
        with pytest.raises(ValidationError):
            store.increment("player.jade", -501)

    def test_custom_validation(self) -> None:
        """add_validation() registers an extra rule on a path."""
        store = make_store()
        store.add_validation("player.power", lambda v: v is None or v <= 10, "Power capped")
        with pytest.raises(ValidationError, match="Power capped"):
            store.set("player.power", 11)
        assert len(store.get_rules()) == 15


class TestSubscriptions:
    """Test change notification."""

    def test_listener_receives_diff(self) -> None:
        """Listeners get the changed paths and source."""
        store = make_store()
        events: list[ChangeEvent] = []
        store.subscribe(events.append)
        store.update({"player": {"jade": 1, "shards": 2}}, source="gacha:pull")
        [event] = events
        assert event.paths == ["player.jade", "player.shards"]
        assert event.source == "gacha:pull"

    def test_path_scoped_listener(self) -> None:
        """Scoped listeners only see overlapping changes."""
        store = make_store()
        jade_events: list[ChangeEvent] = []
        player_events: list[ChangeEvent] = []
        store.subscribe(jade_events.append, path="player.jade")
        store.subscribe(player_events.append, path="player")

        store.update({"realm": {"stage": 2}})
        store.update({"player": {"jade": 1, "shards": 2}})

        assert len(jade_events) == 1
        assert jade_events[0].paths == ["player.jade"]
        assert player_events[0].paths == ["player.jade", "player.shards"]

    def test_listener_on_replaced_parent(self) -> None:
        """A listener below a replaced subtree is notified."""
        store = make_store(initial_state={"a": {"b": 1}}, rules=())
        events: list[ChangeEvent] = []
        store.subscribe(events.append, path="a.b")
        store.update(lambda state: {"a": 5})
        assert events[0].paths == ["a"]

    def test_failing_listener_is_isolated(self) -> None:
        """One listener raising does not stop the others or the update."""
        store = make_store()
        received: list[ChangeEvent] = []

        def broken(event: ChangeEvent) -> None:
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        store.subscribe(received.append)
        store.update({"player": {"jade": 1}})
        assert len(received) == 1
        assert store.get("player.jade") == 1

    def test_unsubscribe_is_idempotent(self) -> None:
        """The returned function removes the listener once."""
        store = make_store()
        events: list[ChangeEvent] = []
        unsubscribe = store.subscribe(events.append)
        assert store.listener_count == 1
        unsubscribe()
        unsubscribe()
        store.update({"player": {"jade": 1}})
        assert events == []
        assert store.listener_count == 0

    def test_emit_false_suppresses_notification(self) -> None:
        """emit=False commits silently."""
        store = make_store()
        events: list[ChangeEvent] = []
        store.subscribe(events.append)
        store.update({"player": {"jade": 1}}, emit=False)
        assert events == []
        assert store.get("player.jade") == 1


class TestSnapshots:
    """Test the snapshot ring buffer."""

    def test_rollback_to_snapshot(self) -> None:
        """rollback() restores the captured state and snapshots the current one."""
        store = make_store()
        snapshot_id = store.create_snapshot("before shop")
        store.update({"player": {"jade": 1}})

        restored = store.rollback(snapshot_id)

        assert restored == snapshot_id
        assert store.get("player.jade") == 500
        snapshots = store.list_snapshots()
        assert len(snapshots) == 2
        assert snapshots[-1].source is SnapshotSource.AUTOMATIC
        assert snapshots[-1].state["player"]["jade"] == 1

    def test_rollback_defaults_to_newest(self) -> None:
        """Without an id the newest snapshot is restored."""
        store = make_store()
        store.create_snapshot()
        store.update({"player": {"jade": 1}})
        store.create_snapshot()
        store.update({"player": {"jade": 2}})
        store.rollback(snapshot_current=False)
        assert store.get("player.jade") == 1

    def test_rollback_notifies_and_marks_dirty(self) -> None:
        """A rollback is delivered to subscribers as a change."""
        store = make_store()
        snapshot_id = store.create_snapshot()
        store.update({"player": {"jade": 1}}, emit=False)
        events: list[ChangeEvent] = []
        store.subscribe(events.append)
        store.rollback(snapshot_id)
        assert events[0].source == "rollback"
        assert store.is_dirty

    def test_unknown_snapshot(self) -> None:
        """Unknown ids and an empty buffer raise SnapshotNotFound."""
        store = make_store()
        with pytest.raises(SnapshotNotFound):
            store.rollback()
        store.create_snapshot()
        with pytest.raises(SnapshotNotFound):
            store.rollback("snap_99_0")

    def test_ring_buffer_drops_oldest(self) -> None:
        """Only max_snapshots snapshots are retained."""
        store = make_store(max_snapshots=3)
        ids = [store.create_snapshot(f"s{i}") for i in range(5)]
        assert [s.snapshot_id for s in store.list_snapshots()] == ids[2:]
        with pytest.raises(SnapshotNotFound):
            store.rollback(ids[0])

    def test_snapshot_ids_are_unique(self) -> None:
        """Snapshots taken in the same millisecond get distinct ids."""
        store = make_store()
        assert store.create_snapshot() != store.create_snapshot()

    def test_rollback_revalidates(self) -> None:
        """A snapshot violating a later rule cannot be restored."""
        store = make_store()
        snapshot_id = store.create_snapshot()
        store.update({"player": {"jade": 10}})
        store.add_validation("player.jade", lambda v: v < 100, "Jade capped")
        with pytest.raises(ValidationError):
            store.rollback(snapshot_id)
        assert store.get("player.jade") == 10

    def test_list_snapshots_returns_copies(self) -> None:
        """Snapshot states handed out cannot alter the buffer."""
        store = make_store()
        snapshot_id = store.create_snapshot()
        store.list_snapshots()[0].state["player"]["jade"] = 0
        store.rollback(snapshot_id)
        assert store.get("player.jade") == 500

    def test_clear_snapshots(self) -> None:
        """clear_snapshots() empties the buffer."""
        store = make_store()
        store.create_snapshot()
        assert store.clear_snapshots() == 1
        assert store.list_snapshots() == []

    def test_reset(self) -> None:
        """reset() returns to the template after snapshotting."""
        store = make_store()
        store.update({"player": {"jade": 1}})
        store.reset()
        assert store.get("player.jade") == 500
        assert store.list_snapshots()[-1].label == "before reset"


class TestPersistence:
    """Test save/load orchestration."""

    @pytest.mark.asyncio
    async def test_save_when_clean_is_noop(self) -> None:
        """Nothing to save returns ok(None)."""
        store = make_store()
        result = await store.save()
        assert result.is_ok
        assert result.value is None
        assert await store.storage.list_slots() == []

    @pytest.mark.asyncio
    async def test_save_clears_dirty(self) -> None:
        """A successful save resets the dirty flag and counter."""
        store = make_store()
        store.update({"player": {"jade": 1}})
        result = await store.save()
        assert result.is_ok
        assert result.value.key == "main"
        assert not store.is_dirty
        assert store.unsaved_changes == 0
        assert store.last_save_time > 0

    @pytest.mark.asyncio
    async def test_force_save_when_clean(self) -> None:
        """force_save() writes even without changes."""
        store = make_store()
        result = await store.force_save()
        assert result.value is not None

    @pytest.mark.asyncio
    async def test_update_during_save_stays_dirty(self) -> None:
        """Changes committed while a save is in flight keep the store dirty."""
        store = make_store()
        store.update({"player": {"jade": 1}})
        pending = asyncio.ensure_future(store.save())
        await asyncio.sleep(0)
        store.update({"player": {"jade": 2}})
        await pending
        assert store.is_dirty
        assert (await store.storage.load("main"))["player"]["jade"] == 1

    @pytest.mark.asyncio
    async def test_failed_save_keeps_dirty(self) -> None:
        """A storage failure is returned and the changes stay pending."""
        store = make_store()
        store.storage.set_enabled(False)
        store.update({"player": {"jade": 1}})
        result = await store.save()
        assert result.is_err
        assert store.is_dirty

    @pytest.mark.asyncio
    async def test_load_nothing_stored(self) -> None:
        """Loading an empty slot returns ok(False)."""
        result = await make_store().load()
        assert result.is_ok
        assert result.value is False

    @pytest.mark.asyncio
    async def test_save_then_load_in_new_store(self) -> None:
        """A second store over the same backend adopts the saved state."""
        backend = MemoryBackend()
        first = make_store(backend=backend)
        first.update({"player": {"jade": 42, "name": "Lin"}})
        await first.save()

        second = make_store(backend=backend)
        events: list[ChangeEvent] = []
        second.subscribe(events.append)
        result = await second.load()

        assert result.value is True
        assert second.get("player.name") == "Lin"
        assert not second.is_dirty
        assert events[0].source == "load"
        assert second.list_snapshots()[-1].label == "before load"

    @pytest.mark.asyncio
    async def test_load_migrates_older_record(self) -> None:
        """An older record is migrated and the store stays dirty."""
        backend = MemoryBackend()
        writer = DurableStorageEngine(backend)
        await writer.save("main", {"settings": {}}, version="1.0.0")

        migrations = MigrationEngine()
        migrations.register_migration("1.0.0", "1.0.1", add_settings_flags)
        store = make_store(
            backend=backend,
            storage=StorageConfig(current_version="1.0.1"),
            migration_engine=migrations,
            rules=(),
        )

        result = await store.load()

        assert result.value is True
        assert store.get("settings.notifications") is True
        assert store.is_dirty

    @pytest.mark.asyncio
    async def test_load_without_migration_engine(self) -> None:
        """A version mismatch without a migration engine is an error."""
        backend = MemoryBackend()
        await DurableStorageEngine(backend).save("main", {"a": 1}, version="0.9.0")
        store = make_store(backend=backend)

        result = await store.load()

        assert result.is_err
        assert isinstance(result.error, MigrationError)
        assert store.get("player.jade") == 500

    @pytest.mark.asyncio
    async def test_load_rejects_invalid_state(self) -> None:
        """Stored data that fails the rules is not adopted."""
        backend = MemoryBackend()
        await DurableStorageEngine(backend).save("main", {"player": {"jade": -5}})
        store = make_store(backend=backend)

        result = await store.load()

        assert result.is_err
        assert isinstance(result.error, ValidationError)
        assert store.get("player.jade") == 500

    @pytest.mark.asyncio
    async def test_export_and_import(self) -> None:
        """Exported state can be imported into another store."""
        source = make_store()
        source.update({"player": {"jade": 77}})
        document = await source.export()
        assert json.loads(document)["data"]["player"]["jade"] == 77
        assert not source.is_dirty

        target = make_store()
        result = await target.import_(document)

        assert result.value is True
        assert target.get("player.jade") == 77

    @pytest.mark.asyncio
    async def test_import_rejected_document(self) -> None:
        """A malformed document leaves the store unchanged."""
        store = make_store()
        result = await store.import_("{broken")
        assert result.is_err
        assert store.get("player.jade") == 500


class TestEmergencyAndLifecycle:
    """Test emergency saves, auto-save wiring and disposal."""

    def test_emergency_only_when_dirty(self) -> None:
        """save_emergency() writes only unsaved changes."""
        backend = MemoryBackend()
        store = make_store(backend=backend)
        assert store.save_emergency() is False
        store.update({"player": {"jade": 3}})
        assert store.save_emergency() is True
        assert "statevault_main_emergency" in backend.keys()

    @pytest.mark.asyncio
    async def test_emergency_record_restored_on_next_load(self) -> None:
        """A store that only ever wrote an emergency record is restored from it."""
        backend = MemoryBackend()
        first = make_store(backend=backend)
        first.update({"player": {"jade": 42}})
        assert first.save_emergency() is True
        assert "statevault_main" not in backend.keys()

        second = make_store(backend=backend)
        result = await second.load()

        assert result.value is True
        assert second.get("player.jade") == 42

    def test_notify_unload_respects_config(self) -> None:
        """notify_unload() writes the emergency record when enabled."""
        store = make_store()
        store.update({"player": {"jade": 3}})
        assert store.notify_unload() is True

    @pytest.mark.asyncio
    async def test_configure_auto_save(self) -> None:
        """configure_auto_save() merges changes into the policy."""
        store = make_store()
        config = await store.configure_auto_save(interval=10.0, enabled=True)
        assert config.interval == 10.0
        assert store.get_auto_save_stats()["interval"] == 10.0
        with pytest.raises(pydantic.ValidationError):
            await store.configure_auto_save(interval=-1)
        await store.dispose()

    def test_debug_info(self) -> None:
        """get_debug_info() summarizes the store."""
        store = make_store()
        store.update({"player": {"jade": 3}})
        info = store.get_debug_info()
        assert info["slot"] == "main"
        assert info["is_dirty"] is True
        assert info["validation_rules"] == 14
        assert info["state_size"] > 0

    @pytest.mark.asyncio
    async def test_dispose_drops_listeners(self) -> None:
        """dispose() removes every subscription."""
        store = make_store()
        store.subscribe(lambda event: None)
        await store.dispose()
        assert store.listener_count == 0


class TestAutoSaveIntegration:
    """Test saves triggered by updates."""

    @pytest.mark.asyncio
    async def test_significant_update_saves(self) -> None:
        """A significant source triggers a save after the debounce."""
        config = StateVaultConfig(auto_save=AutoSaveConfig(debounce=0.0))
        store = StateStore(DurableStorageEngine(MemoryBackend()), config=config)

        store.update({"realm": {"stage": 2}}, source="realm:breakthrough")
        await store.auto_saver.flush()

        assert not store.is_dirty
        assert (await store.storage.load("main"))["realm"]["stage"] == 2
        assert store.get_auto_save_stats()["last_reason"] == "significant:realm:breakthrough"
        await store.dispose()

    @pytest.mark.asyncio
    async def test_max_unsaved_changes(self) -> None:
        """Reaching max_unsaved_changes triggers a save."""
        config = StateVaultConfig(
            auto_save=AutoSaveConfig(debounce=0.0, max_unsaved_changes=3)
        )
        store = StateStore(DurableStorageEngine(MemoryBackend()), config=config)

        for jade in (1, 2, 3):
            store.update({"player": {"jade": jade}})
        await store.auto_saver.flush()

        assert (await store.storage.load("main"))["player"]["jade"] == 3
        await store.dispose()


class TestCreateStateStore:
    """Test the composition helper."""

    def test_memory_backend(self) -> None:
        """create_state_store wires default rules and engines."""
        store = create_state_store(backend=MemoryBackend())
        assert len(store.get_rules()) == 14
        assert store.get("player.jade") == 500

    @pytest.mark.asyncio
    async def test_file_backend_in_config_dir(self, tmp_path: Path) -> None:
        """Without a backend the data dir under config_dir is used."""
        config = StateVaultConfig(auto_save=AutoSaveConfig(enabled=False))
        store = create_state_store(config, config_dir=tmp_path)
        assert isinstance(store.storage.backend, FileBackend)
        store.update({"player": {"jade": 9}})
        await store.save()
        assert list((tmp_path / "data").glob("*.rec"))

    @pytest.mark.asyncio
    async def test_builtin_migrations_registered(self) -> None:
        """register_builtin upgrades older records on load."""
        backend = MemoryBackend()
        await DurableStorageEngine(backend).save("main", {"settings": {}}, version="1.0.0")
        config = StateVaultConfig.model_validate(
            {
                "storage": {"current_version": "1.1.0"},
                "migration": {"register_builtin": True},
                "auto_save": {"enabled": False},
            }
        )
        store = create_state_store(config, backend=backend, with_default_rules=False)

        result = await store.load()

        assert result.value is True
        assert store.get("tutorial.completed") is False
        assert store.get("player.jade") == 500
