"""Durable storage engine - chunked, checksummed, backed-up save slots.

This module provides DurableStorageEngine, which turns state trees into
SaveRecords on a flat StorageBackend:
- Checksums on every record, verified on load
- Optional compression, kept only when it shrinks the payload
- Payloads longer than the chunk size split into ordered fragments
- One FIFO queue for every write, so chunk sets are never interleaved
- Timestamped backups with per-slot retention
- Recovery from backups (newest first) and then the emergency record
- One retry after reclaiming space when the backend reports a full quota

Physical key layout for slot ``main`` with prefix ``statevault_``:
    statevault_main                    record, or chunk index
    statevault_main_chunk_<g>_<n>      fragments 0..n-1 of chunk generation g
    statevault_main_backup_<epoch-ms>  rotated backups
    statevault_main_emergency          synchronous last-chance save
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import json
import math
import re
from typing import TYPE_CHECKING, Any

import stamina

from statevault.config.models import StorageConfig
from statevault.core.clock import now_ms
from statevault.core.errors import (
    ChecksumMismatch,
    CorruptRecord,
    MigrationError,
    MissingChunk,
    NoMigrationPath,
    PersistenceError,
    StateVaultError,
    StorageQuotaExceeded,
)
from statevault.core.tree import compute_checksum, deep_clone, ensure_serializable
from statevault.core.types import Result, StateTree
from statevault.observability.logging import get_logger
from statevault.storage.backends import MemoryBackend, StorageBackend
from statevault.storage.compression import Compressor, ZlibCompressor
from statevault.storage.queue import WriteQueue
from statevault.storage.records import SaveReceipt, SaveRecord, SlotInfo
from statevault.validation.consistency import ConsistencyChecker, Severity

if TYPE_CHECKING:
    from statevault.migration.engine import MigrationEngine

log = get_logger(__name__)

CHUNK_MARKER = "_chunk_"
BACKUP_MARKER = "_backup_"
EMERGENCY_SUFFIX = "_emergency"
EXPORT_FORMAT_VERSION = 1

_RECOVERABLE = (ChecksumMismatch, MissingChunk, CorruptRecord)
_CHUNK_SUFFIX = re.compile(r"(\d+)_(\d+)")


@dataclass
class StorageStats:
    """Counters across the engine's lifetime."""

    total_saves: int = 0
    total_loads: int = 0
    total_failures: int = 0
    compression_ratio: float = 1.0
    last_save_time: int = 0
    last_load_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_saves": self.total_saves,
            "total_loads": self.total_loads,
            "total_failures": self.total_failures,
            "compression_ratio": self.compression_ratio,
            "last_save_time": self.last_save_time,
            "last_load_time": self.last_load_time,
        }


def validate_slot_name(key: str) -> None:
    """Reject slot names that would collide with derived keys.

    Raises:
        ValueError: If the name is empty or contains a reserved marker.
    """
    if not key:
        msg = "Slot name must not be empty"
        raise ValueError(msg)
    for marker in (CHUNK_MARKER, BACKUP_MARKER, EMERGENCY_SUFFIX):
        if marker in key:
            msg = f"Slot name may not contain {marker!r}: {key!r}"
            raise ValueError(msg)


class DurableStorageEngine:
    """Persists state trees as SaveRecords on a StorageBackend.

    Args:
        backend: Physical medium. Defaults to an unbounded MemoryBackend.
        config: Storage configuration.
        compressor: Compression capability, or None to never compress.
        migration_engine: Used by load/export/import to upgrade old records.
        consistency_checker: Consulted after a record passes its checksum.

    Example:
        engine = DurableStorageEngine(FileBackend(data_dir), StorageConfig())
        result = await engine.save("main", state)
        state = await engine.load("main")
    """

    def __init__(
        self,
        backend: StorageBackend | None = None,
        config: StorageConfig | None = None,
        *,
        compressor: Compressor | None = None,
        migration_engine: MigrationEngine | None = None,
        consistency_checker: ConsistencyChecker | None = None,
    ) -> None:
        self._backend = backend if backend is not None else MemoryBackend()
        self._config = config or StorageConfig()
        self._compressor = compressor if compressor is not None else ZlibCompressor()
        self._migration_engine = migration_engine
        self._consistency_checker = consistency_checker
        self._queue = WriteQueue()
        self._stats = StorageStats()
        self._enabled = True
        self._last_backup_ms = 0

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def current_version(self) -> str:
        return self._config.current_version

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def queue(self) -> WriteQueue:
        return self._queue

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable saves. Disabled saves fail unless forced."""
        self._enabled = enabled
        log.info("storage.engine.toggled", enabled=enabled)

    def set_migration_engine(self, engine: MigrationEngine | None) -> None:
        self._migration_engine = engine

    # -- key helpers ------------------------------------------------------

    def storage_key(self, key: str) -> str:
        return f"{self._config.prefix}{key}"

    def chunk_key(self, key: str, generation: int, index: int) -> str:
        return f"{self._config.prefix}{key}{CHUNK_MARKER}{generation}_{index}"

    def emergency_key(self, key: str) -> str:
        return f"{self._config.prefix}{key}{EMERGENCY_SUFFIX}"

    def _backup_prefix(self, key: str) -> str:
        return f"{self._config.prefix}{key}{BACKUP_MARKER}"

    async def _io[T](self, fn: Any, *args: Any) -> T:
        return await asyncio.to_thread(fn, *args)

    async def _all_keys(self) -> list[str]:
        return await self._io(self._backend.keys)

    async def backup_keys(self, key: str) -> list[str]:
        """Physical backup keys of a slot, newest first."""
        prefix = self._backup_prefix(key)
        stamped = []
        for storage_key in await self._all_keys():
            if storage_key.startswith(prefix):
                suffix = storage_key[len(prefix) :]
                if suffix.isdigit():
                    stamped.append((int(suffix), storage_key))
        return [storage_key for _, storage_key in sorted(stamped, reverse=True)]

    async def _chunk_entries(self, key: str) -> list[tuple[int, int, str]]:
        prefix = f"{self._config.prefix}{key}{CHUNK_MARKER}"
        entries = []
        for storage_key in await self._all_keys():
            if not storage_key.startswith(prefix):
                continue
            match = _CHUNK_SUFFIX.fullmatch(storage_key[len(prefix) :])
            if match:
                entries.append((int(match[1]), int(match[2]), storage_key))
        return sorted(entries)

    async def chunk_keys(self, key: str) -> list[str]:
        """Physical fragment keys stored for a slot, by generation and index."""
        return [storage_key for _, _, storage_key in await self._chunk_entries(key)]

    async def has_slot(self, key: str) -> bool:
        raw = await self._io(self._backend.get_item, self.storage_key(key))
        return raw is not None

    # -- save -------------------------------------------------------------

    async def save(
        self,
        key: str,
        data: StateTree,
        *,
        version: str | None = None,
        compress: bool | None = None,
        validate: bool = True,
        backup: bool | None = None,
        force: bool = False,
    ) -> Result[SaveReceipt, StateVaultError]:
        """Persist ``data`` under slot ``key``.

        The write is queued behind every earlier write. ``data`` is copied at
        call time, so later caller mutations do not affect the queued write.

        Args:
            key: Logical slot name.
            data: State tree to persist.
            version: Save-format version. Defaults to config.current_version.
            compress: Try compression. Defaults to config.compression_enabled.
            validate: Reject data that is not a pure serializable tree.
            backup: Back up the existing record first. Defaults to
                config.backup_on_save.
            force: Save even while the engine is disabled.

        Returns:
            Result with a SaveReceipt, or the error that prevented the save.
        """
        validate_slot_name(key)
        if not self._enabled and not force:
            log.warning("storage.save.skipped_disabled", key=key)
            return Result.err(
                PersistenceError("Storage engine is disabled", operation="save", key=key)
            )

        if validate:
            try:
                ensure_serializable(data)
            except StateVaultError as e:
                self._stats.total_failures += 1
                log.error("storage.save.rejected", key=key, error=str(e))
                return Result.err(e)

        snapshot = deep_clone(data)
        options = {
            "version": version or self._config.current_version,
            "compress": self._config.compression_enabled if compress is None else compress,
            "backup": self._config.backup_on_save if backup is None else backup,
        }
        try:
            receipt = await self._queue.submit(
                lambda: self._perform_save(key, snapshot, **options)
            )
        except StateVaultError as e:
            self._stats.total_failures += 1
            log.error("storage.save.failed", key=key, error=str(e))
            return Result.err(e)
        return Result.ok(receipt)

    async def _perform_save(
        self,
        key: str,
        data: StateTree,
        *,
        version: str,
        compress: bool,
        backup: bool,
    ) -> SaveReceipt:
        record = SaveRecord.create(data, version)
        self._stats.last_save_time = record.timestamp

        backup_key = None
        if backup and self._config.max_backups > 0:
            try:
                backup_key = await self._create_backup(key)
            except StorageQuotaExceeded:
                log.warning("storage.backup.skipped_quota", key=key)

        text = record.to_json()
        original_size = len(text)
        compressed = False
        if compress and self._compressor is not None:
            packed = await self._io(self._compressor.compress, text)
            if len(packed) < len(text):
                text = packed
                compressed = True
        self._stats.compression_ratio = len(text) / original_size if original_size else 1.0

        chunk_count = await self._write_with_quota_retry(key, record, text, compressed)

        self._stats.total_saves += 1
        log.info(
            "storage.record.saved",
            key=key,
            version=version,
            size=len(text),
            chunks=chunk_count,
            compressed=compressed,
        )
        return SaveReceipt(
            key=key,
            size=len(text),
            chunk_count=chunk_count,
            compressed=compressed,
            backup_key=backup_key,
            timestamp=record.timestamp,
        )

    async def _write_with_quota_retry(
        self,
        key: str,
        record: SaveRecord,
        text: str,
        compressed: bool,
    ) -> int:
        attempts = 0

        @stamina.retry(
            on=StorageQuotaExceeded,
            attempts=2,
            wait_initial=self._config.quota_retry_wait,
            wait_max=self._config.quota_retry_wait,
            wait_jitter=0.0,
        )
        async def _attempt() -> int:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                await self.reclaim_space()
            return await self._write_payload(key, record, text, compressed)

        return await _attempt()

    async def _write_payload(
        self,
        key: str,
        record: SaveRecord,
        text: str,
        compressed: bool,
    ) -> int:
        """Write ``text`` directly or as a new generation of fragments.

        The previous record stays loadable until the primary key is switched
        over. Fragments of older generations are removed only after that.
        """
        entries = await self._chunk_entries(key)
        previous_chunks = [storage_key for _, _, storage_key in entries]
        chunk_size = self._config.chunk_size

        if len(text) <= chunk_size:
            await self._io(self._backend.set_item, self.storage_key(key), text)
            await self._remove_keys(previous_chunks)
            return 0

        generation = max((entry[0] for entry in entries), default=0) + 1
        fragments = [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]
        written: list[str] = []
        try:
            for index, fragment in enumerate(fragments):
                chunk_key = self.chunk_key(key, generation, index)
                await self._io(self._backend.set_item, chunk_key, fragment)
                written.append(chunk_key)
            index_record = record.as_index(
                chunk_count=len(fragments),
                total_size=len(text),
                compressed=compressed,
                chunk_generation=generation,
            )
            await self._io(self._backend.set_item, self.storage_key(key), index_record.to_json())
        except StateVaultError:
            log.warning("storage.chunks.rolled_back", key=key, written=len(written))
            await self._remove_keys(written)
            raise

        await self._remove_keys(previous_chunks)
        return len(fragments)

    async def _remove_keys(self, keys: list[str]) -> None:
        for storage_key in keys:
            await self._io(self._backend.remove_item, storage_key)

    # -- backups ----------------------------------------------------------

    async def _create_backup(self, key: str) -> str | None:
        """Copy the current record of ``key`` to a new timestamped backup key.

        Chunked records are reassembled so the backup is self-contained.
        Returns the backup key, or None when there was nothing to back up.
        """
        raw = await self._io(self._backend.get_item, self.storage_key(key))
        if raw is None:
            return None

        try:
            payload = await self._self_contained_payload(key, raw)
        except StateVaultError as e:
            log.warning("storage.backup.skipped", key=key, error=str(e))
            return None

        stamp = max(now_ms(), self._last_backup_ms + 1)
        self._last_backup_ms = stamp
        backup_key = f"{self._backup_prefix(key)}{stamp}"
        await self._io(self._backend.set_item, backup_key, payload)
        await self._prune_backups(key, self._config.max_backups)
        log.debug("storage.backup.created", key=key, backup_key=backup_key)
        return backup_key

    async def _self_contained_payload(self, key: str, raw: str) -> str:
        if self._compressor is not None and self._compressor.is_compressed(raw):
            return raw
        try:
            header = json.loads(raw)
        except json.JSONDecodeError:
            return raw
        if isinstance(header, dict) and header.get("chunked"):
            return await self._read_fragments(key, SaveRecord.from_dict(header))
        return raw

    async def _prune_backups(self, key: str, keep: int) -> int:
        stale = (await self.backup_keys(key))[keep:]
        await self._remove_keys(stale)
        return len(stale)

    async def reclaim_space(self) -> int:
        """Prune backups to free space after a quota failure.

        Keeps only the newest backup of every slot, which includes the backup
        taken for a save in progress.

        Returns:
            Number of backup keys removed.
        """
        backup_slots: set[str] = set()
        for storage_key in await self._all_keys():
            if storage_key.startswith(self._config.prefix) and BACKUP_MARKER in storage_key:
                slot = storage_key[len(self._config.prefix) :].rsplit(BACKUP_MARKER, 1)[0]
                backup_slots.add(slot)

        removed = 0
        for slot in backup_slots:
            removed += await self._prune_backups(slot, 1)

        log.warning("storage.space.reclaimed", removed=removed)
        return removed

    # -- load -------------------------------------------------------------

    async def load_record(self, key: str, *, validate: bool = True) -> SaveRecord | None:
        """Read and verify the record stored under ``key``.

        On checksum mismatch, missing fragment or unparseable payload the
        engine tries backups (newest first) and then the emergency record.
        When the primary record is absent only the emergency record is tried.

        Args:
            key: Logical slot name.
            validate: Verify the checksum and run the consistency checker.

        Returns:
            The verified record, or None when nothing valid could be found.
        """
        validate_slot_name(key)
        self._stats.last_load_time = now_ms()
        raw = await self._io(self._backend.get_item, self.storage_key(key))
        if raw is None:
            record = await self._recover(key, validate=validate, backups=False)
            if record is None:
                return None
        else:
            try:
                record = await self._read_record(key, raw, validate=validate)
            except _RECOVERABLE as e:
                self._stats.total_failures += 1
                log.warning("storage.record.invalid", key=key, error=str(e))
                record = await self._recover(key, validate=validate)
                if record is None:
                    return None

        self._stats.total_loads += 1
        log.debug("storage.record.loaded", key=key, version=record.version)
        return record

    async def _read_record(self, key: str, raw: str, *, validate: bool) -> SaveRecord:
        record = await self._parse_payload(raw)
        if record.chunked:
            payload = await self._read_fragments(key, record)
            record = await self._parse_payload(payload, compressed=record.compressed)
            if record.chunked:
                raise CorruptRecord("Nested chunk index", operation="load", key=key)
        if validate:
            record = self._verify(record)
        return record

    async def _parse_payload(self, payload: str, *, compressed: bool = False) -> SaveRecord:
        if compressed or (
            self._compressor is not None and self._compressor.is_compressed(payload)
        ):
            if self._compressor is None:
                raise CorruptRecord("Compressed record but no compressor", operation="load")
            payload = await self._io(self._compressor.decompress, payload)
        return SaveRecord.from_json(payload)

    async def _read_fragments(self, key: str, index: SaveRecord) -> str:
        generation = index.chunk_generation or 0
        fragments = []
        for i in range(index.chunk_count or 0):
            fragment = await self._io(self._backend.get_item, self.chunk_key(key, generation, i))
            if fragment is None:
                raise MissingChunk(f"Missing chunk {i} for save {key}", index=i, key=key)
            fragments.append(fragment)
        payload = "".join(fragments)
        if index.total_size is not None and len(payload) != index.total_size:
            raise CorruptRecord(
                "Reassembled size does not match chunk index",
                operation="load",
                key=key,
                details={"expected": index.total_size, "actual": len(payload)},
            )
        return payload

    def _verify(self, record: SaveRecord) -> SaveRecord:
        integrity = record.verify_integrity()
        if integrity.is_err:
            raise integrity.error

        if self._consistency_checker is None:
            return record
        report = self._consistency_checker.check_corruption(record.data)
        if not report.is_corrupted:
            return record

        repair = self._consistency_checker.repair_data(record.data)
        if repair.success and repair.data is not None:
            log.info("storage.record.repaired", repairs=list(repair.repairs))
            return replace(record, data=repair.data, checksum=compute_checksum(repair.data))
        if report.severity >= Severity.SEVERE:
            raise CorruptRecord(
                "Record failed consistency check",
                operation="load",
                details={"issues": list(report.issues)},
            )
        return record

    async def _recover(
        self, key: str, *, validate: bool, backups: bool = True
    ) -> SaveRecord | None:
        candidates = [*await self.backup_keys(key)] if backups else []
        candidates.append(self.emergency_key(key))
        for candidate in candidates:
            raw = await self._io(self._backend.get_item, candidate)
            if raw is None:
                continue
            try:
                record = await self._parse_payload(raw)
                if record.chunked:
                    raise CorruptRecord("Backup is a chunk index", operation="recover")
                if validate:
                    record = self._verify(record)
            except _RECOVERABLE as e:
                log.warning("storage.recovery.candidate_invalid", key=candidate, error=str(e))
                continue
            log.info("storage.record.recovered", key=key, source=candidate)
            return record

        if backups:
            log.error("storage.recovery.failed", key=key)
        return None

    async def load(
        self,
        key: str,
        *,
        validate: bool = True,
        migrate: bool = True,
    ) -> StateTree | None:
        """Load the state tree stored under ``key``.

        Args:
            key: Logical slot name.
            validate: Verify checksums and run the consistency checker.
            migrate: Upgrade older records through the migration engine.

        Returns:
            A copy of the stored (and possibly migrated) tree, or None.
        """
        record = await self.load_record(key, validate=validate)
        if record is None:
            return None
        data, _ = await self._migrate_record(record, migrate=migrate)
        return data

    async def verify(self, key: str) -> Result[SaveRecord, StateVaultError]:
        """Check the primary record of ``key`` without falling back to backups.

        Returns:
            Result with the verified record, or the integrity error found.
        """
        validate_slot_name(key)
        raw = await self._io(self._backend.get_item, self.storage_key(key))
        if raw is None:
            return Result.err(PersistenceError("Save slot not found", operation="verify", key=key))
        try:
            return Result.ok(await self._read_record(key, raw, validate=True))
        except _RECOVERABLE as e:
            log.warning("storage.record.verify_failed", key=key, error=str(e))
            return Result.err(e)

    async def _migrate_record(
        self,
        record: SaveRecord,
        *,
        migrate: bool,
    ) -> tuple[StateTree, str]:
        data = deep_clone(record.data)
        if (
            not migrate
            or self._migration_engine is None
            or record.version == self.current_version
        ):
            return data, record.version

        result = await self._migration_engine.migrate(
            data, record.version, self.current_version
        )
        if result.success:
            return result.data, self.current_version
        log.warning(
            "storage.record.migration_failed",
            from_version=record.version,
            to_version=self.current_version,
            error=str(result.error),
        )
        return data, record.version

    # -- slot management --------------------------------------------------

    async def delete(self, key: str) -> bool:
        """Remove a slot with its fragments, backups and emergency record.

        Returns:
            True if any key was removed.
        """
        validate_slot_name(key)
        return await self._queue.submit(lambda: self._perform_delete(key))

    async def _perform_delete(self, key: str) -> bool:
        targets = [
            self.storage_key(key),
            *await self.chunk_keys(key),
            *await self.backup_keys(key),
            self.emergency_key(key),
        ]
        existing = set(await self._all_keys())
        removed = [target for target in targets if target in existing]
        await self._remove_keys(removed)
        log.info("storage.slot.deleted", key=key, removed=len(removed))
        return bool(removed)

    async def list_slots(self) -> list[SlotInfo]:
        """Describe every stored slot, most recently modified first."""
        prefix = self._config.prefix
        slots = []
        for storage_key in await self._all_keys():
            if not storage_key.startswith(prefix):
                continue
            slot = storage_key[len(prefix) :]
            if (
                re.search(f"{CHUNK_MARKER}\\d+_\\d+$", slot)
                or re.search(f"{BACKUP_MARKER}\\d+$", slot)
                or slot.endswith(EMERGENCY_SUFFIX)
            ):
                continue
            slots.append(await self._describe_slot(slot, storage_key))
        return sorted(slots, key=lambda s: s.last_modified, reverse=True)

    async def _describe_slot(self, slot: str, storage_key: str) -> SlotInfo:
        size = await self._io(self._backend.size_of, storage_key)
        for chunk_key in await self.chunk_keys(slot):
            size += await self._io(self._backend.size_of, chunk_key)

        raw = await self._io(self._backend.get_item, storage_key)
        header: SaveRecord | None = None
        if raw is not None:
            try:
                header = await self._parse_payload(raw)
            except CorruptRecord:
                header = None
        return SlotInfo(
            key=slot,
            size=size,
            last_modified=header.timestamp if header else 0,
            is_chunked=header.chunked if header else False,
            version=header.version if header else None,
        )

    async def clear_all(self, *, confirmed: bool = False) -> int:
        """Remove every key under this engine's prefix.

        Raises:
            ValueError: Unless confirmed=True.
        """
        if not confirmed:
            msg = "clear_all requires explicit confirmation"
            raise ValueError(msg)

        async def _clear() -> int:
            doomed = [k for k in await self._all_keys() if k.startswith(self._config.prefix)]
            await self._remove_keys(doomed)
            return len(doomed)

        removed = await self._queue.submit(_clear)
        log.warning("storage.data.cleared", removed=removed)
        return removed

    async def get_storage_info(self) -> dict[str, Any]:
        """Return statistics, settings and usage under this engine's prefix."""
        total_used = 0
        total_keys = 0
        for storage_key in await self._all_keys():
            if storage_key.startswith(self._config.prefix):
                total_used += await self._io(self._backend.size_of, storage_key)
                total_keys += 1
        quota = getattr(self._backend, "quota_bytes", None)
        return {
            "stats": self._stats.to_dict(),
            "enabled": self._enabled,
            "backend": type(self._backend).__name__,
            "compression_enabled": self._config.compression_enabled,
            "chunk_size": self._config.chunk_size,
            "max_backups": self._config.max_backups,
            "usage": {
                "total_used": total_used,
                "total_keys": total_keys,
                "quota": quota,
                "usage_percent": (total_used / quota * 100) if quota else None,
            },
        }

    def get_stats(self) -> dict[str, Any]:
        return self._stats.to_dict()

    # -- export / import --------------------------------------------------

    async def export(self, key: str) -> str:
        """Export a slot as a self-describing JSON document.

        The document is ``{version, timestamp, checksum, metadata, data}``,
        migrated to the current version when possible.

        Raises:
            PersistenceError: If the slot holds no loadable record.
        """
        record = await self.load_record(key)
        if record is None:
            raise PersistenceError("No save data found to export", operation="export", key=key)
        data, version = await self._migrate_record(record, migrate=True)
        document = {
            "version": version,
            "timestamp": now_ms(),
            "checksum": compute_checksum(data),
            "metadata": {
                "exported_at": now_ms(),
                "exported_by": "statevault",
                "format_version": EXPORT_FORMAT_VERSION,
                "slot": key,
            },
            "data": data,
        }
        log.info("storage.slot.exported", key=key, version=version)
        return json.dumps(document, indent=2, ensure_ascii=False)

    async def import_(
        self,
        json_data: str,
        key: str,
        *,
        overwrite: bool = True,
        validate: bool = True,
        backup: bool = True,
    ) -> Result[SaveReceipt, StateVaultError]:
        """Import an exported document into slot ``key``.

        The checksum is verified when present, and the data is migrated to the
        current version before it is saved.

        Args:
            json_data: Document produced by export() (optionally compressed).
            key: Destination slot.
            overwrite: Allow replacing an existing slot.
            validate: Verify the document checksum.
            backup: Back up the existing slot before replacing it.

        Returns:
            Result with the SaveReceipt, or the reason the import was refused.
        """
        validate_slot_name(key)
        if not overwrite and await self.has_slot(key):
            return Result.err(
                PersistenceError(
                    "Save slot already exists and overwrite is disabled",
                    operation="import",
                    key=key,
                )
            )

        try:
            document = await self._parse_import(json_data, key)
        except CorruptRecord as e:
            log.error("storage.import.rejected", key=key, error=str(e))
            return Result.err(e)

        data = document["data"]
        version = document["version"]
        checksum = document.get("checksum")
        if validate and checksum and compute_checksum(data) != checksum:
            return Result.err(
                ChecksumMismatch(
                    "Import data integrity check failed", operation="import", key=key
                )
            )

        if version != self.current_version:
            if self._migration_engine is None:
                return Result.err(
                    NoMigrationPath(
                        f"No migration engine to upgrade {version} "
                        f"to {self.current_version}",
                        from_version=version,
                        to_version=self.current_version,
                    )
                )
            result = await self._migration_engine.migrate(
                data, version, self.current_version
            )
            if not result.success:
                error: MigrationError = result.error or MigrationError("Migration failed")
                return Result.err(error)
            data = result.data

        receipt = await self.save(key, data, validate=validate, backup=backup)
        if receipt.is_ok:
            log.info("storage.slot.imported", key=key, from_version=version)
        return receipt

    async def _parse_import(self, json_data: str, key: str) -> dict[str, Any]:
        text = json_data
        if self._compressor is not None and self._compressor.is_compressed(text):
            text = await self._io(self._compressor.decompress, text)
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptRecord("Invalid import data format", operation="import", key=key) from e
        if (
            not isinstance(document, dict)
            or not isinstance(document.get("data"), dict)
            or not isinstance(document.get("version"), str)
        ):
            raise CorruptRecord("Invalid import data structure", operation="import", key=key)
        return document

    # -- emergency --------------------------------------------------------

    def save_emergency(self, key: str, data: StateTree, *, version: str | None = None) -> bool:
        """Synchronously write a last-chance record, bypassing the queue.

        Intended for abrupt shutdown where awaiting is not possible. The
        record is written uncompressed to ``<key>_emergency``.

        Returns:
            True if the record was written.
        """
        validate_slot_name(key)
        try:
            ensure_serializable(data)
            record = SaveRecord.create(deep_clone(data), version or self.current_version)
            self._backend.set_item(self.emergency_key(key), record.to_json())
        except StateVaultError as e:
            self._stats.total_failures += 1
            log.error("storage.emergency.failed", key=key, error=str(e))
            return False
        log.warning("storage.emergency.saved", key=key)
        return True

    @staticmethod
    def expected_chunk_count(payload_size: int, chunk_size: int) -> int:
        """Number of fragments a payload of ``payload_size`` characters needs."""
        if payload_size <= chunk_size:
            return 0
        return math.ceil(payload_size / chunk_size)
