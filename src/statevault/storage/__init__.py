"""Durable storage: backends, records, compression and the storage engine."""

from statevault.storage.backends import FileBackend, MemoryBackend, StorageBackend
from statevault.storage.compression import Compressor, ZlibCompressor
from statevault.storage.engine import DurableStorageEngine, StorageStats, validate_slot_name
from statevault.storage.queue import WriteQueue
from statevault.storage.records import SaveReceipt, SaveRecord, SlotInfo

__all__ = [
    "Compressor",
    "DurableStorageEngine",
    "FileBackend",
    "MemoryBackend",
    "SaveReceipt",
    "SaveRecord",
    "SlotInfo",
    "StorageBackend",
    "StorageStats",
    "WriteQueue",
    "ZlibCompressor",
    "validate_slot_name",
]
