"""SaveRecord - the versioned, checksummed unit written to durable storage.

Wire format (JSON, camelCase keys):
    {"version", "timestamp", "checksum", "chunked", "compressed", "data"}

A chunk index record omits "data" and adds "chunkCount", "totalSize" and
"chunkGeneration", the tag of the fragment keys it points at.
The checksum is always the SHA-256 of the canonical JSON of "data".
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import json
from typing import Any

from statevault.core.clock import now_ms
from statevault.core.errors import ChecksumMismatch, CorruptRecord
from statevault.core.tree import compute_checksum
from statevault.core.types import Result, StateTree


@dataclass(frozen=True, slots=True)
class SaveRecord:
    """Immutable persisted record.

    Attributes:
        version: Save-format version of ``data``.
        timestamp: Creation time in epoch milliseconds.
        checksum: SHA-256 hex digest of the canonical JSON of ``data``.
        data: The state tree. None on a chunk index record.
        chunked: True if this is an index pointing at fragments.
        compressed: True if the serialized payload was compressed.
        chunk_count: Number of fragments (index records only).
        total_size: Length of the reassembled payload (index records only).
        chunk_generation: Tag of the fragment keys (index records only).
    """

    version: str
    timestamp: int
    checksum: str
    data: StateTree | None
    chunked: bool = False
    compressed: bool = False
    chunk_count: int | None = None
    total_size: int | None = None
    chunk_generation: int | None = None

    @classmethod
    def create(cls, data: StateTree, version: str) -> SaveRecord:
        """Create a record for ``data`` with a freshly computed checksum.

        Args:
            data: State tree to persist.
            version: Save-format version the data conforms to.

        Returns:
            New SaveRecord stamped with the current time.
        """
        return cls(
            version=version,
            timestamp=now_ms(),
            checksum=compute_checksum(data),
            data=data,
        )

    def verify_integrity(self) -> Result[bool, ChecksumMismatch]:
        """Recompute the checksum of ``data`` and compare it to the stored one.

        Returns:
            Result.ok(True) if they match, Result.err(ChecksumMismatch) if not.
        """
        computed = compute_checksum(self.data)
        if computed != self.checksum:
            return Result.err(
                ChecksumMismatch(
                    "Checksum mismatch",
                    operation="verify",
                    details={"expected": self.checksum, "computed": computed},
                )
            )
        return Result.ok(True)

    def as_index(
        self,
        *,
        chunk_count: int,
        total_size: int,
        compressed: bool,
        chunk_generation: int = 0,
    ) -> SaveRecord:
        """Return the chunk index record describing this record's fragments."""
        return replace(
            self,
            data=None,
            chunked=True,
            compressed=compressed,
            chunk_count=chunk_count,
            total_size=total_size,
            chunk_generation=chunk_generation,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON wire format."""
        result: dict[str, Any] = {
            "version": self.version,
            "timestamp": self.timestamp,
            "checksum": self.checksum,
            "chunked": self.chunked,
            "compressed": self.compressed,
        }
        if self.chunked:
            result["chunkCount"] = self.chunk_count
            result["totalSize"] = self.total_size
            result["chunkGeneration"] = self.chunk_generation
        else:
            result["data"] = self.data
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_dict(cls, payload: Any) -> SaveRecord:
        """Reconstruct a record from its wire format.

        Raises:
            CorruptRecord: If required fields are missing or mistyped.
        """
        if not isinstance(payload, dict):
            raise CorruptRecord("Record is not a JSON object", operation="parse")
        try:
            chunked = bool(payload.get("chunked", False))
            version = payload["version"]
            timestamp = payload["timestamp"]
            checksum = payload["checksum"]
            if not isinstance(version, str) or not isinstance(checksum, str):
                raise TypeError("version and checksum must be strings")
            if not isinstance(timestamp, int):
                raise TypeError("timestamp must be an integer")
            if chunked:
                chunk_count = int(payload["chunkCount"])
                total_size = int(payload["totalSize"])
                chunk_generation = int(payload.get("chunkGeneration") or 0)
                data = None
            else:
                chunk_count = total_size = chunk_generation = None
                data = payload["data"]
                if not isinstance(data, dict):
                    raise TypeError("data must be an object")
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptRecord(
                f"Malformed record: {e}", operation="parse", details={"error": str(e)}
            ) from e

        return cls(
            version=version,
            timestamp=timestamp,
            checksum=checksum,
            data=data,
            chunked=chunked,
            compressed=bool(payload.get("compressed", False)),
            chunk_count=chunk_count,
            total_size=total_size,
            chunk_generation=chunk_generation,
        )

    @classmethod
    def from_json(cls, text: str) -> SaveRecord:
        """Parse a serialized record.

        Raises:
            CorruptRecord: If the text is not valid JSON or not a record.
        """
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise CorruptRecord(f"Invalid record JSON: {e}", operation="parse") from e
        return cls.from_dict(payload)


@dataclass(frozen=True, slots=True)
class SaveReceipt:
    """Outcome of a successful save.

    Attributes:
        key: Logical slot that was written.
        size: Length of the written payload in characters.
        chunk_count: Number of fragments, 0 for a direct write.
        compressed: Whether compression was kept.
        backup_key: Physical key of the backup taken, if any.
        timestamp: Record timestamp in epoch milliseconds.
    """

    key: str
    size: int
    chunk_count: int
    compressed: bool
    backup_key: str | None
    timestamp: int


@dataclass(frozen=True, slots=True)
class SlotInfo:
    """Summary of a stored slot, as returned by list_slots()."""

    key: str
    size: int
    last_modified: int
    is_chunked: bool
    version: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "size": self.size,
            "last_modified": self.last_modified,
            "is_chunked": self.is_chunked,
            "version": self.version,
        }
