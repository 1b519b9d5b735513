"""Unit tests for statevault.storage.records module."""

import json

import pytest

from statevault.core.errors import ChecksumMismatch, CorruptRecord
from statevault.core.tree import compute_checksum
from statevault.storage.records import SaveRecord, SlotInfo


class TestSaveRecord:
    """Test SaveRecord creation and integrity."""

    def test_create_computes_checksum(self) -> None:
        """create() stamps the checksum of the data."""
        record = SaveRecord.create({"a": 1}, "1.0.0")
        assert record.checksum == compute_checksum({"a": 1})
        assert record.version == "1.0.0"
        assert record.timestamp > 0
        assert not record.chunked

    def test_verify_integrity_ok(self) -> None:
        """An untouched record verifies."""
        result = SaveRecord.create({"a": 1}, "1.0.0").verify_integrity()
        assert result.is_ok

    def test_verify_integrity_detects_tampering(self) -> None:
        """A record whose data changed fails verification."""
        record = SaveRecord.create({"a": 1}, "1.0.0")
        tampered = SaveRecord(
            version=record.version,
            timestamp=record.timestamp,
            checksum=record.checksum,
            data={"a": 2},
        )
        result = tampered.verify_integrity()
        assert result.is_err
        assert isinstance(result.error, ChecksumMismatch)

    def test_wire_format_uses_camel_case(self) -> None:
        """Chunk index records use chunkCount/totalSize and omit data."""
        index = SaveRecord.create({"a": 1}, "1.0.0").as_index(
            chunk_count=3, total_size=700, compressed=True, chunk_generation=4
        )
        payload = json.loads(index.to_json())
        assert payload["chunked"] is True
        assert payload["chunkCount"] == 3
        assert payload["totalSize"] == 700
        assert payload["chunkGeneration"] == 4
        assert "data" not in payload
        assert SaveRecord.from_json(index.to_json()).chunk_generation == 4

    def test_json_round_trip_preserves_checksum(self) -> None:
        """A parsed record still verifies."""
        record = SaveRecord.create({"a": [1, 2.5, "é"], "b": None}, "1.0.1")
        parsed = SaveRecord.from_json(record.to_json())
        assert parsed == record
        assert parsed.verify_integrity().is_ok


class TestSaveRecordParsing:
    """Test rejection of malformed payloads."""

    def test_invalid_json(self) -> None:
        """Unparseable text raises CorruptRecord."""
        with pytest.raises(CorruptRecord):
            SaveRecord.from_json("{not json")

    def test_not_an_object(self) -> None:
        """A JSON array is not a record."""
        with pytest.raises(CorruptRecord):
            SaveRecord.from_json("[1, 2]")

    @pytest.mark.parametrize("missing", ["version", "timestamp", "checksum", "data"])
    def test_missing_fields(self, missing: str) -> None:
        """Each required field must be present."""
        payload = json.loads(SaveRecord.create({"a": 1}, "1.0.0").to_json())
        del payload[missing]
        with pytest.raises(CorruptRecord):
            SaveRecord.from_dict(payload)

    def test_data_must_be_object(self) -> None:
        """The data field must be a mapping."""
        payload = json.loads(SaveRecord.create({"a": 1}, "1.0.0").to_json())
        payload["data"] = [1, 2]
        with pytest.raises(CorruptRecord):
            SaveRecord.from_dict(payload)


class TestSlotInfo:
    """Test SlotInfo."""

    def test_to_dict(self) -> None:
        """to_dict() exposes every field."""
        info = SlotInfo(key="main", size=10, last_modified=5, is_chunked=False, version="1.0.0")
        assert info.to_dict() == {
            "key": "main",
            "size": 10,
            "last_modified": 5,
            "is_chunked": False,
            "version": "1.0.0",
        }
