"""Pluggable compression capability for serialized records.

The engine only needs three string-to-string operations, so any codec that
keeps its output printable can be plugged in. ZlibCompressor is the default.
"""

from __future__ import annotations

import base64
import binascii
import zlib
from typing import Protocol, runtime_checkable

from statevault.core.errors import CorruptRecord


@runtime_checkable
class Compressor(Protocol):
    """Compression capability consumed by DurableStorageEngine."""

    def compress(self, data: str) -> str: ...

    def decompress(self, data: str) -> str: ...

    def is_compressed(self, data: str) -> bool: ...


class ZlibCompressor:
    """zlib + base64 codec with a short identifying header.

    Args:
        level: zlib compression level (0-9).
    """

    HEADER = "SVZ1:"

    def __init__(self, level: int = 6) -> None:
        self._level = level

    def compress(self, data: str) -> str:
        packed = zlib.compress(data.encode("utf-8"), self._level)
        return self.HEADER + base64.b64encode(packed).decode("ascii")

    def decompress(self, data: str) -> str:
        """Decode a string produced by compress().

        Raises:
            CorruptRecord: If the header is missing or the payload is damaged.
        """
        if not self.is_compressed(data):
            raise CorruptRecord("Data is not zlib-compressed", operation="decompress")
        try:
            packed = base64.b64decode(data[len(self.HEADER) :], validate=True)
            return zlib.decompress(packed).decode("utf-8")
        except (binascii.Error, zlib.error, UnicodeDecodeError) as e:
            raise CorruptRecord(
                f"Failed to decompress data: {e}", operation="decompress"
            ) from e

    def is_compressed(self, data: str) -> bool:
        return data.startswith(self.HEADER)
