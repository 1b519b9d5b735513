"""Unit tests for statevault.storage.compression module."""

import pytest

from statevault.core.errors import CorruptRecord
from statevault.storage.compression import Compressor, ZlibCompressor


class TestZlibCompressor:
    """Test the default compressor."""

    def test_satisfies_protocol(self) -> None:
        """ZlibCompressor is a Compressor."""
        assert isinstance(ZlibCompressor(), Compressor)

    def test_round_trip_unicode(self) -> None:
        """compress/decompress preserve non-ASCII text."""
        compressor = ZlibCompressor()
        text = '{"realm":"筑基","jade":500}' * 20
        packed = compressor.compress(text)
        assert compressor.is_compressed(packed)
        assert compressor.decompress(packed) == text

    def test_repetitive_text_shrinks(self) -> None:
        """Repetitive payloads compress well."""
        text = "x" * 5000
        assert len(ZlibCompressor().compress(text)) < len(text)

    def test_output_is_ascii(self) -> None:
        """Compressed output is printable ASCII behind the header."""
        packed = ZlibCompressor().compress("hello")
        assert packed.startswith(ZlibCompressor.HEADER)
        packed.encode("ascii")

    def test_plain_json_is_not_compressed(self) -> None:
        """Plain record JSON is not mistaken for compressed data."""
        assert not ZlibCompressor().is_compressed('{"version":"1.0.0"}')

    def test_decompress_rejects_plain_text(self) -> None:
        """Decompressing unheadered text raises CorruptRecord."""
        with pytest.raises(CorruptRecord):
            ZlibCompressor().decompress("plain")

    def test_decompress_rejects_damaged_payload(self) -> None:
        """A damaged payload raises CorruptRecord."""
        packed = ZlibCompressor().compress("x" * 100)
        with pytest.raises(CorruptRecord):
            ZlibCompressor().decompress(packed[:-6] + "!!!!!!")
