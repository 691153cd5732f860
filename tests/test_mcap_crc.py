"""Tests for CRC functionality in src/tinymcap/mcap/crc.py."""
import zlib

import pytest

from tinymcap.io.raw_writer import BytesWriter
from tinymcap.mcap import validate_mcap_crc
from tinymcap.mcap.crc import (
    McapInvalidCrcError,
    assert_crc,
    assert_data_crc,
    assert_summary_crc,
    compute_crc,
    validate_crc,
    validate_data_crc,
    validate_summary_crc
)
from tinymcap.mcap.record_parser import FOOTER_SIZE, MAGIC_BYTES_SIZE
from tinymcap.mcap.summary import McapSummary
from tinymcap.types import Channel, Message, Schema
from tinymcap.writer import McapWriter


def _write_sample(*, enable_crc: bool = True, count: int = 5) -> bytes:
    buffer = BytesWriter()
    channel = Channel("/crc", "json", Schema("Crc", "jsonschema", b"{}"))
    with McapWriter(buffer, enable_crc=enable_crc) as writer:
        for i in range(count):
            writer.write(Message(channel, i, i, i, f'{{"i": {i}}}'.encode()))
    return buffer.as_bytes()


class TestBasicCrcFunctions:
    """Test basic CRC functions: compute_crc, validate_crc, assert_crc."""

    def test_compute_crc_empty_data(self):
        result = compute_crc(b"")
        assert result == 0
        assert result == zlib.crc32(b"")

    def test_compute_crc_with_start_value(self):
        """Test incremental CRC computation with start_value."""
        crc1 = compute_crc(b"hello")
        crc2 = compute_crc(b" world", start_value=crc1)
        assert crc2 == compute_crc(b"hello world")

    def test_validate_crc(self):
        data = b"test data"
        assert validate_crc(data, zlib.crc32(data)) is True
        assert validate_crc(data, zlib.crc32(b"different data")) is False

    def test_assert_crc_invalid(self):
        with pytest.raises(McapInvalidCrcError):
            assert_crc(b"test data", 0)


class TestFileCrc:
    """Test data and summary section CRCs of written files."""

    def test_written_file_is_valid(self):
        data = _write_sample()
        assert validate_data_crc(data)
        assert validate_summary_crc(data)
        assert validate_mcap_crc(data)

    def test_crc_disabled_is_always_valid(self):
        data = _write_sample(enable_crc=False)
        summary = McapSummary.read(data)
        assert summary is not None
        assert summary.footer.summary_crc == 0
        assert validate_mcap_crc(data)

    def test_corrupt_data_section_detected(self):
        data = bytearray(_write_sample())
        # Flip a byte of the library name in the header record
        data[MAGIC_BYTES_SIZE + 20] ^= 0xFF
        assert not validate_data_crc(bytes(data))
        with pytest.raises(McapInvalidCrcError):
            assert_data_crc(bytes(data))
        # The summary section is untouched
        assert_summary_crc(bytes(data))

    def test_corrupt_summary_section_detected(self):
        data = bytearray(_write_sample())
        summary = McapSummary.read(bytes(data))
        assert summary is not None
        data[summary.footer.summary_start + 12] ^= 0xFF
        assert not validate_summary_crc(bytes(data))
        with pytest.raises(McapInvalidCrcError):
            assert_summary_crc(bytes(data))

    def test_summary_read_checks_crc_on_request(self):
        data = bytearray(_write_sample())
        footer_offset = len(data) - MAGIC_BYTES_SIZE - FOOTER_SIZE
        # Corrupt the stored summary CRC itself
        data[footer_offset + FOOTER_SIZE - 1] ^= 0xFF
        assert McapSummary.read(bytes(data)) is not None
        with pytest.raises(McapInvalidCrcError):
            McapSummary.read(bytes(data), enable_crc_check=True)
