"""Tests for chunk compression in src/tinymcap/mcap/chunk.py."""
import zlib

import pytest
import zstandard as zstd

from tinymcap.mcap.chunk import (
    compress_chunk,
    create_chunk_compressor,
    decompress_chunk,
    normalize_compression
)
from tinymcap.mcap.error import (
    McapChunkCrcMismatchError,
    McapCorruptRecordError,
    McapInvalidCrcError,
    McapUnknownCompressionError
)
from tinymcap.mcap.record_encoder import McapRecordWriter
from tinymcap.mcap.records import ChunkRecord, MessageRecord


def _records(count: int = 10) -> bytes:
    return b"".join(
        McapRecordWriter.encode_record(
            MessageRecord(channel_id=0, sequence=i, log_time=i, publish_time=i, data=b"payload" * i)
        )
        for i in range(count)
    )


@pytest.mark.parametrize("compression", ["none", "lz4", "zstd", None])
def test_compress_decompress(compression):
    records = _records()
    chunk = compress_chunk(records, compression, message_start_time=0, message_end_time=9)
    assert chunk.uncompressed_size == len(records)
    assert chunk.uncompressed_crc == zlib.crc32(records)
    assert chunk.message_start_time == 0
    assert chunk.message_end_time == 9
    assert decompress_chunk(chunk) == records


def test_none_compression_is_stored_as_empty_string():
    chunk = compress_chunk(b"abc", "none")
    assert chunk.compression == ""
    assert chunk.records == b"abc"


def test_compression_reduces_repetitive_records():
    records = b"\x00" * 10_000
    assert len(compress_chunk(records, "zstd").records) < len(records)
    assert len(compress_chunk(records, "lz4").records) < len(records)


def test_crc_disabled_stores_zero():
    chunk = compress_chunk(_records(), "zstd", enable_crc=False)
    assert chunk.uncompressed_crc == 0


def test_zero_crc_is_not_checked():
    records = _records()
    chunk = compress_chunk(records, "none", enable_crc=False)
    chunk.records = records[:-1] + b"\xff"
    assert decompress_chunk(chunk) == chunk.records


def test_crc_mismatch_raises():
    records = _records()
    chunk = compress_chunk(records, "none")
    chunk.records = records[:-1] + bytes([records[-1] ^ 0xFF])
    with pytest.raises(McapChunkCrcMismatchError) as exc_info:
        decompress_chunk(chunk)
    assert exc_info.value.expected == zlib.crc32(records)
    assert exc_info.value.computed == zlib.crc32(chunk.records)
    assert isinstance(exc_info.value, McapInvalidCrcError)


def test_crc_mismatch_ignored_when_check_disabled():
    records = _records()
    chunk = compress_chunk(records, "none")
    chunk.records = records[:-1] + bytes([records[-1] ^ 0xFF])
    assert decompress_chunk(chunk, check_crc=False) == chunk.records


def test_uncompressed_size_mismatch_raises():
    chunk = compress_chunk(_records(), "lz4")
    chunk.uncompressed_size += 1
    with pytest.raises(McapCorruptRecordError):
        decompress_chunk(chunk)


def test_corrupt_zstd_data_raises():
    chunk = ChunkRecord(0, 0, 100, 0, "zstd", b"definitely not zstd")
    with pytest.raises(McapCorruptRecordError):
        decompress_chunk(chunk)


def test_corrupt_lz4_data_raises():
    chunk = ChunkRecord(0, 0, 100, 0, "lz4", b"definitely not lz4")
    with pytest.raises(McapCorruptRecordError):
        decompress_chunk(chunk)


def test_unknown_compression_raises():
    with pytest.raises(McapUnknownCompressionError):
        decompress_chunk(ChunkRecord(0, 0, 3, 0, "brotli", b"abc"))
    with pytest.raises(McapUnknownCompressionError):
        normalize_compression("brotli")
    with pytest.raises(McapUnknownCompressionError):
        create_chunk_compressor("brotli")


def test_reused_compressor():
    compress = create_chunk_compressor("zstd")
    first = compress_chunk(_records(3), "zstd", compressor=compress)
    second = compress_chunk(_records(5), "zstd", compressor=compress)
    assert decompress_chunk(first) == _records(3)
    assert decompress_chunk(second) == _records(5)


@pytest.mark.parametrize("records", [b"", b"\x05" * 64])
def test_zstd_frame_without_content_size(records):
    # Streaming compressors do not store the content size in the frame header
    compressed = zstd.ZstdCompressor(write_content_size=False).compress(records)
    chunk = ChunkRecord(0, 0, len(records), zlib.crc32(records), "zstd", compressed)
    assert decompress_chunk(chunk) == records


def test_empty_chunk_decompresses():
    for compression in ("none", "lz4", "zstd"):
        chunk = compress_chunk(b"", compression)
        assert chunk.uncompressed_size == 0
        assert decompress_chunk(chunk) == b""
