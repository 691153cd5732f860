import logging
import zlib
from typing import Callable, Literal

import lz4.frame
import zstandard as zstd

from tinymcap.mcap.error import (
    McapChunkCrcMismatchError,
    McapCorruptRecordError,
    McapUnknownCompressionError
)
from tinymcap.mcap.records import ChunkRecord

logger = logging.getLogger(__name__)

Compression = Literal["none", "lz4", "zstd"]
"""User facing compression names. ``none`` is stored as the empty string."""

_Codec = Callable[[bytes], bytes]


def _zstd_decompress(data: bytes, uncompressed_size: int) -> bytes:
    # Frames written by streaming compressors may omit the content size
    decompressor = zstd.ZstdDecompressor().decompressobj()
    return decompressor.decompress(data)


_COMPRESSORS: dict[str, Callable[[], _Codec]] = {
    "": lambda: bytes,
    "lz4": lambda: lz4.frame.compress,
    "zstd": lambda: zstd.ZstdCompressor().compress,
}

_DECOMPRESSORS: dict[str, Callable[[bytes, int], bytes]] = {
    "": lambda data, _: bytes(data),
    "lz4": lambda data, _: lz4.frame.decompress(data),
    "zstd": _zstd_decompress,
}


def normalize_compression(compression: Compression | str | None) -> str:
    """Map a user facing compression name onto the identifier stored on disk."""
    name = "" if compression in ("none", None) else compression
    if name not in _COMPRESSORS:
        raise McapUnknownCompressionError(f'Unknown compression type: {compression}')
    return name


def create_chunk_compressor(compression: Compression | str | None) -> _Codec:
    """Create a compression function for the given algorithm."""
    return _COMPRESSORS[normalize_compression(compression)]()


def compress_chunk(
    records: bytes,
    compression: Compression | str | None,
    *,
    message_start_time: int = 0,
    message_end_time: int = 0,
    enable_crc: bool = True,
    compressor: _Codec | None = None,
) -> ChunkRecord:
    """Build a chunk record from already encoded inner records.

    Args:
        records: The uncompressed, concatenated inner records.
        compression: Compression algorithm name.
        message_start_time: Earliest message log time in the chunk.
        message_end_time: Latest message log time in the chunk.
        enable_crc: Store a CRC32 of the uncompressed records (0 otherwise).
        compressor: Reusable compression function (created if not given).

    Returns:
        The chunk record ready to be written.
    """
    name = normalize_compression(compression)
    compress = compressor or _COMPRESSORS[name]()
    return ChunkRecord(
        message_start_time=message_start_time,
        message_end_time=message_end_time,
        uncompressed_size=len(records),
        uncompressed_crc=zlib.crc32(records) if enable_crc else 0,
        compression=name,
        records=compress(records),
    )


def decompress_chunk(chunk: ChunkRecord, *, check_crc: bool = True) -> bytes:
    """Decompress the records field of a chunk."""
    try:
        decompress = _DECOMPRESSORS[chunk.compression]
    except KeyError:
        raise McapUnknownCompressionError(f'Unknown compression type: {chunk.compression}') from None

    try:
        chunk_data = decompress(chunk.records, chunk.uncompressed_size)
    except (zstd.ZstdError, RuntimeError) as e:  # lz4 reports corrupt frames as RuntimeError
        raise McapCorruptRecordError(f'Failed to decompress {chunk.compression} chunk: {e}') from e
    if len(chunk_data) != chunk.uncompressed_size:
        raise McapCorruptRecordError(
            f'Chunk decompressed to {len(chunk_data)} bytes, '
            f'expected {chunk.uncompressed_size}'
        )

    # Validate the CRC if requested
    if check_crc and chunk.uncompressed_crc != 0:
        computed = zlib.crc32(chunk_data)
        if computed != chunk.uncompressed_crc:
            raise McapChunkCrcMismatchError(chunk.uncompressed_crc, computed)
    logger.debug(f'Decompressed {chunk.compression or "uncompressed"} chunk ({len(chunk_data)} bytes)')
    return chunk_data
