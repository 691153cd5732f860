"""Index-driven access to records at known file or chunk offsets."""
import logging

from tinymcap.io.raw_reader import BytesReader
from tinymcap.mcap.chunk import decompress_chunk
from tinymcap.mcap.crc import validate_crc
from tinymcap.mcap.error import (
    McapCorruptRecordError,
    McapInvalidCrcError,
    McapOffsetOutOfRangeError
)
from tinymcap.mcap.record_parser import RECORD_PREFIX_SIZE, McapRecordParser
from tinymcap.mcap.records import (
    AttachmentIndexRecord,
    ChunkIndexRecord,
    ChunkRecord,
    MessageIndexEntry,
    MessageRecord,
    MetadataIndexRecord
)
from tinymcap.mcap.tables import RecordTables
from tinymcap.types import Attachment, Message, Metadata

logger = logging.getLogger(__name__)


def _reader_at(data: bytes | memoryview, offset: int, length: int, what: str) -> BytesReader:
    reader = BytesReader(data)
    if offset + length > reader.size():
        raise McapCorruptRecordError(
            f'{what} at {offset} (+{length} bytes) lies beyond the end of the file ({reader.size()} bytes)'
        )
    reader.seek_from_start(offset)
    return reader


def read_chunk(data: bytes | memoryview, chunk_index: ChunkIndexRecord) -> ChunkRecord:
    """Read the chunk record a chunk index points at."""
    reader = _reader_at(data, chunk_index.chunk_start_offset, chunk_index.chunk_length, 'Chunk')
    return McapRecordParser.parse_chunk(reader)


def read_chunk_data(
    data: bytes | memoryview,
    chunk_index: ChunkIndexRecord,
    *,
    check_crc: bool = True,
) -> bytes:
    """Read and decompress the records of a chunk."""
    return decompress_chunk(read_chunk(data, chunk_index), check_crc=check_crc)


def read_message_indexes(
    data: bytes | memoryview,
    chunk_index: ChunkIndexRecord,
) -> dict[int, list[MessageIndexEntry]]:
    """Read the message index records written after a chunk.

    Args:
        data: The whole MCAP file.
        chunk_index: The chunk index whose message indexes to read.

    Returns:
        Entries per channel id, ordered by offset. Empty if the chunk was
        written without message indexes.
    """
    message_indexes: dict[int, list[MessageIndexEntry]] = {}
    for channel_id, offset in chunk_index.message_index_offsets.items():
        reader = _reader_at(data, offset, 0, 'Message index')
        record = McapRecordParser.parse_message_index(reader)
        if record.channel_id != channel_id:
            raise McapCorruptRecordError(
                f'Message index at {offset} is for channel {record.channel_id}, expected {channel_id}'
            )
        message_indexes[channel_id] = sorted(record.records, key=lambda e: e.offset)
    return message_indexes


def message_at(chunk_data: bytes | memoryview, offset: int, tables: RecordTables) -> Message:
    """Decode the message record starting at ``offset`` of a decompressed chunk."""
    if not 0 <= offset < len(chunk_data):
        raise McapOffsetOutOfRangeError(
            f'Offset {offset} is outside the decompressed chunk ({len(chunk_data)} bytes)'
        )
    try:
        record, _ = McapRecordParser.decode_record(chunk_data, offset)
    except McapCorruptRecordError as e:
        raise McapOffsetOutOfRangeError(f'Offset {offset} is not at a record boundary') from e
    if not isinstance(record, MessageRecord):
        raise McapOffsetOutOfRangeError(
            f'Offset {offset} points at a {type(record).__name__}, not a message'
        )
    return tables.resolve_message(record)


def seek_message(
    data: bytes | memoryview,
    chunk_index: ChunkIndexRecord,
    entry: MessageIndexEntry,
    tables: RecordTables,
    *,
    check_crc: bool = True,
) -> Message:
    """Decompress a chunk and decode the single message an index entry points at."""
    return message_at(read_chunk_data(data, chunk_index, check_crc=check_crc), entry.offset, tables)


def read_attachment(
    data: bytes | memoryview,
    attachment_index: AttachmentIndexRecord,
    *,
    check_crc: bool = True,
) -> Attachment:
    """Read the attachment an attachment index points at."""
    reader = _reader_at(data, attachment_index.offset, attachment_index.length, 'Attachment')
    record = McapRecordParser.parse_attachment(reader)
    # The CRC covers every field of the record that precedes it
    covered = reader.view[attachment_index.offset + RECORD_PREFIX_SIZE:reader.tell() - 4]
    if check_crc and record.crc != 0 and not validate_crc(covered, record.crc):
        raise McapInvalidCrcError(f'Invalid CRC for attachment {record.name!r}')
    return Attachment(record.log_time, record.create_time, record.name, record.media_type, record.data)


def read_metadata(data: bytes | memoryview, metadata_index: MetadataIndexRecord) -> Metadata:
    """Read the metadata record a metadata index points at."""
    reader = _reader_at(data, metadata_index.offset, metadata_index.length, 'Metadata')
    record = McapRecordParser.parse_metadata(reader)
    return Metadata(record.name, record.metadata)
