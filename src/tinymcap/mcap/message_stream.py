import logging
from pathlib import Path
from typing import Any

from tinymcap.io.raw_reader import BytesReader
from tinymcap.mcap.chunk import decompress_chunk
from tinymcap.mcap.error import MalformedMCAP
from tinymcap.mcap.record_parser import (
    MAGIC_BYTES,
    MAGIC_BYTES_SIZE,
    McapRecordParser
)
from tinymcap.mcap.records import HeaderRecord, RecordType
from tinymcap.mcap.tables import RecordTables
from tinymcap.types import Message

logger = logging.getLogger(__name__)


class MessageStream:
    """Forward-only iterator over every message of an MCAP byte range.

    Schema and channel records update the stream's id tables and are not
    yielded. Chunks are decompressed when they are reached and drained in
    place before the outer records resume, so messages come out in file order.

    At most one decompressed chunk is held at a time. The stream cannot be
    restarted; create a new one over the same buffer instead (the buffer is
    not copied). Any decode error ends the stream.

    Args:
        reader: Reader positioned at the first record to stream.
        tables: Id tables to resolve channels against (empty by default).
        enable_crc_check: Verify the CRC of each chunk before streaming it.
        in_chunk: The reader covers the records of a single chunk.
        header: The header record of the file, if already parsed.
    """

    def __init__(
        self,
        reader: BytesReader,
        *,
        tables: RecordTables | None = None,
        enable_crc_check: bool = True,
        in_chunk: bool = False,
        header: HeaderRecord | None = None,
    ) -> None:
        self._outer = reader
        self._inner: BytesReader | None = None
        self._tables = tables if tables is not None else RecordTables()
        self._check_crc = enable_crc_check
        self._in_chunk = in_chunk
        self._done = False
        self.header = header

    # Helpful Constructors

    @classmethod
    def from_bytes(cls, data: bytes | bytearray | memoryview, *, enable_crc_check: bool = True) -> 'MessageStream':
        """Stream the messages of a complete (or truncated) MCAP file in memory."""
        reader = BytesReader(data)
        version = McapRecordParser.parse_magic_bytes(reader)
        logger.debug(f'MCAP version: {version}')

        # A file that was never finalized has no trailing magic
        end = reader.size()
        if end >= 2 * MAGIC_BYTES_SIZE and reader.view[end - MAGIC_BYTES_SIZE:end] == MAGIC_BYTES:
            end -= MAGIC_BYTES_SIZE

        body = BytesReader(reader.view[MAGIC_BYTES_SIZE:end])
        header = McapRecordParser.parse_header(body)
        return cls(body, enable_crc_check=enable_crc_check, header=header)

    @classmethod
    def from_file(cls, file_path: Path | str, *, enable_crc_check: bool = True) -> 'MessageStream':
        """Stream the messages of an MCAP file on disk."""
        return cls.from_bytes(Path(file_path).read_bytes(), enable_crc_check=enable_crc_check)

    @property
    def tables(self) -> RecordTables:
        """Schemas and channels seen so far."""
        return self._tables

    def __iter__(self) -> 'MessageStream':
        return self

    def __next__(self) -> Message:
        try:
            while not self._done:
                if self._inner is not None:
                    if self._inner.remaining() == 0:
                        self._inner = None
                        continue
                    record_type, record = McapRecordParser.parse_record(self._inner)
                    if (message := self._handle_chunk_record(record_type, record)) is not None:
                        return message
                elif self._outer.remaining() == 0:
                    self._done = True
                else:
                    record_type, record = McapRecordParser.parse_record(self._outer)
                    if (message := self._handle_record(record_type, record)) is not None:
                        return message
        except Exception:
            self._done = True
            raise
        raise StopIteration

    def _handle_record(self, record_type: int, record: Any) -> Message | None:
        if record_type == RecordType.CHUNK:
            if self._in_chunk:
                raise MalformedMCAP('Chunk record nested inside a chunk')
            self._inner = BytesReader(decompress_chunk(record, check_crc=self._check_crc))
            return None
        if record_type in (RecordType.DATA_END, RecordType.FOOTER):
            logger.debug('Reached end of data section')
            self._done = True
            return None
        return self._handle_chunk_record(record_type, record)

    def _handle_chunk_record(self, record_type: int, record: Any) -> Message | None:
        if record_type == RecordType.MESSAGE:
            return self._tables.resolve_message(record)
        if record_type == RecordType.SCHEMA:
            self._tables.add_schema(record)
        elif record_type == RecordType.CHANNEL:
            self._tables.add_channel(record)
        elif record_type == RecordType.CHUNK:
            raise MalformedMCAP('Chunk record nested inside a chunk')
        else:
            logger.debug(f'Skipping record {record_type:#04x} while streaming messages')
        return None
