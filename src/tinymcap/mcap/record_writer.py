import logging
from abc import ABC, abstractmethod
from typing import Literal

from tinymcap import __version__
from tinymcap.io.raw_writer import BaseWriter, BytesWriter, CrcWriter
from tinymcap.mcap.chunk import (
    Compression,
    compress_chunk,
    create_chunk_compressor,
    normalize_compression
)
from tinymcap.mcap.error import McapWriterClosedError
from tinymcap.mcap.record_encoder import McapRecordWriter
from tinymcap.mcap.records import (
    AttachmentIndexRecord,
    AttachmentRecord,
    ChannelRecord,
    ChunkIndexRecord,
    HeaderRecord,
    MessageIndexEntry,
    MessageIndexRecord,
    MessageRecord,
    MetadataIndexRecord,
    MetadataRecord,
    SchemaRecord
)
from tinymcap.mcap.summary import McapSummaryBuilder

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 768
DEFAULT_COMPRESSION: Compression = "zstd"


class BaseMcapRecordWriter(ABC):
    """Abstract base class for low-level MCAP record writers.

    Low-level writers accept pre-constructed MCAP record dataclasses and handle
    binary serialization, chunking, compression, and summary section management.
    Ids are the caller's responsibility.
    """

    def __init__(
        self,
        writer: BaseWriter,
        *,
        summary: McapSummaryBuilder | None = None,
        profile: str = "",
        library: str = f"tinymcap {__version__}",
        enable_crc: bool = True,
    ) -> None:
        self._writer = CrcWriter(writer)
        self._summary = summary if summary is not None else McapSummaryBuilder()
        self._enable_crc = enable_crc
        self._closed = False

        McapRecordWriter.write_magic_bytes(self._writer)
        McapRecordWriter.write_header(self._writer, HeaderRecord(profile=profile, library=library))

    def __enter__(self) -> 'BaseMcapRecordWriter':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def summary(self) -> McapSummaryBuilder:
        """Records and statistics collected for the summary section."""
        return self._summary

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise McapWriterClosedError('Cannot write to a closed MCAP writer')

    @abstractmethod
    def write_schema(self, schema: SchemaRecord) -> None:
        """Write a schema record to the MCAP file.

        Args:
            schema: The schema record to write.
        """
        ...  # pragma: no cover

    @abstractmethod
    def write_channel(self, channel: ChannelRecord) -> None:
        """Write a channel record to the MCAP file.

        Args:
            channel: The channel record to write.
        """
        ...  # pragma: no cover

    @abstractmethod
    def write_message(self, message: MessageRecord) -> None:
        """Write a message record to the MCAP file.

        Args:
            message: The message record to write.
        """
        ...  # pragma: no cover

    @abstractmethod
    def flush_chunk(self) -> None:
        """Flush the current chunk if applicable.

        For chunked writers, this forces the current chunk to be written even if
        it hasn't reached the size threshold. For non-chunked writers, this is a no-op.
        """
        ...  # pragma: no cover

    def write_attachment(self, attachment: AttachmentRecord) -> None:
        """Write an attachment record to the data section, outside of any chunk."""
        self._check_open()
        self.flush_chunk()
        offset = self._writer.tell()
        length = McapRecordWriter.write_attachment(self._writer, attachment)
        self._summary.add_attachment_index(
            AttachmentIndexRecord(
                offset=offset,
                length=length,
                log_time=attachment.log_time,
                create_time=attachment.create_time,
                data_size=len(attachment.data),
                name=attachment.name,
                media_type=attachment.media_type,
            )
        )

    def write_metadata(self, metadata: MetadataRecord) -> None:
        """Write a metadata record to the data section, outside of any chunk."""
        self._check_open()
        self.flush_chunk()
        offset = self._writer.tell()
        length = McapRecordWriter.write_metadata(self._writer, metadata)
        self._summary.add_metadata_index(
            MetadataIndexRecord(offset=offset, length=length, name=metadata.name)
        )

    def close(self) -> None:
        """Finalize the file by flushing remaining records and writing the summary.

        Calling close more than once has no effect.
        """
        if self._closed:
            return
        self._closed = True
        self.flush_chunk()
        self._summary.write_summary(self._writer, enable_crc=self._enable_crc)
        self._writer.close()


class McapNonChunkedWriter(BaseMcapRecordWriter):
    """Low-level MCAP writer for non-chunked files.

    Writes schemas, channels, and messages directly to the data section without
    chunking. Tracks all records and statistics for the summary section.
    """

    def write_schema(self, schema: SchemaRecord) -> None:
        """Write a schema record immediately to the data section."""
        self._check_open()
        self._summary.add_schema(schema)
        McapRecordWriter.write_schema(self._writer, schema)

    def write_channel(self, channel: ChannelRecord) -> None:
        """Write a channel record immediately to the data section."""
        self._check_open()
        self._summary.add_channel(channel)
        McapRecordWriter.write_channel(self._writer, channel)

    def write_message(self, message: MessageRecord) -> None:
        """Write a message record immediately to the data section."""
        self._check_open()
        self._summary.add_message(message)
        McapRecordWriter.write_message(self._writer, message)

    def flush_chunk(self) -> None:
        """No-op for non-chunked writer."""
        pass


class McapChunkedWriter(BaseMcapRecordWriter):
    """Low-level MCAP writer for chunked files with compression.

    Schemas, channels and messages are accumulated in the current chunk. When
    the chunk reaches the size or message count threshold, it is compressed and
    written along with one message index record per channel.

    Args:
        writer: The underlying writer to write binary data to.
        chunk_size: The size threshold for flushing chunks (in bytes).
        chunk_message_limit: Flush after this many messages (no limit if None).
        chunk_compression: Compression algorithm ("none", "lz4" or "zstd").
        enable_crc: Compute chunk, data section and summary CRCs.
    """

    def __init__(
        self,
        writer: BaseWriter,
        *,
        summary: McapSummaryBuilder | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_message_limit: int | None = None,
        chunk_compression: Compression | None = DEFAULT_COMPRESSION,
        profile: str = "",
        library: str = f"tinymcap {__version__}",
        enable_crc: bool = True,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f'chunk_size must be positive, got {chunk_size}')
        if chunk_message_limit is not None and chunk_message_limit <= 0:
            raise ValueError(f'chunk_message_limit must be positive, got {chunk_message_limit}')

        self._chunk_size = chunk_size
        self._chunk_message_limit = chunk_message_limit
        self._chunk_compression = normalize_compression(chunk_compression)
        self._compress_chunk = create_chunk_compressor(self._chunk_compression)

        # Current chunk buffering
        self._current_chunk_buffer: BytesWriter = BytesWriter()
        self._current_chunk_start_time: int | None = None
        self._current_chunk_end_time: int | None = None
        self._current_chunk_message_count = 0
        self._current_message_index: dict[int, list[MessageIndexEntry]] = {}

        super().__init__(writer, summary=summary, profile=profile, library=library, enable_crc=enable_crc)

    def write_schema(self, schema: SchemaRecord) -> None:
        """Write a schema record into the current chunk."""
        self._check_open()
        self._summary.add_schema(schema)
        McapRecordWriter.write_schema(self._current_chunk_buffer, schema)

    def write_channel(self, channel: ChannelRecord) -> None:
        """Write a channel record into the current chunk."""
        self._check_open()
        self._summary.add_channel(channel)
        McapRecordWriter.write_channel(self._current_chunk_buffer, channel)

    def write_message(self, message: MessageRecord) -> None:
        """Write a message record to the current chunk buffer.

        If the buffer size or message count exceeds its threshold, flush the chunk.
        """
        self._check_open()

        # Update chunk timing
        if self._current_chunk_start_time is None or message.log_time < self._current_chunk_start_time:
            self._current_chunk_start_time = message.log_time
        if self._current_chunk_end_time is None or message.log_time > self._current_chunk_end_time:
            self._current_chunk_end_time = message.log_time

        # Write message to chunk buffer and track offset
        offset = self._current_chunk_buffer.size()
        self._summary.add_message(message)
        McapRecordWriter.write_message(self._current_chunk_buffer, message)
        self._current_message_index.setdefault(message.channel_id, []).append(
            MessageIndexEntry(message.log_time, offset)
        )
        self._current_chunk_message_count += 1

        if self._current_chunk_buffer.size() >= self._chunk_size:
            self._flush_chunk()
        elif self._chunk_message_limit is not None and self._current_chunk_message_count >= self._chunk_message_limit:
            self._flush_chunk()

    def _flush_chunk(self) -> None:
        """Compress and write the current chunk buffer to the file."""
        records = self._current_chunk_buffer.as_bytes()
        logger.debug(
            f'Flushing chunk with {self._current_chunk_message_count} messages ({len(records)} bytes)'
        )

        chunk = compress_chunk(
            records,
            self._chunk_compression,
            message_start_time=self._current_chunk_start_time or 0,
            message_end_time=self._current_chunk_end_time or 0,
            enable_crc=self._enable_crc,
            compressor=self._compress_chunk,
        )
        chunk_start_offset = self._writer.tell()
        chunk_length = McapRecordWriter.write_chunk(self._writer, chunk)

        # Write message index records for the chunk
        message_index_offsets: dict[int, int] = {}
        message_index_start_offset = self._writer.tell()
        for channel_id, entries in self._current_message_index.items():
            message_index_offsets[channel_id] = self._writer.tell()
            McapRecordWriter.write_message_index(
                self._writer,
                MessageIndexRecord(channel_id=channel_id, records=entries),
            )
        message_index_length = self._writer.tell() - message_index_start_offset

        self._summary.add_chunk_index(
            ChunkIndexRecord(
                message_start_time=chunk.message_start_time,
                message_end_time=chunk.message_end_time,
                chunk_start_offset=chunk_start_offset,
                chunk_length=chunk_length,
                message_index_offsets=message_index_offsets,
                message_index_length=message_index_length,
                compression=chunk.compression,
                compressed_size=len(chunk.records),
                uncompressed_size=chunk.uncompressed_size,
            )
        )

        self._current_chunk_buffer.clear()
        self._current_chunk_start_time = None
        self._current_chunk_end_time = None
        self._current_chunk_message_count = 0
        self._current_message_index = {}

    def flush_chunk(self) -> None:
        """Flush the current chunk buffer to the file.

        Forces the current chunk to be written even if it hasn't reached the
        size threshold.
        """
        if self._current_chunk_buffer.size() > 0:
            self._flush_chunk()


class McapRecordWriterFactory:
    """Factory for creating appropriate MCAP record writers."""

    @staticmethod
    def create_writer(
        writer: BaseWriter,
        *,
        use_chunking: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_message_limit: int | None = None,
        chunk_compression: Literal["none", "lz4", "zstd"] | None = DEFAULT_COMPRESSION,
        profile: str = "",
        library: str = f"tinymcap {__version__}",
        enable_crc: bool = True,
    ) -> BaseMcapRecordWriter:
        """Create an appropriate MCAP record writer based on configuration.

        Args:
            writer: The underlying writer to write binary data to.
            use_chunking: Group records into compressed chunks with message indexes.
            chunk_size: Chunk size threshold in bytes (chunked writers only).
            chunk_message_limit: Chunk message count threshold (chunked writers only).
            chunk_compression: Compression algorithm for chunks.
            profile: The MCAP profile written in the header.
            library: The library name written in the header.
            enable_crc: Compute CRCs for chunks, the data section and the summary.

        Returns:
            A BaseMcapRecordWriter instance (either chunked or non-chunked).
        """
        if not use_chunking:
            return McapNonChunkedWriter(writer, profile=profile, library=library, enable_crc=enable_crc)
        return McapChunkedWriter(
            writer,
            chunk_size=chunk_size,
            chunk_message_limit=chunk_message_limit,
            chunk_compression=chunk_compression,
            profile=profile,
            library=library,
            enable_crc=enable_crc,
        )
