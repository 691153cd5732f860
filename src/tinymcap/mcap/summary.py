import logging
from dataclasses import dataclass, field
from typing import TypeAlias

from tinymcap.io.raw_reader import BytesReader
from tinymcap.io.raw_writer import CrcWriter
from tinymcap.mcap.crc import assert_data_crc, assert_summary_crc
from tinymcap.mcap.error import MalformedMCAP
from tinymcap.mcap.indexes import (
    read_chunk_data,
    read_message_indexes,
    seek_message
)
from tinymcap.mcap.message_stream import MessageStream
from tinymcap.mcap.record_encoder import McapRecordWriter
from tinymcap.mcap.record_parser import (
    FOOTER_SIZE,
    MAGIC_BYTES,
    MAGIC_BYTES_SIZE,
    McapRecordParser
)
from tinymcap.mcap.records import (
    AttachmentIndexRecord,
    ChannelRecord,
    ChunkIndexRecord,
    DataEndRecord,
    FooterRecord,
    MessageIndexEntry,
    MessageRecord,
    MetadataIndexRecord,
    RecordType,
    SchemaRecord,
    StatisticsRecord,
    SummaryOffsetRecord
)
from tinymcap.mcap.tables import RecordTables
from tinymcap.types import Channel, Message, Schema

logger = logging.getLogger(__name__)

ChannelId: TypeAlias = int
"""Integer representing the channel ID."""

SchemaId: TypeAlias = int
"""Integer representing the schema ID."""

# Footer payload size: 8 bytes summary_start + 8 bytes summary_offset_start + 4 bytes summary_crc
FOOTER_PAYLOAD_SIZE = 20


@dataclass
class McapSummary:
    """The summary section of a finalized MCAP file.

    Use :meth:`read` to load it. The remaining methods give random access to
    the chunks and messages of the file the summary was read from; they take
    that file's bytes as their first argument.
    """

    schemas: dict[SchemaId, Schema] = field(default_factory=dict)
    channels: dict[ChannelId, Channel] = field(default_factory=dict)
    statistics: StatisticsRecord | None = None
    chunk_indexes: list[ChunkIndexRecord] = field(default_factory=list)
    attachment_indexes: list[AttachmentIndexRecord] = field(default_factory=list)
    metadata_indexes: list[MetadataIndexRecord] = field(default_factory=list)
    footer: FooterRecord | None = None

    @classmethod
    def read(cls, data: bytes | bytearray | memoryview, *, enable_crc_check: bool = False) -> 'McapSummary | None':
        """Read the summary section of an MCAP file.

        Args:
            data: The whole MCAP file.
            enable_crc_check: Validate the data and summary section CRCs.

        Returns:
            The summary, or None if the file has no summary section (it was
            truncated or never finalized). Callers should then fall back to
            a :class:`MessageStream` over the whole file.
        """
        reader = BytesReader(data)
        file_size = reader.size()
        if file_size < 2 * MAGIC_BYTES_SIZE + FOOTER_SIZE:
            logger.debug('File too small to hold a footer')
            return None
        if reader.view[file_size - MAGIC_BYTES_SIZE:] != MAGIC_BYTES:
            logger.debug('No trailing magic bytes, file was not finalized')
            return None

        footer_offset = file_size - MAGIC_BYTES_SIZE - FOOTER_SIZE
        reader.seek_from_start(footer_offset)
        footer = McapRecordParser.parse_footer(reader)
        if footer.summary_start == 0:
            logger.debug('Footer reports no summary section')
            return None
        if footer.summary_start > footer_offset:
            raise MalformedMCAP(
                f'Summary start {footer.summary_start} lies after the footer at {footer_offset}'
            )

        if enable_crc_check:
            assert_data_crc(data, footer)
            assert_summary_crc(data, footer)

        summary_end = footer.summary_offset_start or footer_offset
        section = BytesReader(reader.view[footer.summary_start:summary_end])

        tables = RecordTables()
        summary = cls(footer=footer)
        for record_type, record in McapRecordParser.iter_records(section):
            if record_type == RecordType.SCHEMA:
                tables.add_schema(record)
            elif record_type == RecordType.CHANNEL:
                tables.add_channel(record)
            elif record_type == RecordType.STATISTICS:
                summary.statistics = record
            elif record_type == RecordType.CHUNK_INDEX:
                summary.chunk_indexes.append(record)
            elif record_type == RecordType.ATTACHMENT_INDEX:
                summary.attachment_indexes.append(record)
            elif record_type == RecordType.METADATA_INDEX:
                summary.metadata_indexes.append(record)
            else:
                logger.warning(f'Unexpected record in summary: {record_type:#04x}')

        summary.schemas = tables.schemas
        summary.channels = tables.channels
        logger.debug(
            f'Loaded summary: {len(summary.schemas)} schemas, {len(summary.channels)} channels, '
            f'{len(summary.chunk_indexes)} chunk indexes'
        )
        return summary

    def tables(self) -> RecordTables:
        """Fresh id tables seeded with this summary's schemas and channels."""
        return RecordTables(self.schemas, self.channels)

    def read_message_indexes(
        self,
        data: bytes | memoryview,
        chunk_index: ChunkIndexRecord,
    ) -> dict[ChannelId, list[MessageIndexEntry]]:
        """Read the message index entries of a chunk, per channel and ordered by offset.

        An empty mapping means the chunk was written without message indexes;
        use :meth:`stream_chunk` to scan it instead.
        """
        return read_message_indexes(data, chunk_index)

    def chunk_message_counts(self, data: bytes | memoryview, chunk_index: ChunkIndexRecord) -> dict[ChannelId, int]:
        """Number of messages per channel in a chunk, from its message indexes."""
        return {
            channel_id: len(entries)
            for channel_id, entries in self.read_message_indexes(data, chunk_index).items()
        }

    def seek_message(
        self,
        data: bytes | memoryview,
        chunk_index: ChunkIndexRecord,
        entry: MessageIndexEntry,
        *,
        enable_crc_check: bool = True,
    ) -> Message:
        """Decode the single message a message index entry points at.

        The chunk is decompressed for every call. Use a
        :class:`~tinymcap.mcap.record_reader.McapRandomAccessReader` to reuse
        decompressed chunks across calls.
        """
        return seek_message(data, chunk_index, entry, self.tables(), check_crc=enable_crc_check)

    def stream_chunk(
        self,
        data: bytes | memoryview,
        chunk_index: ChunkIndexRecord,
        *,
        enable_crc_check: bool = True,
    ) -> MessageStream:
        """Stream the messages of one chunk in record order.

        Channels and schemas are taken from this summary, so preceding chunks
        do not have to be read first.
        """
        chunk_data = read_chunk_data(data, chunk_index, check_crc=enable_crc_check)
        return MessageStream(BytesReader(chunk_data), tables=self.tables(), in_chunk=True)


class McapSummaryBuilder:
    """Accumulates the summary section while a file is being written."""

    def __init__(self) -> None:
        self.schemas: dict[SchemaId, SchemaRecord] = {}
        self.channels: dict[ChannelId, ChannelRecord] = {}
        self.statistics = StatisticsRecord()
        self.chunk_indexes: list[ChunkIndexRecord] = []
        self.attachment_indexes: list[AttachmentIndexRecord] = []
        self.metadata_indexes: list[MetadataIndexRecord] = []
        self._has_messages = False

    def add_schema(self, schema: SchemaRecord) -> None:
        if schema.id in self.schemas:
            logger.warning(f'Schema (id {schema.id}) already written to file')
            return
        self.schemas[schema.id] = schema
        self.statistics.schema_count += 1

    def add_channel(self, channel: ChannelRecord) -> None:
        if channel.id in self.channels:
            logger.warning(f'Channel (id {channel.id}) already written to file')
            return
        self.channels[channel.id] = channel
        self.statistics.channel_count += 1

    def add_message(self, message: MessageRecord) -> None:
        stats = self.statistics
        stats.message_count += 1
        counts = stats.channel_message_counts
        counts[message.channel_id] = counts.get(message.channel_id, 0) + 1
        if not self._has_messages:
            stats.message_start_time = message.log_time
            stats.message_end_time = message.log_time
            self._has_messages = True
        else:
            stats.message_start_time = min(stats.message_start_time, message.log_time)
            stats.message_end_time = max(stats.message_end_time, message.log_time)

    def add_chunk_index(self, chunk_index: ChunkIndexRecord) -> None:
        self.chunk_indexes.append(chunk_index)
        self.statistics.chunk_count += 1

    def add_attachment_index(self, attachment_index: AttachmentIndexRecord) -> None:
        self.attachment_indexes.append(attachment_index)
        self.statistics.attachment_count += 1

    def add_metadata_index(self, metadata_index: MetadataIndexRecord) -> None:
        self.metadata_indexes.append(metadata_index)
        self.statistics.metadata_count += 1

    def write_summary(self, writer: CrcWriter, *, enable_crc: bool = True) -> None:
        """Write the DataEnd record, summary section, footer and closing magic bytes.

        The writer's CRC must cover everything written so far, starting with
        the leading magic bytes.
        """
        data_end = DataEndRecord(data_section_crc=writer.get_crc() if enable_crc else 0)
        McapRecordWriter.write_data_end(writer, data_end)

        summary_start, summary_offset_start = write_summary_section(
            writer,
            schema_records=list(self.schemas.values()),
            channel_records=list(self.channels.values()),
            statistics_record=self.statistics,
            chunk_indexes=self.chunk_indexes,
            attachment_indexes=self.attachment_indexes,
            metadata_indexes=self.metadata_indexes,
        )

        # The summary CRC covers the footer up to the CRC field itself
        writer.write(
              McapRecordWriter._encode_record_type(RecordType.FOOTER)
            + McapRecordWriter._encode_uint64(FOOTER_PAYLOAD_SIZE)
            + McapRecordWriter._encode_uint64(summary_start)
            + McapRecordWriter._encode_uint64(summary_offset_start)
        )
        writer.write(McapRecordWriter._encode_uint32(writer.get_crc() if enable_crc else 0))

        McapRecordWriter.write_magic_bytes(writer)


def write_summary_section(
    writer: CrcWriter,
    schema_records: list[SchemaRecord] | None = None,
    channel_records: list[ChannelRecord] | None = None,
    statistics_record: StatisticsRecord | None = None,
    chunk_indexes: list[ChunkIndexRecord] | None = None,
    attachment_indexes: list[AttachmentIndexRecord] | None = None,
    metadata_indexes: list[MetadataIndexRecord] | None = None,
) -> tuple[int, int]:
    """Write the summary section and return (summary_start, summary_offset_start).

    Records are written in groups of one type each. A summary offset record is
    written for every non-empty group, and the CRC of the writer is reset so it
    covers only the summary section from here on.

    Returns:
        Tuple of (summary_start, summary_offset_start) positions.
    """
    summary_start = writer.tell()
    writer.clear_crc()

    groups: list[tuple[RecordType, list]] = [
        (RecordType.SCHEMA, schema_records or []),
        (RecordType.CHANNEL, channel_records or []),
        (RecordType.CHUNK_INDEX, chunk_indexes or []),
        (RecordType.ATTACHMENT_INDEX, attachment_indexes or []),
        (RecordType.METADATA_INDEX, metadata_indexes or []),
        (RecordType.STATISTICS, [statistics_record] if statistics_record is not None else []),
    ]

    offsets: list[SummaryOffsetRecord] = []
    for opcode, records in groups:
        if not records:
            continue
        logger.debug(f'Writing {len(records)} {opcode.name.lower()} records')
        group_start = writer.tell()
        for record in records:
            McapRecordWriter.write_record(writer, record)
        offsets.append(SummaryOffsetRecord(opcode, group_start, writer.tell() - group_start))

    summary_offset_start = writer.tell()
    for offset in offsets:
        McapRecordWriter.write_summary_offset(writer, offset)

    return summary_start, summary_offset_start
