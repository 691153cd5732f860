import logging
import struct
from typing import Any, Callable, Iterator

from tinymcap.io.raw_reader import BaseReader, BytesReader
from tinymcap.mcap.error import MalformedMCAP, McapCorruptRecordError
from tinymcap.mcap.records import (
    AttachmentIndexRecord,
    AttachmentRecord,
    ChannelRecord,
    ChunkIndexRecord,
    ChunkRecord,
    DataEndRecord,
    FooterRecord,
    HeaderRecord,
    MessageIndexEntry,
    MessageIndexRecord,
    MessageRecord,
    MetadataIndexRecord,
    MetadataRecord,
    RecordType,
    SchemaRecord,
    StatisticsRecord,
    SummaryOffsetRecord,
    UnknownRecord
)

logger = logging.getLogger(__name__)

MAGIC_BYTES = b'\x89MCAP0\r\n'

# Number of bytes of fixed-sized records
MAGIC_BYTES_SIZE = 8
RECORD_PREFIX_SIZE = 9  # 1 byte record type and 8 bytes record length
FOOTER_SIZE = 29  # Includes the 1 byte record type and 8 bytes record length
DATA_END_SIZE = 13  # Includes the 1 byte record type and 8 bytes record length
MESSAGE_HEADER_SIZE = 22  # channel_id + sequence + log_time + publish_time

_UINT8 = struct.Struct('<B')
_UINT16 = struct.Struct('<H')
_UINT32 = struct.Struct('<I')
_UINT64 = struct.Struct('<Q')


class McapRecordParser:
    @classmethod
    def peek_record(cls, file: BaseReader) -> int:
        """Peek at the next record in the MCAP file."""
        # If peek(1) returns b'', then this returns 0
        # No record has an ID of 0 so this indicates end
        return int.from_bytes(file.peek(1)[:1], 'little')


    @classmethod
    def parse_magic_bytes(cls, file: BaseReader) -> str:
        """Parse the magic bytes at the begining/end of the MCAP file."""
        magic = file.read(MAGIC_BYTES_SIZE)
        if magic != MAGIC_BYTES:
            raise MalformedMCAP(f'Invalid magic bytes: {magic!r}')
        return chr(magic[5])  # Return the version


    @classmethod
    def parse_record(cls, file: BaseReader) -> tuple[int, Any]:
        """Parse the next record of any type.

        Records with an opcode this parser does not know are returned as
        ``UnknownRecord`` so newer files can still be read.
        """
        record_type, payload = cls._read_record_payload(file)
        try:
            record_name = RecordType(record_type).name.lower()
        except ValueError:
            logger.debug(f'Unknown record type {record_type:#04x}')
            return record_type, UnknownRecord(record_type, payload.read())
        logger.debug(f'Parsing {record_name} record...')
        return record_type, getattr(cls, f'_decode_{record_name}')(payload)


    @classmethod
    def decode_record(cls, data: bytes | memoryview, offset: int = 0) -> tuple[Any, int]:
        """Decode one record from a byte window.

        Args:
            data: The bytes holding the record.
            offset: Position of the record's opcode within ``data``.

        Returns:
            The decoded record and the number of bytes it occupied.
        """
        reader = BytesReader(data)
        reader.seek_from_start(offset)
        _, record = cls.parse_record(reader)
        return record, reader.tell() - offset


    @classmethod
    def iter_records(cls, file: BaseReader) -> Iterator[tuple[int, Any]]:
        """Read records until the end of the reader."""
        while cls.peek_record(file) != 0:
            yield cls.parse_record(file)


    @classmethod
    def _read_record_payload(cls, file: BaseReader) -> tuple[int, BytesReader]:
        """Read the opcode and length prefix and return a window over the payload."""
        if file.remaining() < RECORD_PREFIX_SIZE:
            raise McapCorruptRecordError(
                f'Truncated record prefix at {file.tell()} ({file.remaining()} bytes left)'
            )
        record_type = file.read(1)[0]
        record_length = int.from_bytes(file.read(8), 'little')
        if record_length > file.remaining():
            raise McapCorruptRecordError(
                f'Record {record_type:#04x} declares {record_length} bytes '
                f'but only {file.remaining()} remain'
            )
        return record_type, BytesReader(file.read_view(record_length))


    @classmethod
    def _expect_record(cls, file: BaseReader, expected: RecordType) -> BytesReader:
        if (record_type := cls.peek_record(file)) != expected:
            raise MalformedMCAP(f'Unexpected record type ({record_type:#04x}), expected {expected.name}.')
        _, payload = cls._read_record_payload(file)
        return payload

    # MCAP Serialization Handlers

    @classmethod
    def _require(cls, file: BytesReader, size: int, what: str) -> None:
        if size > file.remaining():
            raise McapCorruptRecordError(
                f'Field {what} needs {size} bytes but only {file.remaining()} remain'
            )


    @classmethod
    def _parse_uint8(cls, file: BytesReader) -> tuple[int, int]:
        cls._require(file, 1, 'uint8')
        return 1, file.unpack_one(_UINT8, 1)


    @classmethod
    def _parse_uint16(cls, file: BytesReader) -> tuple[int, int]:
        cls._require(file, 2, 'uint16')
        return 2, file.unpack_one(_UINT16, 2)


    @classmethod
    def _parse_uint32(cls, file: BytesReader) -> tuple[int, int]:
        cls._require(file, 4, 'uint32')
        return 4, file.unpack_one(_UINT32, 4)


    @classmethod
    def _parse_uint64(cls, file: BytesReader) -> tuple[int, int]:
        cls._require(file, 8, 'uint64')
        return 8, file.unpack_one(_UINT64, 8)


    @classmethod
    def _parse_timestamp(cls, file: BytesReader) -> tuple[int, int]:
        return cls._parse_uint64(file)


    @classmethod
    def _parse_string(cls, file: BytesReader) -> tuple[int, str]:
        string_length_bytes, string_length = cls._parse_uint32(file)
        cls._require(file, string_length, 'string')
        try:
            string = file.read(string_length).decode()
        except UnicodeDecodeError as e:
            raise McapCorruptRecordError(f'Invalid UTF-8 string: {e}') from e
        return string_length_bytes + string_length, string


    @classmethod
    def _parse_bytes(cls, file: BytesReader, size: int) -> tuple[int, bytes]:
        cls._require(file, size, 'bytes')
        return size, file.read(size)


    @classmethod
    def _parse_tuple(cls, file: BytesReader, first_type: str, second_type: str) -> tuple[int, tuple]:
        first_value_length, first_value = getattr(cls, f'_parse_{first_type}')(file)
        second_value_length, second_value = getattr(cls, f'_parse_{second_type}')(file)
        return first_value_length + second_value_length, (first_value, second_value)


    @classmethod
    def _parse_map(cls, file: BytesReader, key_type: str, value_type: str) -> tuple[int, dict]:
        map_length_bytes, map_length = cls._parse_uint32(file)
        cls._require(file, map_length, 'map')
        entries = BytesReader(file.read_view(map_length))

        map_key_value = {}
        while entries.remaining() > 0:
            _, key = getattr(cls, f'_parse_{key_type}')(entries)
            _, value = getattr(cls, f'_parse_{value_type}')(entries)
            map_key_value[key] = value

        return map_length_bytes + map_length, map_key_value


    @classmethod
    def _parse_array(
        cls,
        file: BytesReader,
        array_type_parser: Callable[[BytesReader], tuple[int, Any]]
    ) -> tuple[int, list]:
        array_length_bytes, array_length = cls._parse_uint32(file)
        cls._require(file, array_length, 'array')
        items = BytesReader(file.read_view(array_length))

        array = []
        while items.remaining() > 0:
            _, value = array_type_parser(items)
            array.append(value)

        return array_length_bytes + array_length, array

    # MCAP Record Payload Decoders

    @classmethod
    def _decode_header(cls, payload: BytesReader) -> HeaderRecord:
        _, profile = cls._parse_string(payload)
        _, library = cls._parse_string(payload)
        return HeaderRecord(profile, library)


    @classmethod
    def _decode_footer(cls, payload: BytesReader) -> FooterRecord:
        _, summary_start = cls._parse_uint64(payload)
        _, summary_offset_start = cls._parse_uint64(payload)
        _, summary_crc = cls._parse_uint32(payload)
        return FooterRecord(summary_start, summary_offset_start, summary_crc)


    @classmethod
    def _decode_schema(cls, payload: BytesReader) -> SchemaRecord:
        _, id = cls._parse_uint16(payload)
        _, name = cls._parse_string(payload)
        _, encoding = cls._parse_string(payload)
        _, data_length = cls._parse_uint32(payload)
        _, data = cls._parse_bytes(payload, data_length)
        return SchemaRecord(id, name, encoding, data)


    @classmethod
    def _decode_channel(cls, payload: BytesReader) -> ChannelRecord:
        _, id = cls._parse_uint16(payload)
        _, schema_id = cls._parse_uint16(payload)
        _, topic = cls._parse_string(payload)
        _, message_encoding = cls._parse_string(payload)
        _, metadata = cls._parse_map(payload, 'string', 'string')
        return ChannelRecord(id, schema_id, topic, message_encoding, metadata)


    @classmethod
    def _decode_message(cls, payload: BytesReader) -> MessageRecord:
        if payload.size() < MESSAGE_HEADER_SIZE:
            raise McapCorruptRecordError(
                f'Message record of {payload.size()} bytes is shorter than its '
                f'{MESSAGE_HEADER_SIZE} byte header'
            )
        _, channel_id = cls._parse_uint16(payload)
        _, sequence = cls._parse_uint32(payload)
        _, log_time = cls._parse_timestamp(payload)
        _, publish_time = cls._parse_timestamp(payload)
        # The payload takes up the rest of the record
        data = payload.read()
        return MessageRecord(channel_id, sequence, log_time, publish_time, data)


    @classmethod
    def _decode_chunk(cls, payload: BytesReader) -> ChunkRecord:
        _, message_start_time = cls._parse_timestamp(payload)
        _, message_end_time = cls._parse_timestamp(payload)
        _, uncompressed_size = cls._parse_uint64(payload)
        _, uncompressed_crc = cls._parse_uint32(payload)
        _, compression = cls._parse_string(payload)
        _, records_length = cls._parse_uint64(payload)
        _, records = cls._parse_bytes(payload, records_length)
        return ChunkRecord(
            message_start_time,
            message_end_time,
            uncompressed_size,
            uncompressed_crc,
            compression,
            records
        )


    @classmethod
    def _decode_message_index(cls, payload: BytesReader) -> MessageIndexRecord:
        _, channel_id = cls._parse_uint16(payload)
        _, records = cls._parse_array(
            payload,
            lambda file: cls._parse_tuple(file, 'timestamp', 'uint64'),
        )
        return MessageIndexRecord(channel_id, [MessageIndexEntry(*r) for r in records])


    @classmethod
    def _decode_chunk_index(cls, payload: BytesReader) -> ChunkIndexRecord:
        _, message_start_time = cls._parse_timestamp(payload)
        _, message_end_time = cls._parse_timestamp(payload)
        _, chunk_start_offset = cls._parse_uint64(payload)
        _, chunk_length = cls._parse_uint64(payload)
        _, message_index_offsets = cls._parse_map(payload, 'uint16', 'uint64')
        _, message_index_length = cls._parse_uint64(payload)
        _, compression = cls._parse_string(payload)
        _, compressed_size = cls._parse_uint64(payload)
        _, uncompressed_size = cls._parse_uint64(payload)
        return ChunkIndexRecord(
            message_start_time,
            message_end_time,
            chunk_start_offset,
            chunk_length,
            message_index_offsets,
            message_index_length,
            compression,
            compressed_size,
            uncompressed_size
        )


    @classmethod
    def _decode_attachment(cls, payload: BytesReader) -> AttachmentRecord:
        _, log_time = cls._parse_timestamp(payload)
        _, create_time = cls._parse_timestamp(payload)
        _, name = cls._parse_string(payload)
        _, media_type = cls._parse_string(payload)
        _, data_bytes_length = cls._parse_uint64(payload)
        _, data_bytes = cls._parse_bytes(payload, data_bytes_length)
        _, crc = cls._parse_uint32(payload)
        return AttachmentRecord(log_time, create_time, name, media_type, data_bytes, crc)


    @classmethod
    def _decode_attachment_index(cls, payload: BytesReader) -> AttachmentIndexRecord:
        _, offset = cls._parse_uint64(payload)
        _, length = cls._parse_uint64(payload)
        _, log_time = cls._parse_timestamp(payload)
        _, create_time = cls._parse_timestamp(payload)
        _, data_size = cls._parse_uint64(payload)
        _, name = cls._parse_string(payload)
        _, media_type = cls._parse_string(payload)
        return AttachmentIndexRecord(offset, length, log_time, create_time, data_size, name, media_type)


    @classmethod
    def _decode_statistics(cls, payload: BytesReader) -> StatisticsRecord:
        _, message_count = cls._parse_uint64(payload)
        _, schema_count = cls._parse_uint16(payload)
        _, channel_count = cls._parse_uint32(payload)
        _, attachment_count = cls._parse_uint32(payload)
        _, metadata_count = cls._parse_uint32(payload)
        _, chunk_count = cls._parse_uint32(payload)
        _, message_start_time = cls._parse_timestamp(payload)
        _, message_end_time = cls._parse_timestamp(payload)
        _, channel_message_counts = cls._parse_map(payload, 'uint16', 'uint64')
        return StatisticsRecord(
            message_count,
            schema_count,
            channel_count,
            attachment_count,
            metadata_count,
            chunk_count,
            message_start_time,
            message_end_time,
            channel_message_counts
        )


    @classmethod
    def _decode_metadata(cls, payload: BytesReader) -> MetadataRecord:
        _, name = cls._parse_string(payload)
        _, metadata = cls._parse_map(payload, 'string', 'string')
        return MetadataRecord(name, metadata)


    @classmethod
    def _decode_metadata_index(cls, payload: BytesReader) -> MetadataIndexRecord:
        _, offset = cls._parse_uint64(payload)
        _, length = cls._parse_uint64(payload)
        _, name = cls._parse_string(payload)
        return MetadataIndexRecord(offset, length, name)


    @classmethod
    def _decode_summary_offset(cls, payload: BytesReader) -> SummaryOffsetRecord:
        _, group_opcode = cls._parse_uint8(payload)
        _, group_start = cls._parse_uint64(payload)
        _, group_length = cls._parse_uint64(payload)
        return SummaryOffsetRecord(group_opcode, group_start, group_length)


    @classmethod
    def _decode_data_end(cls, payload: BytesReader) -> DataEndRecord:
        _, data_section_crc = cls._parse_uint32(payload)
        return DataEndRecord(data_section_crc)

    # MCAP Record Handlers

    @classmethod
    def parse_header(cls, file: BaseReader) -> HeaderRecord:
        """Parse the header record of an MCAP file."""
        return cls._decode_header(cls._expect_record(file, RecordType.HEADER))


    @classmethod
    def parse_footer(cls, file: BaseReader) -> FooterRecord:
        """Parse the footer record of an MCAP file."""
        return cls._decode_footer(cls._expect_record(file, RecordType.FOOTER))


    @classmethod
    def parse_schema(cls, file: BaseReader) -> SchemaRecord:
        return cls._decode_schema(cls._expect_record(file, RecordType.SCHEMA))


    @classmethod
    def parse_channel(cls, file: BaseReader) -> ChannelRecord:
        return cls._decode_channel(cls._expect_record(file, RecordType.CHANNEL))


    @classmethod
    def parse_message(cls, file: BaseReader) -> MessageRecord:
        return cls._decode_message(cls._expect_record(file, RecordType.MESSAGE))


    @classmethod
    def parse_chunk(cls, file: BaseReader) -> ChunkRecord:
        return cls._decode_chunk(cls._expect_record(file, RecordType.CHUNK))


    @classmethod
    def parse_message_index(cls, file: BaseReader) -> MessageIndexRecord:
        return cls._decode_message_index(cls._expect_record(file, RecordType.MESSAGE_INDEX))


    @classmethod
    def parse_chunk_index(cls, file: BaseReader) -> ChunkIndexRecord:
        return cls._decode_chunk_index(cls._expect_record(file, RecordType.CHUNK_INDEX))


    @classmethod
    def parse_attachment(cls, file: BaseReader) -> AttachmentRecord:
        return cls._decode_attachment(cls._expect_record(file, RecordType.ATTACHMENT))


    @classmethod
    def parse_attachment_index(cls, file: BaseReader) -> AttachmentIndexRecord:
        return cls._decode_attachment_index(cls._expect_record(file, RecordType.ATTACHMENT_INDEX))


    @classmethod
    def parse_statistics(cls, file: BaseReader) -> StatisticsRecord:
        return cls._decode_statistics(cls._expect_record(file, RecordType.STATISTICS))


    @classmethod
    def parse_metadata(cls, file: BaseReader) -> MetadataRecord:
        return cls._decode_metadata(cls._expect_record(file, RecordType.METADATA))


    @classmethod
    def parse_metadata_index(cls, file: BaseReader) -> MetadataIndexRecord:
        return cls._decode_metadata_index(cls._expect_record(file, RecordType.METADATA_INDEX))


    @classmethod
    def parse_summary_offset(cls, file: BaseReader) -> SummaryOffsetRecord:
        return cls._decode_summary_offset(cls._expect_record(file, RecordType.SUMMARY_OFFSET))


    @classmethod
    def parse_data_end(cls, file: BaseReader) -> DataEndRecord:
        return cls._decode_data_end(cls._expect_record(file, RecordType.DATA_END))
