from dataclasses import replace
from io import BytesIO
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from mcap.writer import CompressionType, IndexType, Writer

from tinymcap.io.raw_writer import BytesWriter
from tinymcap.mcap.error import (
    McapInvalidCrcError,
    McapNoSummarySectionError,
    McapOffsetOutOfRangeError
)
from tinymcap.mcap.message_stream import MessageStream
from tinymcap.mcap.record_parser import RECORD_PREFIX_SIZE, McapRecordParser
from tinymcap.mcap.record_reader import McapRandomAccessReader
from tinymcap.mcap.records import MessageIndexEntry, MessageRecord
from tinymcap.mcap.summary import McapSummary
from tinymcap.types import Attachment, Channel, Message, Metadata, Schema
from tinymcap.writer import McapWriter


def _demo_messages(count: int = 200) -> list[Message]:
    camera = Schema("Image", "raw", b"width height data")
    imu = Schema("Imu", "raw", b"ax ay az")
    channels = [
        Channel("/camera/left", "raw", camera),
        Channel("/camera/right", "raw", camera),
        Channel("/imu", "raw", imu, {"rate": "200"}),
    ]
    # Log times are deliberately not monotonic
    return [
        Message(channels[i % 3], i, (i * 37) % 101, i, bytes([i % 256]) * (i % 13))
        for i in range(count)
    ]


def _demo_file(compression: str = "zstd", **kwargs) -> bytes:
    buffer = BytesWriter()
    with McapWriter(buffer, chunk_size=512, chunk_compression=compression, **kwargs) as writer:
        for message in _demo_messages():
            writer.write(message)
    return buffer.as_bytes()


@pytest.mark.parametrize("compression", ["none", "lz4", "zstd"])
def test_stream_chunk_order_agrees_with_full_stream(compression):
    data = _demo_file(compression)
    summary = McapSummary.read(data)
    assert len(summary.chunk_indexes) > 1

    chunked = [
        message
        for chunk_index in summary.chunk_indexes
        for message in summary.stream_chunk(data, chunk_index)
    ]
    assert chunked == list(MessageStream.from_bytes(data))
    assert chunked == _demo_messages()


def test_index_completeness():
    data = _demo_file()
    summary = McapSummary.read(data)
    reader = McapRandomAccessReader(data, summary)

    for chunk_index in summary.chunk_indexes:
        chunk_data = reader.get_chunk_data(chunk_index)
        # Walk the chunk and collect the offset of every message record
        message_offsets: dict[int, list[int]] = {}
        offset = 0
        while offset < len(chunk_data):
            record, consumed = McapRecordParser.decode_record(chunk_data, offset)
            if isinstance(record, MessageRecord):
                message_offsets.setdefault(record.channel_id, []).append(offset)
            offset += consumed

        indexes = summary.read_message_indexes(data, chunk_index)
        assert {cid: [e.offset for e in entries] for cid, entries in indexes.items()} == message_offsets
        assert set(chunk_index.message_index_offsets) == set(message_offsets)


def test_seek_every_entry():
    data = _demo_file()
    summary = McapSummary.read(data)

    for chunk_index in summary.chunk_indexes:
        streamed = list(summary.stream_chunk(data, chunk_index))
        entries = sorted(
            (entry for entries in summary.read_message_indexes(data, chunk_index).values() for entry in entries),
            key=lambda e: e.offset,
        )
        sought = [summary.seek_message(data, chunk_index, entry) for entry in entries]
        assert sought == streamed
        assert all(m.log_time == e.log_time for m, e in zip(sought, entries))


def test_message_index_time_bounds():
    data = _demo_file()
    summary = McapSummary.read(data)
    for chunk_index in summary.chunk_indexes:
        for entries in summary.read_message_indexes(data, chunk_index).values():
            for entry in entries:
                assert chunk_index.message_start_time <= entry.log_time <= chunk_index.message_end_time


def test_seek_out_of_range():
    data = _demo_file()
    summary = McapSummary.read(data)
    chunk_index = summary.chunk_indexes[0]
    with pytest.raises(McapOffsetOutOfRangeError):
        summary.seek_message(data, chunk_index, MessageIndexEntry(0, chunk_index.uncompressed_size))
    with pytest.raises(McapOffsetOutOfRangeError):
        summary.seek_message(data, chunk_index, MessageIndexEntry(0, chunk_index.uncompressed_size + 100))


def test_seek_misaligned_offset():
    data = _demo_file()
    summary = McapSummary.read(data)
    chunk_index = summary.chunk_indexes[0]
    # The first chunk starts with a schema record, not a message
    with pytest.raises(McapOffsetOutOfRangeError):
        summary.seek_message(data, chunk_index, MessageIndexEntry(0, 0))

    entry = summary.read_message_indexes(data, chunk_index)[0][0]
    # One byte into the record prefix leaves a garbage length
    with pytest.raises(McapOffsetOutOfRangeError):
        summary.seek_message(data, chunk_index, MessageIndexEntry(0, entry.offset + RECORD_PREFIX_SIZE))


def test_reader_from_bytes_and_file():
    data = _demo_file()
    with TemporaryDirectory() as temp_dir:
        path = Path(temp_dir) / "demo.mcap"
        path.write_bytes(data)
        from_file = McapRandomAccessReader.from_file(path)
    from_bytes = McapRandomAccessReader.from_bytes(data)
    assert from_file.get_chunk_indexes() == from_bytes.get_chunk_indexes()


def test_reader_requires_summary():
    buffer = BytesWriter()
    writer = McapWriter(buffer)
    writer.write(_demo_messages(1)[0])
    writer.flush()
    with pytest.raises(McapNoSummarySectionError):
        McapRandomAccessReader.from_bytes(buffer.as_bytes())


def test_iter_messages_orders_by_log_time_within_chunk():
    data = _demo_file()
    reader = McapRandomAccessReader.from_bytes(data)
    messages = list(reader.iter_messages())
    assert len(messages) == 200
    assert sorted(m.sequence for m in messages) == list(range(200))

    # Each chunk is yielded in log time order
    position = 0
    for chunk_index in reader.get_chunk_indexes():
        count = sum(len(e) for e in reader.get_message_indexes(chunk_index).values())
        chunk_messages = messages[position:position + count]
        assert [m.log_time for m in chunk_messages] == sorted(m.log_time for m in chunk_messages)
        position += count


def test_iter_messages_filters():
    data = _demo_file()
    reader = McapRandomAccessReader.from_bytes(data)

    imu = list(reader.iter_messages(2))
    assert len(imu) == len([m for m in _demo_messages() if m.channel.topic == "/imu"])
    assert {m.channel.topic for m in imu} == {"/imu"}

    cameras = list(reader.iter_messages([0, 1]))
    assert {m.channel.topic for m in cameras} == {"/camera/left", "/camera/right"}

    windowed = list(reader.iter_messages(start_time=20, end_time=40))
    expected = [m for m in _demo_messages() if 20 <= m.log_time <= 40]
    assert sorted(m.sequence for m in windowed) == sorted(m.sequence for m in expected)


def test_get_chunk_indexes_by_channel():
    buffer = BytesWriter()
    with McapWriter(buffer, chunk_message_limit=1) as writer:
        a = writer.add_channel(0, "/a", "raw")
        b = writer.add_channel(0, "/b", "raw")
        writer.write_to_known_channel(a, 0, 0, 0, b"")
        writer.write_to_known_channel(b, 0, 1, 1, b"")
        writer.write_to_known_channel(a, 1, 2, 2, b"")
    reader = McapRandomAccessReader.from_bytes(buffer.as_bytes())
    assert len(reader.get_chunk_indexes()) == 3
    assert [ci.message_start_time for ci in reader.get_chunk_indexes(a)] == [0, 2]
    assert [ci.message_start_time for ci in reader.get_chunk_indexes([b])] == [1]


def test_chunk_cache():
    data = _demo_file()
    reader = McapRandomAccessReader.from_bytes(data, chunk_cache_size=2)
    chunk_index = reader.get_chunk_indexes()[0]
    first = reader.get_chunk_data(chunk_index)
    assert reader.get_chunk_data(chunk_index) is first
    assert reader._decompress_chunk_cached.cache_info().hits == 1


def test_message_indexes_are_cached():
    data = _demo_file()
    reader = McapRandomAccessReader.from_bytes(data)
    chunk_index = reader.get_chunk_indexes()[0]
    assert reader.get_message_indexes(chunk_index) is reader.get_message_indexes(chunk_index)


def test_attachments_and_metadata():
    attachment = Attachment(10, 20, "map.png", "image/png", b"\x89PNG...")
    metadata = Metadata("session", {"operator": "alice", "site": "lab"})
    buffer = BytesWriter()
    with McapWriter(buffer) as writer:
        writer.write(_demo_messages(1)[0])
        writer.write_attachment(attachment)
        writer.write_metadata(metadata)

    reader = McapRandomAccessReader.from_bytes(buffer.as_bytes())
    assert reader.get_attachments() == [attachment]
    assert reader.get_attachments("other") == []
    assert reader.get_all_metadata() == [metadata]
    assert reader.get_metadata(reader.summary.metadata_indexes[0]) == metadata


def test_attachment_crc_mismatch():
    attachment = Attachment(10, 20, "notes.txt", "text/plain", b"hello")
    buffer = BytesWriter()
    with McapWriter(buffer) as writer:
        writer.write_attachment(attachment)
    data = bytearray(buffer.as_bytes())
    index = McapSummary.read(bytes(data)).attachment_indexes[0]
    position = bytes(data).index(b"hello", index.offset)
    data[position] = ord("j")

    reader = McapRandomAccessReader.from_bytes(bytes(data), enable_crc_check=False)
    assert reader.get_attachment(index).data == b"jello"
    with pytest.raises(McapInvalidCrcError):
        McapRandomAccessReader(bytes(data), reader.summary).get_attachment(index)


def _file_without_message_indexes(count: int = 10) -> bytes:
    output = BytesIO()
    writer = Writer(output, chunk_size=100, compression=CompressionType.LZ4, index_types=IndexType.CHUNK)
    writer.start(profile="", library="chunk-index-only")
    ticks = writer.register_channel(topic="/ticks", message_encoding="raw", schema_id=0)
    tocks = writer.register_channel(topic="/tocks", message_encoding="raw", schema_id=0)
    for i in range(count):
        writer.add_message(
            channel_id=ticks if i % 2 == 0 else tocks,
            log_time=i,
            data=bytes([i]) * 16,
            publish_time=i,
            sequence=i,
        )
    writer.finish()
    return output.getvalue()


def test_chunks_without_message_indexes_are_scanned():
    data = _file_without_message_indexes()
    summary = McapSummary.read(data)
    assert len(summary.chunk_indexes) > 1
    for chunk_index in summary.chunk_indexes:
        assert chunk_index.message_index_offsets == {}
        assert summary.read_message_indexes(data, chunk_index) == {}

    reader = McapRandomAccessReader(data, summary)
    assert [m.sequence for m in reader.iter_messages()] == list(range(10))
    assert [m.sequence for m in reader.iter_messages(start_time=3, end_time=5)] == [3, 4, 5]

    ticks = next(c.id for c in summary.channels.values() if c.topic == "/ticks")
    assert len(reader.get_chunk_indexes(ticks)) == len(summary.chunk_indexes)
    assert [m.sequence for m in reader.iter_messages(ticks)] == [0, 2, 4, 6, 8]


def test_chunk_data_for_index_missing_from_summary():
    data = _demo_file()
    summary = McapSummary.read(data)
    chunk_index = summary.chunk_indexes[1]

    reader = McapRandomAccessReader(data, replace(summary, chunk_indexes=[]))
    assert reader.get_chunk_indexes() == []
    assert list(reader.stream_chunk(chunk_index)) == list(summary.stream_chunk(data, chunk_index))
    # A different record for the same chunk hits the cache
    assert reader.get_chunk_data(replace(chunk_index)) is reader.get_chunk_data(chunk_index)
