import logging
from functools import lru_cache
from pathlib import Path
from typing import Iterator

from tinymcap.io.raw_reader import BytesReader
from tinymcap.mcap.error import McapNoSummarySectionError
from tinymcap.mcap.indexes import (
    message_at,
    read_attachment,
    read_chunk_data,
    read_message_indexes,
    read_metadata
)
from tinymcap.mcap.message_stream import MessageStream
from tinymcap.mcap.records import (
    AttachmentIndexRecord,
    ChunkIndexRecord,
    MessageIndexEntry,
    MetadataIndexRecord
)
from tinymcap.mcap.summary import McapSummary
from tinymcap.types import Attachment, Message, Metadata

logger = logging.getLogger(__name__)


class _ChunkKey:
    """Cache key identifying a chunk by its start offset."""

    __slots__ = ('chunk_index',)

    def __init__(self, chunk_index: ChunkIndexRecord) -> None:
        self.chunk_index = chunk_index

    def __hash__(self) -> int:
        return hash(self.chunk_index.chunk_start_offset)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, _ChunkKey):
            return NotImplemented
        return self.chunk_index.chunk_start_offset == other.chunk_index.chunk_start_offset


class McapRandomAccessReader:
    """Index-driven access to the chunks and messages of a finalized MCAP file.

    The reader keeps the most recently decompressed chunks and every message
    index it has parsed, so repeated seeks into the same chunk are cheap. It
    is meant to be short-lived and must not be shared between threads.

    Args:
        data: The whole MCAP file.
        summary: The summary section of ``data``.
        chunk_cache_size: Number of decompressed chunks to keep.
        enable_crc_check: Verify chunk and attachment CRCs.
    """

    def __init__(
        self,
        data: bytes | bytearray | memoryview,
        summary: McapSummary,
        *,
        chunk_cache_size: int = 1,
        enable_crc_check: bool = True,
    ) -> None:
        self._data = BytesReader(data).view
        self._summary = summary
        self._tables = summary.tables()
        self._check_crc = enable_crc_check
        self._message_indexes: dict[int, dict[int, list[MessageIndexEntry]]] = {}
        self._decompress_chunk_cached = lru_cache(maxsize=chunk_cache_size)(self._decompress_chunk_impl)

    # Helpful Constructors

    @classmethod
    def from_bytes(
        cls,
        data: bytes | bytearray | memoryview,
        *,
        chunk_cache_size: int = 1,
        enable_crc_check: bool = True,
    ) -> 'McapRandomAccessReader':
        """Create a reader over an MCAP file in memory.

        Raises:
            McapNoSummarySectionError: The file has no summary section.
        """
        summary = McapSummary.read(data, enable_crc_check=enable_crc_check)
        if summary is None:
            raise McapNoSummarySectionError('MCAP file has no summary section')
        return cls(data, summary, chunk_cache_size=chunk_cache_size, enable_crc_check=enable_crc_check)

    @classmethod
    def from_file(
        cls,
        file_path: Path | str,
        *,
        chunk_cache_size: int = 1,
        enable_crc_check: bool = True,
    ) -> 'McapRandomAccessReader':
        """Create a reader over an MCAP file on disk."""
        return cls.from_bytes(
            Path(file_path).read_bytes(),
            chunk_cache_size=chunk_cache_size,
            enable_crc_check=enable_crc_check,
        )

    @property
    def summary(self) -> McapSummary:
        return self._summary

    # Chunk Management

    def _decompress_chunk_impl(self, key: _ChunkKey) -> bytes:
        logger.debug(f'Decompressing chunk at {key.chunk_index.chunk_start_offset}')
        return read_chunk_data(self._data, key.chunk_index, check_crc=self._check_crc)

    def get_chunk_data(self, chunk_index: ChunkIndexRecord) -> bytes:
        """The decompressed records of a chunk."""
        return self._decompress_chunk_cached(_ChunkKey(chunk_index))

    def get_chunk_indexes(self, channel_id: int | list[int] | None = None) -> list[ChunkIndexRecord]:
        """
        Get chunk indexes in file order.

        Args:
            channel_id: The ID of the channel(s) to get the chunk indexes for.
                        Can be a single int, a list of ints, or None for all channels.

        Returns:
            A list of ChunkIndexRecord objects.
        """
        if channel_id is None:
            return list(self._summary.chunk_indexes)

        channel_ids = [channel_id] if isinstance(channel_id, int) else channel_id

        chunk_indexes: list[ChunkIndexRecord] = []
        for chunk_index in self._summary.chunk_indexes:
            if any(cid in chunk_index.message_index_offsets for cid in channel_ids):
                chunk_indexes.append(chunk_index)
                continue
            if chunk_index.message_index_offsets:
                continue
            # Without message indexes the chunk may hold any channel
            chunk_indexes.append(chunk_index)
        return chunk_indexes

    def get_message_indexes(self, chunk_index: ChunkIndexRecord) -> dict[int, list[MessageIndexEntry]]:
        """
        Get the message index entries of a chunk.

        Args:
            chunk_index: The chunk index to get the message indexes from.

        Returns:
            Entries per channel id, ordered by offset.
        """
        key = chunk_index.chunk_start_offset
        if key not in self._message_indexes:
            self._message_indexes[key] = read_message_indexes(self._data, chunk_index)
        return self._message_indexes[key]

    # Message Management

    def seek_message(self, chunk_index: ChunkIndexRecord, entry: MessageIndexEntry) -> Message:
        """Decode the single message a message index entry points at."""
        return message_at(self.get_chunk_data(chunk_index), entry.offset, self._tables)

    def stream_chunk(self, chunk_index: ChunkIndexRecord) -> MessageStream:
        """Stream the messages of one chunk in record order."""
        chunk_data = self.get_chunk_data(chunk_index)
        return MessageStream(BytesReader(chunk_data), tables=self._summary.tables(), in_chunk=True)

    def iter_messages(
        self,
        channel_id: int | list[int] | None = None,
        *,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> Iterator[Message]:
        """Iterate over messages chunk by chunk.

        Within a chunk, messages are ordered by log time, ties broken by their
        position in the chunk. Chunks are visited in file order.

        Args:
            channel_id: Only yield messages of these channel(s).
            start_time: Only yield messages logged at or after this time.
            end_time: Only yield messages logged at or before this time.
        """
        channel_ids = None
        if channel_id is not None:
            channel_ids = {channel_id} if isinstance(channel_id, int) else set(channel_id)

        for chunk_index in self.get_chunk_indexes(None if channel_ids is None else list(channel_ids)):
            if start_time is not None and chunk_index.message_end_time < start_time:
                continue
            if end_time is not None and chunk_index.message_start_time > end_time:
                continue

            message_indexes = self.get_message_indexes(chunk_index)
            if not message_indexes:
                logger.debug(f'Chunk at {chunk_index.chunk_start_offset} has no message indexes, scanning it')
                for message in self.stream_chunk(chunk_index):
                    if channel_ids is not None and message.channel.id not in channel_ids:
                        continue
                    if start_time is not None and message.log_time < start_time:
                        continue
                    if end_time is not None and message.log_time > end_time:
                        continue
                    yield message
                continue

            entries = [
                entry
                for cid, channel_entries in message_indexes.items()
                if channel_ids is None or cid in channel_ids
                for entry in channel_entries
                if (start_time is None or entry.log_time >= start_time)
                and (end_time is None or entry.log_time <= end_time)
            ]
            entries.sort(key=lambda e: (e.log_time, e.offset))
            for entry in entries:
                yield self.seek_message(chunk_index, entry)

    # Attachment and Metadata Management

    def get_attachment(self, attachment_index: AttachmentIndexRecord) -> Attachment:
        """Read the attachment an attachment index points at."""
        return read_attachment(self._data, attachment_index, check_crc=self._check_crc)

    def get_attachments(self, name: str | None = None) -> list[Attachment]:
        """Read every attachment, optionally only those with a given name."""
        return [
            self.get_attachment(index)
            for index in self._summary.attachment_indexes
            if name is None or index.name == name
        ]

    def get_metadata(self, metadata_index: MetadataIndexRecord) -> Metadata:
        """Read the metadata record a metadata index points at."""
        return read_metadata(self._data, metadata_index)

    def get_all_metadata(self, name: str | None = None) -> list[Metadata]:
        """Read every metadata record, optionally only those with a given name."""
        return [
            self.get_metadata(index)
            for index in self._summary.metadata_indexes
            if name is None or index.name == name
        ]
