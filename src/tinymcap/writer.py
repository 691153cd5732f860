"""Utilities for writing MCAP files."""

import logging
from pathlib import Path
from typing import Literal

from tinymcap import __version__
from tinymcap.io.raw_writer import BaseWriter, FileWriter
from tinymcap.mcap.error import McapUnknownChannelError, McapUnknownSchemaError, McapWriterClosedError
from tinymcap.mcap.record_encoder import McapRecordWriter
from tinymcap.mcap.record_writer import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COMPRESSION,
    McapRecordWriterFactory
)
from tinymcap.mcap.records import (
    AttachmentRecord,
    ChannelRecord,
    MessageRecord,
    MetadataRecord,
    SchemaRecord
)
from tinymcap.types import Attachment, Channel, Message, Metadata

logger = logging.getLogger(__name__)

SchemaKey = tuple[str, str, bytes]
ChannelKey = tuple[str, int, str, tuple[tuple[str, str], ...]]


class McapWriter:
    """High level writer for producing MCAP files.

    Messages are written with their :class:`Channel` (and :class:`Schema`)
    attached. Structurally equal schemas and channels are written once and
    share an id: schema ids start at 1 (0 means "no schema") and channel ids
    start at 0. Internally, it delegates to low-level record writers.

    Args:
        writer: The underlying writer to write binary data to.
        profile: The MCAP profile written in the header.
        library: The library name written in the header.
        use_chunking: Group records into compressed chunks with message indexes.
        chunk_size: Flush the current chunk once it holds this many bytes.
        chunk_message_limit: Flush the current chunk once it holds this many messages.
        chunk_compression: Compression algorithm for chunks ("none", "lz4" or "zstd").
        enable_crc: Compute chunk, data section and summary CRCs.
    """

    def __init__(
        self,
        writer: BaseWriter,
        *,
        profile: str = "",
        library: str = f"tinymcap {__version__}",
        use_chunking: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_message_limit: int | None = None,
        chunk_compression: Literal["none", "lz4", "zstd"] | None = DEFAULT_COMPRESSION,
        enable_crc: bool = True,
    ) -> None:
        self._record_writer = McapRecordWriterFactory.create_writer(
            writer,
            use_chunking=use_chunking,
            chunk_size=chunk_size,
            chunk_message_limit=chunk_message_limit,
            chunk_compression=chunk_compression,
            profile=profile,
            library=library,
            enable_crc=enable_crc,
        )
        self._enable_crc = enable_crc
        self._schema_ids: dict[SchemaKey, int] = {}
        self._written_schema_ids: set[int] = set()
        self._channel_ids: dict[ChannelKey, int] = {}
        self._channel_schema_ids: dict[int, int] = {}
        self._next_schema_id = 1
        self._next_channel_id = 0
        self._closed = False

    def __enter__(self) -> "McapWriter":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """Context manager exit."""
        self.close()

    @classmethod
    def open(
        cls,
        file_path: str | Path,
        *,
        profile: str = "",
        library: str = f"tinymcap {__version__}",
        use_chunking: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_message_limit: int | None = None,
        chunk_compression: Literal["none", "lz4", "zstd"] | None = DEFAULT_COMPRESSION,
        enable_crc: bool = True,
    ) -> "McapWriter":
        """Create a writer backed by a file on disk.

        Args:
            file_path: The path to the file to write to. It is truncated.

        Returns:
            A writer backed by a file on disk.
        """
        return cls(
            FileWriter(file_path, mode='wb'),
            profile=profile,
            library=library,
            use_chunking=use_chunking,
            chunk_size=chunk_size,
            chunk_message_limit=chunk_message_limit,
            chunk_compression=chunk_compression,
            enable_crc=enable_crc,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise McapWriterClosedError('Cannot write to a closed MCAP writer')

    # Schema and channel interning

    def add_schema(self, name: str, encoding: str, data: bytes) -> int:
        """Add a schema to the output and return its id.

        A schema equal to one already written returns the existing id.
        """
        self._check_open()
        key: SchemaKey = (name, encoding, bytes(data))
        if (schema_id := self._schema_ids.get(key)) is not None:
            return schema_id

        schema_id = self._next_schema_id
        self._next_schema_id += 1
        self._record_writer.write_schema(
            SchemaRecord(id=schema_id, name=name, encoding=encoding, data=bytes(data))
        )
        self._schema_ids[key] = schema_id
        self._written_schema_ids.add(schema_id)
        logger.debug(f'Added schema {name!r} with id {schema_id}')
        return schema_id

    def add_channel(
        self,
        schema_id: int,
        topic: str,
        message_encoding: str,
        metadata: dict[str, str] | None = None,
    ) -> int:
        """Add a channel to the output and return its id.

        Args:
            schema_id: Id returned by :meth:`add_schema`, or 0 for no schema.
            topic: The topic name.
            message_encoding: The encoding of the channel's messages.
            metadata: Free-form string metadata of the channel.

        Returns:
            The channel ID. A channel equal to one already written returns the
            existing id.
        """
        self._check_open()
        if schema_id != 0 and schema_id not in self._written_schema_ids:
            raise McapUnknownSchemaError(schema_id, self._next_channel_id)

        metadata = dict(metadata or {})
        key: ChannelKey = (topic, schema_id, message_encoding, tuple(sorted(metadata.items())))
        if (channel_id := self._channel_ids.get(key)) is not None:
            return channel_id

        channel_id = self._next_channel_id
        self._next_channel_id += 1
        self._record_writer.write_channel(
            ChannelRecord(
                id=channel_id,
                schema_id=schema_id,
                topic=topic,
                message_encoding=message_encoding,
                metadata=metadata,
            )
        )
        self._channel_ids[key] = channel_id
        self._channel_schema_ids[channel_id] = schema_id
        logger.debug(f'Added channel {topic!r} with id {channel_id}')
        return channel_id

    def _intern_channel(self, channel: Channel) -> int:
        schema_id = 0
        if (schema := channel.schema) is not None:
            schema_id = self.add_schema(schema.name, schema.encoding, schema.data)
        return self.add_channel(schema_id, channel.topic, channel.message_encoding, channel.metadata)

    # Writing

    def write(self, message: Message) -> None:
        """Write a message, adding its channel and schema first if they are new."""
        self._check_open()
        channel_id = self._intern_channel(message.channel)
        self.write_to_known_channel(
            channel_id,
            message.sequence,
            message.log_time,
            message.publish_time,
            message.data,
        )

    def write_to_known_channel(
        self,
        channel_id: int,
        sequence: int,
        log_time: int,
        publish_time: int,
        data: bytes,
    ) -> None:
        """Write a message to a channel previously returned by :meth:`add_channel`."""
        self._check_open()
        if channel_id not in self._channel_schema_ids:
            raise McapUnknownChannelError(channel_id)
        self._record_writer.write_message(
            MessageRecord(
                channel_id=channel_id,
                sequence=sequence,
                log_time=log_time,
                publish_time=publish_time,
                data=bytes(data),
            )
        )

    def write_attachment(self, attachment: Attachment) -> None:
        """Write an attachment outside of any chunk.

        The current chunk is flushed first.
        """
        self._check_open()
        record = AttachmentRecord(
            log_time=attachment.log_time,
            create_time=attachment.create_time,
            name=attachment.name,
            media_type=attachment.media_type,
            data=bytes(attachment.data),
            crc=0,
        )
        if self._enable_crc:
            record.crc = McapRecordWriter.attachment_crc(record)
        self._record_writer.write_attachment(record)

    def write_metadata(self, metadata: Metadata) -> None:
        """Write a metadata record outside of any chunk.

        The current chunk is flushed first.
        """
        self._check_open()
        self._record_writer.write_metadata(
            MetadataRecord(name=metadata.name, metadata=dict(metadata.metadata))
        )

    def flush(self) -> None:
        """Write out the current chunk, if it holds any records."""
        self._check_open()
        self._record_writer.flush_chunk()

    def close(self) -> None:
        """Finalize and close the MCAP file.

        The last chunk is flushed, then the data end record, the summary
        section, the footer and the closing magic bytes are written. Calling
        close more than once has no effect.
        """
        if self._closed:
            return
        self._closed = True
        self._record_writer.close()
