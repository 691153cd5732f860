import logging

from tinymcap.mcap.error import (
    McapConflictingRecordError,
    McapUnknownChannelError,
    McapUnknownSchemaError
)
from tinymcap.mcap.records import ChannelRecord, MessageRecord, SchemaRecord
from tinymcap.types import Channel, Message, Schema

logger = logging.getLogger(__name__)


class RecordTables:
    """Id tables used to turn schema, channel and message records into values.

    Each reader owns its own tables. Channels are resolved when their record is
    seen, so every message of a channel shares the same :class:`Channel` (and
    :class:`Schema`) instance.
    """

    def __init__(
        self,
        schemas: dict[int, Schema] | None = None,
        channels: dict[int, Channel] | None = None,
    ) -> None:
        self.schemas: dict[int, Schema] = dict(schemas or {})
        self.channels: dict[int, Channel] = dict(channels or {})

    def add_schema(self, record: SchemaRecord) -> Schema | None:
        if record.id == 0:  # Invalid and should be ignored
            logger.debug('Ignoring schema record with id 0')
            return None

        schema = Schema(record.name, record.encoding, bytes(record.data), id=record.id)
        if (existing := self.schemas.get(record.id)) is not None:
            if existing != schema:
                raise McapConflictingRecordError(
                    f'Schema {record.id} redefined: {existing.name!r} vs {schema.name!r}'
                )
            return existing
        self.schemas[record.id] = schema
        return schema

    def add_channel(self, record: ChannelRecord) -> Channel:
        schema: Schema | None = None
        if record.schema_id != 0:
            if (schema := self.schemas.get(record.schema_id)) is None:
                raise McapUnknownSchemaError(record.schema_id, record.id)

        channel = Channel(
            topic=record.topic,
            message_encoding=record.message_encoding,
            schema=schema,
            metadata=dict(record.metadata),
            id=record.id,
        )
        if (existing := self.channels.get(record.id)) is not None:
            if existing != channel:
                raise McapConflictingRecordError(
                    f'Channel {record.id} redefined: {existing.topic!r} vs {channel.topic!r}'
                )
            return existing
        self.channels[record.id] = channel
        return channel

    def resolve_message(self, record: MessageRecord) -> Message:
        if (channel := self.channels.get(record.channel_id)) is None:
            raise McapUnknownChannelError(record.channel_id)
        return Message(
            channel=channel,
            sequence=record.sequence,
            log_time=record.log_time,
            publish_time=record.publish_time,
            data=record.data,
        )
