class McapError(Exception):
    """Base exception for all MCAP errors."""


class MalformedMCAP(McapError):
    """The data is not a well-formed MCAP file."""


class McapCorruptRecordError(MalformedMCAP):
    """A record's declared lengths are inconsistent with the available bytes."""


class McapUnknownChannelError(McapError):
    """A message references a channel that has not been declared."""
    def __init__(self, channel_id: int):
        super().__init__(f'Message references unknown channel {channel_id}')
        self.channel_id = channel_id


class McapUnknownSchemaError(McapError):
    """A channel references a schema that has not been declared."""
    def __init__(self, schema_id: int, channel_id: int):
        super().__init__(f'Channel {channel_id} references unknown schema {schema_id}')
        self.schema_id = schema_id
        self.channel_id = channel_id


class McapConflictingRecordError(McapError):
    """A schema or channel id is redefined with different contents."""


class McapInvalidCrcError(McapError):
    """Exception raised when a CRC is invalid."""


class McapChunkCrcMismatchError(McapInvalidCrcError):
    """The CRC of a decompressed chunk does not match the stored value."""
    def __init__(self, expected: int, computed: int):
        super().__init__(f'Chunk CRC mismatch (stored {expected:#010x}, computed {computed:#010x})')
        self.expected = expected
        self.computed = computed


class McapOffsetOutOfRangeError(McapError):
    """A message index offset does not point at a message inside its chunk."""


class McapNoSummarySectionError(McapError):
    """Exception raised when a MCAP file has no summary section."""


class McapUnknownCompressionError(McapError):
    """Exception raised when a MCAP file has an unknown compression type."""


class McapWriterClosedError(McapError):
    """Exception raised when writing to a writer that was already closed."""
