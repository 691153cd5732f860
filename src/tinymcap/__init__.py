from importlib.metadata import version

__version__ = version("tinymcap")

from .mcap.message_stream import MessageStream
from .mcap.record_reader import McapRandomAccessReader
from .mcap.summary import McapSummary
from .types import Attachment, Channel, Message, Metadata, Schema
from .writer import McapWriter

__all__ = [
    'Attachment',
    'Channel',
    'McapRandomAccessReader',
    'McapSummary',
    'McapWriter',
    'Message',
    'MessageStream',
    'Metadata',
    'Schema',
    '__version__',
]
