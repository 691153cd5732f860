"""Resolved values handed to and returned from readers and writers.

Records on disk refer to each other through small integer ids. The values in
this module hold direct references instead: a :class:`Message` points at its
:class:`Channel`, which points at its :class:`Schema`. All of them are frozen,
and equality and hashing are structural. The ``id`` fields are only meaningful
within the file they were read from and do not take part in comparisons.
"""
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Schema:
    name: str
    encoding: str
    data: bytes
    id: int = field(default=0, compare=False)


@dataclass(frozen=True, slots=True)
class Channel:
    topic: str
    message_encoding: str
    schema: Schema | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    id: int = field(default=0, compare=False)

    def __hash__(self) -> int:
        return hash((self.topic, self.message_encoding, self.schema, frozenset(self.metadata.items())))


@dataclass(frozen=True, slots=True)
class Message:
    channel: Channel
    sequence: int
    log_time: int
    publish_time: int
    data: bytes


@dataclass(frozen=True, slots=True)
class Attachment:
    log_time: int
    create_time: int
    name: str
    media_type: str
    data: bytes


@dataclass(frozen=True, slots=True)
class Metadata:
    name: str
    metadata: dict[str, str] = field(default_factory=dict)

    def __hash__(self) -> int:
        return hash((self.name, frozenset(self.metadata.items())))
