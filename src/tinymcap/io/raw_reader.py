import struct
from abc import ABC, abstractmethod
from typing import Any


class BaseReader(ABC):
    @abstractmethod
    def peek(self, size: int) -> bytes:
        """Peek at the next bytes in the reader."""
        ...  # pragma: no cover

    @abstractmethod
    def read(self, size: int | None = None) -> bytes:
        """Read the next bytes in the reader."""
        ...  # pragma: no cover

    @abstractmethod
    def read_view(self, size: int) -> memoryview:
        """Read the next bytes without copying them."""
        ...  # pragma: no cover

    @abstractmethod
    def seek_from_start(self, offset: int) -> int:
        """Seek from the start of the reader."""
        ...  # pragma: no cover

    @abstractmethod
    def tell(self) -> int:
        """Get the current position in the reader."""
        ...  # pragma: no cover

    @abstractmethod
    def remaining(self) -> int:
        """Get the number of bytes left to read."""
        ...  # pragma: no cover


class BytesReader(BaseReader):
    """Reader over an in-memory byte range.

    The backing buffer (``bytes``, ``bytearray``, ``memoryview`` or ``mmap``)
    is wrapped in a memoryview and never copied. Only the bytes returned by
    ``read`` are materialised.
    """

    def __init__(self, data: bytes | bytearray | memoryview):
        self.view = memoryview(data).cast('B')
        self.position = 0
        self._length = len(self.view)

    def peek(self, size: int) -> bytes:
        # Returns empty bytes when end of data
        return self.view[self.position:self.position + size].tobytes()

    def read(self, size: int | None = None) -> bytes:
        return self.read_view(self._length if size is None else size).tobytes()

    def read_view(self, size: int) -> memoryview:
        result = self.view[self.position:self.position + size]
        self.position = min(self.position + size, self._length)
        return result

    def seek_from_start(self, offset: int) -> int:
        self.position = offset
        return self.position

    def tell(self) -> int:
        return self.position

    def remaining(self) -> int:
        return max(self._length - self.position, 0)

    def unpack_one(self, fmt: str | struct.Struct, size: int) -> Any:
        """Unpack a single value directly from buffer.

        Convenience method for unpacking a single value without tuple indexing.

        Args:
            fmt: struct format string or pre-compiled Struct object
            size: number of bytes to consume

        Returns:
            Single unpacked value
        """
        if isinstance(fmt, struct.Struct):
            result = fmt.unpack_from(self.view, self.position)[0]
        else:
            result = struct.unpack_from(fmt, self.view, self.position)[0]
        self.position += size
        return result

    def size(self) -> int:
        return self._length
