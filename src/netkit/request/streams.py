"""Sequential byte streams assembled from several sources.

A :class:`ChainedStream` puts an ordered list of byte sources (in-memory
buffers and files on disk) behind one non-seekable reader. Multipart
bodies use it to emit header bytes, file bytes and trailer bytes without
buffering the file contents.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Iterable, Iterator, List, Optional

from ..exceptions import StreamReadError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class ByteSource(ABC):
    """A single readable segment of a chained stream."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Short label used in logs and errors."""

    @abstractmethod
    def size(self) -> int:
        """Number of bytes this source will produce."""

    @abstractmethod
    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes. Returns ``b""`` once exhausted."""

    def close(self) -> None:
        """Release any resources held by the source."""


class BytesSource(ByteSource):
    """Source backed by an in-memory buffer."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._position = 0

    @property
    def description(self) -> str:
        return f"<{len(self._data)} bytes>"

    def size(self) -> int:
        return len(self._data)

    def read(self, n: int) -> bytes:
        chunk = self._data[self._position : self._position + n]
        self._position += len(chunk)
        return chunk


class FileSource(ByteSource):
    """Source backed by a file that is opened on first read."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._handle: Optional[BinaryIO] = None
        self._exhausted = False

    @property
    def description(self) -> str:
        return str(self.path)

    def size(self) -> int:
        """File size from ``os.stat``.

        A failing stat counts as zero bytes. The resulting content length
        is then short, which the server will reject, but building the
        request does not fail.
        """
        try:
            return os.stat(self.path).st_size
        except OSError as e:
            logger.warning(f"Could not determine size of {self.path}: {e}")
            return 0

    def read(self, n: int) -> bytes:
        if self._exhausted:
            return b""
        if self._handle is None:
            self._handle = open(self.path, "rb")
        chunk = self._handle.read(n)
        if not chunk:
            self.close()
            self._exhausted = True
        return chunk

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None


class ChainedStream:
    """Read several byte sources in order as one stream.

    ``read`` advances to the next source whenever the current one reports
    no further bytes. The first error raised by a source is wrapped in
    :class:`StreamReadError`; the stream is then broken and every later
    read raises the same error.

    :param sources: Ordered byte sources
    :param chunk_size: Chunk size used by the iterators
    :param on_read: Optional callback receiving the byte count of each chunk
    """

    def __init__(
        self,
        sources: Iterable[ByteSource],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_read: Optional[Callable[[int], None]] = None,
    ):
        self._sources: List[ByteSource] = list(sources)
        self._index = 0
        self._error: Optional[StreamReadError] = None
        self._closed = False
        self.chunk_size = chunk_size
        self.on_read = on_read

    @property
    def sources(self) -> List[ByteSource]:
        return list(self._sources)

    @property
    def content_length(self) -> int:
        """Exact sum of all source sizes."""
        return sum(source.size() for source in self._sources)

    def read(self, n: int = -1) -> bytes:
        """Read up to ``n`` bytes, or everything that remains if ``n < 0``.

        :raises StreamReadError: If a source failed, now or earlier
        """
        if self._error is not None:
            raise self._error
        if n is None or n < 0:
            return b"".join(iter(lambda: self.read(self.chunk_size), b""))
        if n == 0 or self._closed:
            return b""

        while self._index < len(self._sources):
            source = self._sources[self._index]
            try:
                chunk = source.read(n)
            except Exception as e:
                self._error = StreamReadError(
                    f"Failed to read body source {source.description}: {e}",
                    source=source.description,
                )
                self.close()
                raise self._error from e
            if chunk:
                if self.on_read is not None:
                    self.on_read(len(chunk))
                return chunk
            source.close()
            self._index += 1
        return b""

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(self.chunk_size)
            if not chunk:
                return
            yield chunk

    async def aiter_chunks(self) -> AsyncIterator[bytes]:
        """Async chunk iterator for ``httpx.AsyncClient`` request bodies."""
        try:
            for chunk in self:
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for source in self._sources:
            source.close()

    def __enter__(self) -> "ChainedStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
