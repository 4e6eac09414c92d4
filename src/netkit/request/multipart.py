"""``multipart/form-data`` body construction.

Each part is laid out as::

    --{boundary}\\r\\n
    Content-Disposition: form-data; name="{key}"[; filename="{name}"]\\r\\n
    [Content-Type: {mime}\\r\\n]
    \\r\\n
    {data}\\r\\n

followed by the closing ``--{boundary}--\\r\\n``. Files given as paths are
streamed from disk by :meth:`MultipartForm.stream`.
"""

import uuid
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .descriptor import FormField, FormFile, MultipartParameter
from .streams import ByteSource, BytesSource, ChainedStream, FileSource

CRLF = b"\r\n"


def _escape(value: str) -> str:
    return value.replace('"', "_")


def generate_boundary() -> str:
    """Return a fresh random boundary token."""
    return uuid.uuid4().hex


class MultipartForm:
    """Multipart form body built from form fields and files.

    :param parts: Ordered form fields and files
    :param boundary: Boundary token, a fresh random one when omitted
    """

    def __init__(
        self,
        parts: Iterable[MultipartParameter],
        boundary: Optional[str] = None,
    ):
        self.parts: Tuple[MultipartParameter, ...] = tuple(parts)
        self.boundary = boundary or generate_boundary()

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    def _part_header(self, part: MultipartParameter) -> bytes:
        disposition = f'Content-Disposition: form-data; name="{_escape(part.name)}"'
        lines = [f"--{self.boundary}"]
        if isinstance(part, FormFile):
            disposition += f'; filename="{_escape(part.file.file_name)}"'
            lines.append(disposition)
            if part.file.mime_type:
                lines.append(f"Content-Type: {part.file.mime_type}")
        else:
            lines.append(disposition)
        return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")

    @property
    def trailer(self) -> bytes:
        return f"--{self.boundary}--\r\n".encode("utf-8")

    def _sources(self) -> List[ByteSource]:
        sources: List[ByteSource] = []
        for part in self.parts:
            if isinstance(part, FormField):
                sources.append(
                    BytesSource(self._part_header(part) + str(part.value).encode("utf-8") + CRLF)
                )
                continue
            sources.append(BytesSource(self._part_header(part)))
            content = part.file.content
            if isinstance(content, Path):
                sources.append(FileSource(content))
            else:
                sources.append(BytesSource(content))
            sources.append(BytesSource(CRLF))
        sources.append(BytesSource(self.trailer))
        return sources

    @property
    def content_length(self) -> int:
        """Exact body length, including file sizes read from disk."""
        return sum(source.size() for source in self._sources())

    def stream(self, on_read=None) -> ChainedStream:
        """Return a fresh stream over the body. File contents are not buffered."""
        return ChainedStream(self._sources(), on_read=on_read)

    def body_data(self) -> bytes:
        """Return the fully buffered body."""
        with self.stream() as stream:
            return stream.read()

    def describe(self) -> str:
        names = []
        for part in self.parts:
            if isinstance(part, FormFile):
                names.append(f"{part.name}={part.file.file_name!r}")
            else:
                names.append(part.name)
        return f"multipart form ({', '.join(names)})"
