"""Payload encoding.

:func:`encode_body` turns a payload variant into the wire body, the
headers the encoder injects, an exact content length and a description
for request logs. In-memory bodies are passed to ``httpx`` as bytes;
bodies backed by files are streamed from a :class:`ChainedStream`.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, Optional, Union
from urllib.parse import quote_plus, urlencode

from ..exceptions import EncodeError
from .descriptor import (
    JSONPayload,
    MultipartPayload,
    Payload,
    URLFormPayload,
    UploadPayload,
)
from .multipart import MultipartForm
from .streams import ChainedStream, FileSource

JSON_CONTENT_TYPE = "application/json"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass
class EncodedBody:
    """Result of encoding a payload.

    Exactly one of ``data`` or ``stream_factory`` is set for a non-empty
    body. ``stream_factory`` returns a fresh stream on every call, so a
    body can be sent again after a redirect or an auth retry.
    """

    headers: Dict[str, str] = field(default_factory=dict)
    description: str = "no body"
    content_length: int = 0
    data: Optional[bytes] = None
    stream_factory: Optional[Callable[..., ChainedStream]] = None

    @property
    def is_streamed(self) -> bool:
        return self.stream_factory is not None

    @property
    def is_empty(self) -> bool:
        return self.data is None and self.stream_factory is None

    def content(
        self, on_read: Optional[Callable[[int], None]] = None
    ) -> Union[bytes, AsyncIterator[bytes], None]:
        """Return ``httpx`` request content.

        Streamed bodies are returned as an async iterator, as required by
        ``httpx.AsyncClient``.

        :param on_read: Called with the size of every streamed chunk
        """
        if self.stream_factory is not None:
            return self.stream_factory(on_read=on_read).aiter_chunks()
        return self.data

    def read(self) -> bytes:
        """Return the whole body as bytes."""
        if self.stream_factory is not None:
            with self.stream_factory() as stream:
                return stream.read()
        return self.data or b""


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_json(payload: JSONPayload) -> EncodedBody:
    """Encode a JSON payload.

    :raises EncodeError: If a value is not JSON serializable
    """
    try:
        data = json.dumps(dict(payload.data)).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodeError(f"Cannot serialize JSON payload: {e}", payload="json") from e
    return EncodedBody(
        headers={"Content-Type": JSON_CONTENT_TYPE, "Content-Length": str(len(data))},
        description=f"json ({len(data)} bytes)",
        content_length=len(data),
        data=data,
    )


def encode_url_form(payload: URLFormPayload) -> EncodedBody:
    pairs = [(key, _stringify(value)) for key, value in payload.fields.items()]
    data = urlencode(pairs, quote_via=quote_plus).encode("utf-8")
    return EncodedBody(
        headers={"Content-Type": FORM_CONTENT_TYPE, "Content-Length": str(len(data))},
        description=f"url form ({', '.join(payload.fields)})",
        content_length=len(data),
        data=data,
    )


def encode_multipart(payload: MultipartPayload, boundary: Optional[str] = None) -> EncodedBody:
    form = MultipartForm(payload.parts, boundary=boundary)
    length = form.content_length
    return EncodedBody(
        headers={"Content-Type": form.content_type, "Content-Length": str(length)},
        description=form.describe(),
        content_length=length,
        stream_factory=form.stream,
    )


def encode_upload(payload: UploadPayload) -> EncodedBody:
    source = payload.source
    if isinstance(source, Path):

        def factory(on_read=None) -> ChainedStream:
            return ChainedStream([FileSource(source)], on_read=on_read)

        length = FileSource(source).size()
        return EncodedBody(
            headers={"Content-Length": str(length)},
            description=f"upload from {source}",
            content_length=length,
            stream_factory=factory,
        )

    data = bytes(source)
    return EncodedBody(
        headers={"Content-Length": str(len(data))},
        description=f"upload ({len(data)} bytes)",
        content_length=len(data),
        data=data,
    )


def encode_body(payload: Optional[Payload]) -> EncodedBody:
    """Encode a payload variant into a wire body.

    :param payload: Payload from the request descriptor, or None
    :return: Body, injected headers, content length and log description
    :raises TypeError: If the payload is not a known variant
    """
    if payload is None:
        return EncodedBody()
    if isinstance(payload, JSONPayload):
        return encode_json(payload)
    if isinstance(payload, URLFormPayload):
        return encode_url_form(payload)
    if isinstance(payload, MultipartPayload):
        return encode_multipart(payload)
    if isinstance(payload, UploadPayload):
        return encode_upload(payload)
    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")
