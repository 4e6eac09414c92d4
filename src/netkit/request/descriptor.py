"""Declarative request descriptors.

A :class:`Request` describes one logical HTTP call: where it goes, which
method it uses, its query parameters, headers, body payload, and how it
authenticates. Descriptors are immutable; the mappings passed in are
copied and exposed read-only, so mutating the caller's dict afterwards has
no effect on a constructed descriptor.

Examples:
    >>> Request("users/5", parameters={"q": "a b"})
    >>> Request("upload", method="POST", payload=JSONPayload({"a": 1}))
    >>> Request("public/ping", authentication=SkipAuth())
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union


class HTTPMethod(str, Enum):
    """HTTP methods supported by the dispatcher."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


# In-memory bytes or a file on disk read lazily at send time
DataContent = Union[bytes, Path]


@dataclass(frozen=True)
class File:
    """A file attached to a multipart form.

    :param content: File bytes or a path to read them from
    :param mime_type: Content type of the file part
    :param file_name: File name reported to the server
    """

    content: DataContent
    mime_type: str
    file_name: str


@dataclass(frozen=True)
class FormField:
    """A plain text multipart field."""

    name: str
    value: str


@dataclass(frozen=True)
class FormFile:
    """A file multipart field."""

    name: str
    file: File


MultipartParameter = Union[FormField, FormFile]


@dataclass(frozen=True)
class JSONPayload:
    """Body encoded as a JSON object."""

    data: Mapping[str, Any]

    def __post_init__(self):
        object.__setattr__(self, "data", MappingProxyType(copy.deepcopy(dict(self.data))))


@dataclass(frozen=True)
class URLFormPayload:
    """Body encoded as ``application/x-www-form-urlencoded``."""

    fields: Mapping[str, Any]

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


@dataclass(frozen=True)
class MultipartPayload:
    """Body encoded as ``multipart/form-data``."""

    parts: Tuple[MultipartParameter, ...]

    def __post_init__(self):
        object.__setattr__(self, "parts", tuple(self.parts))


@dataclass(frozen=True)
class UploadPayload:
    """Raw body uploaded as-is from memory or from a file."""

    source: DataContent


Payload = Union[JSONPayload, URLFormPayload, MultipartPayload, UploadPayload]


@dataclass(frozen=True)
class UseStoredToken:
    """Authorize with the stored token and refresh it on auth failures."""


@dataclass(frozen=True)
class SkipAuth:
    """Send the request without an authorization header."""


@dataclass(frozen=True)
class CustomToken:
    """Authorize with a caller-managed token. Never refreshed or retried."""

    value: str

    def __repr__(self) -> str:
        return "CustomToken(value=<REDACTED>)"


Authentication = Union[UseStoredToken, SkipAuth, CustomToken]


@dataclass(frozen=True)
class AbsoluteURL:
    """Endpoint given as a full URL, used verbatim instead of the base URL."""

    url: str


Endpoint = Union[str, AbsoluteURL]


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Request:
    """Immutable description of one HTTP call.

    :param endpoint: Path relative to the provider's base URL, or an
        absolute URL (``AbsoluteURL`` or a string with an http(s) scheme)
    :param method: HTTP method, as :class:`HTTPMethod` or its name
    :param parameters: Ordered query parameters; values are stringified
    :param headers: Request headers; they override encoder defaults
    :param payload: Optional body payload
    :param authentication: How the request is authorized
    """

    endpoint: Endpoint
    method: HTTPMethod = HTTPMethod.GET
    parameters: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    payload: Optional[Payload] = None
    authentication: Authentication = field(default_factory=UseStoredToken)

    def __post_init__(self):
        method = self.method
        if not isinstance(method, HTTPMethod):
            method = HTTPMethod(str(method).upper())
        object.__setattr__(self, "method", method)
        object.__setattr__(self, "parameters", _freeze(self.parameters))
        object.__setattr__(self, "headers", _freeze(self.headers))

    @property
    def is_absolute(self) -> bool:
        """Whether the endpoint bypasses the base URL."""
        if isinstance(self.endpoint, AbsoluteURL):
            return True
        return self.endpoint.startswith(("http://", "https://"))

    @property
    def uses_stored_token(self) -> bool:
        """Whether auth failures on this request may trigger a refresh."""
        return isinstance(self.authentication, UseStoredToken)
