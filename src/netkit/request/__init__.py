"""Request descriptors, body encoding and wire request building."""

from .body import EncodedBody, encode_body
from .builder import BuiltRequest, build_request, build_url
from .descriptor import (
    AbsoluteURL,
    Authentication,
    CustomToken,
    DataContent,
    File,
    FormField,
    FormFile,
    HTTPMethod,
    JSONPayload,
    MultipartParameter,
    MultipartPayload,
    Payload,
    Request,
    SkipAuth,
    UploadPayload,
    URLFormPayload,
    UseStoredToken,
)
from .multipart import MultipartForm
from .streams import BytesSource, ByteSource, ChainedStream, FileSource

__all__ = [
    "AbsoluteURL",
    "Authentication",
    "BuiltRequest",
    "ByteSource",
    "BytesSource",
    "ChainedStream",
    "CustomToken",
    "DataContent",
    "EncodedBody",
    "File",
    "FileSource",
    "FormField",
    "FormFile",
    "HTTPMethod",
    "JSONPayload",
    "MultipartForm",
    "MultipartParameter",
    "MultipartPayload",
    "Payload",
    "Request",
    "SkipAuth",
    "UploadPayload",
    "URLFormPayload",
    "UseStoredToken",
    "build_request",
    "build_url",
    "encode_body",
]
