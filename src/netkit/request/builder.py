"""Turn a :class:`Request` descriptor into an ``httpx.Request``.

Building is a pure transform: it never touches the network, and every
URL problem surfaces as :class:`URLConstructionError` before a request
is sent.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import quote, urlencode, urlsplit, urlunsplit

import httpx

from ..exceptions import URLConstructionError
from ..utils.security import sanitize_headers, sanitize_url
from .body import EncodedBody, encode_body
from .descriptor import AbsoluteURL, Request

logger = logging.getLogger(__name__)


@dataclass
class BuiltRequest:
    """A wire request plus what is needed to log or resend it.

    :param request: Fresh ``httpx.Request``
    :param description: Redacted one-line description for logs
    :param body: Encoded body; streamed bodies can be reopened from it
    """

    request: httpx.Request
    description: str
    body: EncodedBody


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_query(parameters: Mapping[str, Any]) -> str:
    """Encode query parameters in caller order, spaces as ``%20``.

    :raises URLConstructionError: If a value cannot be stringified
    """
    try:
        pairs = [(str(key), _stringify(value)) for key, value in parameters.items()]
    except Exception as e:
        raise URLConstructionError(f"Cannot serialize query parameters: {e}") from e
    return urlencode(pairs, quote_via=quote)


def join_url(base_url: Optional[str], endpoint: str) -> str:
    """Append ``endpoint`` to the path of ``base_url`` with exactly one slash."""
    if not base_url:
        raise URLConstructionError(
            "A base URL is required for relative endpoints", url=endpoint
        )
    try:
        parts = urlsplit(base_url)
    except ValueError as e:
        raise URLConstructionError(f"Invalid base URL: {e}", url=base_url) from e
    path = parts.path.rstrip("/") + "/" + endpoint.lstrip("/")
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def build_url(descriptor: Request, base_url: Optional[str]) -> str:
    """Resolve the full request URL including the query string.

    :param descriptor: Request descriptor
    :param base_url: Base URL for relative endpoints
    :return: Absolute URL
    :raises URLConstructionError: If no valid http(s) URL can be formed
    """
    endpoint = descriptor.endpoint
    if isinstance(endpoint, AbsoluteURL):
        url = endpoint.url
    elif descriptor.is_absolute:
        url = endpoint
    else:
        url = join_url(base_url, endpoint)

    if descriptor.parameters:
        query = encode_query(descriptor.parameters)
        url = f"{url}{'&' if urlsplit(url).query else '?'}{query}"

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise URLConstructionError(f"Invalid URL: {e}", url=url) from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise URLConstructionError(
            "URL must be absolute with an http(s) scheme and a host", url=url
        )
    return url


def merge_headers(encoded: Mapping[str, str], explicit: Mapping[str, str]) -> Dict[str, str]:
    """Overlay descriptor headers on encoder headers.

    Descriptor headers win on conflict, except ``Content-Length`` which the
    encoder always sets. Names are compared case-insensitively.
    """
    merged = httpx.Headers(dict(encoded))
    for name, value in explicit.items():
        if name.lower() == "content-length" and "content-length" in merged:
            continue
        merged[name] = value
    return dict(merged.items())


def build_request(
    descriptor: Request,
    base_url: Optional[str],
    on_upload: Optional[Callable[[int], None]] = None,
) -> BuiltRequest:
    """Build a fresh wire request from a descriptor.

    :param descriptor: Request descriptor
    :param base_url: Base URL for relative endpoints
    :param on_upload: Called with the size of each streamed body chunk
    :return: Wire request, log description and encoded body
    :raises URLConstructionError: If the URL cannot be built
    """
    url = build_url(descriptor, base_url)
    body = encode_body(descriptor.payload)
    headers = merge_headers(body.headers, descriptor.headers)
    request = httpx.Request(
        descriptor.method.value,
        url,
        headers=headers,
        content=body.content(on_read=on_upload),
    )
    description = (
        f"{descriptor.method.value} {sanitize_url(url)} "
        f"headers={sanitize_headers(headers)} body={body.description}"
    )
    return BuiltRequest(request=request, description=description, body=body)
