"""HTTP client construction.

Builds the ``httpx.AsyncClient`` a :class:`netkit.client.NetworkProvider`
owns when no client is injected. Redirect following is always disabled on
the client: the provider follows redirects itself so the redirect hook
can replace or cancel them.
"""

import logging
from typing import Any, Optional

import httpx

from ...config.settings import Settings

logger = logging.getLogger(__name__)


def create_timeout(
    connect: float = 5.0,
    read: float = 30.0,
    write: float = 10.0,
    pool: float = 5.0,
) -> httpx.Timeout:
    """Create a timeout configuration object.

    :param connect: Connection timeout in seconds
    :type connect: float
    :param read: Read timeout in seconds
    :type read: float
    :param write: Write timeout in seconds
    :type write: float
    :param pool: Pool timeout in seconds
    :type pool: float
    :return: Configured timeout object
    :rtype: httpx.Timeout
    """
    return httpx.Timeout(connect=connect, read=read, write=write, pool=pool)


def create_limits(
    max_keepalive_connections: int = 10,
    max_connections: int = 20,
    keepalive_expiry: float = 30.0,
) -> httpx.Limits:
    """Create a connection limits configuration object.

    :param max_keepalive_connections: Maximum number of keepalive connections
    :type max_keepalive_connections: int
    :param max_connections: Maximum total number of connections
    :type max_connections: int
    :param keepalive_expiry: Keepalive connection expiry time in seconds
    :type keepalive_expiry: float
    :return: Configured limits object
    :rtype: httpx.Limits
    """
    return httpx.Limits(
        max_keepalive_connections=max_keepalive_connections,
        max_connections=max_connections,
        keepalive_expiry=keepalive_expiry,
    )


def create_http_client(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Create an ``httpx.AsyncClient`` configured from settings.

    :param settings: Settings providing timeouts and limits; defaults apply
        when omitted
    :type settings: Optional[Settings]
    :param transport: Optional transport, e.g. ``httpx.MockTransport``
    :type transport: Optional[httpx.AsyncBaseTransport]
    :param kwargs: Extra ``httpx.AsyncClient`` options
    :return: A new client with redirect following disabled
    :rtype: httpx.AsyncClient
    """
    settings = settings or Settings()
    client_config: dict = {
        "timeout": create_timeout(
            connect=settings.connect_timeout,
            read=settings.read_timeout,
            write=settings.write_timeout,
            pool=settings.pool_timeout,
        ),
        "limits": create_limits(
            max_keepalive_connections=settings.max_keepalive_connections,
            max_connections=settings.max_connections,
        ),
        **kwargs,
        "follow_redirects": False,
    }
    if transport is not None:
        client_config["transport"] = transport
    logger.debug(
        f"Creating HTTP client (max_connections={settings.max_connections}, "
        f"read_timeout={settings.read_timeout}s)"
    )
    return httpx.AsyncClient(**client_config)
