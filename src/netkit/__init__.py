"""Async HTTP client convenience layer.

Describe a call with :class:`netkit.request.Request`, send it with
:class:`netkit.client.NetworkProvider`, and receive headers, text, JSON,
a validated model, a page or a downloaded file. Authentication failures
under stored-token auth trigger one coordinated token refresh and a
single retry.

:var __version__: Current package version
:type __version__: str
"""

__version__ = "0.1.0"

from .auth import AuthConfig, RefreshCoordinator  # noqa: E402
from .client import NetworkProvider  # noqa: E402
from .models import Token  # noqa: E402
from .request import Request  # noqa: E402

__all__ = ["AuthConfig", "NetworkProvider", "RefreshCoordinator", "Request", "Token"]
