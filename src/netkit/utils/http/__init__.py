"""HTTP client helpers."""

from .client_manager import create_http_client, create_limits, create_timeout

__all__ = ["create_http_client", "create_limits", "create_timeout"]
