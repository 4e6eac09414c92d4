"""Redaction helpers and secure logging setup.

Request logs pass through these helpers so that bearer tokens, API keys
and cookies never reach a log sink:

- :func:`sanitize_string`, :func:`sanitize_headers` and
  :func:`sanitize_url` redact individual values
- :class:`SanitizingFormatter` redacts every formatted log record
- :func:`setup_secure_logging` installs the formatter on the root logger
"""

import logging
import re
import sys
from typing import Any, Dict, Mapping

SENSITIVE_PATTERNS = {
    "jwt_token": re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
    "bearer_token": re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE),
    "basic_auth": re.compile(r"Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE),
}

# Headers that are never logged
SENSITIVE_HEADERS = {
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "x-auth-token",
    "cookie",
    "set-cookie",
    "x-csrf-token",
    "x-access-token",
    "x-refresh-token",
}

SENSITIVE_QUERY_PARAMS = (
    "access_token",
    "refresh_token",
    "api_key",
    "client_secret",
    "password",
    "token",
    "secret",
)


def sanitize_string(value: str) -> str:
    """Replace tokens embedded in a string with a redaction marker.

    :param value: String to sanitize
    :type value: str
    :return: String with every sensitive match redacted
    :rtype: str
    """
    if not value:
        return value
    for name, pattern in SENSITIVE_PATTERNS.items():
        value = pattern.sub(f"<{name}:REDACTED>", value)
    return value


def sanitize_headers(headers: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``headers`` that is safe to log.

    Sensitive headers keep only their length; other string values are
    passed through :func:`sanitize_string`.

    :param headers: HTTP headers
    :type headers: Mapping[str, Any]
    :return: Sanitized headers
    :rtype: Dict[str, Any]
    """
    sanitized: Dict[str, Any] = {}
    for key, value in (headers or {}).items():
        if key.lower() in SENSITIVE_HEADERS:
            if isinstance(value, str) and value:
                sanitized[key] = f"<REDACTED:length={len(value)}>"
            else:
                sanitized[key] = "<REDACTED>"
        elif isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        else:
            sanitized[key] = value
    return sanitized


def sanitize_url(url: str) -> str:
    """Redact credentials carried in URL query parameters."""
    if not url:
        return url
    for param in SENSITIVE_QUERY_PARAMS:
        url = re.sub(
            rf"([?&]{param}=)[^&#\s]+", r"\1<REDACTED>", url, flags=re.IGNORECASE
        )
    return url


class SanitizingFormatter(logging.Formatter):
    """Formatter that redacts sensitive data from every record."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the record, then redact the rendered message.

        The message is rendered with its arguments first, so tokens passed
        as ``%s`` arguments are redacted too.

        :param record: Log record to format
        :type record: logging.LogRecord
        :return: Sanitized log line
        :rtype: str
        """
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = sanitize_string(message)
        record.args = None
        return super().format(record)


_LOGGING_CONFIGURED = False


def setup_secure_logging(level: str = "INFO") -> None:
    """Configure root logging with :class:`SanitizingFormatter`.

    Subsequent calls are ignored.

    :param level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    :type level: str
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED:
        logging.getLogger(__name__).debug(
            "Logging already configured, skipping duplicate setup"
        )
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        SanitizingFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=[handler],
        force=True,
    )

    # httpx logs every request at INFO with the full URL
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True
