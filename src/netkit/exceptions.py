"""Structured exception classes for netkit.

Every error raised by the request pipeline derives from
:class:`NetKitError`. Only :class:`AuthFailure` (and other errors whose
``status_code`` falls in the configured auth-failure set) is ever retried,
and only once per call.
"""

import json
from typing import Any, Dict, Iterable, Optional


class NetKitError(Exception):
    """Base exception for all netkit errors.

    :param message: Human-readable error message
    :param code: Optional error code for programmatic handling
    :param details: Optional dictionary containing additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the exception with message, code, and details."""
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format.

        :return: Dictionary containing error code, message, and details
        """
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string.

        :return: JSON-encoded string representation of the exception
        """
        return json.dumps(self.to_dict())


class URLConstructionError(NetKitError):
    """Raised when a request descriptor cannot be turned into a valid URL.

    Always raised before any network activity takes place.

    :param message: Description of the failure
    :param url: Optional URL (or fragment) that could not be built
    """

    def __init__(self, message: str, url: Optional[str] = None):
        """Initialize URL construction error with message and optional URL."""
        details = {}
        if url:
            details["url"] = url
        super().__init__(message=message, code="URL_CONSTRUCTION_ERROR", details=details)
        self.url = url


class TransportError(NetKitError):
    """Raised when no HTTP response was received.

    Covers connection failures, DNS errors and timeouts. The underlying
    ``httpx`` exception is chained as ``__cause__``. Never retried by the
    dispatcher and never treated as an authentication failure.

    :param message: Description of the transport failure
    :param url: Optional URL of the failed request
    """

    def __init__(self, message: str, url: Optional[str] = None):
        """Initialize transport error with message and optional URL."""
        details = {}
        if url:
            details["url"] = url
        super().__init__(message=message, code="TRANSPORT_ERROR", details=details)
        self.url = url


class ResponseError(NetKitError):
    """Raised for an HTTP response that was received but not accepted.

    :param message: Description of the error
    :param status_code: Optional HTTP status code from the response
    :param response_body: Optional response body from the failed request
    :param headers: Optional response headers
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """Initialize response error with message and optional response details."""
        details: Dict[str, Any] = {}
        if status_code:
            details["status_code"] = status_code
        if response_body:
            details["response_body"] = response_body
        super().__init__(message=message, code="RESPONSE_ERROR", details=details)
        self.status_code = status_code
        self.response_body = response_body
        self.headers = headers or {}


class AuthFailure(ResponseError):
    """Raised when a response status is in the auth-failure set.

    Under stored-token authentication this triggers one coordinated token
    refresh followed by exactly one retry of the original request.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        response_body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """Initialize auth failure with message and status code."""
        super().__init__(
            message=message,
            status_code=status_code,
            response_body=response_body,
            headers=headers,
        )
        self.code = "AUTH_FAILURE"


class ValidationError(ResponseError):
    """Raised by a response validator to reject an otherwise successful response.

    Validators may pass a ``status_code`` to signal a business-level failure
    embedded in a 200 response. If that status belongs to the auth-failure
    set, the dispatcher treats it like :class:`AuthFailure`.

    :param message: Description of the validation error
    :param status_code: Optional status code to classify the failure by
    :param field: Optional name of the offending response field
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        field: Optional[str] = None,
        response_body: Optional[str] = None,
    ):
        """Initialize validation error with message and optional context."""
        super().__init__(
            message=message, status_code=status_code, response_body=response_body
        )
        self.code = "VALIDATION_ERROR"
        if field:
            self.details["field"] = field
        self.field = field


class DecodeError(NetKitError):
    """Raised when a response body cannot be decoded into the expected shape.

    :param message: Description of the decode failure
    :param expected: Optional name of the expected result type
    """

    def __init__(self, message: str, expected: Optional[str] = None):
        """Initialize decode error with message and optional expected type."""
        details = {}
        if expected:
            details["expected"] = expected
        super().__init__(message=message, code="DECODE_ERROR", details=details)
        self.expected = expected


class EncodeError(NetKitError):
    """Raised when a request payload cannot be encoded into a body.

    Raised while the wire request is built, before any network activity.
    """

    def __init__(self, message: str, payload: Optional[str] = None):
        details = {}
        if payload:
            details["payload"] = payload
        super().__init__(message=message, code="ENCODE_ERROR", details=details)
        self.payload = payload


class RefreshLoopError(NetKitError):
    """Raised when token refreshes repeat too quickly.

    Signals a server that keeps rejecting freshly issued tokens. Terminal:
    no re-login is attempted after it.

    :param attempts: Number of refresh attempts seen inside the window
    :param window: Window length in seconds
    """

    def __init__(self, attempts: int, window: float):
        """Initialize refresh loop error with the attempt count and window."""
        super().__init__(
            message=f"Authorization loop: {attempts} token refreshes within {window}s",
            code="REFRESH_LOOP_ERROR",
            details={"attempts": attempts, "window_seconds": window},
        )
        self.attempts = attempts
        self.window = window


class StreamReadError(NetKitError):
    """Raised when one of the sources behind a chained body stream fails.

    :param message: Description of the read failure
    :param source: Optional description of the failing source
    """

    def __init__(self, message: str, source: Optional[str] = None):
        """Initialize stream read error with message and optional source."""
        details = {}
        if source:
            details["source"] = source
        super().__init__(message=message, code="STREAM_READ_ERROR", details=details)


class CredentialStoreError(NetKitError):
    """Raised when credentials cannot be persisted or loaded.

    :param message: Description of the storage error
    :param service: Optional service key that was being accessed
    """

    def __init__(self, message: str, service: Optional[str] = None):
        """Initialize credential store error with message and optional service."""
        details = {}
        if service:
            details["service"] = service
        super().__init__(message=message, code="CREDENTIAL_STORE_ERROR", details=details)


class ConfigurationError(NetKitError):
    """Raised for configuration-related errors.

    :param message: Description of the configuration error
    :param setting: Optional name of the problematic setting
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        """Initialize configuration error with message and optional setting."""
        details = {}
        if setting:
            details["setting"] = setting
        super().__init__(message=message, code="CONFIGURATION_ERROR", details=details)


def is_auth_failure(error: BaseException, unauth_codes: Iterable[int]) -> bool:
    """Check whether an error is classified as an authentication failure.

    :param error: Exception raised by a request attempt
    :param unauth_codes: Status codes that mean an expired or invalid token
    :return: True if the error carries a status code in ``unauth_codes``
    """
    status_code = getattr(error, "status_code", None)
    return status_code is not None and status_code in set(unauth_codes)
