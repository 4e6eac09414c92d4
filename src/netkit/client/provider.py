"""Request dispatcher.

:class:`NetworkProvider` sends :class:`netkit.request.Request` descriptors
through an ``httpx.AsyncClient`` and decodes the responses into typed
results. Every call runs the same pipeline:

1. Build the wire request and attach authorization. Stored tokens are
   read from the credential store at the start of every attempt.
2. Run the ``will_send`` hook and send, following redirects through the
   ``will_redirect`` hook.
3. Parse the body as JSON on a best-effort basis, run the ``validate``
   hook, then classify non-2xx statuses.
4. Under stored-token authentication, an auth failure makes the refresh
   coordinator re-establish the token, and the call is retried once.
"""

import inspect
import json
import logging
import os
import tempfile
import time
import uuid
from pathlib import Path
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..auth.coordinator import (
    AuthConfig,
    RefreshCoordinator,
    RefreshOperation,
    ReloginOperation,
    bearer_authorizer,
)
from ..auth.credentials import create_credential_store
from ..config.settings import Settings
from ..exceptions import (
    AuthFailure,
    ConfigurationError,
    DecodeError,
    ResponseError,
    TransportError,
)
from ..models import ResponsePage, ResponseWithHeaders
from ..request.builder import BuiltRequest, build_request
from ..request.descriptor import CustomToken, Request, SkipAuth
from ..utils.http.client_manager import create_http_client
from ..utils.security import sanitize_url, setup_secure_logging
from .progress import ProgressCallback, ProgressRegistry, UploadProgress

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = TypeVar("P", bound=ResponsePage)

Validator = Callable[[httpx.Response, bytes, Any], Union[None, Awaitable[None]]]
WillSend = Callable[[httpx.Request], Union[None, Awaitable[None]]]
WillRedirect = Callable[
    [httpx.Request, httpx.Response, httpx.Request],
    Union[Optional[httpx.Request], Awaitable[Optional[httpx.Request]]],
]
Handler = Callable[[httpx.Response, str], Awaitable[T]]

_NOT_JSON = object()
_STATUS_ERROR_BODY_LIMIT = 2000


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _parse_json(body: bytes) -> Any:
    if not body:
        return _NOT_JSON
    try:
        return json.loads(body)
    except ValueError:
        return _NOT_JSON


class NetworkProvider:
    """Send request descriptors and decode the responses.

    :param base_url: Base URL relative endpoints are appended to
    :param auth: Stored-token authentication; without it, auth failures
        are never retried
    :param will_send: Hook run on every wire request just before sending
    :param will_redirect: Hook deciding each redirect; it returns the
        request to follow, or None to stop and return the redirect response
    :param validate: Hook called as ``validate(response, body, parsed)``
        for every response; raising rejects the response
    :param client: ``httpx.AsyncClient`` to send with. The provider only
        closes clients it created itself
    :param log_requests: Log every attempt
    :param raise_for_status: Raise for non-2xx responses
    :param max_redirects: Redirects followed per attempt
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth: Optional[AuthConfig] = None,
        will_send: Optional[WillSend] = None,
        will_redirect: Optional[WillRedirect] = None,
        validate: Optional[Validator] = None,
        client: Optional[httpx.AsyncClient] = None,
        log_requests: bool = True,
        raise_for_status: bool = True,
        max_redirects: int = 20,
    ):
        self.base_url = base_url
        self.auth = auth
        self.will_send = will_send
        self.will_redirect = will_redirect
        self.validate = validate
        self.log_requests = log_requests
        self.raise_for_status = raise_for_status
        self.max_redirects = max_redirects
        self.progress = ProgressRegistry()
        self._owns_client = client is None
        self._client = client if client is not None else create_http_client()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        relogin: Optional[ReloginOperation] = None,
        refresh_token: Optional[RefreshOperation] = None,
        configure_logging: bool = False,
        **kwargs: Any,
    ) -> "NetworkProvider":
        """Create a provider wired from configuration.

        The credential store, refresh coordinator and loop detector are
        built from ``settings``. Authentication is enabled when ``relogin``
        is given.

        :param settings: Settings, loaded from the environment when omitted
        :param relogin: Re-login operation
        :param refresh_token: Optional refresh operation
        :param configure_logging: Also configure root logging at
            ``settings.log_level`` with the sanitizing formatter
        :param kwargs: Extra provider options (hooks, ``client``)
        :raises ConfigurationError: If no base URL is configured
        """
        settings = settings or Settings()
        if not settings.base_url:
            raise ConfigurationError(
                "NETKIT_BASE_URL must be set to create a provider from settings",
                setting="base_url",
            )
        if configure_logging:
            setup_secure_logging(settings.log_level)

        auth = None
        if relogin is not None:
            auth = AuthConfig(
                relogin=relogin,
                store=create_credential_store(settings),
                service=settings.credential_service,
                unauth_codes=settings.auth_failure_codes,
                refresh_token=refresh_token,
                coordinator=RefreshCoordinator.from_settings(settings),
            )

        client = kwargs.pop("client", None)
        provider = cls(
            base_url=settings.base_url,
            auth=auth,
            client=client if client is not None else create_http_client(settings),
            log_requests=settings.log_requests,
            max_redirects=settings.max_redirects,
            **kwargs,
        )
        provider._owns_client = client is None
        return provider

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "NetworkProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def send(
        self, request: Request, progress: Optional[ProgressCallback] = None
    ) -> Dict[str, str]:
        """Send a request and return the response headers."""

        async def handle(response: httpx.Response, request_id: str) -> Dict[str, str]:
            await self._receive(response)
            return dict(response.headers)

        return await self._execute(request, handle, progress)

    async def load_data(
        self, request: Request, progress: Optional[ProgressCallback] = None
    ) -> bytes:
        """Send a request and return the raw response body."""

        async def handle(response: httpx.Response, request_id: str) -> bytes:
            body, _ = await self._receive(response)
            return body

        return await self._execute(request, handle, progress)

    async def load_text(
        self, request: Request, progress: Optional[ProgressCallback] = None
    ) -> str:
        """Send a request and return the body decoded as UTF-8.

        :raises DecodeError: If the body is not valid UTF-8
        """

        async def handle(response: httpx.Response, request_id: str) -> str:
            body, _ = await self._receive(response)
            try:
                return body.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError(f"Response is not valid UTF-8: {e}", expected="str") from e

        return await self._execute(request, handle, progress)

    async def load_json(
        self, request: Request, progress: Optional[ProgressCallback] = None
    ) -> Any:
        """Send a request and return the parsed JSON body.

        :raises DecodeError: If the body is not JSON
        """

        async def handle(response: httpx.Response, request_id: str) -> Any:
            _, parsed = await self._receive(response)
            return self._require_json(parsed, "JSON")

        return await self._execute(request, handle, progress)

    async def load_model(
        self,
        request: Request,
        model_type: Type[T],
        progress: Optional[ProgressCallback] = None,
    ) -> T:
        """Send a request and validate the JSON body as ``model_type``.

        ``model_type`` can be a pydantic model or any type pydantic can
        validate, such as ``List[Item]``.

        :raises DecodeError: If the body does not match ``model_type``
        """

        async def handle(response: httpx.Response, request_id: str) -> T:
            _, parsed = await self._receive(response)
            return self._decode_model(parsed, model_type)

        return await self._execute(request, handle, progress)

    async def load_with_headers(
        self,
        request: Request,
        model_type: Type[T],
        progress: Optional[ProgressCallback] = None,
    ) -> ResponseWithHeaders:
        """Like :meth:`load_model`, paired with the response headers."""

        async def handle(response: httpx.Response, request_id: str) -> ResponseWithHeaders:
            _, parsed = await self._receive(response)
            return ResponseWithHeaders(
                headers=dict(response.headers),
                response=self._decode_model(parsed, model_type),
            )

        return await self._execute(request, handle, progress)

    async def load_page(
        self,
        request: Request,
        page_type: Type[P],
        progress: Optional[ProgressCallback] = None,
    ) -> P:
        """Send a request and decode the body with ``page_type.from_dict``.

        :raises DecodeError: If the body is not an object or not a page
        """
        expected = getattr(page_type, "__name__", str(page_type))

        async def handle(response: httpx.Response, request_id: str) -> P:
            _, parsed = await self._receive(response)
            data = self._require_json(parsed, expected)
            if not isinstance(data, dict):
                raise DecodeError(
                    f"Expected a JSON object, got {type(data).__name__}",
                    expected=expected,
                )
            page = page_type.from_dict(data)
            if page is None:
                raise DecodeError(f"Response is not a {expected}", expected=expected)
            return page

        return await self._execute(request, handle, progress)

    async def download(
        self,
        request: Request,
        destination: Optional[Path] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Stream the response body to a file.

        Progress is reported against the response ``Content-Length``. If the
        response is rejected or the transfer fails, the written file is
        removed, including an explicit ``destination``.

        :param destination: Target file, a new temporary file when omitted
        :return: Path of the written file
        """

        async def handle(response: httpx.Response, request_id: str) -> Path:
            if not response.is_success:
                # Error and stopped-redirect responses are checked before
                # anything is written
                await self._receive(response)
                return await self._write_body(response, request_id, destination)
            path = await self._write_body(response, request_id, destination)
            try:
                await self._check(response, b"", None)
            except Exception:
                path.unlink(missing_ok=True)
                raise
            return path

        return await self._execute(request, handle, progress)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _stored_auth_token(self, descriptor: Request) -> Optional[str]:
        if self.auth is None or not descriptor.uses_stored_token:
            return None
        token = self.auth.token
        return token.auth if token is not None else None

    async def _execute(
        self,
        descriptor: Request,
        handler: Handler,
        progress: Optional[ProgressCallback],
    ) -> Any:
        retry_enabled = self.auth is not None and descriptor.uses_stored_token

        token_at_send = self._stored_auth_token(descriptor)
        try:
            return await self._attempt(descriptor, handler, progress, token_at_send)
        except Exception as e:
            if not retry_enabled or not self.auth.is_auth_failure(e):
                raise
            logger.info(
                f"Authentication failed with status {getattr(e, 'status_code', None)}, "
                "re-establishing token"
            )
            await self.auth.coordinator.reauth(e, token_at_send, self.auth)

        token_at_send = self._stored_auth_token(descriptor)
        return await self._attempt(descriptor, handler, progress, token_at_send)

    def _authorize(
        self, request: httpx.Request, descriptor: Request, token: Optional[str]
    ) -> None:
        authentication = descriptor.authentication
        if isinstance(authentication, SkipAuth):
            return
        authorize = self.auth.authorize if self.auth is not None else bearer_authorizer
        if isinstance(authentication, CustomToken):
            authorize(request, authentication.value)
        elif token is not None:
            authorize(request, token)

    async def _attempt(
        self,
        descriptor: Request,
        handler: Handler,
        progress: Optional[ProgressCallback],
        token: Optional[str],
    ) -> Any:
        request_id = uuid.uuid4().hex[:8]
        self.progress.register(request_id, progress)
        upload = UploadProgress(self.progress, request_id)
        started = time.perf_counter()
        try:
            built = build_request(descriptor, self.base_url, on_upload=upload)
            upload.total = built.body.content_length
            self._authorize(built.request, descriptor, token)
            if self.will_send is not None:
                await _maybe_await(self.will_send(built.request))
            if self.log_requests:
                logger.info(f"Sending [{request_id}] {built.description}")

            response = await self._send(built, upload)
            try:
                result = await handler(response, request_id)
            finally:
                await response.aclose()

            self.progress.report(request_id, 1.0)
            if self.log_requests:
                elapsed = (time.perf_counter() - started) * 1000
                logger.info(
                    f"Success [{request_id}] {response.status_code} in {elapsed:.0f}ms"
                )
            return result
        except Exception as e:
            if self.log_requests:
                logger.warning(f"Failed [{request_id}] {type(e).__name__}: {e}")
            raise
        finally:
            self.progress.remove(request_id)

    async def _send(
        self, built: BuiltRequest, upload: UploadProgress
    ) -> httpx.Response:
        """Send with manual redirect handling. Returns an open streamed response."""
        request = built.request
        redirects = 0
        while True:
            try:
                response = await self._client.send(
                    request, stream=True, follow_redirects=False
                )
            except httpx.TransportError as e:
                raise TransportError(
                    f"{type(e).__name__}: {e}", url=sanitize_url(str(request.url))
                ) from e

            proposed = response.next_request
            if proposed is None:
                return response
            if self.will_redirect is not None:
                try:
                    proposed = await _maybe_await(
                        self.will_redirect(request, response, proposed)
                    )
                except BaseException:
                    await response.aclose()
                    raise
            if proposed is None:
                logger.debug(f"Redirect to {response.headers.get('location')} cancelled")
                return response
            if redirects >= self.max_redirects:
                await response.aclose()
                raise ResponseError(
                    f"Exceeded {self.max_redirects} redirects",
                    status_code=response.status_code,
                )
            redirects += 1
            await response.aclose()
            request = self._replay_body(proposed, built, upload)

    @staticmethod
    def _replay_body(
        proposed: httpx.Request,
        built: BuiltRequest,
        upload: UploadProgress,
    ) -> httpx.Request:
        # A streamed body is consumed by the first send; reopen it when the
        # redirect keeps the method and therefore the body.
        if not built.body.is_streamed or proposed.method != built.request.method:
            return proposed
        upload.restart()
        return httpx.Request(
            proposed.method,
            proposed.url,
            headers=proposed.headers,
            content=built.body.content(on_read=upload),
        )

    async def _receive(self, response: httpx.Response) -> Tuple[bytes, Any]:
        """Read the body, validate it, and return ``(body, parsed_json)``."""
        body = await response.aread()
        parsed = _parse_json(body)
        await self._check(response, body, None if parsed is _NOT_JSON else parsed)
        return body, parsed

    async def _check(self, response: httpx.Response, body: bytes, parsed: Any) -> None:
        if self.validate is not None:
            await _maybe_await(self.validate(response, body, parsed))
        # A redirect response is only returned when the redirect hook stopped it
        if self.raise_for_status and not (response.is_success or response.is_redirect):
            self._raise_for_status(response, body)

    def _raise_for_status(self, response: httpx.Response, body: bytes) -> None:
        status = response.status_code
        text = body[:_STATUS_ERROR_BODY_LIMIT].decode("utf-8", errors="replace")
        headers = dict(response.headers)
        if self.auth is not None and status in self.auth.unauth_codes:
            raise AuthFailure(
                f"Authentication failed with status {status}",
                status_code=status,
                response_body=text,
                headers=headers,
            )
        raise ResponseError(
            f"Request failed with status {status}",
            status_code=status,
            response_body=text,
            headers=headers,
        )

    @staticmethod
    def _require_json(parsed: Any, expected: str) -> Any:
        if parsed is _NOT_JSON:
            raise DecodeError("Response body is not valid JSON", expected=expected)
        return parsed

    def _decode_model(self, parsed: Any, model_type: Type[T]) -> T:
        expected = getattr(model_type, "__name__", str(model_type))
        data = self._require_json(parsed, expected)
        try:
            return TypeAdapter(model_type).validate_python(data)
        except PydanticValidationError as e:
            raise DecodeError(
                f"Response does not match {expected}: {e.error_count()} error(s)",
                expected=expected,
            ) from e

    async def _write_body(
        self,
        response: httpx.Response,
        request_id: str,
        destination: Optional[Path],
    ) -> Path:
        if destination is None:
            fd, name = tempfile.mkstemp(prefix="netkit-", suffix=".download")
            os.close(fd)
            path = Path(name)
        else:
            path = Path(destination)

        total = int(response.headers.get("Content-Length") or 0)
        received = 0
        try:
            with open(path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
                    received += len(chunk)
                    if total:
                        self.progress.report(request_id, received / total)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        logger.debug(f"Downloaded {received} bytes to {path}")
        return path
