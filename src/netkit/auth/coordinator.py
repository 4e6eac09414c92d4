"""Coordinated token refresh after authentication failures.

When many in-flight requests fail at once because the stored token has
expired, only one of them should refresh it. :class:`RefreshCoordinator`
makes that happen:

1. Errors that are not authentication failures propagate unchanged.
2. If the stored token already differs from the one the failing request
   was sent with, another request refreshed it; nothing else is done.
3. Otherwise the caller joins the shared refresh slot. The first caller
   refreshes the token (or re-logs in) and every waiter receives the
   same outcome.

A :class:`LoopDetector` guards the refresh step against a server that
keeps rejecting freshly issued tokens.
"""

import inspect
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import httpx

from ..config.settings import Settings
from ..exceptions import RefreshLoopError, is_auth_failure
from ..models import Token
from .credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    load_token,
    save_token,
)
from .single_flight import SingleFlight

logger = logging.getLogger(__name__)

DEFAULT_UNAUTH_CODES = frozenset({401, 403})

ReloginOperation = Callable[[], Union[None, Awaitable[None]]]
RefreshOperation = Callable[[str], Union[Token, Awaitable[Token]]]
Authorizer = Callable[[httpx.Request, str], None]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def bearer_authorizer(request: httpx.Request, token: str) -> None:
    """Authorize ``request`` with an ``Authorization: Bearer`` header."""
    request.headers["Authorization"] = f"Bearer {token}"


class LoopDetector:
    """Detect token refreshes that repeat too quickly.

    A window starts with the first check after a reset. The counter
    resets when more than ``window`` seconds have passed since the window
    started. Each check increments it, and the check that brings it to
    ``threshold`` raises :class:`RefreshLoopError` and resets it.

    :param threshold: Attempts within one window that trip the detector
    :param window: Window length in seconds
    :param clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        threshold: int = 5,
        window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.window = window
        self._clock = clock
        self._count = 0
        self._window_start = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "LoopDetector":
        return cls(
            threshold=settings.refresh_loop_threshold,
            window=settings.refresh_loop_window_seconds,
        )

    @property
    def count(self) -> int:
        return self._count

    def check(self) -> None:
        """Record one refresh attempt.

        :raises RefreshLoopError: If the attempt reaches the threshold
        """
        with self._lock:
            now = self._clock()
            if self._count == 0 or now - self._window_start > self.window:
                self._count = 0
                self._window_start = now
            self._count += 1
            if self._count >= self.threshold:
                attempts = self._count
                self._count = 0
                logger.error(
                    f"Authorization loop detected: {attempts} refreshes "
                    f"within {self.window}s"
                )
                raise RefreshLoopError(attempts, self.window)

    def reset(self) -> None:
        with self._lock:
            self._count = 0
            self._window_start = self._clock()


class RefreshCoordinator:
    """Serialize token refreshes across concurrent requests.

    One coordinator owns the shared refresh slot and the loop detector.
    Providers that share a token should share a coordinator.

    :param loop_detector: Loop detector, a default one when omitted
    :param slot_key: Key of the shared refresh slot
    """

    def __init__(
        self,
        loop_detector: Optional[LoopDetector] = None,
        slot_key: str = "reauth",
    ):
        self.loop_detector = loop_detector or LoopDetector()
        self.slot_key = slot_key
        self._flight = SingleFlight()
        self.refresh_count = 0
        self.relogin_count = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RefreshCoordinator":
        return cls(
            loop_detector=LoopDetector.from_settings(settings),
            slot_key=settings.refresh_slot_key,
        )

    @property
    def refreshing(self) -> bool:
        """Whether a refresh or re-login is currently in flight."""
        return self._flight.in_flight(self.slot_key)

    async def reauth(
        self,
        error: BaseException,
        token_at_send: Optional[str],
        auth: "AuthConfig",
    ) -> None:
        """Re-establish a valid token after ``error``.

        :param error: Error raised by the failed request attempt
        :param token_at_send: Auth token the failed request was sent with
        :param auth: Authentication configuration of the request
        :raises Exception: ``error`` itself if it is not an auth failure, or
            whatever the refresh/re-login raised, including
            :class:`RefreshLoopError`
        """
        if not auth.is_auth_failure(error):
            raise error

        current = auth.token
        if current is not None and current.auth != token_at_send:
            logger.debug("Stored token changed since the request was sent")
            return

        await self._flight.run(self.slot_key, lambda: self._refresh(auth))

    async def _refresh(self, auth: "AuthConfig") -> None:
        token = auth.token
        if auth.refresh_token is not None and token is not None and token.refresh:
            self.loop_detector.check()
            self.refresh_count += 1
            try:
                new_token = await _maybe_await(auth.refresh_token(token.refresh))
            except Exception as e:
                logger.warning(f"Token refresh failed, re-logging in: {e}")
            else:
                auth.update_token(new_token)
                logger.info("Access token refreshed")
                return

        self.relogin_count += 1
        logger.info("Re-authenticating")
        await _maybe_await(auth.relogin())


class AuthConfig:
    """Authentication settings for a :class:`netkit.client.NetworkProvider`.

    :param relogin: Operation that re-establishes a token out of band and
        stores it itself; sync or async
    :param store: Credential store holding the token
    :param service: Key the token is stored under
    :param unauth_codes: Status codes that mean an expired or invalid token
    :param authorize: Attaches a token to a wire request
    :param refresh_token: Operation exchanging a refresh token for a new
        :class:`Token`; sync or async
    :param coordinator: Refresh coordinator, a new one when omitted
    """

    def __init__(
        self,
        relogin: ReloginOperation,
        store: Optional[CredentialStore] = None,
        service: str = "netkit.token",
        unauth_codes: Iterable[int] = DEFAULT_UNAUTH_CODES,
        authorize: Authorizer = bearer_authorizer,
        refresh_token: Optional[RefreshOperation] = None,
        coordinator: Optional[RefreshCoordinator] = None,
    ):
        self.relogin = relogin
        self.store = store if store is not None else InMemoryCredentialStore()
        self.service = service
        self.unauth_codes = frozenset(unauth_codes)
        self.authorize = authorize
        self.refresh_token = refresh_token
        self.coordinator = coordinator or RefreshCoordinator()

    @property
    def token(self) -> Optional[Token]:
        """The stored token, read fresh from the store on every access."""
        return load_token(self.store, self.service)

    def update_token(self, token: Optional[Token]) -> None:
        save_token(self.store, self.service, token)

    def is_auth_failure(self, error: BaseException) -> bool:
        return is_auth_failure(error, self.unauth_codes)
