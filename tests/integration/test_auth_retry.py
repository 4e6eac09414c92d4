"""Integration tests for the authentication retry pipeline.

These tests run full requests through NetworkProvider against an
httpx.MockTransport server and verify:
1. Concurrent failures on one stale token trigger a single refresh
2. A token refreshed by someone else makes the refresh a no-op
3. The retry happens at most once per call
4. The loop detector stops a server that rejects every fresh token
"""

import asyncio
import itertools

import httpx
import pytest

from netkit.auth import LoopDetector, RefreshCoordinator
from netkit.exceptions import AuthFailure, RefreshLoopError, ValidationError
from netkit.models import Token
from netkit.request import Request


@pytest.mark.integration
@pytest.mark.auth
class TestAuthRetry:
    @pytest.mark.asyncio
    async def test_twenty_concurrent_failures_refresh_once(self, make_provider, make_auth):
        refreshes = []

        async def refresh(refresh_token):
            refreshes.append(refresh_token)
            await asyncio.sleep(0.01)
            return Token(auth="fresh", refresh="r2")

        auth = make_auth(refresh=refresh)
        auth.update_token(Token(auth="stale", refresh="r1"))
        gate = asyncio.Event()
        arrivals = []

        async def handler(request):
            if request.headers.get("Authorization") == "Bearer fresh":
                return httpx.Response(200, json={"ok": True})
            arrivals.append(1)
            if len(arrivals) == 20:
                gate.set()
            # Hold every stale request until all 20 have been sent
            await gate.wait()
            return httpx.Response(401)

        provider = make_provider(handler, auth=auth)
        results = await asyncio.gather(
            *(provider.load_json(Request(f"items/{i}")) for i in range(20))
        )

        assert results == [{"ok": True}] * 20
        assert refreshes == ["r1"]
        assert auth.calls == []
        assert auth.coordinator.refresh_count == 1

    @pytest.mark.asyncio
    async def test_twenty_concurrent_failures_relogin_once(self, make_provider, make_auth):
        auth = make_auth(relogin_token="fresh")
        auth.update_token(Token(auth="stale"))
        gate = asyncio.Event()
        arrivals = []

        async def handler(request):
            if request.headers.get("Authorization") == "Bearer fresh":
                return httpx.Response(200)
            arrivals.append(1)
            if len(arrivals) == 20:
                gate.set()
            await gate.wait()
            return httpx.Response(403)

        provider = make_provider(handler, auth=auth)
        await asyncio.gather(*(provider.send(Request("x")) for _ in range(20)))
        assert auth.calls == ["relogin"]

    @pytest.mark.asyncio
    async def test_token_changed_since_send_skips_refresh(self, make_provider, make_auth):
        auth = make_auth()
        auth.update_token(Token(auth="old"))
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            if request.headers.get("Authorization") == "Bearer old":
                # Another caller refreshed while this request was in flight
                auth.update_token(Token(auth="new"))
                return httpx.Response(401)
            return httpx.Response(200)

        await make_provider(handler, auth=auth).send(Request("x"))
        assert seen == ["Bearer old", "Bearer new"]
        assert auth.calls == []

    @pytest.mark.asyncio
    async def test_second_auth_failure_propagates(self, make_provider, make_auth):
        counter = itertools.count()
        calls = []

        async def refresh(refresh_token):
            return Token(auth=f"fresh-{next(counter)}", refresh="r")

        auth = make_auth(refresh=refresh)
        auth.update_token(Token(auth="stale", refresh="r"))

        def handler(request):
            calls.append(request.headers.get("Authorization"))
            return httpx.Response(401)

        with pytest.raises(AuthFailure):
            await make_provider(handler, auth=auth).send(Request("x"))
        assert calls == ["Bearer stale", "Bearer fresh-0"]
        assert auth.coordinator.refresh_count == 1

    @pytest.mark.asyncio
    async def test_non_auth_errors_are_not_retried(self, make_provider, make_auth):
        calls = []
        auth = make_auth()

        def handler(request):
            calls.append(1)
            return httpx.Response(500)

        with pytest.raises(Exception):
            await make_provider(handler, auth=auth).send(Request("x"))
        assert len(calls) == 1
        assert auth.calls == []

    @pytest.mark.asyncio
    async def test_validator_auth_status_triggers_retry(self, make_provider, make_auth):
        auth = make_auth(relogin_token="fresh")
        auth.update_token(Token(auth="stale"))

        def validate(response, body, parsed):
            if parsed and parsed.get("code") == "SESSION_EXPIRED":
                raise ValidationError("session expired", status_code=401)

        def handler(request):
            if request.headers.get("Authorization") == "Bearer fresh":
                return httpx.Response(200, json={"code": "OK"})
            return httpx.Response(200, json={"code": "SESSION_EXPIRED"})

        provider = make_provider(handler, auth=auth, validate=validate)
        assert await provider.load_json(Request("x")) == {"code": "OK"}
        assert auth.calls == ["relogin"]

    @pytest.mark.asyncio
    async def test_refresh_loop_is_detected(self, make_provider, make_auth):
        coordinator = RefreshCoordinator(
            loop_detector=LoopDetector(threshold=5, window=1.0, clock=lambda: 0.0)
        )
        counter = itertools.count()

        async def refresh(refresh_token):
            return Token(auth=f"fresh-{next(counter)}", refresh="r")

        auth = make_auth(refresh=refresh, coordinator=coordinator)
        auth.update_token(Token(auth="stale", refresh="r"))
        provider = make_provider(lambda r: httpx.Response(401), auth=auth)

        for _ in range(4):
            with pytest.raises(AuthFailure):
                await provider.send(Request("x"))
        with pytest.raises(RefreshLoopError):
            await provider.send(Request("x"))
        assert auth.calls == []
