"""Unit tests for NetworkProvider operations and hooks."""

import json
from datetime import date
from typing import List

import httpx
import pytest
from pydantic import BaseModel

from netkit.client import NetworkProvider
from netkit.exceptions import (
    AuthFailure,
    ConfigurationError,
    DecodeError,
    EncodeError,
    ResponseError,
    StreamReadError,
    TransportError,
    URLConstructionError,
    ValidationError,
)
from netkit.config import Settings
from netkit.models import OffsetPage, Token
from netkit.request import (
    CustomToken,
    File,
    FormField,
    FormFile,
    JSONPayload,
    MultipartPayload,
    Request,
    SkipAuth,
    UploadPayload,
)


class Item(BaseModel):
    id: int
    name: str


def json_response(data, status_code=200, headers=None):
    return httpx.Response(status_code, json=data, headers=headers)


class TestDecoding:
    @pytest.mark.asyncio
    async def test_send_returns_headers(self, make_provider):
        provider = make_provider(lambda r: httpx.Response(204, headers={"X-Id": "7"}))
        headers = await provider.send(Request("ping"))
        assert headers["x-id"] == "7"

    @pytest.mark.asyncio
    async def test_load_text_and_data(self, make_provider):
        provider = make_provider(lambda r: httpx.Response(200, content="héllo".encode()))
        assert await provider.load_text(Request("t")) == "héllo"
        assert await provider.load_data(Request("t")) == "héllo".encode()

    @pytest.mark.asyncio
    async def test_load_text_rejects_invalid_utf8(self, make_provider):
        provider = make_provider(lambda r: httpx.Response(200, content=b"\xff\xfe"))
        with pytest.raises(DecodeError):
            await provider.load_text(Request("t"))

    @pytest.mark.asyncio
    async def test_load_json(self, make_provider):
        provider = make_provider(lambda r: json_response({"a": [1, 2]}))
        assert await provider.load_json(Request("j")) == {"a": [1, 2]}

    @pytest.mark.asyncio
    async def test_load_json_rejects_non_json(self, make_provider):
        provider = make_provider(lambda r: httpx.Response(200, content=b"<html>"))
        with pytest.raises(DecodeError):
            await provider.load_json(Request("j"))

    @pytest.mark.asyncio
    async def test_load_model_and_list_of_models(self, make_provider):
        provider = make_provider(lambda r: json_response({"id": 1, "name": "one"}))
        assert await provider.load_model(Request("i"), Item) == Item(id=1, name="one")

        provider = make_provider(lambda r: json_response([{"id": 1, "name": "a"}]))
        items = await provider.load_model(Request("i"), List[Item])
        assert items == [Item(id=1, name="a")]

    @pytest.mark.asyncio
    async def test_load_model_mismatch_is_decode_error(self, make_provider):
        provider = make_provider(lambda r: json_response({"id": "nope"}))
        with pytest.raises(DecodeError) as exc_info:
            await provider.load_model(Request("i"), Item)
        assert exc_info.value.expected == "Item"

    @pytest.mark.asyncio
    async def test_load_with_headers(self, make_provider):
        provider = make_provider(
            lambda r: json_response({"id": 2, "name": "b"}, headers={"ETag": "v1"})
        )
        result = await provider.load_with_headers(Request("i"), Item)
        assert result.response == Item(id=2, name="b")
        assert result.headers["etag"] == "v1"

    @pytest.mark.asyncio
    async def test_load_page(self, make_provider):
        provider = make_provider(
            lambda r: json_response({"values": [{"id": 1}], "next_offset": 10})
        )
        page = await provider.load_page(Request("list"), OffsetPage)
        assert page.values == [{"id": 1}]
        assert page.has_more

    @pytest.mark.asyncio
    async def test_load_page_rejects_non_page_bodies(self, make_provider):
        provider = make_provider(lambda r: json_response([1, 2]))
        with pytest.raises(DecodeError):
            await provider.load_page(Request("list"), OffsetPage)

        provider = make_provider(lambda r: json_response({"items": []}))
        with pytest.raises(DecodeError):
            await provider.load_page(Request("list"), OffsetPage)


class TestStatusAndErrors:
    @pytest.mark.asyncio
    async def test_non_2xx_raises_response_error(self, make_provider):
        provider = make_provider(lambda r: httpx.Response(500, text="boom"))
        with pytest.raises(ResponseError) as exc_info:
            await provider.load_json(Request("x"))
        assert exc_info.value.status_code == 500
        assert exc_info.value.response_body == "boom"
        assert not isinstance(exc_info.value, AuthFailure)

    @pytest.mark.asyncio
    async def test_raise_for_status_disabled(self, make_provider):
        provider = make_provider(
            lambda r: httpx.Response(404, text="missing"), raise_for_status=False
        )
        assert await provider.load_text(Request("x")) == "missing"

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped_and_not_retried(self, make_provider, make_auth):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        auth = make_auth()
        provider = make_provider(handler, auth=auth)
        with pytest.raises(TransportError) as exc_info:
            await provider.send(Request("x"))
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert len(calls) == 1
        assert auth.calls == []

    @pytest.mark.asyncio
    async def test_invalid_url_fails_before_sending(self, make_provider):
        calls = []
        provider = make_provider(lambda r: calls.append(r), base_url=None)
        with pytest.raises(URLConstructionError):
            await provider.send(Request("relative"))
        assert calls == []

    @pytest.mark.asyncio
    async def test_unserializable_payload_fails_before_sending(self, make_provider):
        calls = []
        provider = make_provider(lambda r: calls.append(r))
        payload = JSONPayload({"when": date(2024, 1, 2)})
        with pytest.raises(EncodeError):
            await provider.send(Request("x", method="POST", payload=payload))
        assert calls == []
        assert len(provider.progress) == 0

    @pytest.mark.asyncio
    async def test_validator_receives_parsed_body_and_can_reject(self, make_provider):
        seen = []

        def validate(response, body, parsed):
            seen.append((response.status_code, body, parsed))
            if parsed and parsed.get("error"):
                raise ValidationError(parsed["error"], field="error")

        provider = make_provider(
            lambda r: json_response({"error": "quota exceeded"}), validate=validate
        )
        with pytest.raises(ValidationError):
            await provider.load_json(Request("x"))
        assert seen[0][0] == 200
        assert seen[0][2] == {"error": "quota exceeded"}

    @pytest.mark.asyncio
    async def test_validator_gets_none_for_non_json(self, make_provider):
        seen = []
        provider = make_provider(
            lambda r: httpx.Response(200, content=b"plain"),
            validate=lambda response, body, parsed: seen.append((body, parsed)),
        )
        await provider.load_text(Request("x"))
        assert seen == [(b"plain", None)]


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_stored_token_is_attached(self, make_provider, make_auth):
        seen = []
        auth = make_auth()
        auth.update_token(Token(auth="tok"))

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200)

        await make_provider(handler, auth=auth).send(Request("x"))
        assert seen == ["Bearer tok"]

    @pytest.mark.asyncio
    async def test_missing_token_sends_unauthenticated(self, make_provider, make_auth):
        seen = []

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200)

        await make_provider(handler, auth=make_auth()).send(Request("x"))
        assert seen == [None]

    @pytest.mark.asyncio
    async def test_skip_auth_never_attaches_header(self, make_provider, make_auth):
        seen = []
        auth = make_auth()
        auth.update_token(Token(auth="tok"))

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200)

        await make_provider(handler, auth=auth).send(
            Request("x", authentication=SkipAuth())
        )
        assert seen == [None]

    @pytest.mark.asyncio
    async def test_custom_token_401_is_not_retried(self, make_provider, make_auth):
        seen = []
        auth = make_auth()
        auth.update_token(Token(auth="stored"))

        def handler(request):
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(401)

        provider = make_provider(handler, auth=auth)
        with pytest.raises(AuthFailure):
            await provider.send(Request("x", authentication=CustomToken("mine")))
        assert seen == ["Bearer mine"]
        assert auth.calls == []

    @pytest.mark.asyncio
    async def test_custom_authorizer(self, make_provider, make_auth):
        seen = []

        def authorize(request, token):
            request.headers["X-Api-Token"] = token

        auth = make_auth(authorize=authorize)
        auth.update_token(Token(auth="tok"))

        def handler(request):
            seen.append(request.headers.get("X-Api-Token"))
            return httpx.Response(200)

        await make_provider(handler, auth=auth).send(Request("x"))
        assert seen == ["tok"]


class TestHooks:
    @pytest.mark.asyncio
    async def test_will_send_can_modify_request(self, make_provider):
        seen = []

        async def will_send(request):
            request.headers["X-Trace-Id"] = "t-1"

        def handler(request):
            seen.append(request.headers.get("X-Trace-Id"))
            return httpx.Response(200)

        await make_provider(handler, will_send=will_send).send(Request("x"))
        assert seen == ["t-1"]

    @pytest.mark.asyncio
    async def test_redirects_are_followed(self, make_provider):
        def handler(request):
            if request.url.path == "/v1/old":
                return httpx.Response(302, headers={"Location": "/v1/new"})
            return httpx.Response(200, text=request.url.path)

        assert await make_provider(handler).load_text(Request("old")) == "/v1/new"

    @pytest.mark.asyncio
    async def test_will_redirect_can_cancel(self, make_provider):
        def handler(request):
            return httpx.Response(302, headers={"Location": "/elsewhere"})

        provider = make_provider(
            handler, will_redirect=lambda request, response, proposed: None
        )
        headers = await provider.send(Request("old"))
        assert headers["location"] == "/elsewhere"

    @pytest.mark.asyncio
    async def test_will_redirect_can_replace(self, make_provider):
        def handler(request):
            if request.url.path == "/v1/old":
                return httpx.Response(302, headers={"Location": "/v1/new"})
            return httpx.Response(200, text=request.url.path)

        def will_redirect(request, response, proposed):
            return httpx.Request("GET", "https://api.example.com/v1/replaced")

        provider = make_provider(handler, will_redirect=will_redirect)
        assert await provider.load_text(Request("old")) == "/v1/replaced"

    @pytest.mark.asyncio
    async def test_too_many_redirects(self, make_provider):
        provider = make_provider(
            lambda r: httpx.Response(302, headers={"Location": "/loop"}),
            max_redirects=3,
        )
        with pytest.raises(ResponseError):
            await provider.send(Request("loop"))

    @pytest.mark.asyncio
    async def test_streamed_body_is_resent_on_307(self, make_provider):
        bodies = []

        def handler(request):
            bodies.append(request.content)
            if request.url.path == "/v1/up":
                return httpx.Response(307, headers={"Location": "/v1/up2"})
            return httpx.Response(200)

        payload = MultipartPayload([FormField("a", "1")])
        await make_provider(handler).send(Request("up", method="POST", payload=payload))
        assert len(bodies) == 2
        assert bodies[0] == bodies[1]
        assert b'name="a"' in bodies[0]

    @pytest.mark.asyncio
    async def test_upload_progress_restarts_when_body_is_resent(self, make_provider, tmp_path):
        path = tmp_path / "blob.bin"
        path.write_bytes(b"z" * 100_000)
        reports = []

        def handler(request):
            if request.url.path == "/v1/up":
                return httpx.Response(308, headers={"Location": "/v1/up2"})
            return httpx.Response(200)

        await make_provider(handler).send(
            Request("up", method="PUT", payload=UploadPayload(path)),
            progress=reports.append,
        )
        first_chunk = pytest.approx(65536 / 100_000)
        assert reports == [first_chunk, 1.0, first_chunk, 1.0, 1.0]


class TestBodiesAndProgress:
    @pytest.mark.asyncio
    async def test_json_payload_round_trip(self, make_provider):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        await make_provider(handler).send(
            Request("x", method="POST", payload=JSONPayload({"a": 1}))
        )
        assert received == [{"a": 1}]

    @pytest.mark.asyncio
    async def test_multipart_upload_progress(self, make_provider, tmp_path):
        path = tmp_path / "big.bin"
        path.write_bytes(b"z" * 200_000)
        received = []
        reports = []

        def handler(request):
            received.append(request.content)
            return httpx.Response(200)

        provider = make_provider(handler)
        payload = MultipartPayload(
            [FormFile("f", File(path, "application/octet-stream", "big.bin"))]
        )
        await provider.send(
            Request("up", method="POST", payload=payload), progress=reports.append
        )

        assert len(received[0]) > 200_000
        assert reports[-1] == 1.0
        assert len(reports) > 1
        assert reports == sorted(reports)
        assert len(provider.progress) == 0

    @pytest.mark.asyncio
    async def test_failing_upload_source_surfaces_stream_error(self, make_provider, tmp_path):
        provider = make_provider(lambda r: httpx.Response(200))
        payload = UploadPayload(tmp_path / "missing.bin")
        with pytest.raises(StreamReadError):
            await provider.send(Request("up", method="PUT", payload=payload))
        assert len(provider.progress) == 0

    @pytest.mark.asyncio
    async def test_broken_progress_callback_does_not_fail_request(self, make_provider):
        def progress(fraction):
            raise RuntimeError("sink broken")

        provider = make_provider(lambda r: httpx.Response(200, text="ok"))
        assert await provider.load_text(Request("x"), progress=progress) == "ok"

    @pytest.mark.asyncio
    async def test_download_to_destination_with_progress(self, make_provider, tmp_path):
        content = b"0123456789" * 1000
        reports = []
        provider = make_provider(lambda r: httpx.Response(200, content=content))
        destination = tmp_path / "out.bin"

        path = await provider.download(
            Request("file"), destination=destination, progress=reports.append
        )

        assert path == destination
        assert path.read_bytes() == content
        assert reports[-1] == 1.0

    @pytest.mark.asyncio
    async def test_download_to_temporary_file(self, make_provider):
        provider = make_provider(lambda r: httpx.Response(200, content=b"data"))
        path = await provider.download(Request("file"))
        try:
            assert path.read_bytes() == b"data"
        finally:
            path.unlink()

    @pytest.mark.asyncio
    async def test_download_error_status_raises(self, make_provider, tmp_path):
        provider = make_provider(lambda r: httpx.Response(404, text="nope"))
        destination = tmp_path / "out.bin"
        with pytest.raises(ResponseError):
            await provider.download(Request("file"), destination=destination)
        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_rejected_download_removes_destination(self, make_provider, tmp_path):
        def validate(response, body, parsed):
            if response.headers.get("X-Checksum") != "ok":
                raise ValidationError("checksum mismatch")

        provider = make_provider(
            lambda r: httpx.Response(200, content=b"data", headers={"X-Checksum": "bad"}),
            validate=validate,
        )
        destination = tmp_path / "out.bin"
        with pytest.raises(ValidationError):
            await provider.download(Request("file"), destination=destination)
        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_stopped_redirect_download_writes_redirect_body(self, make_provider, tmp_path):
        provider = make_provider(
            lambda r: httpx.Response(302, headers={"Location": "/elsewhere"}, content=b"moved"),
            will_redirect=lambda request, response, proposed: None,
        )
        path = await provider.download(Request("file"), destination=tmp_path / "out.bin")
        assert path.read_bytes() == b"moved"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with NetworkProvider("https://api.example.com/", client=client):
            pass
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self):
        provider = NetworkProvider("https://api.example.com/")
        await provider.aclose()
        assert provider.client.is_closed

    @pytest.mark.asyncio
    async def test_from_settings_requires_base_url(self):
        with pytest.raises(ConfigurationError):
            NetworkProvider.from_settings(Settings())

    @pytest.mark.asyncio
    async def test_from_settings_wires_auth(self):
        async def relogin():
            return None

        settings = Settings(
            base_url="https://api.example.com/",
            auth_failure_codes=[401],
            refresh_loop_threshold=3,
        )
        provider = NetworkProvider.from_settings(settings, relogin=relogin)
        try:
            assert provider.base_url == "https://api.example.com/"
            assert provider.auth.unauth_codes == frozenset({401})
            assert provider.auth.coordinator.loop_detector.threshold == 3
        finally:
            await provider.aclose()
        assert provider.client.is_closed

    @pytest.mark.asyncio
    async def test_from_settings_configures_logging_on_request(self, monkeypatch):
        levels = []
        monkeypatch.setattr(
            "netkit.client.provider.setup_secure_logging", levels.append
        )
        monkeypatch.setenv("NETKIT_BASE_URL", "https://api.example.com/")
        monkeypatch.setenv("NETKIT_LOG_LEVEL", "DEBUG")

        provider = NetworkProvider.from_settings()
        await provider.aclose()
        assert levels == []

        provider = NetworkProvider.from_settings(configure_logging=True)
        await provider.aclose()
        assert levels == ["DEBUG"]
