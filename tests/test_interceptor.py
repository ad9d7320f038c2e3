"""
tests/test_interceptor.py -- Retry-on-provisioning interceptor.

Unit tests drive ProvisioningRetryTransport with canned frontend and
provisioning replies. TestEndToEnd routes the provisioner to the real
/api/v1/migration/provision endpoint through the bridge TestClient, so a 422
for a legacy email really provisions the user before the replay.

Covers:
  - non-422 responses pass through untouched, no provisioning call
  - 422 + "not exist" -> original 422, no replay
  - 422 + "user exists" -> exactly one replay with identical method/url/body
  - 422 on the replay is returned as-is (never a second replay)
  - provisioning failure, unreachable endpoint, replay transport error
    -> original 422
  - only an identifier pair reaches the provisioning endpoint; a 422 on a
    password attempt is returned without provisioning
  - install() swaps the transport and restores it, also on error
"""

from __future__ import annotations

import json
from urllib.parse import parse_qsl

import httpx
import pytest

from frontend.interceptor import (
    JitProvisioner,
    ProvisioningReply,
    ProvisioningRetryTransport,
    RetryOnProvisioningInterceptor,
    _identifier_pair,
)
from frontend.signin import HostedSignInClient, SignInError
from tests.conftest import FRONTEND_URL, complete_sign_in_payload

PROVISION_URL = "http://authbridge.test/api/v1/migration/provision"


class Frontend:
    """Scripted frontend API: pops one status per call, records requests."""

    def __init__(self, *statuses: int) -> None:
        self.statuses = list(statuses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0)
        if status == 422:
            return httpx.Response(422, json={"errors": [{"code": "form_identifier_not_found"}]})
        return httpx.Response(status, json={"response": {"id": "sia_1", "status": "needs_first_factor"}})


class Provisioner:
    """Scripted provisioning endpoint; records the posted fragments."""

    def __init__(self, status: int = 200, body: dict | None = None, raises: bool = False) -> None:
        self.status = status
        self.body = body if body is not None else {"succes": "user exists"}
        self.raises = raises
        self.fragments: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.fragments.append(json.loads(request.content)["email"])
        if self.raises:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status, json=self.body)


def _client(frontend, provisioner) -> tuple[HostedSignInClient, RetryOnProvisioningInterceptor]:
    client = HostedSignInClient(FRONTEND_URL, transport=httpx.MockTransport(frontend))
    interceptor = RetryOnProvisioningInterceptor(
        JitProvisioner(PROVISION_URL, transport=httpx.MockTransport(provisioner))
    )
    return client, interceptor


class TestTransport:
    @pytest.mark.asyncio
    async def test_success_passes_through_without_provisioning(self):
        frontend, provisioner = Frontend(200), Provisioner()
        client, interceptor = _client(frontend, provisioner)
        with interceptor.install(client):
            response = await client.send("POST", "/v1/client/sign_ins", data={"identifier": "ada@example.com"})
        assert response.status_code == 200
        assert provisioner.fragments == []
        assert len(frontend.requests) == 1

    @pytest.mark.asyncio
    async def test_not_exist_returns_original_without_replay(self):
        frontend = Frontend(422)
        provisioner = Provisioner(body={"error": "not exist"})
        client, interceptor = _client(frontend, provisioner)
        with interceptor.install(client):
            response = await client.send("POST", "/v1/client/sign_ins", data={"identifier": "ghost@example.com"})
        assert response.status_code == 422
        assert provisioner.fragments == ["identifier=ghost%40example.com"]
        assert len(frontend.requests) == 1

    @pytest.mark.asyncio
    async def test_user_exists_replays_identical_request_once(self):
        frontend, provisioner = Frontend(422, 200), Provisioner()
        client, interceptor = _client(frontend, provisioner)
        with interceptor.install(client):
            response = await client.send("POST", "/v1/client/sign_ins", data={"identifier": "ada@example.com"})
        assert response.status_code == 200
        assert len(frontend.requests) == 2
        first, replay = frontend.requests
        assert (replay.method, replay.url, replay.content) == (first.method, first.url, first.content)

    @pytest.mark.asyncio
    async def test_replay_422_is_final(self):
        frontend, provisioner = Frontend(422, 422), Provisioner()
        client, interceptor = _client(frontend, provisioner)
        with interceptor.install(client):
            response = await client.send("POST", "/v1/client/sign_ins", data={"identifier": "ada@example.com"})
        assert response.status_code == 422
        assert len(frontend.requests) == 2
        assert len(provisioner.fragments) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "provisioner",
        [
            Provisioner(status=502, body={"error": "provisioning failed"}),
            Provisioner(raises=True),
            Provisioner(status=500, body={}),
        ],
        ids=["endpoint-502", "endpoint-unreachable", "endpoint-500"],
    )
    async def test_provisioning_failure_returns_original(self, provisioner):
        frontend = Frontend(422)
        client, interceptor = _client(frontend, provisioner)
        with interceptor.install(client):
            response = await client.send("POST", "/v1/client/sign_ins", data={"identifier": "ada@example.com"})
        assert response.status_code == 422
        assert len(frontend.requests) == 1

    @pytest.mark.asyncio
    async def test_replay_transport_error_returns_original(self):
        calls = []

        def frontend(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(422, json={"errors": [{"code": "form_identifier_not_found"}]})
            raise httpx.ConnectError("connection reset", request=request)

        client, interceptor = _client(frontend, Provisioner())
        with interceptor.install(client):
            response = await client.send("POST", "/v1/client/sign_ins", data={"identifier": "ada@example.com"})
        assert response.status_code == 422
        assert len(calls) == 2


class TestIdentifierForwarding:
    @pytest.mark.asyncio
    async def test_password_attempt_422_is_not_provisioned(self):
        frontend, provisioner = Frontend(422), Provisioner()
        client, interceptor = _client(frontend, provisioner)
        with interceptor.install(client):
            response = await client.send(
                "POST",
                "/v1/client/sign_ins/sia_1/attempt_first_factor",
                data={"strategy": "password", "password": "pw-123456"},
            )
        assert response.status_code == 422
        assert provisioner.fragments == []
        assert len(frontend.requests) == 1

    @pytest.mark.asyncio
    async def test_email_address_key_is_forwarded(self):
        frontend, provisioner = Frontend(422, 200), Provisioner()
        client, interceptor = _client(frontend, provisioner)
        with interceptor.install(client):
            response = await client.send("POST", "/v1/client/sign_ups", data={"email_address": "ada@example.com"})
        assert response.status_code == 200
        assert provisioner.fragments == ["email_address=ada%40example.com"]

    @pytest.mark.parametrize(
        "body, expected",
        [
            (b"identifier=ada%40example.com", "identifier=ada%40example.com"),
            (b"email_address=ada%40example.com&x=1", "email_address=ada%40example.com"),
            (b"strategy=password&password=secret", None),
            (b"password=secret&identifier=ada%40example.com", None),
            (b"strategy=ticket&ticket=tok_abc", None),
            (b"identifier", None),
            (b"", None),
            (b"{}", None),
        ],
    )
    def test_identifier_pair(self, body, expected):
        assert _identifier_pair(body) == expected


class TestInstall:
    def test_install_swaps_and_restores_transport(self):
        client, interceptor = _client(Frontend(), Provisioner())
        original = client.transport
        with interceptor.install(client) as installed:
            assert installed is client
            assert isinstance(client.transport, ProvisioningRetryTransport)
        assert client.transport is original

    def test_install_restores_transport_on_error(self):
        client, interceptor = _client(Frontend(), Provisioner())
        original = client.transport
        with pytest.raises(RuntimeError):
            with interceptor.install(client):
                raise RuntimeError("boom")
        assert client.transport is original


class TestJitProvisioner:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, body, expected",
        [
            (200, {"succes": "user exists"}, ProvisioningReply.EXISTS),
            (200, {"error": "not exist"}, ProvisioningReply.NOT_EXIST),
            (502, {"error": "provisioning failed"}, ProvisioningReply.FAILED),
            (200, ["not", "an", "object"], ProvisioningReply.FAILED),
        ],
    )
    async def test_reply_mapping(self, status, body, expected):
        transport = httpx.MockTransport(lambda request: httpx.Response(status, json=body))
        assert await JitProvisioner(PROVISION_URL, transport=transport).provision("identifier=x") is expected


def _hosted_frontend(bridge, calls: list[httpx.Request]):
    """Frontend API that only knows identifiers present in the fake provider."""

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        form = dict(parse_qsl(request.content.decode()))
        if request.url.path == "/v1/client/sign_ins":
            user = bridge.identity.find_user_by_email(form.get("identifier", ""))
            if user is None:
                return httpx.Response(422, json={"errors": [{"code": "form_identifier_not_found"}]})
            return httpx.Response(200, json={"response": {"id": f"sia_{user.id}", "status": "needs_first_factor"}})
        user_id = request.url.path.split("/")[4].removeprefix("sia_")
        if form.get("password") != "pw-123456":
            return httpx.Response(422, json={"errors": [{"code": "form_password_incorrect"}]})
        return httpx.Response(200, json=complete_sign_in_payload(bridge.identity.users[user_id]))

    return handler


def _app_provisioner(bridge, bodies: list[dict]):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        resp = bridge.client.post("/api/v1/migration/provision", json=body)
        return httpx.Response(resp.status_code, content=resp.content, headers={"content-type": "application/json"})

    return handler


class TestEndToEnd:
    def _wire(self, bridge, calls, bodies):
        client = HostedSignInClient(FRONTEND_URL, transport=httpx.MockTransport(_hosted_frontend(bridge, calls)))
        interceptor = RetryOnProvisioningInterceptor(
            JitProvisioner(PROVISION_URL, transport=httpx.MockTransport(_app_provisioner(bridge, bodies)))
        )
        return client, interceptor

    @pytest.mark.asyncio
    async def test_legacy_email_is_provisioned_and_replayed(self, bridge):
        uid = bridge.seed("ada@example.com")
        calls: list[httpx.Request] = []
        bodies: list[dict] = []
        client, interceptor = self._wire(bridge, calls, bodies)

        with interceptor.install(client):
            session = await client.sign_in_with_password("ada@example.com", "pw-123456")

        assert session.external_id == str(uid)
        assert [c.url.path for c in calls].count("/v1/client/sign_ins") == 2
        assert bodies == [{"email": "identifier=ada%40example.com"}]
        assert len(bridge.identity.users) == 1

    @pytest.mark.asyncio
    async def test_unknown_email_gets_original_422(self, bridge):
        calls: list[httpx.Request] = []
        bodies: list[dict] = []
        client, interceptor = self._wire(bridge, calls, bodies)

        with interceptor.install(client):
            with pytest.raises(SignInError) as exc_info:
                await client.sign_in_with_password("ghost@example.com", "pw-123456")

        assert exc_info.value.status_code == 422
        assert len(calls) == 1
        assert bodies == [{"email": "identifier=ghost%40example.com"}]
        assert bridge.identity.users == {}

    @pytest.mark.asyncio
    async def test_wrong_password_is_not_provisioned(self, bridge):
        uid = bridge.seed("ada@example.com")
        bridge.identity.add_user("ada@example.com", external_id=str(uid))
        calls: list[httpx.Request] = []
        bodies: list[dict] = []
        client, interceptor = self._wire(bridge, calls, bodies)

        with interceptor.install(client):
            with pytest.raises(SignInError) as exc_info:
                await client.sign_in_with_password("ada@example.com", "wrong-password")

        assert exc_info.value.code == "form_password_incorrect"
        assert bodies == []
        assert len(calls) == 2
