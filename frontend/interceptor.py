"""
frontend/interceptor.py -- Retry-on-provisioning interceptor.

Wraps the transport of a HostedSignInClient. Every response the hosted
frontend API returns is inspected:

  WAITING_FOR_CALL -> INSPECTING_RESPONSE
      status != 422                      -> DONE, original response returned
      status == 422, no identifier pair  -> DONE, original response returned
      status == 422, identifier pair     -> PROVISIONING
  PROVISIONING (POST {"email": "<identifier pair>"} to the JIT endpoint)
      reply "not exist" or any failure   -> DONE, original 422 returned
      reply "user exists"                -> REPLAYING
  REPLAYING (same httpx.Request sent again, once)
      replay response                    -> DONE, replay returned as-is
      transport error                    -> DONE, original 422 returned

There is never more than one replay, so a 422 on the replay is the caller's
answer. Nothing raises past the wrapper except errors from the first call,
which the unwrapped transport would have raised too.

Only the first key=value pair of the form body is forwarded to the
provisioning endpoint, and only when its key names an identifier
("identifier" or "email_address"). Any other 422 (a rejected password
attempt, a bad ticket) is returned untouched without a provisioning call,
so form values other than the identifier never leave the client.

install() is a context manager: it swaps HostedSignInClient.transport for the
wrapper and restores the original transport on exit, including when the body
raises.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from urllib.parse import unquote_plus

import httpx

from frontend.signin import HostedSignInClient

logger = logging.getLogger("authbridge.frontend.interceptor")

RETRY_STATUS = 422

# Form keys whose value is the email being signed in.
IDENTIFIER_KEYS = frozenset({"identifier", "email_address"})


class ProvisioningReply(str, Enum):
    EXISTS = "exists"
    NOT_EXIST = "not_exist"
    FAILED = "failed"


class JitProvisioner:
    """Client for the AuthBridge just-in-time provisioning endpoint.

    Wire contract (kept byte-compatible with existing clients):
      request   {"email": "identifier=ada%40example.com"}
      replies   {"error": "not exist"} | {"succes": "user exists"}
    """

    def __init__(
        self,
        endpoint_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._transport = transport
        self._timeout_seconds = timeout_seconds

    async def provision(self, fragment: str) -> ProvisioningReply:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout_seconds) as client:
                response = await client.post(self._endpoint_url, json={"email": fragment})
        except httpx.HTTPError as e:
            logger.warning("Provisioning endpoint unreachable: %s", e)
            return ProvisioningReply.FAILED
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.warning("Provisioning endpoint returned %d without a JSON object", response.status_code)
            return ProvisioningReply.FAILED
        if body.get("error") == "not exist":
            return ProvisioningReply.NOT_EXIST
        if response.is_error or "error" in body:
            logger.warning("Provisioning endpoint returned %d: %s", response.status_code, body.get("error"))
            return ProvisioningReply.FAILED
        return ProvisioningReply.EXISTS


def _identifier_pair(body: bytes) -> str | None:
    """Return the first form pair of body if its key is an identifier key."""
    text = body.decode("utf-8", errors="replace").strip()
    pair = text.split("&", 1)[0]
    key, sep, _value = pair.partition("=")
    if not sep or unquote_plus(key) not in IDENTIFIER_KEYS:
        return None
    return pair


class ProvisioningRetryTransport(httpx.AsyncBaseTransport):
    def __init__(self, inner: httpx.AsyncBaseTransport, provisioner: JitProvisioner) -> None:
        self._inner = inner
        self._provisioner = provisioner

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        response = await self._inner.handle_async_request(request)
        if response.status_code != RETRY_STATUS:
            return response

        fragment = _identifier_pair(await request.aread())
        if fragment is None:
            return response

        reply = await self._provisioner.provision(fragment)
        if reply is not ProvisioningReply.EXISTS:
            logger.info("No replay for %s %s (%s)", request.method, request.url.path, reply.value)
            return response

        try:
            replay = await self._inner.handle_async_request(request)
        except httpx.TransportError as e:
            logger.warning("Replay of %s %s failed: %s", request.method, request.url.path, e)
            return response
        await response.aclose()
        logger.info("Replayed %s %s after provisioning -> %d", request.method, request.url.path, replay.status_code)
        return replay

    async def aclose(self) -> None:
        await self._inner.aclose()


class RetryOnProvisioningInterceptor:
    """Scoped installer for ProvisioningRetryTransport.

    Usage:
        interceptor = RetryOnProvisioningInterceptor(JitProvisioner(url))
        with interceptor.install(signin_client):
            session = await signin_client.sign_in_with_password(email, password)
    """

    def __init__(self, provisioner: JitProvisioner) -> None:
        self._provisioner = provisioner

    @contextmanager
    def install(self, client: HostedSignInClient) -> Iterator[HostedSignInClient]:
        original = client.transport
        client.transport = ProvisioningRetryTransport(original, self._provisioner)
        try:
            yield client
        finally:
            client.transport = original
