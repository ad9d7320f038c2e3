"""
frontend/signin.py -- Async client for the hosted provider's frontend sign-in API.

Every call goes through HostedSignInClient.send(). send() builds a short-lived
httpx.AsyncClient over self.transport, which is the single seam the
retry-on-provisioning interceptor wraps (see frontend/interceptor.py). The
transport is a public attribute on purpose: installing and removing the
interceptor is an attribute swap on this object, not a patch of httpx.

Sign-in flows:
  password  POST /v1/client/sign_ins                             identifier=<email>
            POST /v1/client/sign_ins/{id}/attempt_first_factor   strategy=password&password=...
  ticket    POST /v1/client/sign_ins                             strategy=ticket&ticket=<token>

A completed sign-in answers with
  {"response": {"status": "complete", "created_session_id": "sess_..."},
   "client": {"sessions": [{"id": "sess_...", "user": {"id": ...},
                            "last_active_token": {"jwt": ...}}]}}
which _parse_session() turns into a HostedSession.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from identity.models import HostedSession

logger = logging.getLogger("authbridge.frontend")

_SIGN_INS = "/v1/client/sign_ins"


class SignInError(Exception):
    """A frontend API call failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class HostedSignInClient:
    def __init__(
        self,
        frontend_api_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._base_url = frontend_api_url.rstrip("/")
        self.transport: httpx.AsyncBaseTransport = transport or httpx.AsyncHTTPTransport()
        self._timeout_seconds = timeout_seconds

    async def send(self, method: str, path: str, data: dict[str, str] | None = None) -> httpx.Response:
        """Send one form-encoded request through the current transport."""
        async with httpx.AsyncClient(
            base_url=self._base_url,
            transport=self.transport,
            timeout=self._timeout_seconds,
        ) as client:
            return await client.request(method, path, data=data)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def start_sign_in(self, email: str) -> dict[str, Any]:
        """Create a sign-in attempt for an identifier. Returns the "response" object."""
        payload = await self._post(_SIGN_INS, {"identifier": email})
        return _object(payload.get("response"), "response")

    async def attempt_password(self, sign_in_id: str, password: str) -> HostedSession:
        payload = await self._post(
            f"{_SIGN_INS}/{sign_in_id}/attempt_first_factor",
            {"strategy": "password", "password": password},
        )
        return _parse_session(payload)

    async def sign_in_with_password(self, email: str, password: str) -> HostedSession:
        sign_in = await self.start_sign_in(email)
        sign_in_id = sign_in.get("id")
        if not isinstance(sign_in_id, str) or not sign_in_id:
            raise SignInError("sign-in attempt has no id")
        return await self.attempt_password(sign_in_id, password)

    async def sign_in_with_ticket(self, ticket: str) -> HostedSession:
        """Complete a sign-in with a single-use sign-in token."""
        payload = await self._post(_SIGN_INS, {"strategy": "ticket", "ticket": ticket})
        return _parse_session(payload)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _post(self, path: str, data: dict[str, str]) -> dict[str, Any]:
        response = await self.send("POST", path, data=data)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if response.is_error:
            raise SignInError(
                f"POST {path} returned {response.status_code}",
                status_code=response.status_code,
                code=_error_code(payload),
            )
        if not isinstance(payload, dict):
            raise SignInError(f"POST {path} returned a non-object body", status_code=response.status_code)
        return payload


def _error_code(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    errors = payload.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("code")
    return None


def _object(value: Any, what: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SignInError(f"malformed sign-in payload: {what} is not an object")
    return value


def _parse_session(payload: dict[str, Any]) -> HostedSession:
    response = _object(payload.get("response"), "response")
    status = response.get("status")
    if status != "complete":
        code = status if isinstance(status, str) else None
        raise SignInError(f"sign-in not complete (status={status!r})", code=code)
    session_id = response.get("created_session_id")
    sessions = _object(payload.get("client"), "client").get("sessions") or []
    if not isinstance(sessions, list):
        raise SignInError("malformed sign-in payload: sessions is not a list")
    for session in sessions:
        if not isinstance(session, dict) or session.get("id") != session_id:
            continue
        user = _object(session.get("user"), "session user")
        if not user.get("id"):
            break
        external_id = user.get("external_id")
        return HostedSession(
            user_id=str(user["id"]),
            session_id=session_id,
            external_id=str(external_id) if external_id is not None else None,
            token=_object(session.get("last_active_token"), "last_active_token").get("jwt"),
        )
    raise SignInError("created session missing from sign-in payload")
