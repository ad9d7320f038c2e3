"""
identity/session.py -- Hosted session token verification.

The hosted provider keeps its session in a short-lived JWT carried by the
"__session" cookie (or an Authorization: Bearer header for API clients).
HostedSessionVerifier checks the signature with python-jose and maps the
claims onto a HostedSession:

  sub          -> user_id
  sid          -> session_id
  external_id  -> external_id (present when the provider's session template
                  copies the user's external_id into the token)

Any failure -- missing token, bad signature, expired, missing sub -- yields
None. The verifier is the hosted half of the dual session context and, like
the legacy half, never raises.
"""

from __future__ import annotations

from fastapi import Request
from jose import JWTError, jwt

from core.config import get_settings
from identity.models import HostedSession

HOSTED_COOKIE = "__session"


class HostedSessionVerifier:
    def __init__(self, key: str, algorithms: list[str]) -> None:
        self._key = key
        self._algorithms = list(algorithms)

    @property
    def enabled(self) -> bool:
        return bool(self._key)

    def verify(self, token: str) -> HostedSession | None:
        if not self.enabled or not token:
            return None
        try:
            claims = jwt.decode(token, self._key, algorithms=self._algorithms, options={"verify_aud": False})
        except JWTError:
            return None
        user_id = claims.get("sub")
        if not user_id:
            return None
        external_id = claims.get("external_id")
        return HostedSession(
            user_id=str(user_id),
            session_id=claims.get("sid"),
            external_id=str(external_id) if external_id is not None else None,
        )

    def from_request(self, request: Request) -> HostedSession | None:
        """Validate the hosted session for this request. Never raises."""
        token = request.cookies.get(HOSTED_COOKIE)
        if not token:
            auth_header = request.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                token = auth_header[7:]
        if not token:
            return None
        return self.verify(token)


def set_hosted_session_cookie(response, token: str) -> None:
    """Write a hosted session token (from a completed handoff) as the __session cookie.

    No max_age: the token carries its own expiry, and the hosted provider
    refreshes the cookie on its own schedule once the browser holds it.
    """
    response.set_cookie(
        HOSTED_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
    )
