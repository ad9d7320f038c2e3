"""
identity/client.py -- Administrative REST client for the hosted identity provider.

Operations used by the migration core:
  find_user_by_email()   GET  /users?email_address=<email>
  create_user()          POST /users
  create_sign_in_token() POST /sign_in_tokens
  get_user()             GET  /users/{id}

Every request is authenticated with "Authorization: Bearer <HOSTED_SECRET_KEY>".
The secret is read from get_settings() at call time, not captured at
construction, so a settings reload picks up a new key without rebuilding the
client.

Failure contract:
  Network errors, non-2xx responses and malformed payloads raise
  IdentityProviderError. A sign-in token response without a "token" field
  raises TokenIssuanceError. This module never returns partial results --
  migration/provisioning.py turns these exceptions into explicit results.

Passwords:
  create_user() forwards the legacy digest as password_digest together with
  password_hasher. The provider stores the digest as-is and verifies future
  sign-ins against it, so no plaintext password ever crosses this boundary.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from core.config import get_settings
from identity.models import HostedUser, SignInToken

logger = logging.getLogger("authbridge.identity")

# Provider error codes that mean "this email is already taken".
DUPLICATE_CODES = frozenset({"form_identifier_exists", "duplicate_record"})


class IdentityProviderError(Exception):
    """Raised when a hosted provider admin call fails.

    status_code is None for transport-level failures (DNS, timeout, reset).
    code is the first error code from the provider's {"errors": [...]} body.
    """

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    @property
    def is_duplicate(self) -> bool:
        return self.code in DUPLICATE_CODES or self.status_code == 409


class TokenIssuanceError(IdentityProviderError):
    """The provider answered the sign-in token request without a token."""


def _error_code(resp: requests.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("code")
    return None


def _parse_user(payload: Any, context: str) -> HostedUser:
    if not isinstance(payload, dict):
        raise IdentityProviderError(f"malformed {context} payload")
    try:
        return HostedUser.from_payload(payload)
    except (KeyError, TypeError, AttributeError) as e:
        raise IdentityProviderError(f"malformed {context} payload: {e!r}") from e


class HostedIdentityClient:
    """Thin synchronous wrapper over the hosted provider's admin API.

    Usage:
        identity = HostedIdentityClient()
        user = identity.find_user_by_email("ada@example.com")
        token = identity.create_sign_in_token(user.id)
        identity.close()
    """

    def __init__(self, base_url: str | None = None, session: requests.Session | None = None) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.hosted_api_url).rstrip("/")
        self._timeout = settings.http_timeout_seconds
        # One pooled session per client. Redirects are never expected from the
        # admin API, so a short chain is plenty.
        self._session = session or requests.Session()
        self._session.max_redirects = 3

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def find_user_by_email(self, email: str) -> HostedUser | None:
        """Return the hosted user owning email, or None.

        The provider returns a list; in this usage it holds zero or one match.
        Newer API versions wrap it as {"data": [...]}, which is accepted too.
        """
        payload = self._request("GET", "/users", params={"email_address": email})
        if isinstance(payload, dict):
            payload = payload.get("data", [])
        if not isinstance(payload, list):
            raise IdentityProviderError("malformed user list payload")
        if not payload:
            return None
        if len(payload) > 1:
            logger.warning("Hosted directory returned %d users for one email", len(payload))
        return _parse_user(payload[0], "user list")

    def get_user(self, user_id: str) -> HostedUser | None:
        try:
            payload = self._request("GET", f"/users/{user_id}")
        except IdentityProviderError as e:
            if e.status_code == 404:
                return None
            raise
        return _parse_user(payload, "user")

    def create_user(self, email: str, password_hash: str | None, external_id: str) -> HostedUser:
        """Create a hosted user mirroring a legacy record.

        skip_password_checks is always set: the digest was accepted by the
        legacy system and the provider cannot evaluate strength on a hash.
        """
        body: dict[str, Any] = {
            "email_address": [email],
            "skip_password_checks": True,
            "external_id": external_id,
        }
        if password_hash:
            body["password_digest"] = password_hash
            body["password_hasher"] = get_settings().hosted_password_hasher
        payload = self._request("POST", "/users", json=body)
        user = _parse_user(payload, "created user")
        logger.info("Hosted user %s created for legacy id %s", user.id, external_id)
        return user

    # ------------------------------------------------------------------
    # Sign-in tokens
    # ------------------------------------------------------------------

    def create_sign_in_token(self, user_id: str) -> SignInToken:
        """Mint a single-use sign-in token for the given hosted user."""
        payload = self._request("POST", "/sign_in_tokens", json={"user_id": user_id})
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise TokenIssuanceError("sign-in token response has no token")
        return SignInToken(token=token, subject_hosted_user_id=user_id)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> Any:
        secret = get_settings().hosted_secret_key
        if not secret:
            raise IdentityProviderError("HOSTED_SECRET_KEY is not configured")
        headers = {"Authorization": f"Bearer {secret}", "Content-Type": "application/json"}
        try:
            resp = self._session.request(
                method,
                f"{self._base_url}{path}",
                headers=headers,
                timeout=self._timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            logger.warning("Hosted provider %s %s failed: %s", method, path, e)
            raise IdentityProviderError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            code = _error_code(resp)
            logger.warning("Hosted provider %s %s returned %d (%s)", method, path, resp.status_code, code)
            raise IdentityProviderError(
                f"{method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
                code=code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise IdentityProviderError(f"{method} {path} returned a non-JSON body") from e

    def close(self) -> None:
        self._session.close()
