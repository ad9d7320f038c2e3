"""
tests/conftest.py -- Shared fixtures and fakes for AuthBridge tests.

This module provides:
  - FakeIdentityProvider: in-memory stand-in for HostedIdentityClient with the
    same method surface, recording every write
  - frontend_transport(): httpx.MockTransport implementing the hosted
    frontend API's ticket sign-in against a FakeIdentityProvider
  - hosted_session_jwt() / complete_sign_in_payload(): provider-shaped payloads
  - legacy_store: isolated in-memory LegacyUserStore
  - bridge: TestClient over the real app (API + web routes) with a patched
    lifespan, a fresh store and a fresh fake provider per test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixture because route handlers and the migration engine run in
a thread pool. Plain :memory: DBs are per-connection and would present a
blank schema to each worker thread.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import itertools
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl

# CRITICAL: Set these before any auth/core import so get_settings() picks
# them up on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("HOSTED_SECRET_KEY", "sk_test_authbridge")

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from api.limiter import limiter
from asgi import app
from auth.store import LegacyUserStore
from auth.tokens import LEGACY_COOKIE, create_session_token, hash_password
from frontend.handoff import HandoffBridge
from frontend.signin import HostedSignInClient
from identity.client import IdentityProviderError
from identity.models import HostedUser, SignInToken
from identity.session import HostedSessionVerifier
from migration.engine import MigrationEngine

HOSTED_SESSION_KEY = "hosted-session-test-key-0123456789abcdef"
FRONTEND_URL = "https://frontend.test"

# ---------------------------------------------------------------------------
# Fake hosted provider
# ---------------------------------------------------------------------------


class FakeIdentityProvider:
    """In-memory hosted user directory with the HostedIdentityClient surface.

    Set fail_lookup / fail_create / fail_token to an IdentityProviderError to
    make the matching call raise it. create_calls records every create
    attempt, including rejected ones.
    """

    def __init__(self) -> None:
        self.users: dict[str, HostedUser] = {}
        self.tokens: dict[str, str] = {}
        self.create_calls: list[dict] = []
        self.fail_lookup: IdentityProviderError | None = None
        self.fail_create: IdentityProviderError | None = None
        self.fail_token: IdentityProviderError | None = None
        self._seq = itertools.count(1)

    def add_user(self, email: str, external_id: str | None = None) -> HostedUser:
        user = HostedUser(id=f"user_{next(self._seq)}", email_addresses=frozenset({email}), external_id=external_id)
        self.users[user.id] = user
        return user

    def find_user_by_email(self, email: str) -> HostedUser | None:
        if self.fail_lookup is not None:
            raise self.fail_lookup
        for user in self.users.values():
            if email in user.email_addresses:
                return user
        return None

    def get_user(self, user_id: str) -> HostedUser | None:
        return self.users.get(user_id)

    def create_user(self, email: str, password_hash: str | None, external_id: str) -> HostedUser:
        self.create_calls.append({"email": email, "password_hash": password_hash, "external_id": external_id})
        if self.fail_create is not None:
            raise self.fail_create
        if any(email in user.email_addresses for user in self.users.values()):
            raise IdentityProviderError("email taken", status_code=422, code="form_identifier_exists")
        return self.add_user(email, external_id)

    def create_sign_in_token(self, user_id: str) -> SignInToken:
        if self.fail_token is not None:
            raise self.fail_token
        token = f"sit_{next(self._seq)}"
        self.tokens[token] = user_id
        return SignInToken(token=token, subject_hosted_user_id=user_id)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Fake hosted frontend API
# ---------------------------------------------------------------------------


def hosted_session_jwt(user_id: str, session_id: str, external_id: str | None = None, key: str = HOSTED_SESSION_KEY) -> str:
    claims = {
        "sub": user_id,
        "sid": session_id,
        "exp": datetime.now(timezone.utc) + timedelta(hours=1),
    }
    if external_id is not None:
        claims["external_id"] = external_id
    return jwt.encode(claims, key, algorithm="HS256")


def complete_sign_in_payload(user: HostedUser, session_id: str = "sess_1") -> dict:
    return {
        "response": {"id": "sia_1", "status": "complete", "created_session_id": session_id},
        "client": {
            "sessions": [
                {
                    "id": session_id,
                    "user": {"id": user.id, "external_id": user.external_id},
                    "last_active_token": {"jwt": hosted_session_jwt(user.id, session_id, user.external_id)},
                }
            ]
        },
    }


def frontend_transport(identity: FakeIdentityProvider) -> httpx.MockTransport:
    """Ticket sign-in backed by the fake provider. Tickets are single-use."""

    def handler(request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        if request.url.path == "/v1/client/sign_ins" and form.get("strategy") == "ticket":
            user_id = identity.tokens.pop(form.get("ticket", ""), None)
            if user_id is None:
                return httpx.Response(422, json={"errors": [{"code": "sign_in_token_invalid"}]})
            return httpx.Response(200, json=complete_sign_in_payload(identity.users[user_id], f"sess_{user_id}"))
        return httpx.Response(404, json={"errors": [{"code": "resource_not_found"}]})

    return httpx.MockTransport(handler)


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def legacy_store() -> Generator[LegacyUserStore, None, None]:
    store = LegacyUserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


# ---------------------------------------------------------------------------
# Application fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: LegacyUserStore, identity: FakeIdentityProvider):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and fake provider into app.state. The handoff bridge
    is real; only its transport is the fake frontend API.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.identity = identity
        app.state.hosted_sessions = HostedSessionVerifier(HOSTED_SESSION_KEY, ["HS256"])
        app.state.migration_engine = MigrationEngine(user_store, identity)
        app.state.handoff = HandoffBridge(HostedSignInClient(FRONTEND_URL, transport=frontend_transport(identity)))
        yield

    return test_lifespan


@dataclass
class Bridge:
    client: TestClient
    store: LegacyUserStore
    identity: FakeIdentityProvider

    def seed(self, email: str, password: str | None = "legacy-pass-123", attribute: str | None = None) -> int:
        user_id = self.store.create_user(email, hash_password(password) if password else None)
        if attribute is not None:
            self.store.set_attribute(str(user_id), attribute)
        return user_id

    def sign_in_legacy(self, user_id: int, email: str | None) -> None:
        self.client.cookies.set(LEGACY_COOKIE, create_session_token(user_id, email or ""))


@pytest.fixture
def bridge() -> Generator[Bridge, None, None]:
    """Yield a Bridge over a fresh store and fake provider.

    follow_redirects=False so tests can assert on redirect locations.
    """
    store = LegacyUserStore(f"sqlite:///file:test_legacy_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    fake = FakeIdentityProvider()
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(store, fake)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Bridge(client=client, store=store, identity=fake)

    store.close()
