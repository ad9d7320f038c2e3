"""
auth/dependencies.py -- Legacy session validation entry point.

The legacy session is checked in priority order:
  1. "legacy_session" cookie -- set by the web UI login flow.
  2. Authorization: Bearer <token> header -- API clients holding a legacy JWT.

try_get_legacy_session() is the soft variant (returns None on failure) used
by the migration context builder. The legacy session is one of the two
independent inputs to DualSessionContext; neither input ever raises.

Layer rule: no imports from web/, identity/, migration/, or frontend/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import LegacySession
from auth.tokens import LEGACY_COOKIE, decode_session_token


def try_get_legacy_session(request: Request) -> LegacySession | None:
    """Validate the legacy session for this request. Never raises."""
    token: str | None = request.cookies.get(LEGACY_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None
    return decode_session_token(token)
