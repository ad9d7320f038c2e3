"""
auth/tokens.py -- Legacy session tokens and password hashing.

Security design decisions:
  Legacy session: python-jose with HS256. The cookie carries the user's email
       (sub) and legacy user_id and expires with the cookie. Verification
       returns None on any failure -- callers treat that as "no legacy session".

  Passwords: bcrypt used directly. The stored digest is what the migration
       core forwards to the hosted provider (password_digest), so the legacy
       column must keep holding raw bcrypt output, not a wrapped format.
       The _DUMMY_HASH constant enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       exists [C1].

  SECRET_KEY: sourced from core.config.get_settings(). Short keys (<32 chars)
       are rejected at startup [M6].

Layer rule: no imports from api/, web/, identity/, migration/, or frontend/.
Import from core/ is allowed -- core/ is the kernel.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import LegacySession
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import LegacyUser
    from auth.store import LegacyUserStore

logger = logging.getLogger("authbridge.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

LEGACY_COOKIE = "legacy_session"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
_DUMMY_HASH: str = hash_password("authbridge_timing_dummy")


# ---------------------------------------------------------------------------
# Legacy session encode / decode
# ---------------------------------------------------------------------------


def create_session_token(user_id: int, email: str, expire_seconds: int = 0) -> str:
    """Encode a signed legacy session JWT.

    Args:
        user_id:        Legacy user id.
        email:          Stored as the subject claim; the migration engine keys
                        hosted-directory lookups on it.
        expire_seconds: Session duration. 0 uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {"sub": email, "user_id": user_id, "exp": expire}
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> LegacySession | None:
    """Decode and verify a legacy session JWT. Returns None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    return LegacySession(email=payload.get("sub") or None, user_id=payload.get("user_id"))


# ---------------------------------------------------------------------------
# Legacy authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: LegacyUserStore, email: str, password: str) -> LegacyUser | None:
    """Authenticate a legacy email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists, so response time does
    not reveal which emails are registered.
    """
    user = store.get_by_email(email)
    if user is None or user.password_hash is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the legacy session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        LEGACY_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )
