"""
auth/models.py -- Domain dataclasses for the legacy credential store.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these only own the shape of legacy records.

Layer rule: no imports from api/, web/, identity/, migration/, or frontend/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LegacyUser:
    """A user record owned by the legacy credential store.

    password_hash is the stored bcrypt digest, never plaintext. It is None for
    accounts that were created without a password (magic-link or OAuth-only
    accounts in the legacy system). The migration core forwards it to the
    hosted provider unchanged.
    """

    id: int
    email: str
    password_hash: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class UserAttribute:
    """Per-user attribute keyed by the legacy user id (as a string)."""

    user_id: str
    attribute: str


@dataclass(frozen=True)
class LegacySession:
    """Result of validating the legacy session cookie for one request."""

    email: str | None
    user_id: int | None = None
