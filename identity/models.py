"""
identity/models.py -- Domain dataclasses for hosted identity provider entities.

Pattern: Data class. The parse helpers map the provider's JSON payloads onto
these shapes so the rest of the code never indexes raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class HostedUser:
    """A user in the hosted provider's directory.

    external_id mirrors LegacyUser.id (as a string) for migrated users. It is
    the only durable link between the two identity spaces. Native hosted users
    that never existed in the legacy store have external_id=None.
    """

    id: str
    email_addresses: frozenset[str] = field(default_factory=frozenset)
    external_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "HostedUser":
        emails = frozenset(
            entry["email_address"]
            for entry in payload.get("email_addresses") or []
            if isinstance(entry, dict) and entry.get("email_address")
        )
        external_id = payload.get("external_id")
        return cls(
            id=str(payload["id"]),
            email_addresses=emails,
            external_id=str(external_id) if external_id is not None else None,
        )


@dataclass(frozen=True)
class SignInToken:
    """Single-use, short-lived token that signs in exactly one hosted user."""

    token: str
    subject_hosted_user_id: str


@dataclass(frozen=True)
class HostedSession:
    """An authenticated hosted-provider session.

    token is the session JWT (set as the __session cookie after a handoff). It
    is None when the session was reconstructed from an incoming cookie.
    """

    user_id: str
    session_id: str | None = None
    external_id: str | None = None
    token: str | None = None
