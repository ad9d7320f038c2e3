"""
migration/models.py -- Value types flowing through the migration core.

DualSessionContext is built fresh per request and passed explicitly into the
engine -- there is no module-level session state anywhere in migration/.
ProvisioningResult and MigrationOutcome are explicit result types: every
provider failure ends up as a status/reason on one of them instead of an
exception escaping to the request handler.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from auth.models import LegacySession
from identity.models import HostedSession, HostedUser, SignInToken

# Reason strings for MigrationOutcome.error(). Callers render these verbatim.
REASON_NO_EMAIL = "legacy session has no email"
REASON_USER_MISSING = "user missing in both stores"
REASON_PROVISIONING_FAILED = "provisioning failed"
REASON_TOKEN_FAILED = "token issuance failed"


@dataclass(frozen=True)
class DualSessionContext:
    """Both providers' view of the current request. Never cached across requests."""

    legacy_session: LegacySession | None = None
    hosted_session: HostedSession | None = None


class ProvisioningStatus(str, Enum):
    CREATED = "created"
    EXISTING = "existing"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class ProvisioningResult:
    status: ProvisioningStatus
    hosted_user: HostedUser | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (ProvisioningStatus.CREATED, ProvisioningStatus.EXISTING)


class OutcomeKind(str, Enum):
    PASSTHROUGH = "passthrough"
    PROVISION_AND_HANDOFF = "provision_and_handoff"
    ERROR = "error"


@dataclass(frozen=True)
class MigrationOutcome:
    kind: OutcomeKind
    token: SignInToken | None = None
    reason: str | None = None

    @classmethod
    def passthrough(cls) -> "MigrationOutcome":
        return cls(kind=OutcomeKind.PASSTHROUGH)

    @classmethod
    def handoff(cls, token: SignInToken) -> "MigrationOutcome":
        return cls(kind=OutcomeKind.PROVISION_AND_HANDOFF, token=token)

    @classmethod
    def error(cls, reason: str) -> "MigrationOutcome":
        return cls(kind=OutcomeKind.ERROR, reason=reason)
