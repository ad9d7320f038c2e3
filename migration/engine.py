"""
migration/engine.py -- The migration decision engine.

Given a DualSessionContext, decide() returns exactly one MigrationOutcome:

  hosted session present                  -> PASSTHROUGH (migrated or native user)
  no legacy session                       -> PASSTHROUGH (anonymous request)
  legacy session only:
      ensure_hosted_user() ok             -> mint sign-in token
          token minted                    -> PROVISION_AND_HANDOFF(token)
          token missing / call failed     -> ERROR("token issuance failed")
      legacy record missing               -> ERROR("user missing in both stores")
      provider failure                    -> ERROR("provisioning failed")

Ordering within one call is strict: provisioning completes before the token is
requested, and the token is returned before any handoff can start.

decide() never raises. Callers render outcome.reason as an inline diagnostic
instead of failing the request.
"""

from __future__ import annotations

import logging

from auth.store import LegacyUserStore
from identity.client import HostedIdentityClient, IdentityProviderError
from migration.models import (
    REASON_NO_EMAIL,
    REASON_PROVISIONING_FAILED,
    REASON_TOKEN_FAILED,
    REASON_USER_MISSING,
    DualSessionContext,
    MigrationOutcome,
    ProvisioningStatus,
)
from migration.provisioning import ensure_hosted_user

logger = logging.getLogger("authbridge.migration")


class MigrationEngine:
    """Request-scoped own-or-create-or-reject state machine.

    Holds only references to the two adapters; all per-request state arrives
    in the DualSessionContext argument.
    """

    def __init__(self, store: LegacyUserStore, identity: HostedIdentityClient) -> None:
        self._store = store
        self._identity = identity

    def decide(self, context: DualSessionContext) -> MigrationOutcome:
        if context.hosted_session is not None:
            return MigrationOutcome.passthrough()
        if context.legacy_session is None:
            return MigrationOutcome.passthrough()

        email = context.legacy_session.email
        if not email:
            return MigrationOutcome.error(REASON_NO_EMAIL)

        result = ensure_hosted_user(email, self._store, self._identity)
        if result.status is ProvisioningStatus.NOT_FOUND:
            logger.warning("Legacy session for an email absent from both stores")
            return MigrationOutcome.error(REASON_USER_MISSING)
        if not result.ok or result.hosted_user is None:
            logger.warning("Migration aborted: %s", result.reason)
            return MigrationOutcome.error(REASON_PROVISIONING_FAILED)

        try:
            token = self._identity.create_sign_in_token(result.hosted_user.id)
        except IdentityProviderError as e:
            logger.warning("Sign-in token for hosted user %s not issued: %s", result.hosted_user.id, e)
            return MigrationOutcome.error(REASON_TOKEN_FAILED)

        logger.info(
            "Handoff prepared for hosted user %s (%s)",
            result.hosted_user.id,
            result.status.value,
        )
        return MigrationOutcome.handoff(token)
