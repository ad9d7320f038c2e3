"""
migration/context.py -- Per-request dual session context and attribute owner
resolution.

build_dual_session_context() calls both session-validation entry points on
every request and freezes the result. Nothing is cached on the app or module
level: a request that arrives a millisecond after a handoff sees the new
hosted cookie, not a stale context.

resolve_attribute_owner() maps whichever identity authenticated the request
back to the legacy user id that keys UserAttribute rows:

  hosted session  -> external_id claim, else the hosted user's external_id
  legacy session  -> LegacyUser.id looked up by email

Both paths yield the same string for a migrated user, which is what keeps
attribute lookups stable across the migration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import Request

from auth.dependencies import try_get_legacy_session
from identity.client import IdentityProviderError
from migration.models import DualSessionContext

if TYPE_CHECKING:
    from auth.store import LegacyUserStore
    from identity.client import HostedIdentityClient
    from identity.session import HostedSessionVerifier

logger = logging.getLogger("authbridge.migration.context")


def build_dual_session_context(request: Request, verifier: HostedSessionVerifier) -> DualSessionContext:
    return DualSessionContext(
        legacy_session=try_get_legacy_session(request),
        hosted_session=verifier.from_request(request),
    )


def resolve_attribute_owner(
    context: DualSessionContext,
    store: LegacyUserStore,
    identity: HostedIdentityClient,
) -> str | None:
    """Return the legacy user id (as a string) that owns this request, or None.

    A native hosted user (no external_id) has no legacy attributes and
    resolves to None. Provider errors are logged and also resolve to None --
    the page renders without the attribute rather than failing.
    """
    hosted = context.hosted_session
    if hosted is not None:
        if hosted.external_id:
            return hosted.external_id
        try:
            user = identity.get_user(hosted.user_id)
        except IdentityProviderError as e:
            logger.warning("Could not resolve external id for hosted user %s: %s", hosted.user_id, e)
            return None
        return user.external_id if user is not None else None

    legacy = context.legacy_session
    if legacy is not None and legacy.email:
        user = store.get_by_email(legacy.email)
        return str(user.id) if user is not None else None
    return None
