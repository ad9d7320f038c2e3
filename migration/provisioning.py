"""
migration/provisioning.py -- The one-time provisioning step, shared by the
decision engine and the just-in-time provisioning endpoint.

ensure_hosted_user() is the only code path in AuthBridge that writes to the
hosted provider's user directory. Sequence:

  1. Look up the hosted user by email. Found -> EXISTING, no write.
  2. Look up the legacy user by email. Missing -> NOT_FOUND, no write.
  3. Create the hosted user with the legacy digest forwarded unchanged and
     external_id = str(legacy.id) -> CREATED.

Check-then-create race:
  Two concurrent requests for the same unmigrated email can both pass step 1.
  The provider's email uniqueness constraint rejects the second create; that
  rejection is recognised (IdentityProviderError.is_duplicate) and resolved by
  repeating the lookup, so the loser of the race reports EXISTING with the
  winner's user instead of failing.

No provider or legacy-store exception escapes this module; failures become
FAILED results.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import unquote

from sqlalchemy.exc import SQLAlchemyError

from identity.client import IdentityProviderError
from migration.models import REASON_USER_MISSING, ProvisioningResult, ProvisioningStatus

if TYPE_CHECKING:
    from auth.store import LegacyUserStore
    from identity.client import HostedIdentityClient

logger = logging.getLogger("authbridge.migration.provisioning")


def extract_email(fragment: str) -> str:
    """Recover the raw email from a form-encoded "key=value" fragment.

    The value is everything after the first "=", cut at the next "&" if the
    client sent more than one pair, then percent-decoded. A fragment without
    "=" is taken as the value itself.
    """
    _key, sep, value = fragment.partition("=")
    if not sep:
        value = fragment
    value = value.split("&", 1)[0]
    return unquote(value).strip()


def ensure_hosted_user(email: str, store: LegacyUserStore, identity: HostedIdentityClient) -> ProvisioningResult:
    """Find or create the hosted user for a legacy email. See module docstring."""
    try:
        hosted = identity.find_user_by_email(email)
    except IdentityProviderError as e:
        return ProvisioningResult(ProvisioningStatus.FAILED, reason=f"hosted lookup failed: {e}")
    if hosted is not None:
        return ProvisioningResult(ProvisioningStatus.EXISTING, hosted_user=hosted)

    try:
        legacy = store.get_by_email(email)
    except SQLAlchemyError as e:
        logger.error("Legacy lookup failed during provisioning: %s", e)
        return ProvisioningResult(ProvisioningStatus.FAILED, reason=f"legacy lookup failed: {e}")
    if legacy is None:
        return ProvisioningResult(ProvisioningStatus.NOT_FOUND, reason=REASON_USER_MISSING)

    try:
        created = identity.create_user(
            email=legacy.email,
            password_hash=legacy.password_hash,
            external_id=str(legacy.id),
        )
    except IdentityProviderError as e:
        if e.is_duplicate:
            return _resolve_duplicate(email, identity)
        logger.warning("Provisioning failed for legacy id %s: %s", legacy.id, e)
        return ProvisioningResult(ProvisioningStatus.FAILED, reason=str(e))

    logger.info("Provisioned legacy id %s as hosted user %s", legacy.id, created.id)
    return ProvisioningResult(ProvisioningStatus.CREATED, hosted_user=created)


def _resolve_duplicate(email: str, identity: HostedIdentityClient) -> ProvisioningResult:
    # A concurrent request created the user between our lookup and create.
    try:
        hosted = identity.find_user_by_email(email)
    except IdentityProviderError as e:
        return ProvisioningResult(ProvisioningStatus.FAILED, reason=f"hosted lookup failed: {e}")
    if hosted is None:
        return ProvisioningResult(ProvisioningStatus.FAILED, reason="duplicate rejected but user not found")
    logger.info("Provisioning race for hosted user %s resolved by lookup", hosted.id)
    return ProvisioningResult(ProvisioningStatus.EXISTING, hosted_user=hosted)
