"""
frontend/handoff.py -- Handoff token bridge.

Consumes a single-use SignInToken minted by the migration engine and
completes the hosted sign-in with it -- no redirect, no credential prompt.

Failure is never fatal: an expired, already-consumed or unreachable token
returns None and the caller carries on rendering. The user stays signed out of
the hosted provider for this request and the engine re-evaluates on the next
one (it will find the hosted user by email and mint a fresh token).
"""

from __future__ import annotations

import logging

import httpx

from frontend.signin import HostedSignInClient, SignInError
from identity.models import HostedSession, SignInToken

logger = logging.getLogger("authbridge.frontend.handoff")


class HandoffBridge:
    def __init__(self, client: HostedSignInClient) -> None:
        self._client = client

    async def complete(self, token: SignInToken) -> HostedSession | None:
        """Exchange the token for a hosted session. Returns None on any failure."""
        try:
            session = await self._client.sign_in_with_ticket(token.token)
        except SignInError as e:
            logger.warning(
                "Handoff for hosted user %s rejected (%s, %s)",
                token.subject_hosted_user_id,
                e.status_code,
                e.code,
            )
            return None
        except httpx.HTTPError as e:
            logger.warning("Handoff for hosted user %s failed: %s", token.subject_hosted_user_id, e)
            return None

        if session.user_id != token.subject_hosted_user_id:
            # The provider signed in someone other than the token's subject.
            logger.error(
                "Handoff session user %s does not match token subject %s",
                session.user_id,
                token.subject_hosted_user_id,
            )
            return None
        logger.info("Handoff completed for hosted user %s", session.user_id)
        return session
