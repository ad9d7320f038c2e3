"""
api/routes/v1/migration.py -- Just-in-time provisioning endpoint.

Routes:
  POST /api/v1/migration/provision -- provision the hosted user for one legacy email

Called by frontend/interceptor.py when the hosted provider rejects a sign-in
with 422 (identifier unknown). The body carries the raw form fragment from the
rejected request, e.g. {"email": "identifier=ada%40example.com"}.

Replies (wire-compatible with existing clients, including the "succes" key):
  200 {"error": "not exist"}      -- no legacy user with that email
  200 {"succes": "user exists"}   -- hosted user created, or already present
  502 {"error": "provisioning failed"}

Auth policy: public. The caller is, by definition, not signed in with either
provider yet. Exposure is limited to "does a legacy user with this email
exist", which the hosted sign-in form already reveals; the endpoint is
rate-limited per IP (PROVISION_RATE_LIMIT) to keep it from being used as a
bulk enumeration oracle.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ProvisionRequest
from core.config import get_settings
from migration.models import ProvisioningStatus
from migration.provisioning import ensure_hosted_user, extract_email

logger = logging.getLogger("authbridge.api.migration")

router = APIRouter()


@limiter.limit(lambda: get_settings().provision_rate_limit)
@router.post("/migration/provision")
def provision(request: Request, body: ProvisionRequest) -> JSONResponse:
    """Provision the hosted user for the email inside body.email."""
    email = extract_email(body.email)
    if not email:
        return JSONResponse(content={"error": "not exist"})

    result = ensure_hosted_user(email, request.app.state.user_store, request.app.state.identity)
    if result.status is ProvisioningStatus.NOT_FOUND:
        return JSONResponse(content={"error": "not exist"})
    if result.status is ProvisioningStatus.FAILED:
        logger.warning("Just-in-time provisioning failed: %s", result.reason)
        return JSONResponse(status_code=502, content={"error": "provisioning failed"})

    logger.info("Just-in-time provisioning: hosted user %s (%s)", result.hosted_user.id, result.status.value)
    return JSONResponse(content={"succes": "user exists"})
