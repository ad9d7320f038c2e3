"""
API request and response models for AuthBridge REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/, identity/ and
migration/, which own the internal domain representation. Route handlers map
between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Legacy auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login (legacy credentials)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    email: str


class MeResponse(BaseModel):
    """Dual-session identity for GET /api/v1/auth/me.

    legacy_email and hosted_user_id report which sessions were valid on this
    request. legacy_user_id is the attribute owner resolved from either one.
    migration is the decision engine's outcome kind for this request.
    """

    model_config = ConfigDict(frozen=True)

    legacy_email: Optional[str] = None
    hosted_user_id: Optional[str] = None
    legacy_user_id: Optional[str] = None
    attribute: Optional[str] = None
    migration: str
    migration_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Just-in-time provisioning
# ---------------------------------------------------------------------------


class ProvisionRequest(BaseModel):
    """Request body for POST /api/v1/migration/provision.

    email is the raw form-encoded fragment captured from the failed sign-in
    request ("identifier=ada%40example.com"), not a bare address. The route
    extracts and decodes the address.
    """

    email: str = Field(min_length=1, max_length=1024)
