"""
api/routes/v1/auth.py -- Legacy login and dual-session identity endpoints.

Routes:
  POST /api/v1/auth/login   -- legacy email/password login; sets legacy session cookie
  POST /api/v1/auth/logout  -- clears both the legacy and the hosted session cookie
  GET  /api/v1/auth/me      -- identity as seen by both providers + migration outcome

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.

The migration middleware in api/main.py has already run by the time any of
these handlers execute, so request.state.session_context reflects a handoff
completed earlier in the same request.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MeResponse
from auth.store import LegacyUserStore
from auth.tokens import LEGACY_COOKIE, authenticate_user, create_session_token, set_session_cookie
from core.config import get_settings
from identity.session import HOSTED_COOKIE
from migration.context import resolve_attribute_owner
from migration.models import DualSessionContext, MigrationOutcome, OutcomeKind

router = APIRouter()


@limiter.limit(lambda: get_settings().login_rate_limit)  # [H2] must be ABOVE @router
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate against the legacy store and set the legacy session cookie.

    The next request carrying this cookie is migrated by the middleware; the
    client does not need to know the hosted provider exists.
    """
    user_store: LegacyUserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    settings = get_settings()
    token = create_session_token(user.id, user.email)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            expires_in=settings.token_expire_seconds,
            email=user.email,
        ).model_dump(),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear both session cookies."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie(LEGACY_COOKIE)
    resp.delete_cookie(HOSTED_COOKIE)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request) -> MeResponse:
    """Report the request's identity from both providers' point of view.

    Anonymous requests get 200 with every identity field null -- this endpoint
    describes the session state, it does not gate on it.
    """
    context: DualSessionContext = getattr(request.state, "session_context", None) or DualSessionContext()
    outcome: MigrationOutcome = getattr(request.state, "migration", None) or MigrationOutcome.passthrough()

    owner = resolve_attribute_owner(context, request.app.state.user_store, request.app.state.identity)
    attribute = request.app.state.user_store.get_attribute(owner) if owner else None
    return MeResponse(
        legacy_email=context.legacy_session.email if context.legacy_session else None,
        hosted_user_id=context.hosted_session.user_id if context.hosted_session else None,
        legacy_user_id=owner,
        attribute=attribute.attribute if attribute else None,
        migration=outcome.kind.value,
        migration_error=outcome.reason if outcome.kind is OutcomeKind.ERROR else None,
    )
