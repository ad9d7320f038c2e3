"""
web/routes.py -- Jinja2 template routes for the AuthBridge web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes and rely on the migration middleware (api/main.py) having already run:
request.state.session_context and request.state.migration are always set by
the time a handler executes.

Routes:
  GET  /        -- home page; shows the user's attribute (auth required)
  GET  /login   -- legacy login form
  POST /login   -- handle legacy password login
  POST /logout  -- clear both session cookies, redirect /login

Migration failures never surface as error pages. An ERROR outcome renders
diagnostic.html with status 200 and the engine's reason string, so the user
sees what went wrong and the next request retries the migration.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.store import LegacyUserStore
from auth.tokens import LEGACY_COOKIE, authenticate_user, create_session_token, set_session_cookie
from identity.session import HOSTED_COOKIE
from migration.context import resolve_attribute_owner
from migration.models import DualSessionContext, MigrationOutcome, OutcomeKind

logger = logging.getLogger("authbridge.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login [M3].
# The raw query param is NEVER passed to templates.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]"""
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


def _context(request: Request) -> DualSessionContext:
    return getattr(request.state, "session_context", None) or DualSessionContext()


def _outcome(request: Request) -> MigrationOutcome:
    return getattr(request.state, "migration", None) or MigrationOutcome.passthrough()


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    """Render the home page with the signed-in user's special attribute."""
    outcome = _outcome(request)
    if outcome.kind is OutcomeKind.ERROR:
        return templates.TemplateResponse(request, "diagnostic.html", {"reason": outcome.reason})

    context = _context(request)
    if context.hosted_session is None and context.legacy_session is None:
        return RedirectResponse("/login?next=/", status_code=302)

    user_store: LegacyUserStore = request.app.state.user_store
    owner = resolve_attribute_owner(context, user_store, request.app.state.identity)
    attribute = user_store.get_attribute(owner) if owner else None
    return templates.TemplateResponse(
        request,
        "home.html",
        {
            "attribute": attribute.attribute if attribute else None,
            "hosted_user_id": context.hosted_session.user_id if context.hosted_session else None,
            "legacy_email": context.legacy_session.email if context.legacy_session else None,
            "migrated_now": outcome.kind is OutcomeKind.PROVISION_AND_HANDOFF and context.hosted_session is not None,
        },
    )


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request):
    """Render the legacy login form. Signed-in users go straight to /."""
    context = _context(request)
    if context.hosted_session is not None or context.legacy_session is not None:
        return RedirectResponse("/", status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": _safe_next(request.query_params.get("next"))},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
) -> RedirectResponse:
    """Handle the legacy login form. The redirect target is migrated on arrival."""
    user_store: LegacyUserStore = request.app.state.user_store
    user = authenticate_user(user_store, email.strip(), password)  # [C1] timing equalization
    if user is None:
        return RedirectResponse("/login?error=bad_credentials", status_code=302)

    token = create_session_token(user.id, user.email)
    resp = RedirectResponse(_safe_next(next), status_code=302)  # [C2]
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout")
def logout() -> RedirectResponse:
    """Clear both session cookies and return to the login form."""
    resp = RedirectResponse("/login", status_code=302)
    resp.delete_cookie(LEGACY_COOKIE)
    resp.delete_cookie(HOSTED_COOKIE)
    return resp
