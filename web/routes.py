"""
web/routes.py -- Browser-facing routes for SessionGate.

These routes are reached by navigation (an emailed link, a provider redirect,
a page load) rather than by fetch(), so they answer with redirects and
server-rendered HTML. They share app.state.auth with the JSON API.

Failures on these routes are answered with JSON, not an error page: the
verification link with {errors: [...]}, the OAuth routes with {error, key}.

Routes:
  GET /verify-email?token=              -- redeem link; 302 / with session cookie
  GET /oauth/{provider}/authorize       -- 302 to the provider, state cookies set
  GET /oauth/{provider}?code=&state=    -- provider callback; 302 /dashboard
  GET /                                 -- 302 /dashboard or sign-in
  GET /dashboard                        -- authenticated landing page
  GET /admin                            -- admin-only page

Guards:
  _require_auth()  -- anonymous -> 302 SIGN_IN_PATH?next={path}
  _require_admin() -- anonymous -> sign-in; signed in but not admin -> 302 /
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.cookies import apply_cookies
from auth.dependencies import try_get_current_user
from auth.errors import AuthError, InvalidTokenError
from auth.service import OAUTH_SUCCESS_REDIRECT, AuthService

logger = logging.getLogger("sessiongate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AuthService:
    return request.app.state.auth


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Return a redirect to the sign-in page if the request is anonymous, else None.

    Call at the top of protected route handlers:
        if redirect := _require_auth(request):
            return redirect
    """
    if try_get_current_user(request) is None:
        sign_in = _service(request).settings.sign_in_path
        return RedirectResponse(f"{sign_in}?next={request.url.path}", status_code=302)
    return None


def _require_admin(request: Request) -> Optional[RedirectResponse]:
    """Like _require_auth, but a signed-in non-admin is sent to the safe default page."""
    if redirect := _require_auth(request):
        return redirect
    if try_get_current_user(request).role != "admin":
        return RedirectResponse("/", status_code=302)
    return None


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


@router.get("/verify-email")
def verify_email(request: Request, token: Optional[str] = None):
    """Redeem an emailed verification link.

    Success signs the user in and redirects to the application root.
    A missing token is treated as a stray visit and sent to sign-in.
    """
    service = _service(request)
    if not token:
        return RedirectResponse(service.settings.sign_in_path, status_code=302)

    try:
        result = service.verify_email(token)
    except InvalidTokenError as exc:
        return JSONResponse(status_code=400, content={"errors": exc.to_messages()})
    except AuthError as exc:
        logger.warning("Email verification failed: %s", exc.key)
        return JSONResponse(status_code=exc.status_code, content={"errors": exc.to_messages()})
    except Exception:
        logger.exception("Email verification crashed")
        return JSONResponse(status_code=500, content={"errors": [{"key": "server_error", "message": "Server Error"}]})

    resp = RedirectResponse("/", status_code=302)
    apply_cookies(resp, result.cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/oauth/{provider}/authorize")
def oauth_authorize(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    Same action as POST /api/v1/auth/oauth/{provider}/authorization-url, for
    plain links and buttons that cannot run JavaScript.
    """
    try:
        result = _service(request).create_authorization_url(provider)
    except AuthError as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "key": exc.key})

    resp = RedirectResponse(result.data["url"], status_code=302)
    apply_cookies(resp, result.cookies)
    return resp


@router.get("/oauth/{provider}", name="oauth_callback")
async def oauth_callback(
    request: Request,
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
):
    """Handle the provider callback: verify state, link or create the user, sign in.

    400 for a malformed callback or a missing / mismatched state; 500 for a
    provider failure or an aborted transaction. No session is created on
    any failure.
    """
    try:
        result = await _service(request).complete_oauth(provider, code, state, request.cookies)
    except AuthError as exc:
        if exc.status_code >= 500:
            logger.warning("OAuth callback for %r failed: %s", provider, exc.key)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "key": exc.key})
    except Exception:
        logger.exception("OAuth callback crashed for provider %r", provider)
        return JSONResponse(status_code=500, content={"error": "Server error", "key": "server_error"})

    resp = RedirectResponse(OAUTH_SUCCESS_REDIRECT, status_code=302)
    apply_cookies(resp, result.cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request):
    if redirect := _require_auth(request):
        return redirect
    return RedirectResponse("/dashboard", status_code=302)


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request):
    """Authenticated landing page."""
    if redirect := _require_auth(request):
        return redirect
    return templates.TemplateResponse(request, "dashboard.html", {"user": try_get_current_user(request)})


@router.get("/admin", response_class=HTMLResponse)
def admin(request: Request):
    """Admin-only page. Non-admins are bounced to / rather than shown a 403."""
    if redirect := _require_admin(request):
        return redirect
    return templates.TemplateResponse(request, "admin.html", {"user": try_get_current_user(request)})
