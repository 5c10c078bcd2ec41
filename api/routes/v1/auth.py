"""
api/routes/v1/auth.py -- Credential and OAuth-start actions over JSON.

Routes:
  POST /api/v1/auth/sign-up                              -- create account, mail verification link
  POST /api/v1/auth/sign-in                              -- password sign-in; sets session cookie
  POST /api/v1/auth/sign-out                             -- invalidate session; blank cookie
  POST /api/v1/auth/resend-verification                  -- new verification link (55s cooldown)
  POST /api/v1/auth/oauth/{provider}/authorization-url   -- {data: {url}}; sets state/verifier cookies
  GET  /api/v1/auth/providers                            -- enabled OAuth providers (public)
  GET  /api/v1/auth/me                                   -- current user (requires session)

Every action answers with the same envelope:
  {"errors": [{"key": ..., "message": ..., "field"?: ...}], "data"?: {...}}
An AuthError raised by the engine is caught here and rendered with its own
status code; anything else falls through to the generic 500 handler.

Security:
  [M5] Cache-Control: no-store on every action response (they carry cookies).
  Sign-in runs Argon2 for unknown emails too -- see AuthService.sign_in [C1].
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    ActionResponse,
    MeResponse,
    OAuthProviderInfo,
    ResendVerificationRequest,
    SignInRequest,
    SignUpRequest,
)
from auth.cookies import apply_cookies
from auth.dependencies import get_current_user
from auth.errors import AuthError, RateLimitedError
from auth.models import ActionResult, User
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/sign-up, sign-in, resend-verification: public
# - POST /api/v1/auth/sign-out: session checked by the action itself (401 envelope)
# - POST /api/v1/auth/oauth/{provider}/authorization-url: public
# - GET  /api/v1/auth/providers: public
# - GET  /api/v1/auth/me: requires session (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------


def _ok(result: ActionResult, status_code: int = 200) -> JSONResponse:
    body = ActionResponse(errors=[], data=result.data).model_dump(exclude_none=True)
    resp = JSONResponse(status_code=status_code, content=body)
    apply_cookies(resp, result.cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _fail(exc: AuthError) -> JSONResponse:
    body = ActionResponse(errors=exc.to_messages()).model_dump(exclude_none=True)
    resp = JSONResponse(status_code=exc.status_code, content=body)
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        resp.headers["Retry-After"] = str(exc.retry_after)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _service(request: Request) -> AuthService:
    return request.app.state.auth


# ---------------------------------------------------------------------------
# Credential actions
# ---------------------------------------------------------------------------


@router.post("/auth/sign-up", response_model=ActionResponse, status_code=201)
def sign_up(request: Request, body: SignUpRequest) -> JSONResponse:
    """Create an unverified account and send the verification email."""
    try:
        result = _service(request).sign_up(body.email, body.password, body.confirm_password)
    except AuthError as exc:
        return _fail(exc)
    return _ok(result, status_code=201)


@router.post("/auth/sign-in", response_model=ActionResponse)
def sign_in(request: Request, body: SignInRequest) -> JSONResponse:
    """Sign in with email and password; replaces any session the user held.

    Error keys: invalid_email_password, user_not_found, email_not_verified.
    The UI offers the resend button on email_not_verified.
    """
    try:
        result = _service(request).sign_in(body.email, body.password)
    except AuthError as exc:
        return _fail(exc)
    return _ok(result)


@router.post("/auth/sign-out", response_model=ActionResponse)
def sign_out(request: Request) -> JSONResponse:
    """Invalidate the current session and expire the cookie."""
    try:
        result = _service(request).sign_out(request.cookies)
    except AuthError as exc:
        return _fail(exc)
    return _ok(result)


@router.post("/auth/resend-verification", response_model=ActionResponse)
def resend_verification(request: Request, body: ResendVerificationRequest) -> JSONResponse:
    """Send a new verification link. 429 with Retry-After inside the cooldown."""
    try:
        result = _service(request).resend_verification(body.email)
    except AuthError as exc:
        return _fail(exc)
    return _ok(result)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.post("/auth/oauth/{provider}/authorization-url", response_model=ActionResponse)
def create_authorization_url(request: Request, provider: str) -> JSONResponse:
    """Return the provider's authorization URL and bind state to this browser."""
    try:
        result = _service(request).create_authorization_url(provider)
    except AuthError as exc:
        return _fail(exc)
    return _ok(result)


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers so the UI can render its buttons."""
    return [OAuthProviderInfo(**p) for p in _service(request).list_providers()]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        role=current_user.role,
        name=current_user.name,
        profile_picture_url=current_user.profile_picture_url,
        is_email_verified=current_user.is_email_verified,
    )
