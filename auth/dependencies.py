"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Identity comes from exactly one place: the opaque session cookie, resolved
against the sessions table by AuthService.authenticate() on every request.
Nothing is cached between requests.

try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Cookie directives produced while authenticating (a refreshed cookie after
sliding expiry, a blank cookie for a dead session) are parked on
request.state.auth_cookies; the write_auth_cookies middleware in api/main.py
puts them on whatever response the route returns.

Layer rule: no imports from web/ or api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import RequestAuth, User


def get_request_auth(request: Request) -> RequestAuth:
    """Authenticate the request once and memoize the result on request.state."""
    cached = getattr(request.state, "auth", None)
    if cached is not None:
        return cached
    service = request.app.state.auth
    auth = service.authenticate(request.cookies)
    request.state.auth = auth
    pending = getattr(request.state, "auth_cookies", None) or []
    request.state.auth_cookies = pending + list(auth.cookies)
    return auth


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises."""
    return get_request_auth(request).user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"key": "unauthorized_access", "message": "Unauthorized access"},
        )
    return user


def require_admin(request: Request) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"key": "forbidden", "message": "Admin access required"},
        )
    return user
