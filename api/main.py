"""
api/main.py -- FastAPI application entry point for SessionGate.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency per request
  2. write_auth_cookies    -- flushes cookie directives produced while
                              authenticating the request (refresh / clear)
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins

Lifespan builds the AuthService on startup and closes it on shutdown. Routes
reach it through request.app.state.auth -- there is no module-level store.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.cookies import apply_cookies
from auth.service import AuthService
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("sessiongate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the auth engine on startup, close it on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown, even if a request handler raised.
    """
    logger.info("SessionGate API starting up")
    app.state.auth = AuthService.from_settings(_settings)
    logger.info(
        "Auth initialized (providers=%s, single_session=%s, sliding_expiry=%s)",
        [p["name"] for p in app.state.auth.list_providers()],
        _settings.single_session_per_user,
        _settings.session_sliding_expiry,
    )

    yield

    app.state.auth.close()
    logger.info("SessionGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SessionGate API",
    description="Credential sign-up/sign-in, sessions, email verification and OAuth account linking.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both wrap the app, so the LAST
# registered middleware is the outermost. Registered here innermost-first.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)


@app.middleware("http")
async def write_auth_cookies(request: Request, call_next):
    """Apply cookie directives parked on request.state by auth.dependencies.

    Authentication may decide the browser's cookie must change (sliding
    expiry refreshed it, or it names a dead session). Routes should not have
    to remember that, so the directives ride along on request.state and are
    written here on the way out.
    """
    response = await call_next(request)
    apply_cookies(response, getattr(request.state, "auth_cookies", None) or [])
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
# Browser-facing routes (verification link, OAuth callback, pages) are mounted
# by asgi.py, not here. api/ and web/ are independent layers.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {errors: [...]} envelope the actions use, so
# clients parse failures uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with a structured error when the body or query params fail to parse."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            errors=[
                ErrorDetail(
                    key="validation_error",
                    message="Request validation failed.",
                    detail=str(exc.errors()),
                )
            ]
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a {key, message} dict as detail;
    use it directly rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"errors": [exc.detail]})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(errors=[ErrorDetail(key=f"http_{exc.status_code}", message=str(exc.detail))]).model_dump(
            exclude_none=True
        ),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(errors=[ErrorDetail(key="server_error", message="Server error")]).model_dump(
            exclude_none=True
        ),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database round-trip check."""
    database = "ok"
    try:
        request.app.state.auth.store.count_users()
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
