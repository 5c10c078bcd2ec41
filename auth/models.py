"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

User is the root aggregate. Session, EmailVerification and OAuthAccount each
belong to exactly one User and are cascade-deleted with it.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """An identity that can hold sessions.

    email is the login key. It is None only for OAuth accounts whose provider
    did not disclose an address.

    hashed_password is None for OAuth-only users -- such a user always has at
    least one OAuthAccount row, created in the same transaction.
    """

    id: str
    email: str | None = None
    hashed_password: str | None = None  # None = OAuth-only user
    is_email_verified: bool = False
    role: str = "user"  # "user", "admin"
    name: str | None = None
    profile_picture_url: str | None = None
    created_at: str | None = None


@dataclass
class Session:
    id: str
    user_id: str
    expires_at: datetime
    ttl_seconds: int | None = None


@dataclass
class EmailVerification:
    """The single live verification code of a user.

    Resend overwrites code and created_at in place; redemption deletes the row.
    """

    id: str
    user_id: str
    code: str
    created_at: datetime


@dataclass
class OAuthAccount:
    id: str
    user_id: str
    provider: str  # "google", "github"
    provider_user_id: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


@dataclass
class OAuthProfile:
    """Provider profile normalized to the fields the linking transaction needs."""

    provider: str
    provider_user_id: str
    email: str | None = None
    name: str | None = None
    avatar_url: str | None = None


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


@dataclass
class VerificationClaims:
    """Decoded payload of an email-verification token."""

    email: str
    user_id: str
    code: str


@dataclass
class SessionValidation:
    """Result of a successful session lookup.

    fresh is True when sliding expiry pushed expires_at out; the caller must
    re-issue the cookie so the browser's copy expires together with the row.
    """

    user: User
    session: Session
    fresh: bool = False


@dataclass
class RequestAuth:
    """Identity resolved for one inbound request.

    user and session are both None for anonymous requests. cookies holds any
    directives the response must carry (a refreshed or a blank session cookie).
    """

    user: User | None = None
    session: Session | None = None
    cookies: list = field(default_factory=list)


@dataclass
class ActionResult:
    """Outcome of a successful action.

    data is the payload of the {errors: [], data} envelope. cookies are the
    directives to write onto the response.
    """

    data: dict | None = None
    cookies: list = field(default_factory=list)
