"""
auth/sessions.py -- Server-side session lifecycle.

A session is an opaque random id stored in the `sessions` table and mirrored
in one httpOnly cookie. The row is the source of truth: deleting it logs the
browser out no matter what the cookie says.

States:
  Active      -- row exists and expires_at is in the future.
  Expired     -- row exists but expires_at has passed. Detected passively by
                 validate_session(), which deletes the row on discovery.
  Invalidated -- row deleted (sign-out, single-session policy). Terminal.

Sliding expiry (SESSION_SLIDING_EXPIRY, on by default): a valid session with
less than half of its own lifetime left is pushed out to now + lifetime,
where lifetime is the TTL the session was created with. The returned
SessionValidation has fresh=True so the caller re-issues the cookie.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.cookies import Cookie, blank_cookie
from auth.models import Session, SessionValidation
from auth.store import UserStore
from auth.tokens import SESSION_ID_LENGTH, generate_id

logger = logging.getLogger("sessiongate.auth.sessions")

DEFAULT_SESSION_TTL = 60 * 60 * 24 * 30  # 30 days


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Creates, validates and invalidates sessions against a UserStore.

    Usage:
        manager = SessionManager(store)
        session, cookie = manager.create_session(user.id)
        result = manager.validate_session(cookie.value)   # SessionValidation | None
        manager.invalidate_session(session.id)
    """

    def __init__(
        self,
        store: UserStore,
        cookie_name: str = "auth_session",
        ttl_seconds: int = DEFAULT_SESSION_TTL,
        secure_cookies: bool = False,
        sliding_expiry: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.cookie_name = cookie_name
        self.ttl_seconds = ttl_seconds
        self.secure_cookies = secure_cookies
        self.sliding_expiry = sliding_expiry
        self._clock = clock

    def create_session(self, user_id: str, ttl_seconds: int | None = None) -> tuple[Session, Cookie]:
        """Persist a new session for user_id and return it with its cookie."""
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        session = Session(
            id=generate_id(SESSION_ID_LENGTH),
            user_id=user_id,
            expires_at=self._clock() + timedelta(seconds=ttl),
            ttl_seconds=ttl,
        )
        self.store.create_session(session)
        logger.debug("Session created for user %s", user_id)
        return session, self.create_session_cookie(session)

    def validate_session(self, session_id: str | None) -> SessionValidation | None:
        """Resolve a session id to (user, session), or None for no session.

        None covers a missing id, an unknown id and an expired row. The caller
        treats None as anonymous and should clear the cookie.
        """
        if not session_id:
            return None
        found = self.store.get_session_and_user(session_id)
        if found is None:
            return None
        session, user = found

        now = self._clock()
        if session.expires_at <= now:
            self.store.delete_session(session.id)
            logger.debug("Expired session removed for user %s", user.id)
            return None

        fresh = False
        lifetime = timedelta(seconds=session.ttl_seconds or self.ttl_seconds)
        if self.sliding_expiry and session.expires_at - now < lifetime / 2:
            session.expires_at = now + lifetime
            self.store.update_session_expiry(session.id, session.expires_at)
            fresh = True
        return SessionValidation(user=user, session=session, fresh=fresh)

    def invalidate_session(self, session_id: str) -> None:
        """Delete the session row. Idempotent: an unknown id is not an error."""
        self.store.delete_session(session_id)

    def invalidate_user_sessions(self, user_id: str) -> int:
        """Delete every session a user holds. Returns how many were removed."""
        removed = self.store.delete_user_sessions(user_id)
        if removed:
            logger.debug("Invalidated %d prior session(s) for user %s", removed, user_id)
        return removed

    def delete_expired_sessions(self) -> int:
        """Sweep rows past their expiry. Validation never depends on this running."""
        return self.store.delete_expired_sessions(self._clock())

    def create_session_cookie(self, session: Session) -> Cookie:
        max_age = max(int((session.expires_at - self._clock()).total_seconds()), 0)
        return Cookie(
            name=self.cookie_name,
            value=session.id,
            max_age=max_age,
            expires=session.expires_at,
            secure=self.secure_cookies,
        )

    def create_blank_session_cookie(self) -> Cookie:
        """Cookie directive that expires the session cookie client-side (logout)."""
        return blank_cookie(self.cookie_name, secure=self.secure_cookies)
