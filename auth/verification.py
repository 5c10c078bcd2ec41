"""
auth/verification.py -- Email-verification protocol.

Every verification link is double-gated:
  1. A signed, short-lived JWT ({email, userId, code}, 5 minutes). Prevents
     tampering and bounds the replay window.
  2. A server-side EmailVerification row whose code must still equal the
     token's code at redemption. A resend rotates the code, so an older link
     that was intercepted stops working even inside its 5 minutes.

Redemption deletes the row and marks the user verified in one transaction;
replaying the same link afterwards finds no row and fails with
InvalidTokenError.

Resend cooldown: if a live row exists and was (re)issued at most
VERIFICATION_RESEND_COOLDOWN_SECONDS ago, the request fails with
RateLimitedError and nothing is written or sent.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from auth.errors import AlreadyVerifiedError, InvalidTokenError, NotFoundError, RateLimitedError
from auth.mailer import Mailer, render_verification_email
from auth.models import EmailVerification, VerificationClaims
from auth.store import UserStore
from auth.tokens import (
    USER_ID_LENGTH,
    create_verification_token,
    decode_verification_token,
    generate_id,
    generate_verification_code,
)

logger = logging.getLogger("sessiongate.auth.verification")

VERIFICATION_SUBJECT = "Account Verification"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_verification_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/verify-email?token={token}"


class EmailVerificationProtocol:
    """Issues, resends and redeems email-verification links."""

    def __init__(
        self,
        store: UserStore,
        mailer: Mailer,
        secret_key: str,
        base_url: str,
        token_ttl_seconds: int = 300,
        resend_cooldown_seconds: int = 55,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.secret_key = secret_key
        self.base_url = base_url
        self.token_ttl_seconds = token_ttl_seconds
        self.resend_cooldown_seconds = resend_cooldown_seconds
        self._clock = clock

    def new_verification(self, user_id: str) -> EmailVerification:
        """Build (but do not persist) a fresh verification row for user_id."""
        return EmailVerification(
            id=generate_id(USER_ID_LENGTH),
            user_id=user_id,
            code=generate_verification_code(),
            created_at=self._clock(),
        )

    def create_token(self, email: str, user_id: str, code: str) -> str:
        return create_verification_token(
            email,
            user_id,
            code,
            self.secret_key,
            expire_seconds=self.token_ttl_seconds,
            now=self._clock(),
        )

    def send(self, email: str, user_id: str, code: str) -> str:
        """Sign a token for the live code and mail the link. Returns the link.

        Delivery is fire-and-forget: a mailer failure is logged and swallowed,
        the user can always ask for a resend.
        """
        url = build_verification_url(self.base_url, self.create_token(email, user_id, code))
        try:
            self.mailer.send(email, VERIFICATION_SUBJECT, render_verification_email(email, url))
        except Exception:
            logger.exception("Verification email delivery failed for user %s", user_id)
        return url

    def resend(self, email: str) -> None:
        """Rotate the user's code (subject to the cooldown) and mail a new link.

        Raises:
            NotFoundError:        no account uses this email.
            AlreadyVerifiedError: the account is already verified.
            RateLimitedError:     the last link was issued inside the cooldown.
        """
        user = self.store.get_user_by_email(email)
        if user is None:
            raise NotFoundError()
        if user.is_email_verified:
            raise AlreadyVerifiedError()

        now = self._clock()
        existing = self.store.get_verification(user.id)
        if existing is None:
            verification = self.new_verification(user.id)
            self.store.create_verification(verification)
            code = verification.code
        else:
            elapsed = (now - existing.created_at).total_seconds()
            if elapsed <= self.resend_cooldown_seconds:
                retry_after = max(int(self.resend_cooldown_seconds - elapsed) + 1, 1)
                raise RateLimitedError(retry_after=retry_after)
            code = generate_verification_code()
            self.store.replace_verification_code(user.id, code, now)

        self.send(email, user.id, code)
        logger.info("Verification email reissued for user %s", user.id)

    def decode(self, token: str) -> VerificationClaims:
        return decode_verification_token(token, self.secret_key)

    def redeem(self, token: str) -> VerificationClaims:
        """Consume a verification link and mark its user verified.

        Raises InvalidTokenError when the token is invalid or expired, or
        when its code no longer matches the live row (superseded by a resend,
        or already redeemed).
        """
        claims = self.decode(token)
        if not self.store.redeem_verification(claims.user_id, claims.code):
            raise InvalidTokenError()
        logger.info("Email verified for user %s", claims.user_id)
        return claims
