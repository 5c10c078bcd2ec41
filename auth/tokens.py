"""
auth/tokens.py -- Random identifiers and signed verification tokens.

Security design decisions:
  Identifiers: generate_id() draws from `secrets` over a 36-character
       lowercase alphanumeric alphabet. Session ids use 40 characters
       (~206 bits), far beyond brute-force reach. They are opaque lookup keys,
       not signed tokens -- the session row is the source of truth.

  Verification tokens: python-jose with HS256. Tokens are signed with
       SECRET_KEY and carry email, userId, code and a short expiry (5 minutes
       by default). Decoding fails closed: any JWT error raises
       InvalidTokenError, which the verification route renders as a 400.

  The signing secret is never the session identifier; stealing a session id
  does not let anyone mint verification links and vice versa.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidTokenError
from auth.models import VerificationClaims

_ALGORITHM = "HS256"
_ALPHABET = string.ascii_lowercase + string.digits

USER_ID_LENGTH = 15
SESSION_ID_LENGTH = 40
VERIFICATION_CODE_LENGTH = 6


def generate_id(length: int) -> str:
    """Return a random lowercase alphanumeric string of the given length."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_verification_code() -> str:
    return generate_id(VERIFICATION_CODE_LENGTH)


def create_verification_token(
    email: str,
    user_id: str,
    code: str,
    secret_key: str,
    expire_seconds: int = 300,
    now: datetime | None = None,
) -> str:
    """Encode a signed JWT binding the address, the user and the live code.

    Args:
        email:          Address the link is mailed to.
        user_id:        Owner of the EmailVerification row.
        code:           The row's current code. A later resend rotates the
                        code, so older links stop matching even before they
                        expire.
        secret_key:     HMAC key (Settings.secret_key).
        expire_seconds: Lifetime of the link.
        now:            Issue time; defaults to the current UTC time.
    """
    issued = now or datetime.now(timezone.utc)
    payload = {
        "email": email,
        "userId": user_id,
        "code": code,
        "exp": issued + timedelta(seconds=expire_seconds),
    }
    return jwt.encode(payload, secret_key, algorithm=_ALGORITHM)


def decode_verification_token(token: str, secret_key: str) -> VerificationClaims:
    """Verify signature and expiry and return the claims.

    Raises InvalidTokenError on a bad signature, an expired token, a malformed
    token, or a payload that lacks any of the three claims.
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError() from exc

    email = payload.get("email")
    user_id = payload.get("userId")
    code = payload.get("code")
    if not (isinstance(email, str) and isinstance(user_id, str) and isinstance(code, str)):
        raise InvalidTokenError()
    return VerificationClaims(email=email, user_id=user_id, code=code)
