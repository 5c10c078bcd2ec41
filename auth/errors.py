"""
auth/errors.py -- Failure taxonomy for the authentication engine.

Every expected failure is an AuthError subclass carrying:
  key         -- stable machine-readable discriminator the UI switches on
                 (e.g. show the resend button on "email_not_verified").
  message     -- human-readable text, safe to show to the end user.
  status_code -- HTTP status the route layer uses when it converts the error.

Route handlers catch AuthError at the boundary and render it through
to_messages(); anything else is an unexpected failure and ends in the generic
500 handler in api/main.py.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every expected authentication failure."""

    key: str = "server_error"
    message: str = "Something went wrong. Please try again."
    status_code: int = 500

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_messages(self) -> list[dict]:
        """Return the error as a list of ErrorMessage dicts ({key, message})."""
        return [{"key": self.key, "message": self.message}]


class ValidationError(AuthError):
    """Malformed input. Carries one message per offending field."""

    key = "invalid_email_password"
    message = "Invalid email or password"
    status_code = 400

    def __init__(self, fields: dict[str, str] | None = None, message: str | None = None) -> None:
        super().__init__(message)
        self.fields: dict[str, str] = fields or {}

    def to_messages(self) -> list[dict]:
        if not self.fields:
            return super().to_messages()
        return [{"key": self.key, "message": msg, "field": field} for field, msg in self.fields.items()]


class NotFoundError(AuthError):
    key = "user_not_found"
    message = "User not found"
    status_code = 404


class InvalidCredentialsError(AuthError):
    key = "invalid_email_password"
    message = "Invalid email or password"
    status_code = 401


class EmailNotVerifiedError(AuthError):
    key = "email_not_verified"
    message = "Email not verified"
    status_code = 403


class AlreadyVerifiedError(AuthError):
    key = "email_already_verified"
    message = "Email already verified"
    status_code = 409


class RateLimitedError(AuthError):
    """Verification resend requested inside the cooldown window."""

    key = "rate_limited"
    message = "Too many requests. Please wait before requesting another email."
    status_code = 429

    def __init__(self, retry_after: int = 0, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InvalidTokenError(AuthError):
    """Verification token is expired, tampered with, or already consumed."""

    key = "invalid_token"
    message = "Invalid token"
    status_code = 400


class InvalidRequestError(AuthError):
    key = "invalid_request"
    message = "Invalid Request"
    status_code = 400


class InvalidStateError(AuthError):
    """OAuth callback state is missing or does not match the saved cookie."""

    key = "invalid_state"
    message = "Invalid state"
    status_code = 400


class UnauthorizedError(AuthError):
    key = "unauthorized_access"
    message = "Unauthorized access"
    status_code = 401


class PersistenceError(AuthError):
    """Store-level failure: constraint violation or a write that touched no rows.

    Raised inside a transaction block so the enclosing engine.begin() rolls
    every write of the unit back.
    """

    key = "server_error"
    message = "Server error"
    status_code = 500


class DuplicateAccountError(PersistenceError):
    key = "account_exists"
    message = "An account with this email already exists"
    status_code = 409


class ProviderError(AuthError):
    """The OAuth provider rejected the code exchange or the profile fetch."""

    key = "oauth_failed"
    message = "OAuth authentication failed. Please try again."
    status_code = 500
