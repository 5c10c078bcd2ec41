"""
auth/service.py -- Action entry points of the authentication engine.

AuthService is constructed explicitly (from_settings() at application
startup) and closed at shutdown; nothing here is a module-level singleton.
Every collaborator -- store, session manager, verification protocol, mailer,
OAuth gateway, clock -- is injected, so tests swap any of them.

Cookies are explicit on both sides:
  in:  a plain Mapping[str, str] of the request's cookies.
  out: ActionResult.cookies / RequestAuth.cookies, a list of Cookie
       directives the route layer writes with auth.cookies.apply_cookies().

Failures raise auth.errors.AuthError subclasses; the route boundary converts
them into the {errors: [...]} envelope or an HTTP status.

Session policy: when SINGLE_SESSION_PER_USER is on (the default), every path
that issues a session -- password sign-in, verification redemption and OAuth
login -- first drops the user's existing sessions.

Layer rule: no imports from api/ or web/. core/ is allowed.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from auth.cookies import Cookie, blank_cookie
from auth.errors import (
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from auth.mailer import Mailer, build_mailer
from auth.models import ActionResult, RequestAuth, User
from auth.oauth import (
    OAuthGateway,
    OAuthProvider,
    build_providers,
    generate_code_verifier,
    generate_state,
    get_enabled_providers,
)
from auth.passwords import DUMMY_HASH, hash_password, needs_rehash, verify_password
from auth.schemas import EmailForm, SignInForm, SignUpForm, parse_form
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import USER_ID_LENGTH, generate_id
from auth.verification import EmailVerificationProtocol
from core.config import Settings

logger = logging.getLogger("sessiongate.auth")

STATE_COOKIE = "state"
CODE_VERIFIER_COOKIE = "code_verifier"
OAUTH_SUCCESS_REDIRECT = "/dashboard"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Sign-up, sign-in, sign-out, email verification, OAuth linking, request auth.

    Usage:
        service = AuthService.from_settings(get_settings())
        result = service.sign_up("a@x.com", "Secret123", "Secret123")
        auth = service.authenticate(request.cookies)
        service.close()
    """

    def __init__(
        self,
        settings: Settings,
        store: UserStore,
        mailer: Mailer,
        gateway: OAuthGateway | None = None,
        providers: dict[str, OAuthProvider] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings
        self.store = store
        self.mailer = mailer
        self.gateway = gateway or OAuthGateway()
        self.providers = providers if providers is not None else build_providers(settings)
        self._clock = clock
        self.sessions = SessionManager(
            store,
            cookie_name=settings.session_cookie_name,
            ttl_seconds=settings.session_ttl_seconds,
            secure_cookies=settings.secure_cookies,
            sliding_expiry=settings.session_sliding_expiry,
            clock=clock,
        )
        self.verification = EmailVerificationProtocol(
            store,
            mailer,
            secret_key=settings.secret_key,
            base_url=settings.base_url,
            token_ttl_seconds=settings.verification_token_ttl_seconds,
            resend_cooldown_seconds=settings.verification_resend_cooldown_seconds,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthService":
        """Open the store and build every collaborator from configuration."""
        return cls(
            settings=settings,
            store=UserStore(settings.database_url),
            mailer=build_mailer(settings),
        )

    def close(self) -> None:
        self.store.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _issue_session(self, user_id: str) -> Cookie:
        if self.settings.single_session_per_user:
            self.sessions.invalidate_user_sessions(user_id)
        _session, cookie = self.sessions.create_session(user_id)
        return cookie

    # ------------------------------------------------------------------
    # Credential actions
    # ------------------------------------------------------------------

    def sign_up(self, email: str, password: str, confirm_password: str) -> ActionResult:
        """Create an unverified account and mail its verification link.

        Raises ValidationError on malformed input and DuplicateAccountError
        when the email is taken (no rows are written in either case).
        """
        form = parse_form(SignUpForm, email=email, password=password, confirm_password=confirm_password)

        user = User(
            id=generate_id(USER_ID_LENGTH),
            email=form.email,
            hashed_password=hash_password(form.password),
        )
        verification = self.verification.new_verification(user.id)
        self.store.create_user_with_verification(user, verification)
        logger.info("User %s signed up", user.id)

        self.verification.send(form.email, user.id, verification.code)
        return ActionResult(data={"userId": user.id})

    def sign_in(self, email: str, password: str) -> ActionResult:
        """Check credentials and verification state, then start a session.

        Raises ValidationError, NotFoundError, EmailNotVerifiedError or
        InvalidCredentialsError. Runs Argon2 even for unknown emails so every
        failure path costs the same [C1].
        """
        form = parse_form(SignInForm, email=email, password=password)

        user = self.store.get_user_by_email(form.email)
        if user is None or user.hashed_password is None:
            verify_password(DUMMY_HASH, form.password)
            raise NotFoundError()
        password_ok = verify_password(user.hashed_password, form.password)
        # Unverified accounts never get a session, whatever the password.
        if not user.is_email_verified:
            raise EmailNotVerifiedError()
        if not password_ok:
            raise InvalidCredentialsError()
        if needs_rehash(user.hashed_password):
            self.store.update_user(user.id, hashed_password=hash_password(form.password))
            logger.info("Password digest upgraded for user %s", user.id)

        cookie = self._issue_session(user.id)
        logger.info("User %s signed in", user.id)
        return ActionResult(data={"userId": user.id}, cookies=[cookie])

    def sign_out(self, cookies: Mapping[str, str]) -> ActionResult:
        """Invalidate the caller's session. Raises UnauthorizedError without one."""
        auth = self.authenticate(cookies)
        if auth.session is None:
            raise UnauthorizedError()
        self.sessions.invalidate_session(auth.session.id)
        logger.info("User %s signed out", auth.session.user_id)
        return ActionResult(cookies=[self.sessions.create_blank_session_cookie()])

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def resend_verification(self, email: str) -> ActionResult:
        """Mail a fresh verification link, subject to the resend cooldown.

        Raises ValidationError, NotFoundError, AlreadyVerifiedError or
        RateLimitedError.
        """
        form = parse_form(EmailForm, email=email)
        self.verification.resend(form.email)
        return ActionResult()

    def verify_email(self, token: str) -> ActionResult:
        """Redeem a verification link. Verification doubles as first sign-in.

        Raises InvalidTokenError for a bad, expired, superseded or reused token.
        """
        claims = self.verification.redeem(token)
        cookie = self._issue_session(claims.user_id)
        return ActionResult(data={"userId": claims.user_id}, cookies=[cookie])

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def list_providers(self) -> list[dict]:
        return get_enabled_providers(self.providers)

    def get_provider(self, name: str) -> OAuthProvider:
        provider = self.providers.get(name)
        if provider is None:
            raise InvalidRequestError(f"Unknown OAuth provider: {name}")
        return provider

    def redirect_uri(self, provider: OAuthProvider) -> str:
        return f"{self.settings.base_url}/oauth/{provider.name}"

    def _oauth_cookie(self, name: str, value: str) -> Cookie:
        return Cookie(
            name=name,
            value=value,
            max_age=self.settings.oauth_cookie_max_age,
            secure=self.settings.secure_cookies,
        )

    def create_authorization_url(self, provider_name: str) -> ActionResult:
        """Start the OAuth dance: bind a state (and PKCE verifier) to the browser.

        Returns data={"url": ...} plus the state / code_verifier cookies.
        """
        provider = self.get_provider(provider_name)
        state = generate_state()
        code_verifier = generate_code_verifier() if provider.pkce else None

        url = self.gateway.authorization_url(provider, self.redirect_uri(provider), state, code_verifier)

        cookies = [self._oauth_cookie(STATE_COOKIE, state)]
        if code_verifier is not None:
            cookies.append(self._oauth_cookie(CODE_VERIFIER_COOKIE, code_verifier))
        return ActionResult(data={"url": url}, cookies=cookies)

    async def complete_oauth(
        self,
        provider_name: str,
        code: str | None,
        state: str | None,
        cookies: Mapping[str, str],
    ) -> ActionResult:
        """Handle the provider callback and sign the user in.

        Steps:
          1. code and state present, else InvalidRequestError.
          2. Saved state (and verifier for PKCE) present and state equal to
             the callback's, else InvalidStateError.
          3. Exchange the code, fetch the profile (ProviderError on failure).
          4. Link-or-create in one transaction (PersistenceError /
             DuplicateAccountError on abort, nothing committed).
          5. Issue a session, clear the state / verifier cookies.
        """
        provider = self.get_provider(provider_name)
        if not code or not state:
            raise InvalidRequestError()

        saved_state = cookies.get(STATE_COOKIE)
        code_verifier = cookies.get(CODE_VERIFIER_COOKIE) if provider.pkce else None
        if not saved_state or (provider.pkce and not code_verifier):
            raise InvalidStateError()
        if not hmac.compare_digest(saved_state.encode(), state.encode()):
            logger.warning("OAuth state mismatch for provider %r", provider.name)
            raise InvalidStateError()

        redirect_uri = self.redirect_uri(provider)
        tokens = await self.gateway.exchange_code(provider, code, redirect_uri, code_verifier)
        profile = await self.gateway.fetch_profile(provider, tokens)

        user_id, created = self.store.link_or_create_oauth_user(
            profile,
            tokens,
            new_user_id=generate_id(USER_ID_LENGTH),
            new_account_id=generate_id(USER_ID_LENGTH),
        )
        if created:
            logger.info("User %s created via %s OAuth", user_id, provider.name)
        else:
            logger.info("User %s signed in via %s OAuth", user_id, provider.name)

        session_cookie = self._issue_session(user_id)
        out = [session_cookie, blank_cookie(STATE_COOKIE, secure=self.settings.secure_cookies)]
        if provider.pkce:
            out.append(blank_cookie(CODE_VERIFIER_COOKIE, secure=self.settings.secure_cookies))
        return ActionResult(data={"userId": user_id}, cookies=out)

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    def authenticate(self, cookies: Mapping[str, str]) -> RequestAuth:
        """Resolve the request's session cookie to (user, session).

        Anonymous result: user and session are None. A cookie that names no
        valid session produces a blank-cookie directive so the browser drops
        it; a session extended by sliding expiry produces a refreshed cookie.
        """
        session_id = cookies.get(self.sessions.cookie_name)
        if not session_id:
            return RequestAuth()

        result = self.sessions.validate_session(session_id)
        if result is None:
            return RequestAuth(cookies=[self.sessions.create_blank_session_cookie()])

        directives = []
        if result.fresh:
            directives.append(self.sessions.create_session_cookie(result.session))
        return RequestAuth(user=result.user, session=result.session, cookies=directives)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_admin(self, email: str, password: str) -> str:
        """Seed a verified admin account (used by deployment scripts and tests)."""
        form = parse_form(SignUpForm, email=email, password=password, confirm_password=password)
        user = User(
            id=generate_id(USER_ID_LENGTH),
            email=form.email,
            hashed_password=hash_password(form.password),
            is_email_verified=True,
            role="admin",
        )
        return self.store.create_user(user)


