"""
auth/oauth.py -- OAuth provider descriptors and the provider-facing gateway.

Every provider is described by one OAuthProvider record (endpoints, scopes,
PKCE yes/no). A single generic flow in AuthService drives all of them; there
is no per-provider route.

Only providers with both client ID and secret configured are registered --
get_enabled_providers() lists them for the sign-in UI.

The gateway wraps authlib's httpx-based OAuth2Client / AsyncOAuth2Client:
  authorization_url() -- builds the provider URL (S256 challenge for PKCE).
  exchange_code()     -- trades the authorization code for tokens.
  fetch_profile()     -- reads the profile endpoint and normalizes it.

State and code_verifier are NOT kept in server memory or a server session:
AuthService stores them in short-lived httpOnly cookies and compares the
callback's state against the cookie in constant time.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.common.security import generate_token
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuth2Client

from auth.errors import ProviderError
from auth.models import OAuthProfile, OAuthTokens

logger = logging.getLogger("sessiongate.auth.oauth")

STATE_LENGTH = 32
CODE_VERIFIER_LENGTH = 64


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    label: str
    authorize_url: str
    token_url: str
    profile_url: str
    scopes: tuple[str, ...]
    pkce: bool
    client_id: str
    client_secret: str
    # GitHub only: secondary endpoint listing the account's addresses.
    emails_url: str | None = None
    token_endpoint_auth_method: str = "client_secret_basic"
    authorize_params: dict = field(default_factory=dict)


def build_providers(settings) -> dict[str, OAuthProvider]:
    """Return descriptors for every provider configured in Settings."""
    providers: dict[str, OAuthProvider] = {}

    if settings.google_client_id and settings.google_client_secret:
        providers["google"] = OAuthProvider(
            name="google",
            label="Google",
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",  # noqa: S106 -- URL, not a password
            profile_url="https://www.googleapis.com/oauth2/v1/userinfo",
            scopes=("openid", "email", "profile"),
            pkce=True,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            # Ask for a refresh token alongside the access token.
            authorize_params={"access_type": "offline"},
        )
        logger.info("Google OAuth provider registered")

    if settings.github_client_id and settings.github_client_secret:
        providers["github"] = OAuthProvider(
            name="github",
            label="GitHub",
            authorize_url="https://github.com/login/oauth/authorize",
            token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            profile_url="https://api.github.com/user",
            emails_url="https://api.github.com/user/emails",
            scopes=("read:user", "user:email"),
            pkce=False,
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            token_endpoint_auth_method="client_secret_post",
        )
        logger.info("GitHub OAuth provider registered")

    return providers


def get_enabled_providers(providers: dict[str, OAuthProvider]) -> list[dict]:
    """Return [{"name", "label"}] for each registered provider, for the sign-in UI."""
    return [{"name": p.name, "label": p.label} for p in providers.values()]


def generate_state() -> str:
    return generate_token(STATE_LENGTH)


def generate_code_verifier() -> str:
    """RFC 7636 verifier: 43-128 unreserved characters."""
    return generate_token(CODE_VERIFIER_LENGTH)


# ---------------------------------------------------------------------------
# Profile normalization -- provider-specific response formats
# ---------------------------------------------------------------------------


def _clean_email(value: str | None) -> str | None:
    """Lowercase a provider-reported address the way sign-up forms do."""
    if not value:
        return None
    return value.strip().lower() or None


def parse_profile(provider: OAuthProvider, data: dict) -> OAuthProfile:
    """Map a raw profile payload to OAuthProfile.

    Google v1 userinfo: id, email, name, picture.
    GitHub /user:       id (int), email (may be null), name or login, avatar_url.

    Raises ProviderError if the payload has no stable user id.
    """
    if provider.name == "github":
        raw_id = data.get("id")
        name = data.get("name") or data.get("login")
        avatar = data.get("avatar_url")
    else:
        raw_id = data.get("id") or data.get("sub")
        name = data.get("name")
        avatar = data.get("picture")

    if raw_id is None or str(raw_id) == "":
        raise ProviderError(f"{provider.label} profile did not include a user id")

    return OAuthProfile(
        provider=provider.name,
        provider_user_id=str(raw_id),
        email=_clean_email(data.get("email")),
        name=name,
        avatar_url=avatar,
    )


def pick_primary_email(entries: list[dict]) -> str | None:
    """Return the GitHub address flagged both primary and verified, if any."""
    for entry in entries:
        if entry.get("primary") and entry.get("verified"):
            return _clean_email(entry.get("email"))
    return None


def _tokens_from_response(token: dict) -> OAuthTokens:
    access_token = token.get("access_token")
    if not access_token:
        raise ProviderError("Token response did not include an access token")
    expires_at = token.get("expires_at")
    return OAuthTokens(
        access_token=access_token,
        refresh_token=token.get("refresh_token"),
        expires_at=datetime.fromtimestamp(int(expires_at), tz=timezone.utc) if expires_at else None,
    )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class OAuthGateway:
    """Talks to the provider over HTTP. Swapped for a fake in tests."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def _client_options(self, provider: OAuthProvider, redirect_uri: str | None = None, token: dict | None = None):
        return dict(
            client_id=provider.client_id,
            client_secret=provider.client_secret,
            scope=" ".join(provider.scopes),
            redirect_uri=redirect_uri,
            token=token,
            code_challenge_method="S256" if provider.pkce else None,
            token_endpoint_auth_method=provider.token_endpoint_auth_method,
            timeout=self.timeout,
        )

    def _client(self, provider: OAuthProvider, redirect_uri: str | None = None, token: dict | None = None):
        return AsyncOAuth2Client(**self._client_options(provider, redirect_uri=redirect_uri, token=token))

    def authorization_url(
        self,
        provider: OAuthProvider,
        redirect_uri: str,
        state: str,
        code_verifier: str | None = None,
    ) -> str:
        """Build the provider URL. No request is sent; the client is closed on return."""
        kwargs = dict(provider.authorize_params)
        if provider.pkce:
            kwargs["code_verifier"] = code_verifier
        with OAuth2Client(**self._client_options(provider, redirect_uri=redirect_uri)) as client:
            url, _state = client.create_authorization_url(provider.authorize_url, state=state, **kwargs)
        return url

    async def exchange_code(
        self,
        provider: OAuthProvider,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> OAuthTokens:
        kwargs: dict = {"code": code}
        if provider.pkce:
            kwargs["code_verifier"] = code_verifier
        try:
            async with self._client(provider, redirect_uri=redirect_uri) as client:
                token = await client.fetch_token(provider.token_url, **kwargs)
        except (AuthlibBaseError, httpx.HTTPError) as exc:
            logger.warning("OAuth code exchange failed for provider %r: %s", provider.name, exc)
            raise ProviderError() from exc
        return _tokens_from_response(token)

    async def fetch_profile(self, provider: OAuthProvider, tokens: OAuthTokens) -> OAuthProfile:
        token = {"access_token": tokens.access_token, "token_type": "bearer"}
        try:
            async with self._client(provider, token=token) as client:
                resp = await client.get(provider.profile_url, headers={"Accept": "application/json"})
                resp.raise_for_status()
                profile = parse_profile(provider, resp.json())

                if profile.email is None and provider.emails_url:
                    emails_resp = await client.get(provider.emails_url, headers={"Accept": "application/json"})
                    if emails_resp.status_code == 200:
                        profile.email = pick_primary_email(emails_resp.json())
        except (AuthlibBaseError, httpx.HTTPError, ValueError) as exc:
            logger.warning("OAuth profile fetch failed for provider %r: %s", provider.name, exc)
            raise ProviderError() from exc
        return profile
