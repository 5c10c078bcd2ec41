"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - make_settings(): Settings with a fixed key and both OAuth providers on
  - RecordingMailer: keeps every message instead of sending it
  - FakeGateway: stands in for the provider HTTP calls
  - MutableClock: a clock tests can move forward
  - store / service: isolated engine objects for unit tests
  - app_env: TestClient (follow_redirects=False) wired to a test AuthService

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Each fixture gets its own database name, so tests never share rows.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from asgi import app
from auth.errors import ProviderError
from auth.mailer import Mailer
from auth.models import OAuthProfile, OAuthTokens, User
from auth.oauth import build_providers
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import USER_ID_LENGTH, generate_id
from core.config import Settings

TEST_SECRET_KEY = "test-secret-key-that-is-at-least-32-characters"
PASSWORD = "correct-horse-battery"

_TOKEN_RE = re.compile(r"verify-email\?token=([A-Za-z0-9_\-\.]+)")


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET_KEY,
        "base_url": "http://testserver",
        "github_client_id": "gh-client",
        "github_client_secret": "gh-secret",
        "google_client_id": "google-client",
        "google_client_secret": "google-secret",
    }
    values.update(overrides)
    return Settings(**values)


def make_db_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def add_user(
    store: UserStore,
    email: str,
    password: str = PASSWORD,
    verified: bool = True,
    role: str = "user",
) -> User:
    """Insert a user directly, bypassing sign-up (no verification row)."""
    user = User(
        id=generate_id(USER_ID_LENGTH),
        email=email,
        hashed_password=hash_password(password),
        is_email_verified=verified,
        role=role,
    )
    store.create_user(user)
    return user


def delete_user_row(store: UserStore, user_id: str) -> None:
    """Remove a user with raw SQL; the store itself never deletes accounts."""
    with store.engine.begin() as conn:
        conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user_id})


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class SentMail:
    to: str
    subject: str
    html: str

    @property
    def token(self) -> str:
        match = _TOKEN_RE.search(self.html)
        assert match, "verification link not found in mail body"
        return match.group(1)


class RecordingMailer(Mailer):
    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.fail = False

    def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP server unavailable")
        self.sent.append(SentMail(to=to, subject=subject, html=html))

    def to(self, address: str) -> list[SentMail]:
        return [m for m in self.sent if m.to == address]


class FakeGateway:
    """Returns canned tokens and profiles; records every exchange."""

    def __init__(self) -> None:
        self.profiles: dict[str, OAuthProfile] = {
            "github": OAuthProfile(
                provider="github",
                provider_user_id="1001",
                email="octo@example.com",
                name="Octo Cat",
                avatar_url="https://avatars.example.com/1001",
            ),
            "google": OAuthProfile(
                provider="google",
                provider_user_id="g-2002",
                email="gina@example.com",
                name="Gina",
                avatar_url="https://lh3.example.com/g-2002",
            ),
        }
        self.exchanges: list[dict] = []
        self.fail = False

    def authorization_url(self, provider, redirect_uri, state, code_verifier=None) -> str:
        return f"{provider.authorize_url}?client_id={provider.client_id}&state={state}"

    async def exchange_code(self, provider, code, redirect_uri, code_verifier=None) -> OAuthTokens:
        if self.fail:
            raise ProviderError()
        self.exchanges.append(
            {"provider": provider.name, "code": code, "redirect_uri": redirect_uri, "code_verifier": code_verifier}
        )
        return OAuthTokens(access_token=f"access-{code}", refresh_token=f"refresh-{code}")

    async def fetch_profile(self, provider, tokens) -> OAuthProfile:
        profile = self.profiles[provider.name]
        return OAuthProfile(
            provider=profile.provider,
            provider_user_id=profile.provider_user_id,
            email=profile.email,
            name=profile.name,
            avatar_url=profile.avatar_url,
        )


class MutableClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@dataclass
class Env:
    service: AuthService
    store: UserStore
    mailer: RecordingMailer
    gateway: FakeGateway
    clock: MutableClock


def build_env(**settings_overrides) -> Env:
    settings = make_settings(**settings_overrides)
    store = UserStore(db_url=make_db_url())
    mailer = RecordingMailer()
    gateway = FakeGateway()
    clock = MutableClock()
    service = AuthService(
        settings=settings,
        store=store,
        mailer=mailer,
        gateway=gateway,
        providers=build_providers(settings),
        clock=clock,
    )
    return Env(service=service, store=store, mailer=mailer, gateway=gateway, clock=clock)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    user_store = UserStore(db_url=make_db_url())
    yield user_store
    user_store.close()


@pytest.fixture
def env() -> Generator[Env, None, None]:
    test_env = build_env()
    yield test_env
    test_env.store.close()


# ---------------------------------------------------------------------------
# App-level fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test AuthService into app.state so routes see the isolated
    test DB, the recording mailer and the fake OAuth gateway.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = service
        yield

    return test_lifespan


@pytest.fixture
def app_env() -> Generator[tuple[TestClient, Env], None, None]:
    """Yield (client, env) for route integration tests.

    follow_redirects=False is essential: tests assert on redirect *locations*
    and on the cookies set by the redirect response itself.
    """
    test_env = build_env()
    app.router.lifespan_context = _patch_lifespan(test_env.service)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, test_env

    test_env.store.close()
