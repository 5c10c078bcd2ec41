"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> AuthService -> UserStore
-> envelope serialization -> cookie middleware. The TestClient's cookie jar
plays the browser, so Set-Cookie handling is tested for real.

Coverage:
  - Sign-up: 201 envelope, field errors, duplicate 409
  - Sign-in: unverified 403, wrong password 401, unknown 404, success cookie
  - Verification link -> session -> /me -> sign-out round trip
  - Resend cooldown: 429 + Retry-After, then success after the cooldown
  - Dead and slid sessions: cookie cleared / refreshed by the middleware
  - OAuth start and provider listing
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from auth.dependencies import get_request_auth, require_admin
from tests.conftest import PASSWORD, Env, add_user


def _set_cookies(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


def _sign_up(client: TestClient, email: str, password: str = PASSWORD):
    return client.post(
        "/api/v1/auth/sign-up",
        json={"email": email, "password": password, "confirmPassword": password},
    )


class TestSignUpRoute:
    def test_sign_up_returns_201_envelope(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        resp = _sign_up(client, "api@example.com")

        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["errors"] == []
        assert env.store.get_user_by_id(body["data"]["userId"]).email == "api@example.com"
        assert resp.headers["cache-control"] == "no-store"
        assert len(env.mailer.to("api@example.com")) == 1

    def test_sign_up_field_errors(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        resp = client.post(
            "/api/v1/auth/sign-up",
            json={"email": "bad", "password": "short", "confirmPassword": "short"},
        )

        assert resp.status_code == 400
        errors = resp.json()["errors"]
        assert {e["field"] for e in errors} == {"email", "password"}
        assert env.store.count_users() == 0

    def test_sign_up_accepts_snake_case_confirmation(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        resp = client.post(
            "/api/v1/auth/sign-up",
            json={"email": "snake@example.com", "password": PASSWORD, "confirm_password": PASSWORD},
        )
        assert resp.status_code == 201

    def test_sign_up_duplicate(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        _sign_up(client, "twice@example.com")
        resp = _sign_up(client, "twice@example.com")

        assert resp.status_code == 409
        assert resp.json()["errors"][0]["key"] == "account_exists"
        assert env.store.count_users() == 1


class TestSignInRoute:
    def test_unverified(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        _sign_up(client, "pending@example.com")
        resp = client.post("/api/v1/auth/sign-in", json={"email": "pending@example.com", "password": PASSWORD})

        assert resp.status_code == 403
        assert resp.json()["errors"] == [{"key": "email_not_verified", "message": "Email not verified"}]
        assert "auth_session" not in client.cookies

    def test_wrong_password(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        add_user(env.store, "known@example.com")
        resp = client.post("/api/v1/auth/sign-in", json={"email": "known@example.com", "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json()["errors"][0]["key"] == "invalid_email_password"

    def test_unknown_user(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        resp = client.post("/api/v1/auth/sign-in", json={"email": "ghost@example.com", "password": PASSWORD})
        assert resp.status_code == 404
        assert resp.json()["errors"][0]["key"] == "user_not_found"

    def test_success_sets_http_only_cookie(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        user = add_user(env.store, "known@example.com")
        resp = client.post("/api/v1/auth/sign-in", json={"email": "known@example.com", "password": PASSWORD})

        assert resp.status_code == 200
        assert resp.json() == {"errors": [], "data": {"userId": user.id}}
        header = next(h for h in _set_cookies(resp) if h.startswith("auth_session="))
        assert "httponly" in header.lower()
        assert "samesite=lax" in header.lower()
        assert "auth_session" in client.cookies


class TestSessionRoundTrip:
    def test_verify_me_sign_out(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        user_id = _sign_up(client, "round@example.com").json()["data"]["userId"]
        token = env.mailer.to("round@example.com")[0].token

        resp = client.get(f"/verify-email?token={token}")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"

        me = client.get("/api/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["user_id"] == user_id
        assert me.json()["email"] == "round@example.com"
        assert me.json()["is_email_verified"] is True

        out = client.post("/api/v1/auth/sign-out")
        assert out.status_code == 200
        assert out.json() == {"errors": []}
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_sign_out_without_session(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        resp = client.post("/api/v1/auth/sign-out")
        assert resp.status_code == 401
        assert resp.json()["errors"][0]["key"] == "unauthorized_access"

    def test_me_without_session(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json() == {"errors": [{"key": "unauthorized_access", "message": "Unauthorized access"}]}

    def test_dead_session_cookie_is_cleared(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        client.cookies.set("auth_session", "no-such-session")

        resp = client.get("/api/v1/auth/me")

        assert resp.status_code == 401
        header = next(h for h in _set_cookies(resp) if h.startswith("auth_session="))
        assert "max-age=0" in header.lower()

    def test_slid_session_cookie_is_refreshed(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        add_user(env.store, "slide@example.com")
        client.post("/api/v1/auth/sign-in", json={"email": "slide@example.com", "password": PASSWORD})
        env.clock.advance(20 * 24 * 3600)

        resp = client.get("/api/v1/auth/me")

        assert resp.status_code == 200
        header = next(h for h in _set_cookies(resp) if h.startswith("auth_session="))
        assert f"max-age={env.service.settings.session_ttl_seconds}" in header.lower()


class TestResendRoute:
    def test_cooldown_then_success(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        _sign_up(client, "resend@example.com")

        limited = client.post("/api/v1/auth/resend-verification", json={"email": "resend@example.com"})
        assert limited.status_code == 429
        assert limited.json()["errors"][0]["key"] == "rate_limited"
        assert int(limited.headers["retry-after"]) > 0

        env.clock.advance(56)
        ok = client.post("/api/v1/auth/resend-verification", json={"email": "resend@example.com"})
        assert ok.status_code == 200
        assert len(env.mailer.to("resend@example.com")) == 2

    def test_already_verified(self, app_env: tuple[TestClient, Env]) -> None:
        client, env = app_env
        add_user(env.store, "done@example.com")
        resp = client.post("/api/v1/auth/resend-verification", json={"email": "done@example.com"})
        assert resp.status_code == 409
        assert resp.json()["errors"][0]["key"] == "email_already_verified"


class TestOAuthRoutes:
    def test_providers_listed(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        resp = client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert {p["name"] for p in resp.json()} == {"github", "google"}

    def test_authorization_url_sets_state_cookie(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        resp = client.post("/api/v1/auth/oauth/github/authorization-url")

        assert resp.status_code == 200
        url = resp.json()["data"]["url"]
        assert url.startswith("https://github.com/login/oauth/authorize")
        assert f"state={client.cookies['state']}" in url

    def test_authorization_url_unknown_provider(self, app_env: tuple[TestClient, Env]) -> None:
        client, _env = app_env
        resp = client.post("/api/v1/auth/oauth/myspace/authorization-url")
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["key"] == "invalid_request"


class TestDependencies:
    """get_current_user / require_admin against a minimal request stand-in."""

    @staticmethod
    def _request(env: Env, cookies: dict):
        return SimpleNamespace(
            app=SimpleNamespace(state=SimpleNamespace(auth=env.service)),
            state=SimpleNamespace(),
            cookies=cookies,
        )

    def _cookies_for(self, env: Env, email: str, role: str) -> dict:
        add_user(env.store, email, role=role)
        result = env.service.sign_in(email, PASSWORD)
        return {c.name: c.value for c in result.cookies}

    def test_require_admin_allows_admin(self, env: Env) -> None:
        request = self._request(env, self._cookies_for(env, "root@example.com", "admin"))
        assert require_admin(request).email == "root@example.com"

    def test_require_admin_rejects_user(self, env: Env) -> None:
        request = self._request(env, self._cookies_for(env, "user@example.com", "user"))
        with pytest.raises(HTTPException) as excinfo:
            require_admin(request)
        assert excinfo.value.status_code == 403

    def test_require_admin_rejects_anonymous(self, env: Env) -> None:
        with pytest.raises(HTTPException) as excinfo:
            require_admin(self._request(env, {}))
        assert excinfo.value.status_code == 401

    def test_authentication_is_memoized_per_request(self, env: Env) -> None:
        request = self._request(env, {"auth_session": "stale"})
        first = get_request_auth(request)
        second = get_request_auth(request)
        assert first is second
        assert len(request.state.auth_cookies) == 1
