"""
tests/test_auth_routes.py -- Integration tests for /api/v1/users/*.

Every request goes through the real ASGI stack (middleware, exception
handlers, cookie parsing) over an isolated in-memory store. Cookies are set
explicitly on the client before each authenticated call so every test states
exactly which session it presents.

Covers:
  - The full register -> verify -> login -> profile -> refresh -> logout flow
  - Status code and success flag agree on every response
  - 400 / 401 / 403 / 404 / 409 / 500 mappings
  - Single active session: a second login revokes the first refresh token
  - Cookie attributes and Cache-Control on responses that set session cookies
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE

BASE = "/api/v1/users"


def _use_cookies(client: TestClient, **cookies: str) -> None:
    """Replace the client's cookie jar with exactly these cookies."""
    client.cookies.clear()
    for name, value in cookies.items():
        client.cookies.set(name, value)


def _register(client: TestClient, email: str = "alice@example.com", password: str = "P@ss1", **overrides):
    body = {"fullName": "Alice", "email": email, "password": password, "confirmPassword": password}
    body.update(overrides)
    return client.post(f"{BASE}/register", json=body)


def _login(client: TestClient, email: str = "alice@example.com", password: str = "P@ss1"):
    client.cookies.clear()
    return client.post(f"{BASE}/login", json={"email": email, "password": password})


def _session(resp) -> dict[str, str]:
    return {ACCESS_COOKIE: resp.cookies[ACCESS_COOKIE], REFRESH_COOKIE: resp.cookies[REFRESH_COOKIE]}


def _assert_error(resp, status: int, code: str) -> None:
    assert resp.status_code == status
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == code


@pytest.fixture
def alice(client: TestClient, notifier) -> dict[str, str]:
    """A registered, verified, logged-in Alice. Returns her session cookies."""
    assert _register(client).status_code == 200
    assert client.post(f"{BASE}/verify-email", params={"token": notifier.last_token}).status_code == 200
    resp = _login(client)
    assert resp.status_code == 200
    return _session(resp)


class TestEndToEnd:
    def test_alice_full_lifecycle(self, client: TestClient, notifier) -> None:
        resp = _register(client)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Verification email sent successfully.", "data": None}

        _assert_error(_login(client), 403, "unverified_account")

        resp = client.post(f"{BASE}/verify-email", params={"token": notifier.last_token})
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = _login(client)
        assert resp.status_code == 200
        user = resp.json()["data"]["user"]
        assert user["email"] == "alice@example.com"
        assert user["fullName"] == "Alice"
        assert user["role"] == "user"
        assert "password" not in user and "passwordHash" not in user
        cookies = _session(resp)

        _use_cookies(client, accessToken=cookies[ACCESS_COOKIE])
        resp = client.get(f"{BASE}/profile")
        assert resp.status_code == 200
        profile = resp.json()["data"]
        assert profile["isVerified"] is True
        assert profile["provider"] == "local"
        assert "passwordHash" not in profile

        _use_cookies(client, refreshToken=cookies[REFRESH_COOKIE])
        resp = client.post(f"{BASE}/refresh-token")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert ACCESS_COOKIE in resp.cookies
        assert REFRESH_COOKIE not in resp.cookies

        _use_cookies(client, **cookies)
        resp = client.post(f"{BASE}/logout")
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        _use_cookies(client, refreshToken=cookies[REFRESH_COOKIE])
        _assert_error(client.post(f"{BASE}/refresh-token"), 403, "forbidden")


class TestRegister:
    def test_missing_field_is_400(self, client: TestClient) -> None:
        _assert_error(client.post(f"{BASE}/register", json={"email": "a@example.com"}), 400, "validation_error")

    def test_password_mismatch_is_400(self, client: TestClient) -> None:
        _assert_error(_register(client, confirmPassword="different"), 400, "validation_error")

    def test_oversized_password_is_400(self, client: TestClient) -> None:
        _assert_error(_register(client, password="x" * 100), 400, "validation_error")

    def test_malformed_body_is_400(self, client: TestClient) -> None:
        resp = client.post(f"{BASE}/register", content=b"{not json", headers={"content-type": "application/json"})
        _assert_error(resp, 400, "validation_error")

    def test_duplicate_email_is_409(self, client: TestClient) -> None:
        assert _register(client).status_code == 200
        _assert_error(_register(client, email="ALICE@example.com"), 409, "duplicate_email")

    def test_notification_failure_is_500_and_rolled_back(self, client: TestClient, notifier, service) -> None:
        notifier.succeed = False
        resp = _register(client)
        _assert_error(resp, 500, "internal_error")
        assert resp.json()["error"]["message"] == "Failed to send verification email."
        assert service.credentials.count() == 0


class TestVerifyEmail:
    def test_missing_token_is_400(self, client: TestClient) -> None:
        _assert_error(client.post(f"{BASE}/verify-email"), 400, "validation_error")

    def test_unknown_token_is_400(self, client: TestClient) -> None:
        _assert_error(client.post(f"{BASE}/verify-email", params={"token": "0" * 64}), 400, "invalid_token")

    def test_token_is_single_use(self, client: TestClient, notifier) -> None:
        _register(client)
        token = notifier.last_token
        assert client.post(f"{BASE}/verify-email", params={"token": token}).status_code == 200
        _assert_error(client.post(f"{BASE}/verify-email", params={"token": token}), 400, "invalid_token")


class TestLogin:
    def test_missing_fields_is_400(self, client: TestClient) -> None:
        _assert_error(client.post(f"{BASE}/login", json={"email": "alice@example.com"}), 400, "validation_error")

    def test_unknown_email_is_401(self, client: TestClient) -> None:
        _assert_error(_login(client, "ghost@example.com"), 401, "invalid_credentials")

    def test_wrong_password_is_401(self, client: TestClient, alice) -> None:
        _assert_error(_login(client, password="wrong"), 401, "password_mismatch")

    def test_sets_http_only_cookies_and_no_store(self, client: TestClient, alice) -> None:
        resp = _login(client)
        set_cookies = resp.headers.get_list("set-cookie")
        assert {c.split("=", 1)[0] for c in set_cookies} == {ACCESS_COOKIE, REFRESH_COOKIE}
        assert all("HttpOnly" in c for c in set_cookies)
        assert resp.headers["cache-control"] == "no-store"

    def test_second_login_revokes_first_refresh_token(self, client: TestClient, alice) -> None:
        second = _session(_login(client))
        assert second[REFRESH_COOKIE] != alice[REFRESH_COOKIE]

        _use_cookies(client, refreshToken=alice[REFRESH_COOKIE])
        _assert_error(client.post(f"{BASE}/refresh-token"), 403, "forbidden")

        _use_cookies(client, refreshToken=second[REFRESH_COOKIE])
        assert client.post(f"{BASE}/refresh-token").status_code == 200


class TestRefreshToken:
    def test_missing_cookie_is_401(self, client: TestClient) -> None:
        client.cookies.clear()
        _assert_error(client.post(f"{BASE}/refresh-token"), 401, "unauthenticated")

    def test_garbage_cookie_is_403(self, client: TestClient) -> None:
        _use_cookies(client, refreshToken="garbage")
        _assert_error(client.post(f"{BASE}/refresh-token"), 403, "forbidden")

    def test_access_token_in_refresh_cookie_is_403(self, client: TestClient, alice) -> None:
        _use_cookies(client, refreshToken=alice[ACCESS_COOKIE])
        _assert_error(client.post(f"{BASE}/refresh-token"), 403, "forbidden")

    def test_refreshed_access_token_opens_profile(self, client: TestClient, alice) -> None:
        _use_cookies(client, refreshToken=alice[REFRESH_COOKIE])
        new_access = client.post(f"{BASE}/refresh-token").cookies[ACCESS_COOKIE]
        _use_cookies(client, accessToken=new_access)
        assert client.get(f"{BASE}/profile").status_code == 200

    def test_refresh_after_account_deleted_is_403(self, client: TestClient, service, alice) -> None:
        service.credentials.delete(service.credentials.find_by_email("alice@example.com").id)
        _use_cookies(client, refreshToken=alice[REFRESH_COOKIE])
        _assert_error(client.post(f"{BASE}/refresh-token"), 403, "forbidden")


class TestLogout:
    def test_requires_access_token(self, client: TestClient, alice) -> None:
        _use_cookies(client, refreshToken=alice[REFRESH_COOKIE])
        _assert_error(client.post(f"{BASE}/logout"), 401, "unauthenticated")

    def test_requires_refresh_token(self, client: TestClient, alice) -> None:
        _use_cookies(client, accessToken=alice[ACCESS_COOKIE])
        _assert_error(client.post(f"{BASE}/logout"), 400, "validation_error")

    def test_clears_both_cookies(self, client: TestClient, alice, service) -> None:
        _use_cookies(client, **alice)
        resp = client.post(f"{BASE}/logout")
        assert resp.status_code == 200
        cleared = resp.headers.get_list("set-cookie")
        assert {c.split("=", 1)[0] for c in cleared} == {ACCESS_COOKIE, REFRESH_COOKIE}
        assert all("Max-Age=0" in c for c in cleared)
        assert service.refresh_tokens.find_valid(alice[REFRESH_COOKIE]) is None


class TestProfile:
    def test_no_cookie_is_401(self, client: TestClient) -> None:
        client.cookies.clear()
        _assert_error(client.get(f"{BASE}/profile"), 401, "unauthenticated")

    def test_refresh_token_is_not_an_access_token(self, client: TestClient, alice) -> None:
        _use_cookies(client, accessToken=alice[REFRESH_COOKIE])
        _assert_error(client.get(f"{BASE}/profile"), 401, "unauthenticated")

    def test_deleted_credential_is_404(self, client: TestClient, alice, service) -> None:
        service.credentials.delete(service.credentials.find_by_email("alice@example.com").id)
        _use_cookies(client, accessToken=alice[ACCESS_COOKIE])
        _assert_error(client.get(f"{BASE}/profile"), 404, "not_found")


def test_untrusted_host_rejected(client: TestClient) -> None:
    resp = client.get("/api/v1/health", headers={"host": "evil.example.com"})
    assert resp.status_code == 400
