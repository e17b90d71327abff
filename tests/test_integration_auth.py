"""Integration tests for the HTTP authentication flow.

Tests the complete flow including:
- User signup
- Login with password
- Access to protected routes through the gate
- Token reissue
- Logout and revocation
"""

import base64

import pytest
from fastapi.testclient import TestClient

from tokengate import app as app_module
from tokengate.service.runtime import get_runtime
from tokengate.storage.errors import StoreUnavailable


class DownStore:
    async def set(self, key, value, ttl_seconds):
        raise StoreUnavailable("set")

    async def get(self, key):
        raise StoreUnavailable("get")

    async def exists(self, key):
        raise StoreUnavailable("exists")

    async def delete(self, key):
        raise StoreUnavailable("delete")

    async def ttl(self, key):
        raise StoreUnavailable("ttl")


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app)


@pytest.fixture
def test_user_email():
    return "testuser@example.com"


@pytest.fixture
def test_user_password():
    return "TestPassword123!"


@pytest.fixture
def registered_user(client, test_user_email, test_user_password):
    response = client.post(
        "/api/users/signup",
        json={
            "email": test_user_email,
            "password": test_user_password,
            "password_confirm": test_user_password,
            "name": "Test User",
        },
    )
    assert response.status_code == 201
    return response.json()["data"]


@pytest.fixture
def tokens(client, registered_user, test_user_email, test_user_password):
    response = client.post(
        "/api/users/login",
        json={"email": test_user_email, "password": test_user_password},
    )
    assert response.status_code == 200
    return response.json()["data"]


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestSignupFlow:
    """Tests for user registration."""

    def test_signup_creates_user(self, client, registered_user, test_user_email):
        assert registered_user["email"] == test_user_email
        assert isinstance(registered_user["user_id"], int)

    def test_signup_rejects_duplicate_email(
        self, client, registered_user, test_user_email, test_user_password
    ):
        response = client.post(
            "/api/users/signup",
            json={
                "email": test_user_email,
                "password": test_user_password,
                "password_confirm": test_user_password,
                "name": "Someone Else",
            },
        )

        assert response.status_code == 409
        body = response.json()
        assert body["status"] == "error"
        assert body["error"]["code"] == "conflict"

    def test_signup_rejects_password_mismatch(self, client, test_user_email):
        response = client.post(
            "/api/users/signup",
            json={
                "email": test_user_email,
                "password": "TestPassword123!",
                "password_confirm": "Different123!",
                "name": "Test User",
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"


class TestLoginFlow:
    """Tests for password login."""

    def test_login_returns_token_pair(self, tokens):
        assert tokens["access_token"].count(".") == 2
        assert tokens["refresh_token"].count(".") == 2
        assert tokens["token_type"] == "bearer"

    def test_login_rejects_wrong_password(self, client, registered_user, test_user_email):
        response = client.post(
            "/api/users/login",
            json={"email": test_user_email, "password": "WrongPassword123!"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_login_unavailable_when_store_down(
        self, client, registered_user, test_user_email, test_user_password
    ):
        get_runtime().tokens.store = DownStore()

        response = client.post(
            "/api/users/login",
            json={"email": test_user_email, "password": test_user_password},
        )

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "service_unavailable"


class TestProtectedRoutes:
    """Tests for the gate and the route policy."""

    def test_me_with_valid_token(self, client, tokens, test_user_email):
        response = client.get("/api/users/me", headers=_bearer(tokens["access_token"]))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == test_user_email
        assert data["name"] == "Test User"
        assert data["role"] == "USER"

    def test_me_without_token(self, client):
        response = client.get("/api/users/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"]["code"] == "unauthorized"

    def test_failure_kind_not_leaked(self, client, tokens):
        missing = client.get("/api/users/me")
        forged = client.get("/api/users/me", headers=_bearer(tokens["access_token"] + "x"))
        garbage = client.get("/api/users/me", headers=_bearer("garbage"))

        messages = {r.json()["error"]["message"] for r in (missing, forged, garbage)}
        assert len(messages) == 1
        assert all(r.status_code == 401 for r in (missing, forged, garbage))

    def test_renewal_token_is_not_accepted_as_bearer(self, client, tokens):
        response = client.get("/api/users/me", headers=_bearer(tokens["refresh_token"]))

        assert response.status_code == 401

    def test_nested_header_token_is_treated_as_anonymous(
        self, client, registered_user, test_user_email, test_user_password
    ):
        nested = base64.urlsafe_b64encode(b"[" * 5000).decode().rstrip("=")
        headers = _bearer(f"{nested}.e30.c2ln")

        login = client.post(
            "/api/users/login",
            json={"email": test_user_email, "password": test_user_password},
            headers=headers,
        )
        me = client.get("/api/users/me", headers=headers)

        assert login.status_code == 200
        assert me.status_code == 401
        assert me.json()["error"]["code"] == "unauthorized"

    def test_store_outage_leaves_request_unauthenticated(self, client, tokens):
        get_runtime().tokens.store = DownStore()

        response = client.get("/api/users/me", headers=_bearer(tokens["access_token"]))

        assert response.status_code == 401

    def test_unknown_api_path_requires_auth(self, client):
        assert client.get("/api/orders").status_code == 401

    def test_public_route_with_trailing_slash_not_gated(
        self, client, registered_user, test_user_email, test_user_password
    ):
        response = client.post(
            "/api/users/login/",
            json={"email": test_user_email, "password": test_user_password},
            follow_redirects=False,
        )

        assert response.status_code == 307
        assert response.headers["location"].endswith("/api/users/login")

    def test_protected_route_with_trailing_slash_still_gated(self, client):
        response = client.get("/api/users/me/", follow_redirects=False)

        assert response.status_code == 401

    def test_healthz_is_open(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_request_id_echoed(self, client, registered_user, test_user_email, test_user_password):
        response = client.post(
            "/api/users/login",
            json={"email": test_user_email, "password": test_user_password},
            headers={"X-Request-ID": "req-123"},
        )

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["request_id"] == "req-123"


class TestReissueFlow:
    """Tests for access token reissue."""

    def test_reissue_returns_new_access_token(self, client, tokens):
        response = client.post(
            "/api/users/reissue", json={"refresh_token": tokens["refresh_token"]}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["refresh_token"] is None
        me = client.get("/api/users/me", headers=_bearer(data["access_token"]))
        assert me.status_code == 200

    def test_reissue_rejects_garbage(self, client):
        response = client.post("/api/users/reissue", json={"refresh_token": "garbage"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_reissue_rejects_access_token(self, client, tokens):
        response = client.post(
            "/api/users/reissue", json={"refresh_token": tokens["access_token"]}
        )

        assert response.status_code == 401


class TestLogoutFlow:
    """Tests for logout."""

    def test_logout_revokes_access_and_renewal(self, client, tokens):
        headers = _bearer(tokens["access_token"])

        response = client.post("/api/users/logout", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

        assert client.get("/api/users/me", headers=headers).status_code == 401
        reissue = client.post(
            "/api/users/reissue", json={"refresh_token": tokens["refresh_token"]}
        )
        assert reissue.status_code == 401

    def test_logout_requires_authentication(self, client):
        response = client.post("/api/users/logout")

        assert response.status_code == 401

    def test_second_logout_with_same_token_rejected(self, client, tokens):
        headers = _bearer(tokens["access_token"])
        client.post("/api/users/logout", headers=headers)

        assert client.post("/api/users/logout", headers=headers).status_code == 401
