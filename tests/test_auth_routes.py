"""
tests/test_auth_routes.py -- Integration tests for /api/auth/*.

These tests exercise the full stack: FastAPI routing -> rate limit and auth
dependencies -> simulated identity provider -> UserStore -> AuditLogger ->
response envelope.

Coverage:
  - register: 201, Customer/active/unverified, duplicate -> 400, weak password -> 400
  - register rollback: a local-store failure deletes the provider identity
  - verify-email: 200 and stored user verified; already verified -> 200; bad,
    foreign-secret or expired token -> 400
  - login: tokens + no-store header; wrong password -> 401 and LOGIN_FAILURE audited
  - refresh, logout, profile, change-password
  - forgot/reset password round trip (reset token echoed outside production only
    in development, so tests read it from the stored hash instead)

Fixtures used (from conftest.py):
  - api_client: namespace(client, state, admin_id, admin_token)
"""

from __future__ import annotations

import pytest

from audit.models import EventType
from auth.models import Role
from auth.provider import ProviderError
from auth.tokens import create_email_verification_token, generate_reset_token
from conftest import auth_header, create_account

PASSWORD = "Str0ngPass"


def _register(client, email: str, password: str = PASSWORD, **extra):
    body = {"email": email, "password": password, "firstName": "Jane", "lastName": "Doe", **extra}
    return client.post("/api/auth/register", json=body)


class TestRegister:
    def test_register_creates_unverified_customer(self, api_client):
        """POST /register returns 201 and stores a Customer that is active and unverified."""
        resp = _register(api_client.client, "new.customer@example.com")
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        body = resp.json()
        assert body["success"] is True
        assert body["message"].startswith("User registered successfully as Customer")
        data = body["data"]
        assert data["role"] == Role.CUSTOMER
        assert data["status"] == "active"
        assert data["emailVerified"] is False
        assert data["username"] == "new.customer@example.com"

        stored = api_client.state.user_store.get_by_email("new.customer@example.com")
        assert stored is not None and stored.id == data["id"]
        assert api_client.state.provider.get_roles(stored.id) == {Role.CUSTOMER}

        registrations = api_client.state.audit.query(event_type=EventType.USER_REGISTRATION, user_id=stored.id)
        assert len(registrations) == 1

    def test_duplicate_email_is_400(self, api_client):
        """Registering the same email twice returns 400."""
        assert _register(api_client.client, "twice@example.com").status_code == 201
        resp = _register(api_client.client, "twice@example.com")
        assert resp.status_code == 400
        assert resp.json()["message"] == "User with this email or username already exists"

    def test_weak_password_is_400(self, api_client):
        resp = _register(api_client.client, "weak@example.com", password="alllowercase1")
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert "uppercase" in body["message"]
        assert body["error"]["code"] == "validation_error"

    def test_missing_field_is_400(self, api_client):
        resp = api_client.client.post("/api/auth/register", json={"email": "x@example.com", "password": PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["message"] == "firstName is required"

    def test_invalid_email_is_400(self, api_client):
        resp = _register(api_client.client, "not-an-email")
        assert resp.status_code == 400
        assert resp.json()["message"] == "Please provide a valid email address"

    def test_store_failure_rolls_back_provider_identity(self, api_client, monkeypatch):
        """A local-store failure after the provider user exists removes that user again."""

        def broken_create_user(user):
            raise RuntimeError("disk full")

        monkeypatch.setattr(api_client.state.user_store, "create_user", broken_create_user)
        resp = _register(api_client.client, "rollback@example.com")
        monkeypatch.undo()

        assert resp.status_code == 500
        assert resp.json()["message"] == "Registration failed"
        with pytest.raises(ProviderError):
            api_client.state.provider.password_grant("rollback@example.com", PASSWORD)
        assert api_client.state.user_store.get_by_email("rollback@example.com") is None

        # The address is free again once the store recovers.
        assert _register(api_client.client, "rollback@example.com").status_code == 201


class TestVerifyEmail:
    def test_verify_email_marks_user_verified(self, api_client):
        """Register then verify: 200 and the stored user is verified."""
        user_id = _register(api_client.client, "verify.me@example.com").json()["data"]["id"]
        token = create_email_verification_token(api_client.state.settings, user_id, "verify.me@example.com")

        resp = api_client.client.post("/api/auth/verify-email", json={"token": token})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["message"] == "Email verified successfully"
        assert api_client.state.user_store.get_by_id(user_id).email_verified is True

    def test_invalid_token_is_400(self, api_client):
        resp = api_client.client.post("/api/auth/verify-email", json={"token": "garbage"})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid verification token"

    def test_already_verified_is_200(self, api_client):
        user_id = _register(api_client.client, "verify.twice@example.com").json()["data"]["id"]
        token = create_email_verification_token(api_client.state.settings, user_id, "verify.twice@example.com")
        assert api_client.client.post("/api/auth/verify-email", json={"token": token}).status_code == 200

        again = api_client.client.post("/api/auth/verify-email", json={"token": token})
        assert again.status_code == 200
        assert again.json()["message"] == "Email already verified"

    def test_token_signed_with_other_secret_is_400(self, api_client):
        """Tokens are checked against the app's own settings, not a process-wide default."""
        user_id = _register(api_client.client, "verify.other@example.com").json()["data"]["id"]
        other = api_client.state.settings.model_copy(update={"secret_key": "another-secret-key-0123456789abcdef"})
        token = create_email_verification_token(other, user_id, "verify.other@example.com")

        resp = api_client.client.post("/api/auth/verify-email", json={"token": token})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid verification token"

    def test_expiry_follows_settings(self, api_client):
        user_id = _register(api_client.client, "verify.late@example.com").json()["data"]["id"]
        expired = api_client.state.settings.model_copy(update={"email_verification_expire_seconds": -60})
        token = create_email_verification_token(expired, user_id, "verify.late@example.com")

        resp = api_client.client.post("/api/auth/verify-email", json={"token": token})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Verification token has expired"


class TestLogin:
    def test_login_returns_tokens(self, api_client):
        user_id, _ = create_account(api_client.state, "login.ok@example.com", password=PASSWORD)

        resp = api_client.client.post("/api/auth/login", json={"email": "login.ok@example.com", "password": PASSWORD})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()["data"]
        assert data["accessToken"]
        assert data["refreshToken"]
        assert data["tokenType"] == "Bearer"
        assert api_client.state.user_store.get_by_id(user_id).last_login is not None

    def test_wrong_password_is_401_and_audited(self, api_client):
        create_account(api_client.state, "login.bad@example.com", password=PASSWORD)

        resp = api_client.client.post(
            "/api/auth/login", json={"email": "login.bad@example.com", "password": "WrongPass1"}
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid email or password"

        failures = [
            e
            for e in api_client.state.audit.query(event_type=EventType.LOGIN_FAILURE)
            if e["email"] == "login.bad@example.com"
        ]
        assert len(failures) == 1
        assert failures[0]["severity"] == "HIGH"

    def test_unknown_user_is_401(self, api_client):
        resp = api_client.client.post("/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
        assert resp.status_code == 401


class TestSession:
    def test_refresh_rotates_tokens(self, api_client):
        create_account(api_client.state, "refresh@example.com", password=PASSWORD)
        login = api_client.client.post("/api/auth/login", json={"email": "refresh@example.com", "password": PASSWORD})
        refresh_token = login.json()["data"]["refreshToken"]

        resp = api_client.client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["message"] == "Token refreshed successfully"

        again = api_client.client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
        assert again.status_code == 400
        assert again.json()["message"] == "Invalid or expired refresh token"

    def test_refresh_requires_token(self, api_client):
        resp = api_client.client.post("/api/auth/refresh", json={"refreshToken": ""})
        assert resp.status_code == 400

    def test_logout_evicts_cached_identity(self, api_client):
        _, token = create_account(api_client.state, "logout@example.com", password=PASSWORD)
        assert api_client.client.get("/api/auth/profile", headers=auth_header(token)).status_code == 200
        assert api_client.state.token_cache.get(token) is not None

        resp = api_client.client.post("/api/auth/logout", json={}, headers=auth_header(token))
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logout successful"
        assert api_client.state.token_cache.get(token) is None

    def test_logout_requires_bearer(self, api_client):
        assert api_client.client.post("/api/auth/logout", json={}).status_code == 401

    def test_profile_merges_identity_and_store(self, api_client):
        user_id, token = create_account(api_client.state, "profile@example.com", first_name="Pat")
        resp = api_client.client.get("/api/auth/profile", headers=auth_header(token))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == user_id
        assert data["roles"] == [Role.CUSTOMER]
        assert data["firstName"] == "Pat"

    def test_profile_without_local_user_is_401(self, api_client):
        sid = api_client.state.provider.seed_user(
            email="orphan@example.com", username="orphan", password=PASSWORD, roles=[Role.CUSTOMER]
        )
        token = api_client.state.provider.password_grant("orphan@example.com", PASSWORD)["access_token"]
        resp = api_client.client.get("/api/auth/profile", headers=auth_header(token))
        assert resp.status_code == 401
        assert resp.json()["message"] == "Failed to retrieve user profile"
        assert api_client.state.user_store.get_by_id(sid) is None

    def test_invalid_bearer_is_401(self, api_client):
        resp = api_client.client.get("/api/auth/profile", headers=auth_header("not-a-jwt"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"


class TestPasswords:
    def test_change_password(self, api_client):
        _, token = create_account(api_client.state, "changer@example.com", password=PASSWORD)
        resp = api_client.client.put(
            "/api/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "N3wPassword"},
            headers=auth_header(token),
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert api_client.state.provider.password_grant("changer@example.com", "N3wPassword")["access_token"]

    def test_change_password_wrong_current_is_401(self, api_client):
        _, token = create_account(api_client.state, "changer2@example.com", password=PASSWORD)
        resp = api_client.client.put(
            "/api/auth/change-password",
            json={"currentPassword": "WrongPass1", "newPassword": "N3wPassword"},
            headers=auth_header(token),
        )
        assert resp.status_code == 401
        assert resp.json()["message"] == "Current password is incorrect"

    def test_change_password_must_differ(self, api_client):
        _, token = create_account(api_client.state, "changer3@example.com", password=PASSWORD)
        resp = api_client.client.put(
            "/api/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": PASSWORD},
            headers=auth_header(token),
        )
        assert resp.status_code == 400
        assert resp.json()["message"] == "New password must be different from current password"

    def test_forgot_password_is_uniform(self, api_client):
        create_account(api_client.state, "forgetful@example.com", password=PASSWORD)
        known = api_client.client.post("/api/auth/forgot-password", json={"email": "forgetful@example.com"})
        unknown = api_client.client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json()["message"] == unknown.json()["message"]
        # Not development: the raw token is never echoed.
        assert "data" not in known.json()
        assert api_client.state.user_store.get_by_email("forgetful@example.com").reset_token_hash

    def test_reset_password(self, api_client):
        user_id, _ = create_account(api_client.state, "resetter@example.com", password=PASSWORD)
        raw, token_hash, expires_at = generate_reset_token(api_client.state.settings)
        api_client.state.user_store.update_user(user_id, reset_token_hash=token_hash, reset_token_expires=expires_at)

        resp = api_client.client.post("/api/auth/reset-password", json={"token": raw, "newPassword": "Res3tPassword"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert api_client.state.provider.password_grant("resetter@example.com", "Res3tPassword")
        assert api_client.state.user_store.get_by_id(user_id).reset_token_hash is None

        reused = api_client.client.post("/api/auth/reset-password", json={"token": raw, "newPassword": "An0therPass"})
        assert reused.status_code == 400
        assert reused.json()["message"] == "Invalid or expired reset token"
