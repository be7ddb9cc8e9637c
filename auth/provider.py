"""
auth/provider.py -- Identity provider clients (Keycloak and a local simulation).

Two implementations share one interface:

  KeycloakClient            -- the real thing. Token grants (password, refresh)
                               go through authlib's requests OAuth2Session;
                               admin REST calls (user create/delete, password,
                               role mappings) use a requests.Session with an
                               admin token from the master realm.
  SimulatedIdentityProvider -- in-memory users with bcrypt passwords and
                               HS256-signed access tokens. Used in development
                               when no client secret is configured, and in tests.

build_identity_provider(settings) picks one at startup.

Error model:
  Every failure surfaces as ProviderError(status_code, error, description).
  status_code is None when the provider could not be reached at all.
  map_provider_error() converts a ProviderError into the AppError the client
  sees; callers pass per-operation overrides for the statuses where the
  default wording is wrong (e.g. 401 on login means bad credentials).

Timeouts (single attempt, no retry): token grants 10 s, admin API 15 s.

Layer rule: no imports from api/, audit/, vendors/, or cache/. Import from
core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
import uuid
from collections.abc import Callable
from typing import Any, Optional, Protocol

import requests
from authlib.integrations.requests_client import OAuth2Session
from jose import jwt

from auth.models import Role
from auth.tokens import hash_password, verify_password
from core.config import Settings
from core.errors import AppError, AuthenticationError, ServiceUnavailableError, ValidationError

logger = logging.getLogger("storefront.auth.provider")

_UNAVAILABLE = "Authentication service temporarily unavailable"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """A failed call to the identity provider."""

    def __init__(self, status_code: Optional[int], error: str = "", description: str = "") -> None:
        super().__init__(f"identity provider error status={status_code} error={error} {description}".strip())
        self.status_code = status_code
        self.error = error
        self.description = description

    @property
    def unreachable(self) -> bool:
        return self.status_code is None


# Provider status -> (client status, message) when no override applies.
_DEFAULT_STATUS_MAP: dict[int, tuple[int, str]] = {
    400: (400, "Invalid request to authentication service"),
    401: (401, "Invalid or expired token"),
    403: (401, "Token not authorized for user info access"),
    404: (500, "Authentication service endpoint not found"),
}


def _error_for(status: int, message: str) -> AppError:
    if status == 400:
        return ValidationError(message)
    if status == 401:
        return AuthenticationError(message)
    if status >= 500:
        return ServiceUnavailableError(message, status_code=status)
    return AppError(message, status_code=status)


def map_provider_error(exc: ProviderError, overrides: Optional[dict[Any, tuple[int, str]]] = None) -> AppError:
    """Translate a ProviderError into the AppError returned to the client.

    overrides maps a provider status (or the key "unreachable") to
    (client_status, message). Unknown statuses fail closed with 401.
    """
    overrides = overrides or {}
    if exc.unreachable:
        status, message = overrides.get("unreachable", (500, _UNAVAILABLE))
        return _error_for(status, message)
    if exc.status_code in overrides:
        return _error_for(*overrides[exc.status_code])
    if exc.status_code in _DEFAULT_STATUS_MAP:
        return _error_for(*_DEFAULT_STATUS_MAP[exc.status_code])
    if exc.status_code >= 500:
        return _error_for(500, _UNAVAILABLE)
    return _error_for(401, "Invalid or expired token")


def call_provider(func: Callable[..., Any], *args: Any, overrides: Optional[dict] = None, **kwargs: Any) -> Any:
    """Call a provider method, translating ProviderError via map_provider_error()."""
    try:
        return func(*args, **kwargs)
    except ProviderError as exc:
        logger.warning("Identity provider call %s failed: %s", getattr(func, "__name__", func), exc)
        raise map_provider_error(exc, overrides) from exc


class IdentityProvider(Protocol):
    def password_grant(self, username: str, password: str) -> dict: ...

    def refresh(self, refresh_token: str) -> dict: ...

    def logout(self, refresh_token: str) -> None: ...

    def create_user(
        self,
        *,
        email: str,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
        roles: list[str],
    ) -> str: ...

    def delete_user(self, subject_id: str) -> None: ...

    def set_password(self, subject_id: str, password: str) -> None: ...

    def set_email_verified(self, subject_id: str, verified: bool) -> None: ...

    def assign_realm_roles(self, subject_id: str, roles: list[str]) -> None: ...

    def remove_realm_roles(self, subject_id: str, roles: list[str]) -> None: ...


# ---------------------------------------------------------------------------
# Keycloak
# ---------------------------------------------------------------------------


def _raise_for_provider_status(resp: requests.Response) -> requests.Response:
    """authlib compliance hook: turn a >=400 token response into ProviderError."""
    if resp.status_code >= 400:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        raise ProviderError(resp.status_code, body.get("error", ""), body.get("error_description", ""))
    return resp


class KeycloakClient:
    def __init__(self, settings: Settings, http: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._base = settings.keycloak_server_url.rstrip("/")
        self._realm = settings.keycloak_realm
        self._http = http or requests.Session()

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    @property
    def token_url(self) -> str:
        return f"{self._base}/realms/{self._realm}/protocol/openid-connect/token"

    @property
    def logout_url(self) -> str:
        return f"{self._base}/realms/{self._realm}/protocol/openid-connect/logout"

    @property
    def admin_base(self) -> str:
        return f"{self._base}/admin/realms/{self._realm}"

    def _oauth_session(self, client_id: str, client_secret: Optional[str]) -> OAuth2Session:
        session = OAuth2Session(
            client_id,
            client_secret,
            scope="openid profile email",
            token_endpoint_auth_method="client_secret_post",
        )
        session.register_compliance_hook("access_token_response", _raise_for_provider_status)
        session.register_compliance_hook("refresh_token_response", _raise_for_provider_status)
        return session

    # ------------------------------------------------------------------
    # Token grants
    # ------------------------------------------------------------------

    def password_grant(self, username: str, password: str) -> dict:
        session = self._oauth_session(self._settings.keycloak_client_id, self._settings.keycloak_client_secret)
        try:
            token = session.fetch_token(
                self.token_url,
                grant_type="password",
                username=username,
                password=password,
                timeout=self._settings.token_grant_timeout_seconds,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise ProviderError(None, "unreachable", str(exc)) from exc
        return dict(token)

    def refresh(self, refresh_token: str) -> dict:
        session = self._oauth_session(self._settings.keycloak_client_id, self._settings.keycloak_client_secret)
        try:
            token = session.refresh_token(
                self.token_url,
                refresh_token=refresh_token,
                timeout=self._settings.token_grant_timeout_seconds,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise ProviderError(None, "unreachable", str(exc)) from exc
        return dict(token)

    def logout(self, refresh_token: str) -> None:
        """Revoke the refresh token. Best effort: failures are logged, never raised."""
        try:
            resp = self._http.post(
                self.logout_url,
                data={
                    "client_id": self._settings.keycloak_client_id,
                    "client_secret": self._settings.keycloak_client_secret,
                    "refresh_token": refresh_token,
                },
                timeout=self._settings.token_grant_timeout_seconds,
            )
            if resp.status_code >= 400:
                logger.warning("Provider logout returned %d", resp.status_code)
        except requests.RequestException as exc:
            logger.warning("Provider logout failed: %s", exc)

    # ------------------------------------------------------------------
    # Admin API
    # ------------------------------------------------------------------

    def _admin_token(self) -> str:
        session = OAuth2Session(self._settings.keycloak_admin_client_id, None)
        session.register_compliance_hook("access_token_response", _raise_for_provider_status)
        try:
            token = session.fetch_token(
                f"{self._base}/realms/master/protocol/openid-connect/token",
                grant_type="password",
                username=self._settings.keycloak_admin_username,
                password=self._settings.keycloak_admin_password,
                timeout=self._settings.token_grant_timeout_seconds,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise ProviderError(None, "unreachable", str(exc)) from exc
        return token["access_token"]

    def _admin_request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = {"Authorization": f"Bearer {self._admin_token()}"}
        try:
            resp = self._http.request(
                method,
                f"{self.admin_base}{path}",
                headers=headers,
                timeout=self._settings.admin_api_timeout_seconds,
                **kwargs,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise ProviderError(None, "unreachable", str(exc)) from exc
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            raise ProviderError(resp.status_code, body.get("error", ""), body.get("errorMessage", ""))
        return resp

    def create_user(
        self,
        *,
        email: str,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
        roles: list[str],
    ) -> str:
        """Create an enabled, unverified user and return its subject id."""
        resp = self._admin_request(
            "POST",
            "/users",
            json={
                "username": username,
                "email": email,
                "firstName": first_name,
                "lastName": last_name,
                "enabled": True,
                "emailVerified": False,
                "credentials": [{"type": "password", "value": password, "temporary": False}],
            },
        )
        location = resp.headers.get("Location", "")
        subject_id = location.rstrip("/").rsplit("/", 1)[-1]
        if not subject_id:
            raise ProviderError(resp.status_code, "missing_location", "User created without a Location header")
        if roles:
            self.assign_realm_roles(subject_id, roles)
        logger.info("Provider user created id=%s", subject_id)
        return subject_id

    def delete_user(self, subject_id: str) -> None:
        self._admin_request("DELETE", f"/users/{subject_id}")

    def set_password(self, subject_id: str, password: str) -> None:
        self._admin_request(
            "PUT",
            f"/users/{subject_id}/reset-password",
            json={"type": "password", "value": password, "temporary": False},
        )

    def set_email_verified(self, subject_id: str, verified: bool) -> None:
        self._admin_request("PUT", f"/users/{subject_id}", json={"emailVerified": verified})

    def _realm_roles(self, names: list[str], create_missing: bool) -> list[dict]:
        existing = {r["name"]: r for r in self._admin_request("GET", "/roles").json()}
        result = []
        for name in names:
            if name not in existing:
                if not create_missing:
                    continue
                self._admin_request("POST", "/roles", json={"name": name, "description": f"{name} role"})
                existing[name] = self._admin_request("GET", f"/roles/{name}").json()
                logger.info("Provider realm role created: %s", name)
            result.append({"id": existing[name]["id"], "name": name})
        return result

    def assign_realm_roles(self, subject_id: str, roles: list[str]) -> None:
        """Add realm roles to the user, creating any role the realm lacks."""
        mappings = self._realm_roles(roles, create_missing=True)
        self._admin_request("POST", f"/users/{subject_id}/role-mappings/realm", json=mappings)

    def remove_realm_roles(self, subject_id: str, roles: list[str]) -> None:
        mappings = self._realm_roles(roles, create_missing=False)
        if mappings:
            self._admin_request("DELETE", f"/users/{subject_id}/role-mappings/realm", json=mappings)


# ---------------------------------------------------------------------------
# Simulated provider
# ---------------------------------------------------------------------------


class SimulatedIdentityProvider:
    """In-process stand-in for Keycloak.

    Access tokens carry the same claim shape as Keycloak's (sub, email,
    preferred_username, realm_access.roles) so every verifier path works
    against them unchanged.
    """

    def __init__(self, secret_key: str, issuer: str = "storefront-simulated", token_ttl: int = 300) -> None:
        self._secret_key = secret_key
        self._issuer = issuer
        self._token_ttl = token_ttl
        self._users: dict[str, dict] = {}
        self._refresh_tokens: dict[str, str] = {}
        self._lock = threading.Lock()

    def _find(self, login: str) -> Optional[dict]:
        login = login.lower()
        for user in self._users.values():
            if user["email"] == login or user["username"].lower() == login:
                return user
        return None

    def _require(self, subject_id: str) -> dict:
        user = self._users.get(subject_id)
        if user is None:
            raise ProviderError(404, "user_not_found", "User not found")
        return user

    def _issue(self, user: dict) -> dict:
        now = int(time.time())
        claims = {
            "sub": user["id"],
            "email": user["email"],
            "preferred_username": user["username"],
            "given_name": user["first_name"],
            "family_name": user["last_name"],
            "email_verified": user["email_verified"],
            "realm_access": {"roles": sorted(user["roles"])},
            "iss": self._issuer,
            "iat": now,
            "exp": now + self._token_ttl,
            "jti": uuid.uuid4().hex,
        }
        refresh_token = secrets.token_urlsafe(32)
        self._refresh_tokens[refresh_token] = user["id"]
        return {
            "access_token": jwt.encode(claims, self._secret_key, algorithm="HS256"),
            "refresh_token": refresh_token,
            "expires_in": self._token_ttl,
            "refresh_expires_in": 30 * 60,
            "token_type": "Bearer",
        }

    def password_grant(self, username: str, password: str) -> dict:
        with self._lock:
            user = self._find(username)
            if user is None or not verify_password(password, user["password_hash"]):
                raise ProviderError(401, "invalid_grant", "Invalid user credentials")
            return self._issue(user)

    def refresh(self, refresh_token: str) -> dict:
        with self._lock:
            subject_id = self._refresh_tokens.pop(refresh_token, None)
            if subject_id is None or subject_id not in self._users:
                raise ProviderError(400, "invalid_grant", "Invalid refresh token")
            return self._issue(self._users[subject_id])

    def logout(self, refresh_token: str) -> None:
        with self._lock:
            self._refresh_tokens.pop(refresh_token, None)

    def create_user(
        self,
        *,
        email: str,
        username: str,
        password: str,
        first_name: str,
        last_name: str,
        roles: list[str],
    ) -> str:
        with self._lock:
            if self._find(email) is not None or self._find(username) is not None:
                raise ProviderError(409, "conflict", "User exists with same username or email")
            subject_id = str(uuid.uuid4())
            self._users[subject_id] = {
                "id": subject_id,
                "email": email.lower(),
                "username": username,
                "first_name": first_name,
                "last_name": last_name,
                "password_hash": hash_password(password),
                "email_verified": False,
                "roles": set(roles),
            }
        logger.info("Simulated provider user created id=%s", subject_id)
        return subject_id

    def delete_user(self, subject_id: str) -> None:
        with self._lock:
            self._require(subject_id)
            del self._users[subject_id]
            self._refresh_tokens = {t: s for t, s in self._refresh_tokens.items() if s != subject_id}

    def set_password(self, subject_id: str, password: str) -> None:
        with self._lock:
            self._require(subject_id)["password_hash"] = hash_password(password)

    def set_email_verified(self, subject_id: str, verified: bool) -> None:
        with self._lock:
            self._require(subject_id)["email_verified"] = verified

    def assign_realm_roles(self, subject_id: str, roles: list[str]) -> None:
        with self._lock:
            self._require(subject_id)["roles"].update(roles)

    def remove_realm_roles(self, subject_id: str, roles: list[str]) -> None:
        with self._lock:
            self._require(subject_id)["roles"].difference_update(roles)

    def get_roles(self, subject_id: str) -> set[str]:
        with self._lock:
            return set(self._require(subject_id)["roles"])

    def seed_user(
        self,
        *,
        email: str,
        username: str,
        password: str,
        roles: list[str],
        first_name: str = "",
        last_name: str = "",
    ) -> str:
        """Create a user directly (e.g. the first SuperAdmin in a dev setup)."""
        return self.create_user(
            email=email,
            username=username,
            password=password,
            first_name=first_name,
            last_name=last_name,
            roles=roles or [Role.CUSTOMER],
        )


def build_identity_provider(settings: Settings) -> IdentityProvider:
    """Return the simulated provider in development without a client secret."""
    if settings.is_development and not settings.keycloak_client_secret:
        logger.warning("No KEYCLOAK_CLIENT_SECRET in development mode -- using the simulated identity provider")
        return SimulatedIdentityProvider(settings.secret_key)
    return KeycloakClient(settings)
