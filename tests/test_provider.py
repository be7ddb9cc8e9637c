"""Unit tests for auth/provider.py -- error mapping and provider clients.

Covers:
- map_provider_error(): default table, >=500, unknown statuses, unreachable,
  per-operation overrides
- call_provider() translates ProviderError into AppError
- SimulatedIdentityProvider: grants, refresh rotation, conflicts, roles
- KeycloakClient admin calls against a mocked requests.Session
"""

from unittest.mock import MagicMock

import pytest
import requests
from jose import jwt

from auth.models import Role
from auth.provider import (
    KeycloakClient,
    ProviderError,
    SimulatedIdentityProvider,
    build_identity_provider,
    call_provider,
    map_provider_error,
)
from core.config import Settings
from core.errors import AuthenticationError, ServiceUnavailableError, ValidationError

SECRET = "unit-test-signing-key-0123456789abcdef"


class TestMapProviderError:
    @pytest.mark.parametrize(
        "status,expected_status",
        [(400, 400), (401, 401), (403, 401), (404, 500), (500, 500), (503, 500), (418, 401)],
    )
    def test_default_mapping(self, status, expected_status):
        assert map_provider_error(ProviderError(status)).status_code == expected_status

    def test_unreachable_is_service_unavailable(self):
        err = map_provider_error(ProviderError(None, "unreachable"))
        assert isinstance(err, ServiceUnavailableError)
        assert err.status_code == 500
        assert err.message == "Authentication service temporarily unavailable"

    def test_override_wins(self):
        err = map_provider_error(
            ProviderError(409, "conflict"),
            {409: (400, "User with this email or username already exists")},
        )
        assert isinstance(err, ValidationError)
        assert err.message == "User with this email or username already exists"

    def test_call_provider_translates(self):
        def failing():
            raise ProviderError(401, "invalid_grant")

        with pytest.raises(AuthenticationError) as excinfo:
            call_provider(failing, overrides={401: (401, "Invalid email or password")})
        assert excinfo.value.message == "Invalid email or password"

    def test_call_provider_passes_through_results(self):
        assert call_provider(lambda a, b=0: a + b, 1, b=2) == 3


class TestSimulatedProvider:
    @pytest.fixture
    def provider(self) -> SimulatedIdentityProvider:
        return SimulatedIdentityProvider(SECRET)

    def _create(self, provider, email="jane@example.com", roles=(Role.CUSTOMER,)) -> str:
        return provider.create_user(
            email=email,
            username=email,
            password="Passw0rd!",
            first_name="Jane",
            last_name="Doe",
            roles=list(roles),
        )

    def test_password_grant_issues_keycloak_shaped_token(self, provider):
        sid = self._create(provider)
        tokens = provider.password_grant("jane@example.com", "Passw0rd!")

        claims = jwt.get_unverified_claims(tokens["access_token"])
        assert claims["sub"] == sid
        assert claims["preferred_username"] == "jane@example.com"
        assert claims["realm_access"]["roles"] == [Role.CUSTOMER]
        assert tokens["refresh_token"]
        assert tokens["token_type"] == "Bearer"

    def test_wrong_password_is_401(self, provider):
        self._create(provider)
        with pytest.raises(ProviderError) as excinfo:
            provider.password_grant("jane@example.com", "wrong-pass")
        assert excinfo.value.status_code == 401

    def test_refresh_token_is_single_use(self, provider):
        self._create(provider)
        refresh = provider.password_grant("jane@example.com", "Passw0rd!")["refresh_token"]

        assert provider.refresh(refresh)["access_token"]
        with pytest.raises(ProviderError) as excinfo:
            provider.refresh(refresh)
        assert excinfo.value.status_code == 400

    def test_logout_revokes_refresh_token(self, provider):
        self._create(provider)
        refresh = provider.password_grant("jane@example.com", "Passw0rd!")["refresh_token"]
        provider.logout(refresh)
        with pytest.raises(ProviderError):
            provider.refresh(refresh)

    def test_duplicate_user_is_409(self, provider):
        self._create(provider)
        with pytest.raises(ProviderError) as excinfo:
            self._create(provider, email="JANE@example.com")
        assert excinfo.value.status_code == 409

    def test_role_assignment(self, provider):
        sid = self._create(provider)
        provider.assign_realm_roles(sid, [Role.VENDOR])
        assert provider.get_roles(sid) == {Role.CUSTOMER, Role.VENDOR}
        provider.remove_realm_roles(sid, [Role.VENDOR])
        assert provider.get_roles(sid) == {Role.CUSTOMER}

    def test_unknown_user_is_404(self, provider):
        with pytest.raises(ProviderError) as excinfo:
            provider.set_password("missing", "Passw0rd!")
        assert excinfo.value.status_code == 404


class TestKeycloakClient:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(
            environment="production",
            secret_key=SECRET,
            keycloak_server_url="http://kc.local",
            keycloak_realm="shop",
            keycloak_client_secret="client-secret",
        )

    @pytest.fixture
    def http(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def client(self, settings, http, monkeypatch) -> KeycloakClient:
        kc = KeycloakClient(settings, http=http)
        monkeypatch.setattr(kc, "_admin_token", lambda: "admin-token")
        return kc

    @staticmethod
    def _resp(status: int, body=None, headers=None) -> MagicMock:
        resp = MagicMock()
        resp.status_code = status
        resp.json.return_value = body if body is not None else {}
        resp.headers = headers or {}
        return resp

    def test_create_user_reads_location_and_assigns_roles(self, client, http):
        http.request.side_effect = [
            self._resp(201, headers={"Location": "http://kc.local/admin/realms/shop/users/abc-123"}),
            self._resp(200, [{"id": "role-1", "name": Role.CUSTOMER}]),
            self._resp(204),
        ]

        sid = client.create_user(
            email="jane@example.com",
            username="jane",
            password="Passw0rd!",
            first_name="Jane",
            last_name="Doe",
            roles=[Role.CUSTOMER],
        )

        assert sid == "abc-123"
        method, url = http.request.call_args_list[0].args
        assert (method, url) == ("POST", "http://kc.local/admin/realms/shop/users")
        mapping_call = http.request.call_args_list[2]
        assert mapping_call.args == ("POST", "http://kc.local/admin/realms/shop/users/abc-123/role-mappings/realm")
        assert mapping_call.kwargs["json"] == [{"id": "role-1", "name": Role.CUSTOMER}]
        assert mapping_call.kwargs["headers"] == {"Authorization": "Bearer admin-token"}

    def test_admin_error_becomes_provider_error(self, client, http):
        http.request.return_value = self._resp(409, {"errorMessage": "User exists with same username"})
        with pytest.raises(ProviderError) as excinfo:
            client.delete_user("abc-123")
        assert excinfo.value.status_code == 409
        assert excinfo.value.description == "User exists with same username"

    def test_admin_unreachable(self, client, http):
        http.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ProviderError) as excinfo:
            client.set_email_verified("abc-123", True)
        assert excinfo.value.unreachable

    def test_logout_is_best_effort(self, client, http):
        http.post.side_effect = requests.ConnectionError("refused")
        client.logout("refresh-token")  # must not raise


def test_build_identity_provider_selection():
    dev = Settings(environment="development", secret_key=SECRET, keycloak_client_secret="")
    prod = Settings(environment="production", secret_key=SECRET, keycloak_client_secret="s")
    assert isinstance(build_identity_provider(dev), SimulatedIdentityProvider)
    assert isinstance(build_identity_provider(prod), KeycloakClient)
