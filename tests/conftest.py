"""
tests/conftest.py -- Shared test fixtures for Storefront integration tests.

This module provides:
  - make_settings(): Settings pointing at isolated in-memory DBs and a tmp audit file
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - create_account(): seeds a user in both the simulated provider and the UserStore
  - api_client: TestClient plus a SuperAdmin token, shared per test module
  - fresh_client: factory for a TestClient with its own stores and settings

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The identity provider is always the in-process SimulatedIdentityProvider and
bearer tokens are checked by a strict LocalDecodeVerifier, so no test makes a
network call.

ENVIRONMENT must be set before any api/auth/core import so the import-time
get_settings() call auto-generates SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from pathlib import Path
from types import SimpleNamespace

# CRITICAL: Set ENVIRONMENT before any storefront import.
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_services
from auth.models import Role, User, UserStatus
from auth.provider import SimulatedIdentityProvider
from auth.verifier import LocalDecodeVerifier, TokenAuthenticator
from core.config import Settings
from vendors.workflow import VendorWorkflow

TEST_SECRET = "test-secret-key-for-storefront-suite-0123456789"

# Generous limits so ordinary tests never trip the limiter.
RELAXED_LIMITS = {
    "api_rate_limit": "10000 per minute",
    "auth_rate_limit": "10000 per minute",
    "registration_rate_limit": "10000 per minute",
    "refresh_rate_limit": "10000 per minute",
}


# ---------------------------------------------------------------------------
# Settings and lifespan helpers
# ---------------------------------------------------------------------------


def make_settings(db_suffix: str, audit_dir: Path, **overrides) -> Settings:
    """Build Settings for an isolated app instance.

    Args:
        db_suffix: Unique string appended to the DB names so test modules
                   don't share state.
        audit_dir: Directory that receives the audit log file.
        overrides: Any Settings field, e.g. environment="production".
    """
    values = {
        "environment": "test",
        "secret_key": TEST_SECRET,
        "user_db_url": f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true",
        "vendor_db_url": f"sqlite:///file:test_vendors_{db_suffix}?mode=memory&cache=shared&uri=true",
        "audit_log_path": str(audit_dir / "audit.log"),
        **RELAXED_LIMITS,
    }
    values.update(overrides)
    return Settings(**values)


def _patch_lifespan(config: Settings, provider: SimulatedIdentityProvider):
    """Return an async context manager that replaces the real lifespan.

    Builds the real services from config, then swaps in the simulated
    provider and a strict local-decode verifier. The limiter storage is
    module-global, so it is reset on every startup.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_services(app, config)
        app.state.provider = provider
        app.state.authenticator = TokenAuthenticator(LocalDecodeVerifier(permissive=False), app.state.token_cache)
        app.state.workflow = VendorWorkflow(app.state.user_store, app.state.vendor_store, provider)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        limiter.reset()
        yield
        app.state.purge_task.cancel()
        app.state.user_store.close()
        app.state.vendor_store.close()

    return test_lifespan


def create_account(
    state,
    email: str,
    password: str = "Passw0rd!",
    role: str = Role.CUSTOMER,
    first_name: str = "Test",
    last_name: str = "User",
) -> tuple[str, str]:
    """Create a user in the provider and the UserStore; return (user_id, access_token)."""
    user_id = state.provider.seed_user(
        email=email,
        username=email,
        password=password,
        roles=[role],
        first_name=first_name,
        last_name=last_name,
    )
    state.user_store.create_user(
        User(
            id=user_id,
            email=email,
            username=email,
            first_name=first_name,
            last_name=last_name,
            role=role,
            status=UserStatus.ACTIVE,
            email_verified=True,
        )
    )
    token = state.provider.password_grant(email, password)["access_token"]
    return user_id, token


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[SimpleNamespace, None, None]:
    """Yield a namespace with client, state, and a SuperAdmin (admin_id, admin_token).

    One TestClient per test module for speed. Tests that need state nobody
    else touches should create their own accounts with unique emails.
    """
    suffix = f"api_{uuid.uuid4().hex[:8]}"
    config = make_settings(suffix, tmp_path_factory.mktemp(suffix))
    provider = SimulatedIdentityProvider(TEST_SECRET)
    app.router.lifespan_context = _patch_lifespan(config, provider)

    with TestClient(app, raise_server_exceptions=True) as client:
        admin_id, admin_token = create_account(app.state, "root@example.com", role=Role.SUPER_ADMIN)
        yield SimpleNamespace(client=client, state=app.state, admin_id=admin_id, admin_token=admin_token)


@pytest.fixture
def fresh_client(tmp_path) -> Generator[Callable[..., TestClient], None, None]:
    """Factory fixture: fresh_client(**settings_overrides) -> started TestClient.

    Every call gets its own stores, provider, and audit file. Clients are
    closed when the test ends.
    """
    clients: list[TestClient] = []

    def factory(**overrides) -> TestClient:
        suffix = f"fresh_{uuid.uuid4().hex[:8]}"
        audit_dir = tmp_path / suffix
        audit_dir.mkdir()
        config = make_settings(suffix, audit_dir, **overrides)
        app.router.lifespan_context = _patch_lifespan(config, SimulatedIdentityProvider(TEST_SECRET))
        client = TestClient(app, raise_server_exceptions=True)
        client.__enter__()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.__exit__(None, None, None)
