"""
tests/test_health.py -- Integration tests for GET /health and the fallback handlers.

Covers:
  - 200 response with status, version, and environment
  - No authentication required
  - Security headers on every response
  - Unknown routes return the error envelope with "Not found - <path>"
  - The purge loop sleeps for the monitor window between sweeps
  - build_services logs email bodies only in development
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from api.main import __version__, _purge_loop, build_services


def test_health_returns_status_version_environment(api_client):
    resp = api_client.client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data == {"status": "ok", "version": __version__, "environment": "test"}


def test_health_sets_security_headers(api_client):
    resp = api_client.client.get("/health", headers={})
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["Strict-Transport-Security"].startswith("max-age=")
    assert resp.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


def test_unknown_route_is_404_envelope(api_client):
    resp = api_client.client.get("/api/does-not-exist")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Not found - /api/does-not-exist"
    assert body["path"] == "/api/does-not-exist"
    assert "timestamp" in body


def test_error_envelope_includes_stack_outside_production(api_client):
    resp = api_client.client.get("/api/auth/profile")
    assert resp.status_code == 401
    assert resp.json()["error"]["stack"]


def test_purge_loop_sleeps_for_monitor_window(monkeypatch):
    """The background sweep runs once per configured monitor window."""
    delays: list[float] = []

    async def fake_sleep(seconds):
        delays.append(seconds)
        if len(delays) > 1:
            raise asyncio.CancelledError

    monkeypatch.setattr("api.main.asyncio.sleep", fake_sleep)
    token_cache = MagicMock()
    token_cache.cleanup.return_value = 2
    monitor = MagicMock(time_window=7)
    monitor.cleanup.return_value = 1
    app = SimpleNamespace(state=SimpleNamespace(token_cache=token_cache, monitor=monitor))

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(_purge_loop(app))

    assert delays == [7, 7]
    token_cache.cleanup.assert_called_once_with()
    monitor.cleanup.assert_called_once_with()


def test_email_bodies_logged_only_in_development(tmp_path):
    from conftest import make_settings

    dev_app = SimpleNamespace(state=SimpleNamespace())
    build_services(dev_app, make_settings("email_dev", tmp_path, environment="development"))
    assert dev_app.state.email.log_body is True

    test_app = SimpleNamespace(state=SimpleNamespace())
    build_services(test_app, make_settings("email_test", tmp_path, environment="test"))
    assert test_app.state.email.log_body is False
