"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok', or 'error' with status 'degraded'
  - No session or CSRF token required
"""

from __future__ import annotations

from unittest.mock import patch

from conftest import AppContext
from sqlalchemy.exc import OperationalError

from api.main import API_VERSION


def test_health_returns_200_with_components(app_ctx: AppContext):
    """Health endpoint returns 200 with status, version, and components."""
    resp = app_ctx.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == API_VERSION
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_degraded_database(app_ctx: AppContext):
    """A failing ping is reported, not raised."""
    with patch.object(app_ctx.store, "ping", side_effect=OperationalError("SELECT 1", {}, Exception("gone"))):
        resp = app_ctx.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_no_session_created(app_ctx: AppContext):
    """Health endpoint is accessible anonymously and sets no session cookie."""
    resp = app_ctx.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert "sid" not in resp.cookies
