"""
tests/test_health.py -- Integration tests for GET /api/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against the test database
  - No authentication required
  - 503 and 'degraded' when the database cannot be reached
"""

from __future__ import annotations

from unittest.mock import patch


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == "1.0.0"
    assert data["components"] == {"database": "ok"}


def test_health_no_auth_required(api_client):
    resp = api_client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_health_degraded_when_database_unreachable(api_client):
    with patch("api.main.ping", return_value=False):
        resp = api_client.get("/api/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["components"]["database"] == "unavailable"
