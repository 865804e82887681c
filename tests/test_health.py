"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against a live store and 'error' when the store is down
  - No authentication required
"""

from __future__ import annotations

from auth.errors import StorageError


def test_health_returns_200_with_components(client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_reports_database_error(client, store, monkeypatch):
    """A failing store is reported, not raised."""

    def broken_ping() -> None:
        raise StorageError("The account store is unavailable.")

    monkeypatch.setattr(store, "ping", broken_ping)
    data = client.get("/health").json()
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(client):
    """Health endpoint is accessible without any session cookie."""
    client.cookies.clear()
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
