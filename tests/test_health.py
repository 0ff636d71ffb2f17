"""Tests for health check endpoints."""

import pytest
from fastapi.testclient import TestClient

from app.api import health


def test_health_check(client: TestClient) -> None:
    """Test health endpoint returns healthy status."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "storefront-core"
    assert "version" in data


def test_readiness_check(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test readiness endpoint returns ready status."""

    async def ping() -> None:
        return None

    monkeypatch.setattr(health, "ping_database", ping)
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "database": "ok"}


def test_readiness_check_without_database(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Test readiness endpoint reports an unreachable database."""

    async def ping() -> None:
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(health, "ping_database", ping)
    response = client.get("/ready")
    assert response.status_code == 503
    assert response.json() == {"status": "unavailable", "database": "unreachable"}
