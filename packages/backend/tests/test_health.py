"""Health endpoint tests."""

import pytest

from sitewatch.realtime import hub as hub_module


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    """Health endpoint should return server status and version."""
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["server"] == "ok"
    assert "version" in data


@pytest.mark.asyncio
async def test_health_reports_missing_realtime(client):
    resp = await client.get("/api/v1/health")
    data = resp.json()
    assert data["realtime"].startswith("error")
    assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_health_reports_running_hub(client, hub, monkeypatch):
    monkeypatch.setattr(hub_module, "_hub", hub)
    data = (await client.get("/api/v1/health")).json()
    assert data["realtime"] == "ok"
    assert data["alarm_store"] == "ready"
