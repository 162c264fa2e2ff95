"""Health, readiness and metrics endpoints."""

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.integration


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["version"] == "0.1.0"


async def test_ready_checks_database(client: AsyncClient) -> None:
    response = await client.get("/ready")

    assert response.status_code == 200
    assert response.json()["checks"]["database"]["status"] == "healthy"
    assert "redis" not in response.json()["checks"]


async def test_metrics(client: AsyncClient) -> None:
    await client.post("/api/collect", json={})

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "falconx_http_requests_total" in response.text
    assert 'endpoint="/api/collect"' in response.text
