"""Rate limiting across the HTTP pipeline."""

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.integration


async def test_public_tier_blocks_51st_request(client: AsyncClient, app) -> None:
    for _ in range(50):
        response = await client.post("/api/collect", json={})
        assert response.status_code == 400

    response = await client.post("/api/collect", json={})

    assert response.status_code == 429
    assert response.headers["retry-after"] == "300"
    assert response.headers["x-ratelimit-limit"] == "50"
    assert response.headers["x-ratelimit-remaining"] == "0"
    body = response.json()
    assert body["error"]["code"] == "rate_limit_exceeded"
    assert body["error"]["retry_after"] == 300
    assert any(e.type == "rate_limit" for e in app.state.auditor.recent_events())


async def test_public_endpoints_share_the_tier(client: AsyncClient) -> None:
    for _ in range(25):
        await client.post("/api/collect", json={})
        await client.post("/api/process", json={})

    response = await client.post("/api/detect", json={})

    assert response.status_code == 429


async def test_separate_clients_are_limited_separately(client: AsyncClient) -> None:
    for _ in range(51):
        await client.post("/api/collect", json={}, headers={"X-Forwarded-For": "10.0.0.1"})

    response = await client.post("/api/collect", json={}, headers={"X-Forwarded-For": "10.0.0.2"})

    assert response.status_code == 400


async def test_critical_tier_applies_before_authentication(client: AsyncClient) -> None:
    for _ in range(10):
        response = await client.get("/api/plan-limits")
        assert response.status_code == 401

    response = await client.get("/api/plan-limits")

    assert response.status_code == 429
    assert response.headers["retry-after"] == "600"


async def test_health_is_not_rate_limited(client: AsyncClient) -> None:
    for _ in range(60):
        assert (await client.get("/health")).status_code == 200
