"""End-to-end detection and action pings over HTTP."""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from falconx.models import DetectedClone, DetectionLog, GeneratedScript
from falconx.services.identity import encode_user_token, generate_script_id
from tests.fixtures.factories import (
    add_allowed_domain,
    compact_ping,
    create_action,
    create_plan,
    create_subscription,
    create_user,
)

pytestmark = pytest.mark.integration


async def _count(session_maker: async_sessionmaker[AsyncSession], model, **filters) -> int:
    async with session_maker() as session:
        query = select(func.count()).select_from(model).filter_by(**filters)
        return int(await session.scalar(query))


class TestCollect:
    """Detection ping scenarios."""

    async def test_authorized_domain(
        self, client: AsyncClient, db_session: AsyncSession, session_maker
    ):
        user = await create_user(db_session)
        await add_allowed_domain(db_session, user, "original.com")

        response = await client.post("/api/collect", json=compact_ping(user, "original.com"))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "authorized"
        assert body["domain"] == "original.com"
        assert "cloneId" not in body
        assert await _count(session_maker, DetectedClone) == 0

    async def test_new_clone(self, client: AsyncClient, db_session: AsyncSession, session_maker):
        user = await create_user(db_session)
        await add_allowed_domain(db_session, user, "original.com")

        response = await client.post(
            "/api/collect",
            json=compact_ping(user, "evil-clone.com", url="https://evil-clone.com/vsl"),
            headers={"X-Forwarded-For": "198.51.100.23"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "detected"
        assert body["originalDomain"] == "original.com"
        assert isinstance(body["processingTime"], int)

        async with session_maker() as session:
            clone = await session.scalar(select(DetectedClone))
            log = await session.scalar(select(DetectionLog))
        assert str(clone.id) == body["cloneId"]
        assert clone.detection_count == 1
        assert log.clone_id == clone.id
        assert log.ip_address == "198.51.100.23"

    async def test_repeat_ping_bumps_same_record(
        self, client: AsyncClient, db_session: AsyncSession, session_maker
    ):
        user = await create_user(db_session)
        await add_allowed_domain(db_session, user, "original.com")
        payload = compact_ping(user, "evil-clone.com")

        first = await client.post("/api/collect", json=payload)
        second = await client.post("/api/collect", json=payload)

        assert first.json()["cloneId"] == second.json()["cloneId"]
        assert await _count(session_maker, DetectedClone) == 1
        assert await _count(session_maker, DetectionLog) == 2
        async with session_maker() as session:
            clone = await session.scalar(select(DetectedClone))
        assert clone.detection_count == 2

    async def test_free_plan_at_limit_still_records(
        self, client: AsyncClient, db_session: AsyncSession, session_maker
    ):
        from falconx.auth import create_access_token

        user = await create_user(db_session)
        plan = await create_plan(db_session, "free")
        await create_subscription(db_session, user, plan)
        await client.post("/api/collect", json=compact_ping(user, "first-clone.com"))

        response = await client.post("/api/collect", json=compact_ping(user, "second-clone.com"))

        assert response.json()["status"] == "detected"
        assert response.json()["upgradeRequired"] is True
        assert await _count(session_maker, DetectedClone) == 2

        usage = await client.get(
            "/api/plan-limits",
            headers={"Authorization": f"Bearer {create_access_token(user.id)}"},
        )
        assert usage.status_code == 200
        assert usage.json()["usage"]["blockedClones"] == 1
        assert usage.json()["usage"]["canDetectMore"] is False

    async def test_detect_alias(self, client: AsyncClient, db_session: AsyncSession):
        user = await create_user(db_session)
        await add_allowed_domain(db_session, user, "original.com")

        response = await client.post("/api/detect", json=compact_ping(user, "original.com"))

        assert response.status_code == 200
        assert response.json()["status"] == "authorized"

    async def test_legacy_payload_backfills_lookup(
        self, client: AsyncClient, db_session: AsyncSession, session_maker
    ):
        user = await create_user(db_session)
        script_id = generate_script_id(user.id, "test-script-secret")

        response = await client.post(
            "/api/collect",
            json={"scriptId": script_id, "domain": "clone.com", "userAgent": "Mozilla/5.0"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "detected"
        assert await _count(session_maker, GeneratedScript, script_id=script_id) == 1


class TestInvalidPings:
    """Malformed or unknown pings get a generic 400."""

    async def test_unknown_user(self, client: AsyncClient):
        import uuid

        response = await client.post(
            "/api/collect", json={"uid": encode_user_token(uuid.uuid4()), "dom": "clone.com"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid data"

    async def test_bad_token(self, client: AsyncClient):
        response = await client.post("/api/collect", json={"uid": "!!!", "dom": "clone.com"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"

    async def test_invalid_json(self, client: AsyncClient, app):
        response = await client.post(
            "/api/collect", content=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid data"
        assert app.state.auditor.recent_events()[0].details["reason"] == "body is not valid JSON"

    async def test_unrecognized_shape(self, client: AsyncClient):
        response = await client.post("/api/collect", json={"hello": "world"})

        assert response.status_code == 400
        assert "hello" not in response.text


class TestProcess:
    """Action-resolution pings."""

    async def test_redirect(self, client: AsyncClient, db_session: AsyncSession, session_maker):
        user = await create_user(db_session)
        await add_allowed_domain(db_session, user, "original.com")
        await create_action(db_session, user, "redirect", redirect_url="https://original.com")

        response = await client.post("/api/process", json=compact_ping(user, "clone.com"))

        assert response.status_code == 200
        assert response.json() == {
            "action": "redirect",
            "url": "https://original.com",
            "message": "Redirecting to original site",
        }
        assert await _count(session_maker, DetectedClone) == 0

    async def test_execute_action_alias_custom_message(
        self, client: AsyncClient, db_session: AsyncSession
    ):
        user = await create_user(db_session)
        await create_action(db_session, user, "custom_message", custom_message="Página clonada")

        response = await client.post("/api/execute-action", json=compact_ping(user, "clone.com"))

        assert response.json()["action"] == "message"
        assert response.json()["customMessage"] == "Página clonada"

    async def test_authorized_domain(self, client: AsyncClient, db_session: AsyncSession):
        user = await create_user(db_session)
        await add_allowed_domain(db_session, user, "original.com")
        await create_action(db_session, user, "blank_page")

        response = await client.post("/api/process", json=compact_ping(user, "original.com"))

        assert response.json()["action"] == "none"


class TestPublicHeaders:
    """Public endpoints answer any origin without credentials."""

    async def test_preflight(self, client: AsyncClient):
        response = await client.options(
            "/api/collect",
            headers={
                "Origin": "https://evil-clone.com",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "access-control-allow-credentials" not in response.headers

    async def test_response_headers(self, client: AsyncClient, db_session: AsyncSession):
        user = await create_user(db_session)

        response = await client.post(
            "/api/collect",
            json=compact_ping(user, "clone.com"),
            headers={"Origin": "https://clone.com"},
        )

        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"
        assert "x-request-id" in response.headers
