"""Tests for script identity encoding and resolution."""

import base64
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.exceptions import InvalidPayloadError
from falconx.models import GeneratedScript
from falconx.schemas.detection import NormalizedPing, TokenKind
from falconx.services.identity import (
    ScriptIdentityResolver,
    decode_user_token,
    encode_user_token,
    generate_script_id,
    is_valid_script_id_format,
    validate_script_id,
)
from tests.fixtures.factories import create_user

SECRET = "test-script-secret"
USER_ID = uuid.UUID("8c6f2d5e-3f4a-4b1c-9d2e-7a6b5c4d3e2f")


class TestCompactToken:
    """Tests for the Base64 user token."""

    def test_round_trip(self):
        assert decode_user_token(encode_user_token(USER_ID)) == USER_ID

    def test_encoding_is_plain_base64_of_uuid_string(self):
        expected = base64.b64encode(str(USER_ID).encode()).decode()
        assert encode_user_token(USER_ID) == expected

    def test_rejects_non_base64(self):
        with pytest.raises(InvalidPayloadError):
            decode_user_token("***not-base64***")

    def test_rejects_non_uuid_content(self):
        with pytest.raises(InvalidPayloadError):
            decode_user_token(base64.b64encode(b"hello world").decode())

    def test_rejects_non_v4_uuid(self):
        v1 = "6ba7b810-9dad-11d1-80b4-00c04fd430c8"
        with pytest.raises(InvalidPayloadError):
            decode_user_token(base64.b64encode(v1.encode()).decode())

    def test_error_message_is_generic(self):
        with pytest.raises(InvalidPayloadError) as exc_info:
            decode_user_token("%%%")
        assert exc_info.value.message == "Invalid data"


class TestScriptId:
    """Tests for legacy script ids."""

    def test_deterministic(self):
        assert generate_script_id(USER_ID, SECRET) == generate_script_id(USER_ID, SECRET)

    def test_shape(self):
        script_id = generate_script_id(USER_ID, SECRET)
        assert is_valid_script_id_format(script_id)
        assert len(script_id) == 15

    def test_depends_on_secret(self):
        assert generate_script_id(USER_ID, SECRET) != generate_script_id(USER_ID, "other")

    def test_validate(self):
        script_id = generate_script_id(USER_ID, SECRET)
        assert validate_script_id(script_id, USER_ID, SECRET)
        assert not validate_script_id(script_id, uuid.uuid4(), SECRET)

    @pytest.mark.parametrize(
        "value", [None, "", "fx_123", "fx_0123456789AB", "xx_0123456789ab", "fx_0123456789abc"]
    )
    def test_bad_formats(self, value):
        assert not is_valid_script_id_format(value)


class TestScriptIdentityResolver:
    """Tests for token resolution against the store."""

    @pytest.fixture
    def resolver(self) -> ScriptIdentityResolver:
        return ScriptIdentityResolver(SECRET)

    async def test_compact_token(self, db_session: AsyncSession, resolver):
        ping = NormalizedPing(TokenKind.COMPACT, encode_user_token(USER_ID), "clone.com")
        assert await resolver.resolve(db_session, ping) == USER_ID

    async def test_legacy_id_from_lookup_table(self, db_session: AsyncSession, resolver):
        user = await create_user(db_session)
        script_id = generate_script_id(user.id, SECRET)
        await resolver.remember(db_session, user.id, script_id)
        await db_session.commit()

        ping = NormalizedPing(TokenKind.LEGACY, script_id, "clone.com")
        assert await resolver.resolve(db_session, ping) == user.id

    async def test_legacy_id_scan_backfills_table(self, db_session: AsyncSession, resolver):
        await create_user(db_session)
        user = await create_user(db_session)
        script_id = generate_script_id(user.id, SECRET)

        assert await resolver.resolve_script_id(db_session, script_id) == user.id
        await db_session.commit()

        rows = (await db_session.scalars(select(GeneratedScript))).all()
        assert [(r.user_id, r.script_id) for r in rows] == [(user.id, script_id)]

    async def test_unknown_legacy_id(self, db_session: AsyncSession, resolver):
        await create_user(db_session)
        assert await resolver.resolve_script_id(db_session, "fx_000000000000") is None

    async def test_malformed_legacy_id(self, db_session: AsyncSession, resolver):
        with pytest.raises(InvalidPayloadError):
            await resolver.resolve_script_id(db_session, "fx_nothex")

    async def test_remember_is_idempotent(self, db_session: AsyncSession, resolver):
        user = await create_user(db_session)
        script_id = generate_script_id(user.id, SECRET)

        await resolver.remember(db_session, user.id, script_id)
        await resolver.remember(db_session, user.id, script_id)
        await db_session.commit()

        rows = (await db_session.scalars(select(GeneratedScript))).all()
        assert len(rows) == 1

    async def test_remember_reactivates(self, db_session: AsyncSession, resolver):
        user = await create_user(db_session)
        script_id = generate_script_id(user.id, SECRET)
        db_session.add(GeneratedScript(user_id=user.id, script_id=script_id, is_active=False))
        await db_session.commit()

        await resolver.remember(db_session, user.id, script_id)
        await db_session.commit()

        row = await db_session.scalar(select(GeneratedScript))
        assert row.is_active
