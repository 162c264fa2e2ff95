"""Script identity: mapping the token carried by the embedded script to a user.

Two encodings are accepted:

- compact: Base64 of the user's UUID string, carried directly in the ping.
- legacy: ``fx_`` + first 12 hex chars of ``sha256(user_id + secret)``.
  Reversing it needs the ``generated_scripts`` lookup table; when the table
  has no row the resolver falls back to hashing every known user id.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.exceptions import InvalidPayloadError
from falconx.models import GeneratedScript, User
from falconx.schemas.detection import NormalizedPing, TokenKind
from falconx.services.best_effort import BestEffort

logger = structlog.get_logger(__name__)

UUID_V4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE
)
SCRIPT_ID_RE = re.compile(r"^fx_[0-9a-f]{12}$")

SCAN_BATCH_SIZE = 1000


def encode_user_token(user_id: uuid.UUID | str) -> str:
    return base64.b64encode(str(user_id).encode("utf-8")).decode("ascii")


def decode_user_token(token: str) -> uuid.UUID:
    """Decode a compact token, rejecting anything that is not a v4 UUID."""
    try:
        raw = base64.b64decode(token, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidPayloadError("token is not valid base64") from None
    if not UUID_V4_RE.match(raw):
        raise InvalidPayloadError("decoded token is not a v4 UUID")
    return uuid.UUID(raw)


def generate_script_id(user_id: uuid.UUID | str, secret: str) -> str:
    digest = hashlib.sha256((str(user_id) + secret).encode("utf-8")).hexdigest()
    return f"fx_{digest[:12]}"


def validate_script_id(script_id: str, user_id: uuid.UUID | str, secret: str) -> bool:
    return generate_script_id(user_id, secret) == script_id


def is_valid_script_id_format(script_id: str | None) -> bool:
    return bool(script_id and SCRIPT_ID_RE.match(script_id))


class ScriptIdentityResolver:
    """Resolves script tokens to user ids."""

    def __init__(self, secret: str) -> None:
        self.secret = secret

    async def resolve(self, db: AsyncSession, ping: NormalizedPing) -> uuid.UUID | None:
        """User id for the ping's token, or None for an unknown legacy id.

        Raises:
            InvalidPayloadError: if the token is malformed.
        """
        if ping.token_kind == TokenKind.COMPACT:
            return decode_user_token(ping.token)
        return await self.resolve_script_id(db, ping.token)

    async def resolve_script_id(self, db: AsyncSession, script_id: str) -> uuid.UUID | None:
        if not is_valid_script_id_format(script_id):
            raise InvalidPayloadError("script id has the wrong shape")

        result = await db.execute(
            select(GeneratedScript.user_id).where(
                GeneratedScript.script_id == script_id, GeneratedScript.is_active.is_(True)
            )
        )
        user_id = result.scalar_one_or_none()
        if user_id is not None:
            return user_id

        user_id = await self._scan_users(db, script_id)
        if user_id is not None:
            await BestEffort(db).run(
                "script_id_backfill", self.remember, user_id, script_id, script_id=script_id
            )
        return user_id

    async def _scan_users(self, db: AsyncSession, script_id: str) -> uuid.UUID | None:
        # Linear in the number of users; only reached for ids issued before
        # the lookup table existed.
        logger.warning("legacy_script_id_scan", script_id=script_id)
        last_id: uuid.UUID | None = None
        while True:
            query = select(User.id).order_by(User.id).limit(SCAN_BATCH_SIZE)
            if last_id is not None:
                query = query.where(User.id > last_id)
            batch = list((await db.scalars(query)).all())
            for user_id in batch:
                if validate_script_id(script_id, user_id, self.secret):
                    return user_id
            if len(batch) < SCAN_BATCH_SIZE:
                return None
            last_id = batch[-1]

    async def remember(self, db: AsyncSession, user_id: uuid.UUID, script_id: str) -> None:
        """Store the token -> user mapping if it is not there yet."""
        existing = await db.execute(
            select(GeneratedScript).where(GeneratedScript.script_id == script_id)
        )
        row = existing.scalar_one_or_none()
        if row is not None:
            if not row.is_active:
                row.is_active = True
            return
        try:
            async with db.begin_nested():
                db.add(GeneratedScript(user_id=user_id, script_id=script_id))
        except IntegrityError:
            # Written concurrently by another request
            logger.info("script_id_already_recorded", script_id=script_id)
