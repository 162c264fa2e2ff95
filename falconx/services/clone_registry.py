"""Clone registry: one active record per (user, clone domain).

Every unauthorized ping goes through a single ``INSERT ... ON CONFLICT DO
UPDATE ... RETURNING`` against the partial unique index on active rows, so
concurrent first pings from the same clone collapse into one record and each
ping bumps ``detection_count`` exactly once.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.models import DOMAIN_NOT_CONFIGURED, DetectedClone, DetectionLog
from falconx.schemas.detection import SlugStat

logger = structlog.get_logger(__name__)

# Must match the predicate of uq_detected_clones_active_user_domain
ACTIVE_CLONE_PREDICATE = text("is_active")


@dataclass(frozen=True)
class RecordedClone:
    id: uuid.UUID
    detection_count: int

    @property
    def created(self) -> bool:
        return self.detection_count == 1


def original_domain_guess(allowed_domains: list[str]) -> str:
    return allowed_domains[0] if allowed_domains else DOMAIN_NOT_CONFIGURED


def merge_slug_stats(
    existing: Iterable[dict[str, Any]] | None, incoming: Iterable[SlugStat]
) -> list[dict[str, Any]]:
    """Add incoming per-slug counts onto the stored aggregate.

    Slugs are never dropped; new slugs are appended in arrival order.
    """
    merged: dict[str, dict[str, Any]] = {}
    for item in existing or []:
        merged[item["slug"]] = {
            "slug": item["slug"],
            "unique_visitors": int(item.get("unique_visitors", 0)),
            "total_visits": int(item.get("total_visits", 0)),
        }
    for stat in incoming:
        entry = merged.setdefault(
            stat.slug, {"slug": stat.slug, "unique_visitors": 0, "total_visits": 0}
        )
        entry["unique_visitors"] += stat.unique_visitors
        entry["total_visits"] += stat.total_visits
    return list(merged.values())


def _insert_for(db: AsyncSession) -> Any:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"clone upsert is not supported on {dialect}")


class CloneRegistry:
    """Writes clone records and detection logs."""

    async def record_detection(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        clone_domain: str,
        original_domain: str,
        slugs: list[SlugStat] | None = None,
        now: datetime | None = None,
    ) -> RecordedClone:
        """Create the clone record or bump its counter."""
        now = now or datetime.now(UTC)
        insert = _insert_for(db)

        stmt = insert(DetectedClone).values(
            id=uuid.uuid4(),
            user_id=user_id,
            clone_domain=clone_domain,
            original_domain=original_domain,
            detection_count=1,
            first_detected=now,
            last_seen=now,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[DetectedClone.user_id, DetectedClone.clone_domain],
            index_where=ACTIVE_CLONE_PREDICATE,
            set_={
                "detection_count": DetectedClone.detection_count + 1,
                "last_seen": now,
                "updated_at": now,
            },
        ).returning(DetectedClone.id, DetectedClone.detection_count)

        row = (await db.execute(stmt)).one()
        recorded = RecordedClone(id=row.id, detection_count=row.detection_count)

        if slugs:
            await self._merge_slugs(db, recorded.id, slugs)

        logger.info(
            "clone_recorded",
            clone_id=str(recorded.id),
            clone_domain=clone_domain,
            detection_count=recorded.detection_count,
            created=recorded.created,
        )
        return recorded

    async def _merge_slugs(
        self, db: AsyncSession, clone_id: uuid.UUID, slugs: list[SlugStat]
    ) -> None:
        # Row is locked by the upsert above on PostgreSQL
        result = await db.execute(
            select(DetectedClone).where(DetectedClone.id == clone_id).with_for_update()
        )
        clone = result.scalar_one()
        clone.slugs_data = merge_slug_stats(clone.slugs_data, slugs)
        await db.flush()

    async def append_log(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        clone_id: uuid.UUID | None,
        *,
        ip_address: str | None,
        user_agent: str | None,
        referrer: str | None,
        page_url: str | None,
        now: datetime | None = None,
    ) -> DetectionLog:
        entry = DetectionLog(
            user_id=user_id,
            clone_id=clone_id,
            ip_address=ip_address,
            user_agent=user_agent,
            referrer=referrer,
            page_url=page_url,
            timestamp=now or datetime.now(UTC),
        )
        db.add(entry)
        await db.flush()
        return entry

    async def get_active(
        self, db: AsyncSession, user_id: uuid.UUID, clone_domain: str
    ) -> DetectedClone | None:
        result = await db.execute(
            select(DetectedClone).where(
                DetectedClone.user_id == user_id,
                DetectedClone.clone_domain == clone_domain,
                DetectedClone.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()


clone_registry = CloneRegistry()
