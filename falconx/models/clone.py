"""Detected clone and detection log models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from falconx.database import Base

# Sentinel original domain when the owner has no allowed domain configured
DOMAIN_NOT_CONFIGURED = "domain-not-configured"

JSONType = JSON().with_variant(JSONB(), "postgresql")


class DetectedClone(Base):
    """An unauthorized domain serving a copy of the owner's page.

    At most one active row exists per (user_id, clone_domain); pings upsert it.
    """

    __tablename__ = "detected_clones"
    __table_args__ = (
        Index(
            "uq_detected_clones_active_user_domain",
            "user_id",
            "clone_domain",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    clone_domain: Mapped[str] = mapped_column(String(253), nullable=False)
    original_domain: Mapped[str] = mapped_column(
        String(253), nullable=False, default=DOMAIN_NOT_CONFIGURED
    )

    detection_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    first_detected: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # [{"slug": ..., "unique_visitors": ..., "total_visits": ...}]
    slugs_data: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class DetectionLog(Base):
    """Append-only audit row, one per reported ping."""

    __tablename__ = "detection_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    clone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("detected_clones.id", ondelete="SET NULL"), nullable=True, index=True
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer: Mapped[str | None] = mapped_column(Text, nullable=True)
    page_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True
    )
