"""Allowed (whitelisted) domain model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from falconx.database import Base


class AllowedDomain(Base):
    """A domain the owner authorizes to serve their pages.

    Entries are deactivated rather than deleted; inactive rows never authorize.
    """

    __tablename__ = "allowed_domains"
    __table_args__ = (UniqueConstraint("user_id", "domain", name="uq_allowed_domains_user_domain"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Lowercase, no scheme, no www.
    domain: Mapped[str] = mapped_column(String(253), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
