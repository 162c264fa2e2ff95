"""Countermeasure configuration model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from falconx.database import Base


class ActionType(StrEnum):
    """Stored action types."""

    REDIRECT = "redirect"
    BLANK_PAGE = "blank_page"
    CUSTOM_MESSAGE = "custom_message"


class CloneAction(Base):
    """What to do to a visitor of a cloned page.

    ``clone_id`` NULL means the action is global (applies to every clone).
    """

    __tablename__ = "clone_actions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    clone_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("detected_clones.id", ondelete="CASCADE"), nullable=True
    )

    action_type: Mapped[str] = mapped_column(String(32), nullable=False)
    redirect_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    custom_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    redirect_percentage: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    # {"fbclid": true, "gclid": false, ...}
    trigger_params: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=True
    )
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
