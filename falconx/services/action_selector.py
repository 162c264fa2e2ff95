"""Countermeasure selection for a detected clone visit.

Gates are evaluated in order and are stateless: nothing records that an
action already fired for a visitor.
"""

from __future__ import annotations

import random
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.models import CloneAction

logger = structlog.get_logger(__name__)

DEFAULT_CUSTOM_MESSAGE = "Site não autorizado"

# Stored action_type -> client instruction
ACTION_ALIASES = {
    "redirect": "redirect",
    "redirect_traffic": "redirect",
    "blank_page": "blank",
    "blank": "blank",
    "custom_message": "message",
    "message": "message",
}

SelectionPolicy = Callable[[Sequence[CloneAction]], CloneAction | None]


def first_active(actions: Sequence[CloneAction]) -> CloneAction | None:
    """Default policy: the oldest active action."""
    return actions[0] if actions else None


@dataclass(frozen=True)
class ActionDecision:
    action: str  # redirect | blank | message | none | skip
    message: str
    url: str | None = None
    custom_message: str | None = None
    action_id: uuid.UUID | None = None


NO_ACTION = ActionDecision(action="none", message="No actions configured")


def enabled_triggers(trigger_params: dict | None) -> list[str]:
    return [name for name, enabled in (trigger_params or {}).items() if enabled]


def query_params(*urls: str | None) -> set[str]:
    """Names of query parameters present on any of the given URLs."""
    names: set[str] = set()
    for url in urls:
        if url:
            names.update(parse_qs(urlsplit(url).query, keep_blank_values=True))
    return names


class ActionSelector:
    """Applies the percentage and trigger gates to a user's actions."""

    def __init__(
        self,
        rng: random.Random | None = None,
        policy: SelectionPolicy = first_active,
    ) -> None:
        self.rng = rng or random.Random()
        self.policy = policy

    def select(
        self,
        actions: Sequence[CloneAction],
        url: str | None = None,
        referrer: str | None = None,
    ) -> ActionDecision:
        action = self.policy(actions)
        if action is None:
            return NO_ACTION

        # Percentage gate
        draw = self.rng.uniform(0, 100)
        if draw >= action.redirect_percentage:
            return ActionDecision(
                action="skip", message="Action not triggered by percentage", action_id=action.id
            )

        # Trigger gate
        triggers = enabled_triggers(action.trigger_params)
        if triggers and not query_params(url, referrer).intersection(triggers):
            return ActionDecision(
                action="skip", message="No triggers activated", action_id=action.id
            )

        return self.to_instruction(action)

    @staticmethod
    def to_instruction(action: CloneAction) -> ActionDecision:
        kind = ACTION_ALIASES.get(action.action_type)
        if kind == "redirect":
            return ActionDecision(
                action="redirect",
                url=action.redirect_url,
                message="Redirecting to original site",
                action_id=action.id,
            )
        if kind == "blank":
            return ActionDecision(action="blank", message="Blanking page", action_id=action.id)
        if kind == "message":
            return ActionDecision(
                action="message",
                # Older rows kept the text in redirect_url
                custom_message=action.custom_message
                or action.redirect_url
                or DEFAULT_CUSTOM_MESSAGE,
                message="Showing custom message",
                action_id=action.id,
            )
        logger.warning("unknown_action_type", action_type=action.action_type)
        return ActionDecision(action="none", message="Unknown action type", action_id=action.id)


class ActionService:
    """Loads a user's configured actions."""

    async def get_global_actions(self, db: AsyncSession, user_id: uuid.UUID) -> list[CloneAction]:
        """Active actions that apply to every clone, oldest first."""
        result = await db.execute(
            select(CloneAction)
            .where(
                CloneAction.user_id == user_id,
                CloneAction.clone_id.is_(None),
                CloneAction.is_active.is_(True),
            )
            .order_by(CloneAction.created_at, CloneAction.id)
        )
        return list(result.scalars().all())


action_service = ActionService()
