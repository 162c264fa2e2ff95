"""Row builders for store-backed tests."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from falconx.models import AllowedDomain, CloneAction, Plan, Subscription, User
from falconx.schemas.plan import PLAN_CONFIGS
from falconx.services.identity import encode_user_token


async def create_user(db: AsyncSession, email: str | None = None) -> User:
    user = User(id=uuid.uuid4(), email=email or f"{uuid.uuid4().hex[:8]}@example.com")
    db.add(user)
    await db.commit()
    return user


async def add_allowed_domain(
    db: AsyncSession, user: User, domain: str, is_active: bool = True
) -> AllowedDomain:
    row = AllowedDomain(user_id=user.id, domain=domain, is_active=is_active)
    db.add(row)
    await db.commit()
    return row


async def create_plan(db: AsyncSession, slug: str) -> Plan:
    config = PLAN_CONFIGS[slug]
    plan = Plan(
        slug=slug,
        name=config["name"],
        price=config["price"],
        clone_limit=config["clone_limit"],
        domain_limit=config["domain_limit"],
        extra_clone_price=config["extra_clone_price"],
        features=config["features"],
    )
    db.add(plan)
    await db.commit()
    return plan


async def create_subscription(
    db: AsyncSession,
    user: User,
    plan: Plan,
    *,
    current_clone_count: int = 0,
    extra_clones_used: int = 0,
    reset_date: datetime | None = None,
) -> Subscription:
    subscription = Subscription(
        user_id=user.id,
        plan_id=plan.id,
        status="active",
        current_clone_count=current_clone_count,
        clone_limit=plan.clone_limit,
        extra_clones_used=extra_clones_used,
        reset_date=reset_date or datetime.now(UTC) + timedelta(days=15),
    )
    db.add(subscription)
    await db.commit()
    return subscription


async def create_action(
    db: AsyncSession,
    user: User,
    action_type: str = "redirect",
    **fields: Any,
) -> CloneAction:
    action = CloneAction(user_id=user.id, action_type=action_type, **fields)
    db.add(action)
    await db.commit()
    return action


def compact_ping(user: User, dom: str, **extra: Any) -> dict[str, Any]:
    return {"uid": encode_user_token(user.id), "dom": dom, **extra}
