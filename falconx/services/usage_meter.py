"""Plan usage meter: monthly clone quota per user.

Counters live on the user's single active subscription. There is no
scheduler; the first read after ``reset_date`` performs the monthly reset.
"""

from __future__ import annotations

import calendar
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.exceptions import NotFoundError
from falconx.metrics import record_quota_increment
from falconx.models import DetectedClone, Plan, PlanSlug, Subscription, SubscriptionStatus, User
from falconx.schemas.plan import (
    PLAN_CONFIGS,
    PlanDetails,
    PlanUsageResponse,
    PlanUser,
    SubscriptionDetails,
    UsageDetails,
    calculate_extra_cost,
    calculate_usage_progress,
    days_until_reset,
    get_alert_level,
)

logger = structlog.get_logger(__name__)


class IncrementOutcome(StrEnum):
    COUNTED = "counted"  # within the base limit
    EXTRA = "extra"  # paid plan over its limit, billed per unit
    BLOCKED = "blocked"  # free plan at its limit, not metered


@dataclass(frozen=True)
class QuotaStatus:
    can_detect_more: bool
    current_count: int
    limit: int
    extra_used: int
    reset_date: datetime
    plan_slug: str
    plan_name: str
    was_reset: bool = False


def add_months(value: datetime, months: int = 1) -> datetime:
    """Same day and time ``months`` later, clamped to the month's last day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def next_reset_after(reset_date: datetime, now: datetime) -> datetime:
    """Advance ``reset_date`` month by month until it is in the future."""
    next_date = add_months(reset_date)
    while next_date <= now:
        next_date = add_months(next_date)
    return next_date


class UsageMeter:
    """Reads and updates subscription counters."""

    async def get_free_plan(self, db: AsyncSession) -> Plan:
        result = await db.execute(select(Plan).where(Plan.slug == PlanSlug.FREE.value))
        plan = result.scalar_one_or_none()
        if plan is not None:
            return plan

        config = PLAN_CONFIGS[PlanSlug.FREE.value]
        try:
            async with db.begin_nested():
                plan = Plan(
                    slug=config["slug"],
                    name=config["name"],
                    price=config["price"],
                    clone_limit=config["clone_limit"],
                    domain_limit=config["domain_limit"],
                    extra_clone_price=config["extra_clone_price"],
                    features=config["features"],
                )
                db.add(plan)
            return plan
        except IntegrityError:
            result = await db.execute(select(Plan).where(Plan.slug == PlanSlug.FREE.value))
            return result.scalar_one()

    async def get_active_subscription(
        self, db: AsyncSession, user_id: uuid.UUID
    ) -> Subscription | None:
        result = await db.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    async def ensure_subscription(
        self, db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
    ) -> Subscription:
        """Active subscription, creating a free one on first use."""
        subscription = await self.get_active_subscription(db, user_id)
        if subscription is not None:
            return subscription

        now = now or datetime.now(UTC)
        plan = await self.get_free_plan(db)
        try:
            async with db.begin_nested():
                subscription = Subscription(
                    user_id=user_id,
                    plan_id=plan.id,
                    plan=plan,
                    status=SubscriptionStatus.ACTIVE.value,
                    current_clone_count=0,
                    clone_limit=plan.clone_limit,
                    extra_clones_used=0,
                    reset_date=add_months(now),
                    started_at=now,
                )
                db.add(subscription)
            logger.info("free_subscription_created", user_id=str(user_id))
            return subscription
        except IntegrityError:
            # Another request created it first
            subscription = await self.get_active_subscription(db, user_id)
            if subscription is None:
                raise
            return subscription

    async def check_limits(
        self, db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
    ) -> QuotaStatus:
        """Current quota state, resetting the counters if the period is over."""
        now = now or datetime.now(UTC)
        subscription = await self.ensure_subscription(db, user_id, now)
        plan = subscription.plan

        was_reset = False
        if now >= as_utc(subscription.reset_date):
            was_reset = await self._reset(db, subscription, plan, now)

        current = subscription.current_clone_count
        limit = subscription.clone_limit
        can_detect = current < limit if plan.is_free else True

        return QuotaStatus(
            can_detect_more=can_detect,
            current_count=current,
            limit=limit,
            extra_used=subscription.extra_clones_used,
            reset_date=as_utc(subscription.reset_date),
            plan_slug=plan.slug,
            plan_name=plan.name,
            was_reset=was_reset,
        )

    async def _reset(
        self, db: AsyncSession, subscription: Subscription, plan: Plan, now: datetime
    ) -> bool:
        previous = as_utc(subscription.reset_date)
        next_reset = next_reset_after(previous, now)
        # Guarded on the old reset_date so concurrent readers reset only once
        result = await db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                Subscription.reset_date == subscription.reset_date,
            )
            .values(
                current_clone_count=0,
                extra_clones_used=0,
                clone_limit=plan.clone_limit,
                reset_date=next_reset,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(subscription)
        if result.rowcount:
            logger.info(
                "quota_reset",
                user_id=str(subscription.user_id),
                previous_reset=previous.isoformat(),
                next_reset=next_reset.isoformat(),
            )
        return bool(result.rowcount)

    async def increment_count(
        self, db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
    ) -> IncrementOutcome:
        """Meter one newly detected clone.

        Call once per new clone record, never per ping.
        """
        now = now or datetime.now(UTC)
        subscription = await self.ensure_subscription(db, user_id, now)

        counted = await db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                Subscription.current_clone_count < Subscription.clone_limit,
            )
            .values(
                current_clone_count=Subscription.current_clone_count + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount:
            outcome = IncrementOutcome.COUNTED
        elif subscription.plan.is_free:
            outcome = IncrementOutcome.BLOCKED
        else:
            await db.execute(
                update(Subscription)
                .where(Subscription.id == subscription.id)
                .values(
                    extra_clones_used=Subscription.extra_clones_used + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            outcome = IncrementOutcome.EXTRA

        await db.refresh(subscription)
        record_quota_increment(outcome.value)
        logger.info("quota_incremented", user_id=str(user_id), outcome=outcome.value)
        return outcome

    async def count_period_clones(
        self, db: AsyncSession, user_id: uuid.UUID, reset_date: datetime
    ) -> int:
        """Clones first detected in the period ending at ``reset_date``."""
        period_start = add_months(reset_date, -1)
        result = await db.execute(
            select(func.count())
            .select_from(DetectedClone)
            .where(
                DetectedClone.user_id == user_id,
                DetectedClone.first_detected >= period_start,
            )
        )
        return int(result.scalar_one())

    async def get_usage_summary(
        self, db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
    ) -> PlanUsageResponse:
        """Plan, subscription and usage view for the dashboard."""
        now = now or datetime.now(UTC)
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))

        status = await self.check_limits(db, user_id, now)
        subscription = await self.ensure_subscription(db, user_id, now)
        plan = subscription.plan

        # Paid plans never refuse a clone; unmetered rows there are not blocks.
        blocked = 0
        if plan.is_free:
            period_clones = await self.count_period_clones(db, user_id, status.reset_date)
            blocked = max(0, period_clones - (status.current_count + status.extra_used))
        progress = calculate_usage_progress(status.current_count, status.limit)
        extra_price = Decimal(plan.extra_clone_price)

        return PlanUsageResponse(
            user=PlanUser(id=user.id, email=user.email, full_name=user.full_name),
            plan=PlanDetails(
                slug=plan.slug,
                name=plan.name,
                price=float(plan.price),
                clone_limit=plan.clone_limit,
                domain_limit=plan.domain_limit,
                extra_clone_price=float(extra_price),
                features=list(plan.features or []),
            ),
            subscription=SubscriptionDetails(
                status=subscription.status,
                started_at=as_utc(subscription.started_at),
                reset_date=status.reset_date,
                next_reset_date=status.reset_date,
            ),
            usage=UsageDetails(
                current_clones=status.current_count,
                clone_limit=status.limit,
                extra_clones=status.extra_used,
                blocked_clones=blocked,
                usage_progress=round(progress, 2),
                can_detect_more=status.can_detect_more,
                alert_level=get_alert_level(progress),
                reset_date=status.reset_date,
                days_until_reset=days_until_reset(status.reset_date, now),
                extra_cost=float(calculate_extra_cost(status.extra_used, extra_price)),
                last_updated=now,
            ),
        )


usage_meter = UsageMeter()
