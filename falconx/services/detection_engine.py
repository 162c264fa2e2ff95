"""Detection pipeline shared by every public endpoint.

identify -> authorize domain -> (clone) meter + record + log -> respond

Both payload shapes are normalized first, so ``/api/collect`` and
``/api/detect`` run :meth:`DetectionEngine.detect`, while ``/api/process`` and
``/api/execute-action`` run :meth:`DetectionEngine.resolve_action`.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.exceptions import InvalidPayloadError
from falconx.metrics import record_action, record_ping
from falconx.models import User
from falconx.schemas.detection import (
    ActionResponse,
    DetectionResponse,
    NormalizedPing,
    normalize_ping,
)
from falconx.security.audit import SecurityAuditor
from falconx.services.action_selector import ActionSelector, ActionService, action_service
from falconx.services.best_effort import BestEffort
from falconx.services.clone_registry import (
    CloneRegistry,
    clone_registry,
    original_domain_guess,
)
from falconx.services.domain_matcher import DomainService, domain_service, is_authorized
from falconx.services.identity import ScriptIdentityResolver
from falconx.services.usage_meter import (
    IncrementOutcome,
    QuotaStatus,
    UsageMeter,
    usage_meter,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """Who sent the ping, for rate limiting, audit and detection logs."""

    ip: str
    user_agent: str
    endpoint: str


class DetectionEngine:
    """Runs detection and action-resolution pings end to end."""

    def __init__(
        self,
        resolver: ScriptIdentityResolver,
        auditor: SecurityAuditor,
        selector: ActionSelector | None = None,
        domains: DomainService = domain_service,
        registry: CloneRegistry = clone_registry,
        meter: UsageMeter = usage_meter,
        actions: ActionService = action_service,
    ) -> None:
        self.resolver = resolver
        self.auditor = auditor
        self.selector = selector or ActionSelector()
        self.domains = domains
        self.registry = registry
        self.meter = meter
        self.actions = actions

    async def identify(
        self, db: AsyncSession, payload: Any, client: ClientInfo
    ) -> tuple[NormalizedPing, uuid.UUID]:
        """Validate the payload and resolve its owner.

        Raises:
            InvalidPayloadError: malformed payload or unknown token. The
                reason is logged and audited, never returned.
        """
        try:
            ping = normalize_ping(payload)
            user_id = await self.resolver.resolve(db, ping)
            if user_id is None or await db.get(User, user_id) is None:
                raise InvalidPayloadError("token does not belong to a known user")
        except InvalidPayloadError as e:
            logger.warning("invalid_ping", endpoint=client.endpoint, reason=e.reason)
            self.auditor.suspicious_activity(
                client.ip, client.user_agent, client.endpoint, reason=e.reason
            )
            raise
        return ping, user_id

    async def detect(
        self, db: AsyncSession, payload: Any, client: ClientInfo
    ) -> DetectionResponse:
        started = time.perf_counter()
        ping, user_id = await self.identify(db, payload, client)
        best_effort = BestEffort(db)

        allowed = await self.domains.get_allowed_domains(db, user_id)
        if is_authorized(allowed, ping.domain):
            record_ping("authorized")
            await best_effort.commit("detection_commit", user_id=str(user_id))
            return DetectionResponse(
                status="authorized",
                message="Domain authorized",
                domain=ping.domain,
                processing_time=_elapsed_ms(started),
            )

        logger.warning("clone_detected", clone_domain=ping.domain, user_id=str(user_id))
        quota = await self._check_quota(db, user_id)
        original_domain = original_domain_guess(allowed)

        recorded = await best_effort.run(
            "clone_upsert",
            partial(self.registry.record_detection, slugs=ping.slugs),
            user_id,
            ping.domain,
            original_domain,
            user_id=str(user_id),
            clone_domain=ping.domain,
        )

        upgrade_required: bool | None = None
        if recorded is not None:
            await best_effort.run(
                "detection_log",
                partial(
                    self.registry.append_log,
                    ip_address=client.ip,
                    user_agent=ping.user_agent or client.user_agent,
                    referrer=ping.referrer,
                    page_url=ping.url,
                ),
                user_id,
                recorded.id,
                user_id=str(user_id),
                clone_id=str(recorded.id),
            )
            if recorded.created:
                upgrade_required = await self._meter_new_clone(db, best_effort, user_id, quota)

        await best_effort.commit("detection_commit", user_id=str(user_id))

        if recorded is None:
            record_ping("unrecorded_clone")
        else:
            record_ping("new_clone" if recorded.created else "repeat_clone")

        return DetectionResponse(
            status="detected",
            message="Clone detected",
            domain=ping.domain,
            original_domain=original_domain,
            clone_id=recorded.id if recorded else None,
            upgrade_required=upgrade_required,
            processing_time=_elapsed_ms(started),
        )

    async def _check_quota(self, db: AsyncSession, user_id: uuid.UUID) -> QuotaStatus | None:
        """Quota state, or None when the plan cannot be read (no quota)."""
        try:
            async with db.begin_nested():
                return await self.meter.check_limits(db, user_id)
        except SQLAlchemyError as e:
            logger.error("plan_lookup_failed", user_id=str(user_id), error=str(e))
            return None

    async def _meter_new_clone(
        self,
        db: AsyncSession,
        best_effort: BestEffort,
        user_id: uuid.UUID,
        quota: QuotaStatus | None,
    ) -> bool | None:
        if quota is None:
            logger.warning("quota_increment_skipped", user_id=str(user_id))
            return None
        outcome = await best_effort.run(
            "quota_increment", self.meter.increment_count, user_id, user_id=str(user_id)
        )
        if outcome == IncrementOutcome.BLOCKED:
            logger.warning("clone_recorded_over_quota", user_id=str(user_id))
            return True
        return None

    async def resolve_action(
        self, db: AsyncSession, payload: Any, client: ClientInfo
    ) -> ActionResponse:
        ping, user_id = await self.identify(db, payload, client)
        best_effort = BestEffort(db)

        allowed = await self.domains.get_allowed_domains(db, user_id)
        if is_authorized(allowed, ping.domain):
            record_action("none")
            await best_effort.commit("action_commit", user_id=str(user_id))
            return ActionResponse(action="none", message="Domain authorized")

        actions = await self.actions.get_global_actions(db, user_id)
        decision = self.selector.select(actions, ping.url, ping.referrer)
        record_action(decision.action)
        logger.info(
            "action_decided",
            user_id=str(user_id),
            clone_domain=ping.domain,
            action=decision.action,
            action_id=str(decision.action_id) if decision.action_id else None,
        )

        await best_effort.commit("action_commit", user_id=str(user_id))
        return ActionResponse(
            action=decision.action,  # type: ignore[arg-type]
            url=decision.url,
            custom_message=decision.custom_message,
            message=decision.message,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
