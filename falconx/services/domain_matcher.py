"""Domain normalization and whitelist matching."""

from __future__ import annotations

import uuid
from collections.abc import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from falconx.models import AllowedDomain

logger = structlog.get_logger(__name__)


def normalize_domain(value: str) -> str:
    """Lowercase host without scheme, path, port, trailing dot or ``www.``.

    >>> normalize_domain("https://WWW.Example.com:8443/offer?x=1")
    'example.com'
    """
    host = value.strip().lower()
    if "://" in host:
        host = host.split("://", 1)[1]
    for sep in ("/", "?", "#"):
        host = host.split(sep, 1)[0]
    host = host.rsplit("@", 1)[-1]
    if not host.startswith("["):
        host = host.split(":", 1)[0]
    host = host.rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def is_authorized(allowed_domains: Sequence[str], domain: str) -> bool:
    """True if ``domain`` equals an allowed domain or is a subdomain of one.

    An empty whitelist never authorizes.
    """
    return any(domain == allowed or domain.endswith("." + allowed) for allowed in allowed_domains)


class DomainService:
    """Reads a user's whitelist."""

    async def get_allowed_domains(self, db: AsyncSession, user_id: uuid.UUID) -> list[str]:
        """Active allowed domains, oldest first.

        Store errors yield an empty list so the caller treats the ping as a clone.
        """
        try:
            async with db.begin_nested():
                result = await db.execute(
                    select(AllowedDomain.domain)
                    .where(AllowedDomain.user_id == user_id, AllowedDomain.is_active.is_(True))
                    .order_by(AllowedDomain.created_at, AllowedDomain.id)
                )
                return [normalize_domain(d) for d in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error("allowed_domains_lookup_failed", user_id=str(user_id), error=str(e))
            return []


domain_service = DomainService()
