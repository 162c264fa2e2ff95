"""Wire schemas for the public detection and action-resolution pings.

Two payload shapes are accepted: the compact one emitted by current scripts
(``uid``/``dom``/...) and the legacy one (``scriptId``/``domain``/...).
``normalize_ping`` folds both into a single ``NormalizedPing``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from falconx.exceptions import InvalidPayloadError
from falconx.schemas.base import CamelModel
from falconx.services.domain_matcher import normalize_domain

SCRIPT_ID_PATTERN = r"^fx_[0-9a-f]{12}$"

MAX_DOMAIN_LENGTH = 253
MAX_URL_LENGTH = 2048
MAX_USER_AGENT_LENGTH = 512


class TokenKind(StrEnum):
    COMPACT = "compact"  # Base64 user id
    LEGACY = "legacy"  # fx_<12 hex>


class SlugStat(BaseModel):
    """Per-slug visitor aggregate reported by the client."""

    slug: str = Field(..., min_length=1, max_length=255)
    unique_visitors: int = Field(0, ge=0)
    total_visits: int = Field(0, ge=0)


class CompactPing(BaseModel):
    """Current payload shape."""

    model_config = ConfigDict(extra="ignore")

    uid: str = Field(..., min_length=1, max_length=256)
    dom: str = Field(..., min_length=1, max_length=MAX_DOMAIN_LENGTH)
    url: str | None = Field(None, max_length=MAX_URL_LENGTH)
    ref: str | None = Field(None, max_length=MAX_URL_LENGTH)
    ua: str | None = Field(None, max_length=MAX_USER_AGENT_LENGTH)
    ts: str | None = None
    slugs: list[SlugStat] | None = Field(None, max_length=100)


class LegacyPing(BaseModel):
    """Legacy payload shape."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    script_id: str = Field(..., alias="scriptId", pattern=SCRIPT_ID_PATTERN)
    domain: str = Field(..., min_length=1, max_length=MAX_DOMAIN_LENGTH)
    url: str | None = Field(None, max_length=MAX_URL_LENGTH)
    referrer: str | None = Field(None, max_length=MAX_URL_LENGTH)
    user_agent: str | None = Field(None, alias="userAgent", max_length=MAX_USER_AGENT_LENGTH)


@dataclass
class NormalizedPing:
    """Internal request type shared by every public endpoint."""

    token_kind: TokenKind
    token: str
    domain: str
    url: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    slugs: list[SlugStat] = field(default_factory=list)


def _excerpt(payload: Any, limit: int = 200) -> str:
    """Truncated repr of a payload for logs; never the whole body."""
    text = repr(payload)
    return text if len(text) <= limit else f"{text[:limit]}..."


def normalize_ping(payload: Any) -> NormalizedPing:
    """Validate either payload shape and fold it into a ``NormalizedPing``.

    Raises:
        InvalidPayloadError: if the body matches neither shape.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError(f"body is not an object: {_excerpt(payload)}")

    try:
        if "uid" in payload or "dom" in payload:
            compact = CompactPing.model_validate(payload)
            ping = NormalizedPing(
                token_kind=TokenKind.COMPACT,
                token=compact.uid.strip(),
                domain=normalize_domain(compact.dom),
                url=compact.url,
                referrer=compact.ref,
                user_agent=compact.ua,
                slugs=compact.slugs or [],
            )
        elif "scriptId" in payload or "domain" in payload:
            legacy = LegacyPing.model_validate(payload)
            ping = NormalizedPing(
                token_kind=TokenKind.LEGACY,
                token=legacy.script_id,
                domain=normalize_domain(legacy.domain),
                url=legacy.url,
                referrer=legacy.referrer,
                user_agent=legacy.user_agent,
            )
        else:
            raise InvalidPayloadError(f"unrecognized payload shape: {_excerpt(payload)}")
    except ValidationError as e:
        fields = ",".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidPayloadError(
            f"schema mismatch on [{fields}]: {_excerpt(payload)}"
        ) from None

    if not ping.domain:
        raise InvalidPayloadError(f"empty domain after normalization: {_excerpt(payload)}")
    return ping


# Response schemas
class DetectionResponse(CamelModel):
    """Response of the detection ping."""

    status: Literal["authorized", "detected"]
    message: str
    domain: str
    original_domain: str | None = None
    clone_id: uuid.UUID | None = None
    upgrade_required: bool | None = None
    processing_time: int


class ActionResponse(CamelModel):
    """Instruction returned to the reporting client."""

    action: Literal["redirect", "blank", "message", "none", "skip"]
    url: str | None = None
    custom_message: str | None = None
    message: str
