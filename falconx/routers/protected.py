"""Dashboard endpoints authenticated with the auth provider's bearer token."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query

from falconx.auth import CurrentUserId, authorize_user_access
from falconx.deps import AuditorDep, ClientDep, DbSession, EngineDep, SettingsDep, rate_limit
from falconx.exceptions import NotFoundError
from falconx.models import User
from falconx.schemas.plan import PlanUsageResponse
from falconx.schemas.script import GenerateScriptRequest, GenerateScriptResponse
from falconx.security.rate_limiter import RateLimitTier
from falconx.services.identity import encode_user_token, generate_script_id
from falconx.services.usage_meter import usage_meter

router = APIRouter(prefix="/api", tags=["Dashboard"])
logger = structlog.get_logger(__name__)


@router.get(
    "/plan-limits",
    response_model=PlanUsageResponse,
    dependencies=[Depends(rate_limit(RateLimitTier.CRITICAL))],
)
async def get_plan_limits(
    db: DbSession,
    current_user_id: CurrentUserId,
    auditor: AuditorDep,
    client: ClientDep,
    user_id: uuid.UUID | None = Query(None, alias="userId"),
) -> PlanUsageResponse:
    """Plan, subscription and monthly usage for the caller."""
    target = authorize_user_access(user_id, current_user_id, auditor, client)
    return await usage_meter.get_usage_summary(db, target)


@router.post(
    "/generate-script",
    response_model=GenerateScriptResponse,
    dependencies=[Depends(rate_limit(RateLimitTier.PROTECTED))],
)
async def generate_script(
    body: GenerateScriptRequest,
    db: DbSession,
    current_user_id: CurrentUserId,
    engine: EngineDep,
    settings: SettingsDep,
) -> GenerateScriptResponse:
    """Issue the caller's script tag and record its id for reverse lookup."""
    if await db.get(User, current_user_id) is None:
        raise NotFoundError("User", str(current_user_id))

    script_id = generate_script_id(current_user_id, settings.script_secret_key)
    await engine.resolver.remember(db, current_user_id, script_id)
    logger.info("script_issued", user_id=str(current_user_id), script_id=script_id)

    base_url = str(body.base_url).rstrip("/")
    return GenerateScriptResponse(
        script_id=script_id,
        token=encode_user_token(current_user_id),
        script=f'<script src="{base_url}/api/js/{script_id}" async defer></script>',
    )
