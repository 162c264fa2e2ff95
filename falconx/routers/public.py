"""Public endpoints called by the embedded script.

These answer any origin and carry no credentials; the script token in the body
is the only identity.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request

from falconx.deps import AuditorDep, ClientDep, DbSession, EngineDep, rate_limit
from falconx.exceptions import InvalidPayloadError
from falconx.schemas.detection import ActionResponse, DetectionResponse
from falconx.security.rate_limiter import RateLimitTier

router = APIRouter(
    prefix="/api",
    tags=["Public"],
    dependencies=[Depends(rate_limit(RateLimitTier.PUBLIC))],
)


async def read_payload(request: Request, auditor: AuditorDep, client: ClientDep) -> Any:
    """Parsed JSON body; invalid JSON is audited and rejected."""
    try:
        return await request.json()
    except ValueError:
        auditor.suspicious_activity(
            client.ip, client.user_agent, client.endpoint, reason="body is not valid JSON"
        )
        raise InvalidPayloadError("body is not valid JSON") from None


@router.post(
    "/collect",
    response_model=DetectionResponse,
    response_model_exclude_none=True,
)
@router.post(
    "/detect",
    response_model=DetectionResponse,
    response_model_exclude_none=True,
    include_in_schema=False,
)
async def collect(
    db: DbSession,
    engine: EngineDep,
    client: ClientDep,
    payload: Any = Depends(read_payload),
) -> DetectionResponse:
    """Detection ping: authorized domain or clone."""
    return await engine.detect(db, payload, client)


@router.post(
    "/process",
    response_model=ActionResponse,
    response_model_exclude_none=True,
)
@router.post(
    "/execute-action",
    response_model=ActionResponse,
    response_model_exclude_none=True,
    include_in_schema=False,
)
async def process(
    db: DbSession,
    engine: EngineDep,
    client: ClientDep,
    payload: Any = Depends(read_payload),
) -> ActionResponse:
    """Action-resolution ping: which countermeasure the script should run."""
    return await engine.resolve_action(db, payload, client)
