"""Script issuance schemas."""

from pydantic import HttpUrl

from falconx.schemas.base import CamelModel


class GenerateScriptRequest(CamelModel):
    base_url: HttpUrl


class GenerateScriptResponse(CamelModel):
    success: bool = True
    script_id: str
    token: str
    script: str
