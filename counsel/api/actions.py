"""Copy-paste artifacts for configuring an assistant: persona script and Actions schema."""

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from ..openapi_actions import build_actions_openapi
from ..persona import PERSONA_PROMPT

router = APIRouter()


@router.get(
    "/openapi-actions.json",
    summary="Actions OpenAPI document",
    description="OpenAPI document limited to the operations the assistant may call",
)
async def actions_openapi(request: Request) -> Dict[str, Any]:
    settings = request.app.state.settings
    return build_actions_openapi(
        base_url=settings.public_base_url,
        version=settings.app_version,
    )


@router.get(
    "/persona",
    response_class=PlainTextResponse,
    summary="Persona script",
    description="Instruction text to paste into the assistant configuration",
)
async def persona() -> str:
    return PERSONA_PROMPT
