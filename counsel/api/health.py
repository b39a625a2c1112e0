"""Health check API endpoints."""

from fastapi import APIRouter, Request
from datetime import datetime, timezone
import structlog

from ..models.schemas import HealthResponse, ReadinessResponse

logger = structlog.get_logger()
router = APIRouter()


@router.get(
    "",
    response_model=HealthResponse,
    operation_id="healthCheck",
    summary="Health check",
    description="Basic health check endpoint",
)
async def health_check(request: Request) -> HealthResponse:
    """Basic health check.

    Returns:
        Health status
    """
    settings = request.app.state.settings
    return HealthResponse(
        status="ok",
        service=settings.app_name,
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Check if service is ready to handle requests",
)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness check for all components.

    Returns:
        Readiness status for each component
    """
    settings = request.app.state.settings
    checks = {}

    # Knowledge store
    try:
        knowledge_base = request.app.state.knowledge_base
        checks["knowledge_base"] = {"status": "ready", **knowledge_base.stats()}
    except Exception as e:
        logger.error(f"Knowledge base check failed: {e}")
        checks["knowledge_base"] = {"status": "error", "error": str(e)}

    # LLM
    llm = request.app.state.llm
    if llm.is_configured:
        checks["llm"] = {"status": "ready", "model": llm.model}
    else:
        checks["llm"] = {
            "status": "not_configured",
            "message": "OpenAI API key not set - using rule-based strategies",
        }

    # Authentication
    guard = request.app.state.api_key_guard
    if guard.api_keys:
        checks["auth"] = {"status": "ready", "keys": len(guard.api_keys)}
    else:
        checks["auth"] = {
            "status": "error" if settings.is_production else "disabled",
            "message": "No API keys configured",
        }

    ready = all(check["status"] != "error" for check in checks.values())
    return ReadinessResponse(
        status="ok" if ready else "degraded",
        service=settings.app_name,
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
        ready=ready,
        checks=checks,
    )
