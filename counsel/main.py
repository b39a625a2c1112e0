"""Main FastAPI application for Counsel Actions."""

from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import sys
import time
import uuid
import structlog
import uvicorn
from prometheus_client import make_asgi_app, Counter, Histogram

from .core.config import Settings, settings as default_settings
from .core.errors import register_exception_handlers, unhandled_exception_handler
from .core.security import APIKeyGuard
from .api import actions, argument, health, knowledge
from .services.argument_service import ArgumentStrategyService
from .services.knowledge_base import KnowledgeBase
from .services.llm import LLMClient
from .services.opponent_simulator import OpponentSimulator

logger = structlog.get_logger()

# Metrics
request_count = Counter(
    "counsel_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)
request_duration = Histogram(
    "counsel_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "endpoint"]
)


def configure_logging(app_settings: Settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, app_settings.log_level.upper(), logging.INFO),
    )
    renderer = structlog.dev.ConsoleRenderer() if app_settings.debug else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    app_settings: Settings = app.state.settings
    logger.info(
        "Starting Counsel Actions",
        version=app_settings.app_version,
        env=app_settings.app_env,
        llm_configured=app.state.llm.is_configured,
        documents=len(app.state.knowledge_base),
    )
    yield
    logger.info("Shutting down Counsel Actions")


def create_app(
    app_settings: Optional[Settings] = None,
    knowledge_base: Optional[KnowledgeBase] = None,
    llm: Optional[LLMClient] = None,
) -> FastAPI:
    """Build the application and its services.

    Args:
        app_settings: Settings to use; defaults to the environment-derived settings
        knowledge_base: Pre-built knowledge store
        llm: Pre-built LLM client

    Returns:
        Configured FastAPI application
    """
    app_settings = app_settings or default_settings
    configure_logging(app_settings)

    app = FastAPI(
        title="Counsel Actions",
        description="Argument strategy, opponent simulation and knowledge upload for conversational assistants",
        version=app_settings.app_version,
        lifespan=lifespan,
    )

    if knowledge_base is None:
        knowledge_base = KnowledgeBase.from_settings(app_settings)
    if llm is None:
        llm = LLMClient.from_settings(app_settings)

    app.state.settings = app_settings
    app.state.knowledge_base = knowledge_base
    app.state.llm = llm
    app.state.api_key_guard = APIKeyGuard(app_settings)
    app.state.strategy_service = ArgumentStrategyService(
        llm,
        knowledge_base,
        top_k=app_settings.knowledge_top_k,
        fallback=app_settings.llm_fallback,
    )
    app.state.opponent_simulator = OpponentSimulator(
        llm,
        knowledge_base,
        top_k=app_settings.knowledge_top_k,
        fallback=app_settings.llm_fallback,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.get_cors_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
    )

    register_exception_handlers(app)

    # Middleware for request logging and metrics
    @app.middleware("http")
    async def log_requests(request, call_next):
        """Log all requests and collect metrics."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            # Rendered here so the 500 still gets a request id and metrics
            response = await unhandled_exception_handler(request, exc)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration = time.time() - start_time
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=duration,
            request_id=request_id,
        )

        request_count.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()
        request_duration.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        response.headers["X-Request-ID"] = request_id
        return response

    # Include routers
    app.include_router(argument.router, prefix="/argument", tags=["argument"])
    app.include_router(knowledge.router, prefix="/knowledge", tags=["knowledge"])
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(actions.router, tags=["actions"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": app_settings.app_name,
            "version": app_settings.app_version,
            "status": "running",
            "docs": "/docs",
            "health": "/health",
            "actions_schema": "/openapi-actions.json",
            "persona": "/persona",
        }

    # Mount Prometheus metrics endpoint
    if app_settings.enable_metrics:
        app.mount("/metrics", make_asgi_app())

    return app


app = create_app()


def run():
    """Run the application."""
    uvicorn.run(
        "counsel.main:app",
        host=default_settings.api_host,
        port=default_settings.api_port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
