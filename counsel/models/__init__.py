"""Data models for Counsel Actions."""

from .schemas import (
    RiskTolerance,
    KnowledgeReference,
    StrategyRequest,
    StrategyResponse,
    SimulateRequest,
    SimulateResponse,
    SimulatedExchange,
    KnowledgeDocument,
    KnowledgeUploadResponse,
    KnowledgeListResponse,
    HealthResponse,
    ReadinessResponse,
    ErrorEnvelope,
    ImageGenerationRequest,
    GeneratedImage,
)

__all__ = [
    "RiskTolerance",
    "KnowledgeReference",
    "StrategyRequest",
    "StrategyResponse",
    "SimulateRequest",
    "SimulateResponse",
    "SimulatedExchange",
    "KnowledgeDocument",
    "KnowledgeUploadResponse",
    "KnowledgeListResponse",
    "HealthResponse",
    "ReadinessResponse",
    "ErrorEnvelope",
    "ImageGenerationRequest",
    "GeneratedImage",
]
