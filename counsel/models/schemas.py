"""Pydantic schemas for request validation and response serialization."""

from typing import List, Optional, Dict, Any, Literal
from datetime import datetime
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum


class RiskTolerance(str, Enum):
    """How much exposure the user accepts when choosing a line of argument."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


GeneratedBy = Literal["llm", "heuristic"]


def _clean_strings(values: List[str]) -> List[str]:
    cleaned = []
    for value in values:
        value = value.strip()
        if not value:
            raise ValueError("entries must not be blank")
        cleaned.append(value)
    return cleaned


def _clean_tags(values: List[str]) -> List[str]:
    tags = []
    for value in values:
        tag = value.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class KnowledgeReference(BaseModel):
    """Excerpt from the knowledge base used while answering."""
    document_id: str
    source: str
    excerpt: str
    score: float = Field(ge=0)


class StrategyRequest(BaseModel):
    """Input for argument strategy generation."""
    case_summary: str = Field(min_length=1, max_length=20000)
    opponent_statements: List[str] = Field(default_factory=list, max_length=50)
    goal: Optional[str] = Field(default=None, max_length=2000)
    jurisdiction: Optional[str] = Field(default=None, max_length=200)
    risk_tolerance: RiskTolerance = RiskTolerance.MEDIUM
    tags: List[str] = Field(default_factory=list)
    use_knowledge: bool = True

    @field_validator("case_summary")
    @classmethod
    def summary_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("case_summary must not be blank")
        return v

    @field_validator("opponent_statements")
    @classmethod
    def statements_not_blank(cls, v: List[str]) -> List[str]:
        return _clean_strings(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)

    model_config = {
        "json_schema_extra": {
            "example": {
                "case_summary": "Tenant withheld rent after the landlord ignored repeated repair requests for a broken heater.",
                "opponent_statements": ["The tenant never gave written notice of the defect."],
                "goal": "Avoid eviction and recover repair costs",
                "jurisdiction": "CA",
                "risk_tolerance": "medium",
            }
        }
    }


class StrategyResponse(BaseModel):
    """Three-pillar strategy: legal grounds, moral framing and logical structure."""
    legal: List[str] = Field(min_length=1)
    moral: List[str] = Field(min_length=1)
    logic: List[str] = Field(min_length=1)
    analysis: str
    risk_tolerance: RiskTolerance
    sources: List[KnowledgeReference] = Field(default_factory=list)
    generated_by: GeneratedBy


class SimulateRequest(BaseModel):
    """Input for opponent simulation."""
    position: str = Field(min_length=1, max_length=20000)
    opponent_statements: List[str] = Field(default_factory=list, max_length=50)
    opponent_profile: Optional[str] = Field(default=None, max_length=500)
    rounds: int = Field(default=1, ge=1, le=5)
    risk_tolerance: RiskTolerance = RiskTolerance.MEDIUM
    tags: List[str] = Field(default_factory=list)
    use_knowledge: bool = True

    @field_validator("position")
    @classmethod
    def position_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("position must not be blank")
        return v

    @field_validator("opponent_statements")
    @classmethod
    def statements_not_blank(cls, v: List[str]) -> List[str]:
        return _clean_strings(v)

    @field_validator("tags")
    @classmethod
    def normalize_tags(cls, v: List[str]) -> List[str]:
        return _clean_tags(v)


class SimulatedExchange(BaseModel):
    """One round of opposing argument and our suggested rebuttal."""
    round: int = Field(ge=1)
    opponent_argument: str
    suggested_rebuttal: str


class SimulateResponse(BaseModel):
    """Simulated opposing counsel output."""
    exchanges: List[SimulatedExchange]
    weaknesses: List[str] = Field(default_factory=list)
    legal: List[str] = Field(min_length=1)
    moral: List[str] = Field(min_length=1)
    logic: List[str] = Field(min_length=1)
    analysis: str
    sources: List[KnowledgeReference] = Field(default_factory=list)
    generated_by: GeneratedBy


class KnowledgeDocument(BaseModel):
    """Stored knowledge-base document metadata."""
    id: str
    filename: Optional[str] = None
    url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    content_type: str
    size_bytes: int = Field(ge=0)
    chunk_count: int = Field(ge=0)
    sha256: str
    created_at: datetime

    @property
    def source(self) -> str:
        return self.filename or self.url or self.id


class KnowledgeUploadResponse(BaseModel):
    documents: List[KnowledgeDocument]
    duplicates: List[str] = Field(default_factory=list)


class KnowledgeListResponse(BaseModel):
    documents: List[KnowledgeDocument]
    total: int
    offset: int
    limit: int
    has_more: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    timestamp: datetime


class ReadinessResponse(HealthResponse):
    ready: bool
    checks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorEnvelope(BaseModel):
    """Error response shape shared by every endpoint."""
    error: ErrorBody


class ImageGenerationRequest(BaseModel):
    """Body of ``POST /v1/images/generations``."""
    model: str
    prompt: str = Field(min_length=1)
    size: str = "1024x1024"

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: str) -> str:
        width, sep, height = v.partition("x")
        if v != "auto" and not (sep and width.isdigit() and height.isdigit()):
            raise ValueError("size must look like '1024x1024' or be 'auto'")
        return v


class GeneratedImage(BaseModel):
    """Single image returned by the image API, either as URL or base64 payload."""
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None

    @model_validator(mode="after")
    def require_payload(self) -> "GeneratedImage":
        if not self.url and not self.b64_json:
            raise ValueError("image response contains neither url nor b64_json")
        return self
