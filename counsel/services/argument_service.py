"""Argument strategy generation on legal, moral and logic pillars."""

from typing import List, Optional
import time
import structlog
from openai import OpenAIError

from ..core.errors import UpstreamError
from ..models.schemas import (
    KnowledgeReference,
    RiskTolerance,
    StrategyRequest,
    StrategyResponse,
)
from ..persona import build_system_prompt
from .argument_analysis import (
    as_points,
    detect_weaknesses,
    first_sentence,
    format_references,
    shorten,
)
from .knowledge_base import KnowledgeBase
from .llm import LLMClient, LLMResponseError

logger = structlog.get_logger()

PILLARS = ("legal", "moral", "logic")

_RISK_POSTURE = {
    RiskTolerance.LOW: (
        "Keep options open: protect deadlines and notice requirements and favour a negotiated outcome.",
        "Signal willingness to reach a fair compromise; it makes your side the reasonable one.",
        "a conservative posture that preserves settlement options and avoids escalating costs",
    ),
    RiskTolerance.MEDIUM: (
        "Lead with your strongest claim and hold the secondary claims in reserve.",
        "Pair firmness on the core issue with flexibility on the details.",
        "a balanced posture that presses the strongest point while leaving room to negotiate",
    ),
    RiskTolerance.HIGH: (
        "Assert every available claim early and put the other side on formal notice.",
        "Frame the other side's conduct as a breach of trust that should not be rewarded.",
        "an assertive posture that presses every advantage and accepts the risk of escalation",
    ),
}


class ArgumentStrategyService:
    """Builds argument strategies with an LLM, falling back to rule-based output."""

    def __init__(
        self,
        llm: LLMClient,
        knowledge_base: Optional[KnowledgeBase] = None,
        top_k: int = 4,
        fallback: bool = True,
    ):
        self.llm = llm
        self.knowledge_base = knowledge_base
        self.top_k = top_k
        self.fallback = fallback

    async def generate(self, request: StrategyRequest) -> StrategyResponse:
        """Generate a strategy for the request.

        Args:
            request: Case summary, opponent statements and preferences

        Returns:
            Strategy with non-empty legal, moral and logic points
        """
        start_time = time.time()
        references = self._retrieve(request)

        response = None
        if self.llm.is_configured:
            try:
                response = await self._generate_with_llm(request, references)
            except (LLMResponseError, OpenAIError) as e:
                if not self.fallback:
                    raise UpstreamError(f"Strategy generation failed: {e}") from e
                logger.warning("LLM strategy failed, using heuristic", error=str(e))

        if response is None:
            response = self._generate_heuristic(request, references)

        logger.info(
            "Strategy generated",
            generated_by=response.generated_by,
            risk_tolerance=request.risk_tolerance.value,
            sources=len(references),
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return response

    def _retrieve(self, request: StrategyRequest) -> List[KnowledgeReference]:
        if not request.use_knowledge or self.knowledge_base is None:
            return []
        query = " ".join([request.case_summary, request.goal or ""] + request.opponent_statements)
        return self.knowledge_base.search(query, tags=request.tags, limit=self.top_k)

    async def _generate_with_llm(
        self,
        request: StrategyRequest,
        references: List[KnowledgeReference],
    ) -> StrategyResponse:
        system = build_system_prompt("strategy", format_references(references))
        statements = "\n".join(f"- {s}" for s in request.opponent_statements) or "- (none provided)"
        user = f"""Case summary:
{request.case_summary}

Goal: {request.goal or "not stated"}
Jurisdiction: {request.jurisdiction or "not stated"}
Risk tolerance: {request.risk_tolerance.value}

Opponent statements:
{statements}"""

        data = await self.llm.complete_json(system, user)
        heuristic = self._generate_heuristic(request, references)

        pillars = {}
        for pillar in PILLARS:
            points = as_points(data.get(pillar))
            if not points:
                logger.warning("LLM omitted pillar, using heuristic points", pillar=pillar)
                points = getattr(heuristic, pillar)
            pillars[pillar] = points

        analysis = data.get("analysis")
        if not isinstance(analysis, str) or not analysis.strip():
            analysis = heuristic.analysis

        return StrategyResponse(
            **pillars,
            analysis=analysis.strip(),
            risk_tolerance=request.risk_tolerance,
            sources=references,
            generated_by="llm",
        )

    def _generate_heuristic(
        self,
        request: StrategyRequest,
        references: List[KnowledgeReference],
    ) -> StrategyResponse:
        legal_posture, moral_posture, summary_posture = _RISK_POSTURE[request.risk_tolerance]
        statements = request.opponent_statements

        legal = [
            (
                f"Confirm the governing rules in {request.jurisdiction}: the statute, contract clause or duty that decides this dispute."
                if request.jurisdiction
                else "Identify the governing rule first: the statute, contract clause or duty that decides this dispute."
            ),
            "List each element you must prove and attach a document, date or witness to every one.",
        ]
        for statement in statements[:2]:
            legal.append(f'Ask what rule or document supports the claim "{shorten(statement, 100)}".')
        for ref in references[:2]:
            legal.append(f'Rely on {ref.source}: "{shorten(ref.excerpt, 120)}"')
        legal.append(legal_posture)

        moral = [
            f"Tell the story in terms of fairness: {first_sentence(request.goal or request.case_summary)}",
            "Show good faith by documenting every attempt you made to resolve the matter.",
        ]
        if any(w.kind == "emotional_appeal" for s in statements for w in detect_weaknesses(s)):
            moral.append("Answer the other side's accusations calmly; composure makes your account the credible one.")
        moral.append(moral_posture)

        logic = ["State your conclusion first, then the two or three facts that make it follow."]
        for i, statement in enumerate(statements, start=1):
            for weakness in detect_weaknesses(statement):
                if weakness.kind == "insufficient_detail":
                    continue
                logic.append(f"Opponent statement {i}: {weakness.description}")
        logic.append("Identify who carries the burden of proof on each disputed fact and hold them to it.")

        analysis = (
            f"With {request.risk_tolerance.value} risk tolerance this plan takes {summary_posture}. "
            f"It answers {len(statements)} opponent statement{'s' if len(statements) != 1 else ''}"
            + (f" and draws on {len(references)} uploaded source{'s' if len(references) != 1 else ''}." if references else ".")
            + " Verify jurisdiction-specific rules with a licensed professional before relying on them."
        )

        return StrategyResponse(
            legal=legal,
            moral=moral,
            logic=logic,
            analysis=analysis,
            risk_tolerance=request.risk_tolerance,
            sources=references,
            generated_by="heuristic",
        )
