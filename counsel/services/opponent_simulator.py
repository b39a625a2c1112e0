"""Opponent simulation for rehearsing against opposing counsel."""

from typing import Any, Dict, List, Optional
import structlog
from openai import OpenAIError

from ..core.errors import UpstreamError
from ..models.schemas import (
    KnowledgeReference,
    RiskTolerance,
    SimulateRequest,
    SimulateResponse,
    SimulatedExchange,
)
from ..persona import build_system_prompt
from .argument_analysis import (
    GENERAL,
    Weakness,
    as_points,
    detect_weaknesses,
    format_references,
    shorten,
)
from .knowledge_base import KnowledgeBase
from .llm import LLMClient, LLMResponseError

logger = structlog.get_logger()

_AGGRESSIVE_MARKERS = ("aggressive", "hostile", "combative", "hard-line", "ruthless")


class OpponentSimulator:
    """Simulates opposing counsel's responses to our position."""

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

    async def simulate(self, request: SimulateRequest) -> SimulateResponse:
        """Simulate opposing counsel's response to our position.

        Args:
            request: Our position, the opponent's known statements and round count

        Returns:
            Exactly ``request.rounds`` exchanges plus weaknesses and pillar assessment
        """
        weaknesses = detect_weaknesses(request.position)
        references = self._retrieve(request)

        response = None
        if self.llm.is_configured:
            try:
                response = await self._simulate_with_llm(request, weaknesses, references)
            except (LLMResponseError, OpenAIError) as e:
                if not self.fallback:
                    raise UpstreamError(f"Opponent simulation failed: {e}") from e
                logger.warning("LLM simulation failed, using heuristic", error=str(e))

        if response is None:
            response = self._simulate_heuristic(request, weaknesses, references)

        logger.info(
            "Opponent simulated",
            generated_by=response.generated_by,
            rounds=len(response.exchanges),
            weaknesses=len(response.weaknesses),
        )
        return response

    def _retrieve(self, request: SimulateRequest) -> List[KnowledgeReference]:
        if not request.use_knowledge or self.knowledge_base is None:
            return []
        query = " ".join([request.position] + request.opponent_statements)
        return self.knowledge_base.search(query, tags=request.tags, limit=self.top_k)

    async def _simulate_with_llm(
        self,
        request: SimulateRequest,
        weaknesses: List[Weakness],
        references: List[KnowledgeReference],
    ) -> SimulateResponse:
        system = build_system_prompt("simulate", format_references(references))
        statements = "\n".join(f"- {s}" for s in request.opponent_statements) or "- (none provided)"
        known = "\n".join(f"- {w.description}" for w in weaknesses) or "- (none detected)"
        user = f"""Our position:
{request.position}

Opposing counsel profile: {request.opponent_profile or "experienced, methodical"}
Rounds: {request.rounds}
Our risk tolerance: {request.risk_tolerance.value}

Statements the opponent has already made:
{statements}

Weak spots detected in our position:
{known}"""

        data = await self.llm.complete_json(system, user, max_tokens=400 + 350 * request.rounds)
        heuristic = self._simulate_heuristic(request, weaknesses, references)

        exchanges = self._parse_exchanges(data.get("exchanges"), request.rounds)
        # Fill any rounds the model skipped so the count is exact
        for round_number in range(len(exchanges) + 1, request.rounds + 1):
            exchanges.append(heuristic.exchanges[round_number - 1])

        pillars = {}
        for pillar in ("legal", "moral", "logic"):
            pillars[pillar] = as_points(data.get(pillar)) or getattr(heuristic, pillar)

        analysis = data.get("analysis")
        if not isinstance(analysis, str) or not analysis.strip():
            analysis = heuristic.analysis

        return SimulateResponse(
            exchanges=exchanges,
            weaknesses=as_points(data.get("weaknesses")) or heuristic.weaknesses,
            **pillars,
            analysis=analysis.strip(),
            sources=references,
            generated_by="llm",
        )

    @staticmethod
    def _parse_exchanges(raw: Any, rounds: int) -> List[SimulatedExchange]:
        exchanges: List[SimulatedExchange] = []
        if not isinstance(raw, list):
            return exchanges
        for item in raw:
            if len(exchanges) == rounds:
                break
            if not isinstance(item, dict):
                continue
            argument = item.get("opponent_argument")
            rebuttal = item.get("suggested_rebuttal")
            if not (isinstance(argument, str) and argument.strip() and isinstance(rebuttal, str) and rebuttal.strip()):
                continue
            exchanges.append(
                SimulatedExchange(
                    round=len(exchanges) + 1,
                    opponent_argument=argument.strip(),
                    suggested_rebuttal=rebuttal.strip(),
                )
            )
        return exchanges

    def _simulate_heuristic(
        self,
        request: SimulateRequest,
        weaknesses: List[Weakness],
        references: List[KnowledgeReference],
    ) -> SimulateResponse:
        targets = weaknesses or [GENERAL]
        aggressive = _is_aggressive(request.opponent_profile)
        opener = "That argument does not survive scrutiny" if aggressive else "With respect"

        exchanges = []
        for round_number in range(1, request.rounds + 1):
            weakness = targets[(round_number - 1) % len(targets)]
            argument = f"{opener}: {weakness.attack}."
            if request.opponent_statements:
                statement = request.opponent_statements[(round_number - 1) % len(request.opponent_statements)]
                argument += f' Our position stands: "{shorten(statement, 140)}"'
            rebuttal = weakness.rebuttal
            if references:
                ref = references[(round_number - 1) % len(references)]
                rebuttal += f" Point to {ref.source}."
            exchanges.append(
                SimulatedExchange(
                    round=round_number,
                    opponent_argument=argument,
                    suggested_rebuttal=rebuttal,
                )
            )

        primary = targets[0]
        legal = [
            "Expect the opponent to argue the burden of proof has not been met on the disputed facts.",
            f"Their strongest procedural angle: {primary.description}",
        ]
        moral = [
            "They will present their client as the reasonable party who acted in good faith.",
        ]
        if any(w.kind == "emotional_appeal" for w in weaknesses):
            moral.append("They will cast your frustration as bias; keep your tone measured.")
        logic = [f"Attack line {i}: {w.description}" for i, w in enumerate(targets, start=1)]

        analysis = (
            f"The simulated opponent{' (aggressive)' if aggressive else ''} concentrates on "
            f"{len(targets)} weak spot{'s' if len(targets) != 1 else ''} over {request.rounds} "
            f"round{'s' if request.rounds != 1 else ''}. "
            + _risk_advice(request.risk_tolerance)
        )

        return SimulateResponse(
            exchanges=exchanges,
            weaknesses=[w.description for w in weaknesses],
            legal=legal,
            moral=moral,
            logic=logic,
            analysis=analysis,
            sources=references,
            generated_by="heuristic",
        )


def _is_aggressive(profile: Optional[str]) -> bool:
    if not profile:
        return False
    profile = profile.lower()
    return any(marker in profile for marker in _AGGRESSIVE_MARKERS)


def _risk_advice(risk_tolerance: RiskTolerance) -> str:
    advice: Dict[RiskTolerance, str] = {
        RiskTolerance.LOW: "Fix the first weakness before the hearing and consider whether settlement beats the risk.",
        RiskTolerance.MEDIUM: "Prepare a one-sentence answer to each attack and lead with the undisputed facts.",
        RiskTolerance.HIGH: "Turn each attack around by showing the opponent has the same gap in their own account.",
    }
    return advice[risk_tolerance]
