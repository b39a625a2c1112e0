"""Argument strategy and opponent simulation endpoints."""

from fastapi import APIRouter, Depends, Request
import structlog

from ..core.security import require_api_key
from ..models.schemas import (
    ErrorEnvelope,
    SimulateRequest,
    SimulateResponse,
    StrategyRequest,
    StrategyResponse,
)
from ..services.argument_service import ArgumentStrategyService
from ..services.opponent_simulator import OpponentSimulator

logger = structlog.get_logger()
router = APIRouter(
    dependencies=[Depends(require_api_key)],
    responses={
        401: {"model": ErrorEnvelope, "description": "Missing or invalid API key"},
        429: {"model": ErrorEnvelope, "description": "Rate limit exceeded"},
    },
)


def get_strategy_service(request: Request) -> ArgumentStrategyService:
    return request.app.state.strategy_service


def get_opponent_simulator(request: Request) -> OpponentSimulator:
    return request.app.state.opponent_simulator


@router.post(
    "/strategy",
    response_model=StrategyResponse,
    operation_id="generateStrategy",
    summary="Generate argument strategy",
    description="Build legal, moral and logical lines of argument for the user's side",
)
async def generate_strategy(
    request: StrategyRequest,
    service: ArgumentStrategyService = Depends(get_strategy_service),
) -> StrategyResponse:
    """Generate a three-pillar strategy.

    Args:
        request: Case summary, opponent statements and risk tolerance

    Returns:
        Strategy with legal, moral and logic points
    """
    logger.info(
        "Strategy requested",
        statements=len(request.opponent_statements),
        risk_tolerance=request.risk_tolerance.value,
    )
    return await service.generate(request)


@router.post(
    "/simulate",
    response_model=SimulateResponse,
    operation_id="simulateOpponent",
    summary="Simulate opposing counsel",
    description="Play the other side against the user's position for one or more rounds",
)
async def simulate_opponent(
    request: SimulateRequest,
    simulator: OpponentSimulator = Depends(get_opponent_simulator),
) -> SimulateResponse:
    logger.info("Simulation requested", rounds=request.rounds)
    return await simulator.simulate(request)
