"""Execution router: enqueue, pre-flight validation, executor status."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Request

from agentworker.agent.definitions import AgentRegistry
from agentworker.api.deps import (
    get_agents,
    get_caller,
    get_core,
    get_intake,
    get_runtime,
    get_supervisor,
)
from agentworker.api.schemas.execution import (
    ExecuteRequest,
    ExecuteResponse,
    ExecutorStatus,
    ValidateResponse,
)
from agentworker.clients.core_service import CoreServiceClient
from agentworker.services import ForbiddenError, NotFoundError, ValidationError
from agentworker.worker.intake import ExecutionIntake
from agentworker.worker.runtime import Runtime
from agentworker.worker.supervisor import Supervisor

log = structlog.get_logger("agentworker.api")

router = APIRouter()

EXECUTABLE_CARD_STATUSES = ("Ready", "InProgress", "Blocked")


@router.post("", response_model=ExecuteResponse)
async def execute(
    body: ExecuteRequest,
    request: Request,
    _caller: dict = Depends(get_caller),
    agents: AgentRegistry = Depends(get_agents),
    core: CoreServiceClient = Depends(get_core),
    intake: ExecutionIntake = Depends(get_intake),
) -> ExecuteResponse:
    agent = agents.get(body.agent_id)
    if agent is None:
        raise ValidationError(f"Invalid agent name: {body.agent_id}")

    card = await core.get_card(body.card_id)
    if card is None:
        raise NotFoundError("Card not found")
    if not agent.allows_lane(card.lane.lane_number):
        raise ForbiddenError(
            f"Agent {body.agent_id} is not allowed in lane {card.lane.lane_number}"
        )

    correlation_id = getattr(request.state, "request_id", None)
    result = await intake.submit(body.to_request(correlation_id))
    log.info("execution.submitted", run_id=result.run_id, status=result.status, card_id=body.card_id)
    return ExecuteResponse(run_id=result.run_id, status=result.status, message=result.message)


@router.post("/validate", response_model=ValidateResponse, response_model_exclude_none=True)
async def validate(
    body: ExecuteRequest,
    _caller: dict = Depends(get_caller),
    agents: AgentRegistry = Depends(get_agents),
    core: CoreServiceClient = Depends(get_core),
) -> ValidateResponse:
    agent = agents.get(body.agent_id)
    if agent is None:
        return ValidateResponse(valid=False, error="INVALID_AGENT", message="Invalid agent name")

    card = await core.get_card(body.card_id)
    if card is None:
        return ValidateResponse(valid=False, error="CARD_NOT_FOUND", message="Card not found")

    if not agent.allows_lane(card.lane.lane_number):
        return ValidateResponse(
            valid=False,
            error="AGENT_NOT_ALLOWED",
            message=f"Agent {body.agent_id} is not allowed in lane {card.lane.lane_number}",
        )

    if card.status not in EXECUTABLE_CARD_STATUSES:
        return ValidateResponse(
            valid=False,
            error="INVALID_CARD_STATUS",
            message=f"Card must be in one of these statuses: {', '.join(EXECUTABLE_CARD_STATUSES)}",
        )

    return ValidateResponse(
        valid=True,
        message="Execution prerequisites validated successfully",
        card_lane=card.lane.name,
        agent_capabilities=agent.to_dict(),
    )


@router.get("/status", response_model=ExecutorStatus)
async def status(
    _caller: dict = Depends(get_caller),
    runtime: Runtime = Depends(get_runtime),
    supervisor: Supervisor | None = Depends(get_supervisor),
) -> ExecutorStatus:
    if supervisor is not None:
        summary = supervisor.status()
    else:
        summary = {"running": False, "worker": runtime.worker.state.to_dict(), "engines": []}
    return ExecutorStatus(
        **summary,
        queue_length=await runtime.stores.queue.length(runtime.settings.execution_queue),
        sinks=runtime.outbox.stats(),
        timestamp=datetime.now(timezone.utc),
    )
