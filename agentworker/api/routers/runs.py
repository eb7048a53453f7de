"""Run introspection router."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agentworker.api.deps import get_caller, get_runs
from agentworker.api.schemas.run import ActiveRun, AgentStateView, RunStatus
from agentworker.runs.state import RunStateStore
from agentworker.services import NotFoundError

router = APIRouter()


@router.get("/active", response_model=list[ActiveRun])
async def list_active(
    _caller: dict = Depends(get_caller),
    runs: RunStateStore = Depends(get_runs),
) -> list[ActiveRun]:
    return [ActiveRun.model_validate(entry) for entry in await runs.list_active_runs()]


@router.get("/{run_id}/status", response_model=RunStatus)
async def get_status(
    run_id: str,
    _caller: dict = Depends(get_caller),
    runs: RunStateStore = Depends(get_runs),
) -> RunStatus:
    data = await runs.get_run_status(run_id)
    if data is None:
        raise NotFoundError(f"Run not found: {run_id}")
    return RunStatus.model_validate(data)


@router.get("/{run_id}/state", response_model=AgentStateView)
async def get_state(
    run_id: str,
    _caller: dict = Depends(get_caller),
    runs: RunStateStore = Depends(get_runs),
) -> AgentStateView:
    state = await runs.get_agent_state(run_id)
    if state is None:
        raise NotFoundError(f"No live state for run: {run_id}")
    return AgentStateView(run_id=run_id, state=state)
