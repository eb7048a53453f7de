"""Agent catalogue router (read-only)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path

from agentworker.agent.definitions import AgentDefinition, AgentRegistry
from agentworker.api.deps import get_agents, get_caller
from agentworker.api.schemas.agent import AgentList, AgentView, LaneAgents
from agentworker.services import NotFoundError

router = APIRouter()

MAX_LANE = 10


def _view(agent: AgentDefinition) -> AgentView:
    return AgentView.model_validate(agent.to_dict())


@router.get("", response_model=AgentList)
async def list_agents(
    _caller: dict = Depends(get_caller),
    agents: AgentRegistry = Depends(get_agents),
) -> AgentList:
    views = [_view(a) for a in agents.all()]
    return AgentList(agents=views, total=len(views))


@router.get("/lane/{lane_number}", response_model=LaneAgents)
async def agents_for_lane(
    lane_number: int = Path(ge=0, le=MAX_LANE),
    _caller: dict = Depends(get_caller),
    agents: AgentRegistry = Depends(get_agents),
) -> LaneAgents:
    views = [_view(a) for a in agents.for_lane(lane_number)]
    return LaneAgents(lane=lane_number, agents=views, total=len(views))


@router.get("/{agent_name}", response_model=AgentView)
async def get_agent(
    agent_name: str,
    _caller: dict = Depends(get_caller),
    agents: AgentRegistry = Depends(get_agents),
) -> AgentView:
    agent = agents.get(agent_name)
    if agent is None:
        raise NotFoundError(f"Agent not found: {agent_name}")
    return _view(agent)
