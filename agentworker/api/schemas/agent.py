"""Agent catalogue schemas."""

from __future__ import annotations

from agentworker.api.schemas.common import CamelModel


class AgentView(CamelModel):
    id: str
    name: str
    display_name: str
    description: str
    default_provider: str
    default_model: str
    allowed_lanes: list[int]
    tools: list[str]


class AgentList(CamelModel):
    agents: list[AgentView]
    total: int


class LaneAgents(AgentList):
    lane: int
