"""Agent catalogue: named configurations that drive runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from agentworker.agent.prompts import agents as prompts

log = structlog.get_logger("agentworker.agent")

ALL_LANES = (0, 1, 2, 3, 4, 5, 6)
BUILD_LANES = (1, 2, 3, 4)

FILE_READ_ONLY = ("read_file", "list_directory")
FILE_READ_WRITE = ("read_file", "write_file", "list_directory")

_DEFAULT_PROVIDER = "anthropic"
_DEFAULT_MODEL = "claude-sonnet-4-20250514"


@dataclass(frozen=True)
class AgentDefinition:
    name: str
    display_name: str
    description: str
    system_prompt: str
    default_provider: str = _DEFAULT_PROVIDER
    default_model: str = _DEFAULT_MODEL
    allowed_lanes: tuple[int, ...] = ALL_LANES
    tools: tuple[str, ...] = ()
    temperature: float = 0.7
    max_tokens: int = 4096

    @property
    def id(self) -> str:
        return f"agent-{self.name}"

    def allows_lane(self, lane_number: int) -> bool:
        return lane_number in self.allowed_lanes

    def to_dict(self) -> dict[str, Any]:
        """Public view; the system prompt is left out."""
        return {
            "id": self.id,
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "defaultProvider": self.default_provider,
            "defaultModel": self.default_model,
            "allowedLanes": list(self.allowed_lanes),
            "tools": list(self.tools),
        }


DEFAULT_AGENTS: tuple[AgentDefinition, ...] = (
    AgentDefinition(
        name="ceo_copilot",
        display_name="CEO CoPilot",
        description="Executive supervisor for the project lifecycle",
        system_prompt=prompts.CEO_COPILOT_PROMPT,
    ),
    AgentDefinition(
        name="strategy",
        display_name="Strategy Agent",
        description="Strategic planning and business analysis",
        system_prompt=prompts.STRATEGY_PROMPT,
    ),
    AgentDefinition(
        name="architect",
        display_name="System Architect",
        description="Technical architecture and system design",
        system_prompt=prompts.ARCHITECT_PROMPT,
        tools=FILE_READ_ONLY,
    ),
    AgentDefinition(
        name="planner",
        display_name="Project Planner",
        description="Task breakdown and project planning",
        system_prompt=prompts.PLANNER_PROMPT,
    ),
    AgentDefinition(
        name="dev_backend",
        display_name="Backend Developer",
        description="Backend development and API implementation",
        system_prompt=prompts.DEV_BACKEND_PROMPT,
        allowed_lanes=BUILD_LANES,
        tools=FILE_READ_WRITE,
    ),
    AgentDefinition(
        name="dev_frontend",
        display_name="Frontend Developer",
        description="Frontend development and UI implementation",
        system_prompt=prompts.DEV_FRONTEND_PROMPT,
        allowed_lanes=BUILD_LANES,
        tools=FILE_READ_WRITE,
    ),
    AgentDefinition(
        name="devops",
        display_name="DevOps Engineer",
        description="Deployment and infrastructure management",
        system_prompt=prompts.DEVOPS_PROMPT,
        allowed_lanes=(3, 4, 5),
        tools=FILE_READ_WRITE,
    ),
    AgentDefinition(
        name="qa",
        display_name="QA Engineer",
        description="Quality assurance and testing",
        system_prompt=prompts.QA_PROMPT,
        allowed_lanes=(4,),
        tools=FILE_READ_WRITE,
    ),
    AgentDefinition(
        name="docs",
        display_name="Documentation",
        description="Documentation and knowledge management",
        system_prompt=prompts.DOCS_PROMPT,
        tools=FILE_READ_WRITE,
    ),
    AgentDefinition(
        name="troubleshooter",
        display_name="Troubleshooter",
        description="Debugging and problem solving",
        system_prompt=prompts.TROUBLESHOOTER_PROMPT,
        allowed_lanes=(4,),
        default_provider="google",
        default_model="gemini-2.0-flash",
        tools=FILE_READ_ONLY,
    ),
)


def normalize_agent_name(name: str) -> str:
    return name.strip().replace("-", "_")


class AgentRegistry:
    """In-process catalogue keyed by agent name (hyphens and underscores match)."""

    def __init__(self, agents: tuple[AgentDefinition, ...] | list[AgentDefinition] = DEFAULT_AGENTS) -> None:
        self._agents: dict[str, AgentDefinition] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: AgentDefinition) -> None:
        self._agents[normalize_agent_name(agent.name)] = agent

    def get(self, name: str) -> AgentDefinition | None:
        agent = self._agents.get(normalize_agent_name(name))
        if agent is None:
            log.warning("agent.not_found", agent=name)
        return agent

    def all(self) -> list[AgentDefinition]:
        return list(self._agents.values())

    def for_lane(self, lane_number: int) -> list[AgentDefinition]:
        return [a for a in self._agents.values() if a.allows_lane(lane_number)]

    def tool_assignments(self) -> dict[str, tuple[str, ...]]:
        return {a.name: a.tools for a in self._agents.values() if a.tools}
