"""Run introspection schemas."""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict

from agentworker.api.schemas.common import CamelModel


class ActiveRun(CamelModel):
    run_id: str
    agent_id: str
    card_id: str
    start_time: str


class RunStatus(CamelModel):
    model_config = ConfigDict(extra="allow")

    run_id: str
    status: str
    updated_at: str | None = None
    message: str | None = None


class AgentStateView(CamelModel):
    run_id: str
    state: dict[str, Any]
