"""Execution request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from agentworker.api.schemas.common import CamelModel
from agentworker.worker.models import ExecutionRequest


class ExecuteRequest(CamelModel):
    card_id: str = Field(min_length=1)
    agent_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    workspace_id: str = Field(min_length=1)
    project_id: str | None = None
    mode: Literal["standard", "conversation"] = "standard"
    provider: str | None = None
    model: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    def to_request(self, correlation_id: str | None = None) -> ExecutionRequest:
        return ExecutionRequest(
            card_id=self.card_id,
            agent_id=self.agent_id,
            user_id=self.user_id,
            workspace_id=self.workspace_id,
            mode=self.mode,
            provider=self.provider,
            model=self.model,
            context=self.context,
            correlation_id=correlation_id,
        )


class ExecuteResponse(CamelModel):
    run_id: str
    status: Literal["started", "failed"]
    message: str


class ValidateResponse(CamelModel):
    valid: bool
    message: str
    error: str | None = None
    card_lane: str | None = None
    agent_capabilities: dict[str, Any] | None = None


class ExecutorStatus(CamelModel):
    running: bool
    worker: dict[str, Any]
    engines: list[str]
    queue_length: int | None
    sinks: dict[str, dict[str, Any]]
    timestamp: datetime
