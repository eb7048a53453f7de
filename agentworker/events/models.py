"""Side-channel event payloads. The orchestrator emits them and never stores them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LogStreamEvent:
    run_id: str
    type: Literal["status", "log", "completion", "error"]
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class BillingUsageEvent:
    workspace_id: str
    project_id: str
    agent_id: str
    run_id: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    price: float
    card_id: str | None = None
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspaceId": self.workspace_id,
            "projectId": self.project_id,
            "cardId": self.card_id,
            "agentId": self.agent_id,
            "runId": self.run_id,
            "provider": self.provider,
            "model": self.model,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cost": self.cost,
            "price": self.price,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SSEEvent:
    """Relayed to UI clients watching ``card_id``."""

    card_id: str
    type: str  # iteration_start | message | agent_complete | ...
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp.isoformat(), "data": self.data}


Event = LogStreamEvent | BillingUsageEvent | SSEEvent
