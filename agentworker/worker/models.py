"""Queue payload and worker bookkeeping types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Mode = Literal["standard", "conversation"]


@dataclass(frozen=True)
class ExecutionRequest:
    """One request to run an agent on a card, as carried on the queue."""

    card_id: str
    agent_id: str
    user_id: str
    workspace_id: str
    mode: Mode = "standard"
    provider: str | None = None
    model: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    run_id: str = ""
    correlation_id: str | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ExecutionRequest:
        mode = data.get("mode") or "standard"
        if mode not in ("standard", "conversation"):
            raise ValueError(f"unknown mode: {mode!r}")
        return cls(
            card_id=str(data["cardId"]),
            agent_id=str(data["agentId"]),
            user_id=str(data.get("userId") or ""),
            workspace_id=str(data.get("workspaceId") or ""),
            mode=mode,
            provider=data.get("provider") or None,
            model=data.get("model") or None,
            context=dict(data.get("context") or {}),
            run_id=str(data.get("runId") or ""),
            correlation_id=data.get("correlationId"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "cardId": self.card_id,
            "agentId": self.agent_id,
            "userId": self.user_id,
            "workspaceId": self.workspace_id,
            "mode": self.mode,
            "provider": self.provider,
            "model": self.model,
            "context": self.context,
            "correlationId": self.correlation_id,
        }


@dataclass
class WorkerState:
    """Lifecycle of one worker, owned by the worker and read by the supervisor."""

    is_processing: bool = False
    stop_requested: bool = False
    current_run_id: str | None = None
    processed: int = 0
    failed: int = 0
    started_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "isProcessing": self.is_processing,
            "stopRequested": self.stop_requested,
            "currentRunId": self.current_run_id,
            "processed": self.processed,
            "failed": self.failed,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
        }


@dataclass(frozen=True)
class IntakeResult:
    run_id: str
    status: Literal["started", "failed"]
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"runId": self.run_id, "status": self.status, "message": self.message}
