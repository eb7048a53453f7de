"""Execution intake: validate, allocate a run id, enqueue."""

from __future__ import annotations

import secrets
import time
import uuid
from dataclasses import replace

import structlog

from agentworker.agent.definitions import AgentRegistry
from agentworker.store.base import QueueBackend
from agentworker.worker.models import ExecutionRequest, IntakeResult

log = structlog.get_logger("agentworker.intake")

EXECUTION_QUEUE = "agent-execution"
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def new_run_id() -> str:
    """``run-{epoch_ms}-{random base36}``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(11))
    return f"run-{int(time.time() * 1000)}-{suffix}"


class ExecutionIntake:
    """Accepts requests and hands them to the workers through the queue.

    Acceptance is asynchronous: ``started`` means enqueued, not executed.
    """

    def __init__(
        self, queue: QueueBackend, agents: AgentRegistry, queue_name: str = EXECUTION_QUEUE
    ) -> None:
        self._queue = queue
        self._agents = agents
        self._queue_name = queue_name

    async def submit(self, request: ExecutionRequest) -> IntakeResult:
        correlation_id = request.correlation_id or uuid.uuid4().hex
        log.info(
            "intake.requested",
            correlation_id=correlation_id,
            card_id=request.card_id,
            agent=request.agent_id,
            user_id=request.user_id,
        )

        if self._agents.get(request.agent_id) is None:
            message = f"Agent not found: {request.agent_id}"
            log.warning("intake.rejected", correlation_id=correlation_id, reason=message)
            return IntakeResult(run_id="", status="failed", message=message)

        run_id = new_run_id()
        queued = replace(request, run_id=run_id, correlation_id=correlation_id)
        if not await self._queue.push(self._queue_name, queued.to_payload()):
            log.error("intake.enqueue_failed", correlation_id=correlation_id, run_id=run_id)
            return IntakeResult(run_id="", status="failed", message="execution queue unavailable")

        log.info("intake.queued", correlation_id=correlation_id, run_id=run_id)
        return IntakeResult(
            run_id=run_id, status="started", message="Agent execution queued successfully"
        )
