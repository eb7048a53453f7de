"""ExecutionWorker: dequeue one request, run it to a terminal status, repeat."""

from __future__ import annotations

import asyncio
import traceback
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from agentworker.agent.context import (
    ConversationContext,
    ConversationTurn,
    ExecutionContext,
    StandardContext,
    snapshot,
)
from agentworker.agent.definitions import AgentDefinition, AgentRegistry
from agentworker.agent.executor import ToolCallingExecutor
from agentworker.agent.result import ExecutionResult
from agentworker.clients.core_service import CoreServiceClient
from agentworker.clients.models import Card, Project
from agentworker.context.context_file import ContextFileService
from agentworker.context.conversation import ConversationStore, new_message
from agentworker.events.models import BillingUsageEvent
from agentworker.events.outbox import EventOutbox
from agentworker.runs.state import RunStateStore, utc_iso
from agentworker.services import RunContextError
from agentworker.store.base import QueueBackend
from agentworker.tools.registry import ToolContext
from agentworker.worker.intake import EXECUTION_QUEUE
from agentworker.worker.models import ExecutionRequest, WorkerState

log = structlog.get_logger("agentworker.worker")

_COMPLETION_SUMMARY_CHARS = 500


@dataclass
class _RunScope:
    """What is known about a run so far; read by the failure path."""

    request: ExecutionRequest
    agent: AgentDefinition | None = None
    record_id: str | None = None
    project_path: str | None = None

    @property
    def run_id(self) -> str:
        return self.request.run_id


class ExecutionWorker:
    """Single-run-at-a-time consumer of the execution queue.

    Mutual exclusion between worker processes comes from the queue's atomic
    pop. Every terminal path (completed, failed, cancelled) removes the
    active-run entry and the agent state; each cleanup step is guarded on
    its own so one failing step does not skip the others.
    """

    def __init__(
        self,
        *,
        queue: QueueBackend,
        runs: RunStateStore,
        core: CoreServiceClient,
        agents: AgentRegistry,
        executor: ToolCallingExecutor,
        context_files: ContextFileService,
        conversations: ConversationStore,
        outbox: EventOutbox,
        projects_root: str = "/projects",
        queue_name: str = EXECUTION_QUEUE,
        pop_timeout: float = 5.0,
        idle_sleep: float = 1.0,
    ) -> None:
        self._queue = queue
        self._runs = runs
        self._core = core
        self._agents = agents
        self._executor = executor
        self._context_files = context_files
        self._conversations = conversations
        self._outbox = outbox
        self._projects_root = projects_root
        self._queue_name = queue_name
        self._pop_timeout = pop_timeout
        self._idle_sleep = idle_sleep
        self.state = WorkerState()

    # ── loop ───────────────────────────────────────────────────────────────

    async def run(self, stop: asyncio.Event) -> None:
        """Consume until *stop* is set. An in-flight run is never preempted."""
        self.state.is_processing = True
        self.state.started_at = datetime.now(timezone.utc)
        log.info("worker.started", queue=self._queue_name)
        try:
            while not stop.is_set():
                try:
                    handled = await self.run_once()
                except Exception:
                    log.exception("worker.cycle_failed")
                    handled = False
                if not handled:
                    await self._pause(stop)
        finally:
            self.state.is_processing = False
            log.info(
                "worker.stopped", processed=self.state.processed, failed=self.state.failed
            )

    async def run_once(self, timeout: float | None = None) -> bool:
        """Pop and process one item. Return ``False`` when the queue was empty."""
        item = await self._queue.pop(
            self._queue_name, self._pop_timeout if timeout is None else timeout
        )
        if item is None:
            return False
        try:
            request = ExecutionRequest.from_payload(item.payload)
        except (KeyError, TypeError, ValueError):
            log.error("worker.malformed_item", item_id=item.id, exc_info=True)
            self.state.failed += 1
            return True
        await self.process(request)
        return True

    async def _pause(self, stop: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=self._idle_sleep)
        except asyncio.TimeoutError:
            pass

    # ── one run ────────────────────────────────────────────────────────────

    async def process(self, request: ExecutionRequest) -> str:
        """Run *request* to a terminal status and return it."""
        scope = _RunScope(request)
        self.state.current_run_id = request.run_id
        structlog.contextvars.bind_contextvars(
            run_id=request.run_id, agent=request.agent_id, card_id=request.card_id
        )
        log.info("worker.run_started", correlation_id=request.correlation_id)
        try:
            result = await self._execute(scope)
        except asyncio.CancelledError:
            log.warning("worker.run_cancelled")
            await self._fail(scope, "cancelled during shutdown")
            self.state.failed += 1
            raise
        except Exception as exc:
            log.error("worker.run_failed", error=str(exc), exc_info=True)
            await self._fail(scope, str(exc) or type(exc).__name__, exc)
            self.state.failed += 1
            return "failed"
        else:
            await self._cleanup(scope.run_id)
            await self._guard(
                "run_status",
                self._runs.set_run_status(
                    scope.run_id, "completed", endTime=utc_iso(), success=True
                ),
            )
            self.state.processed += 1
            log.info(
                "worker.run_completed",
                iterations=result.iterations,
                input_tokens=result.usage.input_tokens,
                output_tokens=result.usage.output_tokens,
                cost=result.usage.provider_cost,
                billed_amount=result.usage.billed_amount,
            )
            return "completed"
        finally:
            self.state.current_run_id = None
            structlog.contextvars.unbind_contextvars("run_id", "agent", "card_id")

    async def _execute(self, scope: _RunScope) -> ExecutionResult:
        req = scope.request
        run_id = scope.run_id

        agent = self._agents.get(req.agent_id)
        if agent is None:
            raise RunContextError(f"Agent not found: {req.agent_id}")
        scope.agent = agent

        # 1. register
        await self._runs.add_active_run(run_id, req.agent_id, req.card_id)
        await self._runs.set_run_status(run_id, "running", startTime=utc_iso())
        await self._outbox.log_event(
            run_id, "status", status="running", message="Agent execution started"
        )

        # 2. persistent run record
        record = await self._core.create_run(
            card_id=req.card_id,
            agent_id=req.agent_id,
            provider=req.provider or agent.default_provider,
            model=req.model or agent.default_model,
            user_id=req.user_id,
        )
        scope.record_id = str(record["id"]) if record.get("id") is not None else None
        await self._best_effort(
            "worker.card_transition_failed",
            self._core.transition_card(
                req.card_id,
                "agent_start",
                req.agent_id,
                details=f"Agent {req.agent_id} started execution",
                metadata={"runId": scope.record_id},
            ),
        )

        # 3. resolve card and project (fatal when missing)
        card = await self._core.get_card(req.card_id)
        if card is None:
            raise RunContextError("Card not found")
        project = await self._core.get_project(card.project_id)
        if project is None:
            raise RunContextError("Project not found")
        project_path = project.resolve_path(self._projects_root)
        scope.project_path = project_path

        # 4. context persistence; file log and conversation store fail independently
        await self._best_effort(
            "worker.context_init_failed", self._init_context_file(scope, card, project_path)
        )
        await self._best_effort(
            "worker.conversation_init_failed",
            self._conversations.init_card_context(card.id, card.project_id, req.agent_id),
        )
        await self._outbox.broadcast(
            card.id,
            "iteration_start",
            {"runId": run_id, "agentName": agent.name, "status": "running"},
        )
        context = await self._resolve_context(req, card, project, project_path)

        # 5. agent state snapshot
        await self._runs.set_agent_state(
            run_id,
            {
                "runId": run_id,
                "recordId": scope.record_id,
                "context": snapshot(context),
                "status": "running",
                "startTime": utc_iso(),
            },
        )

        # 6. execute
        tool_context = ToolContext(
            project_id=project.id,
            agent_name=agent.name,
            run_id=run_id,
            project_path=project_path,
            tenant_slug=project.workspace.slug or project.workspace.id,
            project_slug=project.slug or project.id,
        )
        result = await self._executor.execute(
            run_id=run_id,
            agent=agent,
            context=context,
            tool_context=tool_context,
            provider=req.provider,
            model=req.model,
        )

        # 7. record success
        usage = result.usage
        if scope.record_id is not None:
            await self._core.update_run(
                scope.record_id,
                status="completed",
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost=usage.provider_cost,
                price=usage.billed_amount,
                completed_at=datetime.now(timezone.utc),
            )
        await self._outbox.publish(
            BillingUsageEvent(
                workspace_id=req.workspace_id,
                project_id=project.id,
                card_id=card.id,
                agent_id=req.agent_id,
                run_id=scope.record_id or run_id,
                provider=result.provider,
                model=result.model,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost=usage.provider_cost,
                price=usage.billed_amount,
            )
        )
        await self._outbox.log_event(
            run_id,
            "completion",
            status="completed",
            result={"content": result.content, "usage": usage.to_dict()},
        )
        await self._best_effort(
            "worker.context_completion_failed",
            self._log_completion(scope, card.id, result),
        )
        if result.content:
            await self._best_effort(
                "worker.conversation_append_failed",
                self._append_assistant_message(scope, card.id, result),
            )
        await self._outbox.broadcast(
            card.id,
            "agent_complete",
            {
                "runId": run_id,
                "agentName": agent.name,
                "status": "completed",
                "usage": {
                    "inputTokens": usage.input_tokens,
                    "outputTokens": usage.output_tokens,
                    "cost": usage.provider_cost,
                },
            },
        )
        await self._best_effort(
            "worker.card_transition_failed",
            self._core.transition_card(
                req.card_id,
                "agent_complete",
                req.agent_id,
                details=f"Agent {req.agent_id} completed execution",
                metadata={
                    "runId": scope.record_id,
                    "inputTokens": usage.input_tokens,
                    "outputTokens": usage.output_tokens,
                    "cost": usage.provider_cost,
                },
            ),
        )
        return result

    # ── helpers ────────────────────────────────────────────────────────────

    async def _init_context_file(self, scope: _RunScope, card: Card, project_path: str) -> None:
        agent_name = scope.request.agent_id
        await self._context_files.initialize_context(project_path, card.id, card.title, agent_name)
        await self._context_files.log_status(
            project_path, card.id, agent_name, "running", "Agent execution started"
        )

    async def _resolve_context(
        self, req: ExecutionRequest, card: Card, project: Project, project_path: str
    ) -> ExecutionContext:
        if req.mode == "conversation":
            history: tuple[ConversationTurn, ...] = ()
            try:
                raw = await self._context_files.read_context(project_path, card.id)
                history = tuple(
                    ConversationTurn(
                        role="human" if e.role == "human" else "agent",
                        author=e.agent_name or "human",
                        content=e.content,
                        timestamp=e.timestamp,
                    )
                    for e in self._context_files.parse_conversation(raw)
                )
                log.info("worker.history_loaded", messages=len(history))
            except Exception as exc:
                log.warning("worker.history_unavailable", error=str(exc))
            if not history:
                history = await self._stored_history(card.id)
            return ConversationContext(
                card=card, project=project, history=history, user_context=req.context
            )

        instructions = None
        try:
            instructions = await self._context_files.get_instructions(project_path, card.id)
        except Exception as exc:
            log.debug("worker.instructions_unavailable", error=str(exc))
        return StandardContext(
            card=card, project=project, instructions=instructions, user_context=req.context
        )

    async def _stored_history(self, card_id: str) -> tuple[ConversationTurn, ...]:
        """Structured-store history, used when the context file yields none."""
        try:
            messages = await self._conversations.get_history(card_id)
        except Exception as exc:
            log.warning("worker.stored_history_unavailable", error=str(exc))
            return ()
        turns = tuple(
            ConversationTurn(
                role="agent" if m.get("role") == "assistant" else "human",
                author=(m.get("metadata") or {}).get("agentName") or "human",
                content=m.get("content") or "",
                timestamp=m.get("timestamp") or "",
            )
            for m in messages
            if m.get("content")
        )
        if turns:
            log.info("worker.history_loaded", messages=len(turns), source="conversation_store")
        return turns

    async def _log_completion(self, scope: _RunScope, card_id: str, result: ExecutionResult) -> None:
        if scope.project_path is None:
            return
        agent_name = scope.request.agent_id
        if scope.request.mode == "conversation" and result.content:
            await self._context_files.log_agent_message(
                scope.project_path, card_id, agent_name, result.content
            )
        summary = result.content[:_COMPLETION_SUMMARY_CHARS]
        if len(result.content) > _COMPLETION_SUMMARY_CHARS:
            summary += "..."
        await self._context_files.log_completion(
            scope.project_path,
            card_id,
            agent_name,
            summary,
            {
                "inputTokens": result.usage.input_tokens,
                "outputTokens": result.usage.output_tokens,
                "cost": result.usage.provider_cost,
            },
        )

    async def _append_assistant_message(
        self, scope: _RunScope, card_id: str, result: ExecutionResult
    ) -> None:
        message = new_message(
            "assistant",
            result.content,
            {
                "agentName": scope.request.agent_id,
                "runId": scope.run_id,
                "toolsUsed": result.tools_used,
                "iterations": result.iterations,
            },
        )
        await self._conversations.append_card_message(card_id, message)
        await self._outbox.broadcast(card_id, "message", message)

    async def _fail(self, scope: _RunScope, message: str, exc: BaseException | None = None) -> None:
        run_id = scope.run_id
        req = scope.request
        if scope.project_path is not None:
            stack = "".join(traceback.format_exception(exc)) if exc is not None else None
            await self._best_effort(
                "worker.context_error_failed",
                self._context_files.log_error(
                    scope.project_path, req.card_id, req.agent_id, message, stack
                ),
            )
        await self._outbox.log_event(run_id, "error", error=message, status="failed")
        await self._guard(
            "run_status",
            self._runs.set_run_status(run_id, "failed", message, endTime=utc_iso()),
        )
        if scope.record_id is not None:
            await self._best_effort(
                "worker.run_record_update_failed",
                self._core.update_run(
                    scope.record_id,
                    status="failed",
                    error=message,
                    completed_at=datetime.now(timezone.utc),
                ),
            )
        await self._cleanup(run_id)

    async def _cleanup(self, run_id: str) -> None:
        await self._guard("active_run", self._runs.remove_active_run(run_id))
        await self._guard("agent_state", self._runs.delete_agent_state(run_id))

    async def _guard(self, step: str, op: Awaitable[Any]) -> None:
        """Post-terminal bookkeeping: failures are logged, never raised."""
        try:
            await op
        except Exception as exc:
            log.error("run.cleanup_failed", step=step, error=str(exc))

    async def _best_effort(self, event: str, op: Awaitable[Any]) -> None:
        try:
            await op
        except Exception as exc:
            log.warning(event, error=str(exc))
