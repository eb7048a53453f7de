"""Tests for ExecutionWorker: run lifecycle, cleanup and failure isolation."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from agentworker.agent.definitions import AgentRegistry
from agentworker.agent.executor import GatewayPolicy, ToolCallingExecutor
from agentworker.agent.gateway import ChatResponse, GatewayError, TransientGatewayError
from agentworker.agent.messages import ToolCall
from agentworker.agent.result import UsageRecord
from agentworker.context.context_file import ContextFileService
from agentworker.context.conversation import ConversationStore
from agentworker.events.models import BillingUsageEvent, LogStreamEvent, SSEEvent
from agentworker.events.outbox import EventOutbox
from agentworker.runs.state import RunStateStore
from agentworker.services import StoreUnavailableError
from agentworker.tools.file_tools import create_file_tools_mcp
from agentworker.tools.registry import ToolRegistry
from agentworker.worker.intake import ExecutionIntake
from agentworker.worker.models import ExecutionRequest
from agentworker.worker.worker import ExecutionWorker


class ScriptedGateway:
    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[list] = []

    async def chat(self, messages, options):
        self.calls.append(list(messages))
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step()
        return step


class RecordingSink:
    failure_level = "warning"

    def __init__(self, name, event_type, fail=False):
        self.name = name
        self.event_type = event_type
        self.fail = fail
        self.events: list = []

    async def deliver(self, event):
        if self.fail:
            raise ConnectionError(f"{self.name} unreachable")
        self.events.append(event)


def _reply(content="", tool_calls=(), tokens=(10, 5)) -> ChatResponse:
    return ChatResponse(
        content=content,
        tool_calls=list(tool_calls),
        usage=UsageRecord(
            input_tokens=tokens[0], output_tokens=tokens[1], provider_cost=0.5, billed_amount=1.0
        ),
        provider="anthropic",
        model="claude-sonnet-4-20250514",
    )


class Harness:
    """One worker wired to in-memory stores and recording sinks."""

    def __init__(self, *, queue, state, core, gateway, projects_root, failing_sinks=False):
        self.queue = queue
        self.core = core
        self.gateway = gateway
        self.runs = RunStateStore(state)
        self.conversations = ConversationStore(state)
        self.context_files = ContextFileService()
        self.log_sink = RecordingSink("log_stream", LogStreamEvent, fail=failing_sinks)
        self.billing_sink = RecordingSink("billing", BillingUsageEvent, fail=failing_sinks)
        self.sse_sink = RecordingSink("sse", SSEEvent, fail=failing_sinks)
        self.outbox = EventOutbox([self.log_sink, self.billing_sink, self.sse_sink], timeout=1.0)
        agents = AgentRegistry()
        tools = ToolRegistry(agents.tool_assignments())
        tools.register(create_file_tools_mcp)
        executor = ToolCallingExecutor(
            gateway,
            tools,
            self.context_files,
            self.outbox,
            policy=GatewayPolicy(timeout_seconds=5, max_attempts=3, backoff_min=0, backoff_max=0),
        )
        self.intake = ExecutionIntake(queue, agents)
        self.worker = ExecutionWorker(
            queue=queue,
            runs=self.runs,
            core=core,
            agents=agents,
            executor=executor,
            context_files=self.context_files,
            conversations=self.conversations,
            outbox=self.outbox,
            projects_root=projects_root,
            pop_timeout=0,
            idle_sleep=0.01,
        )

    async def submit(self, **overrides) -> str:
        fields = {"card_id": "card-1", "agent_id": "dev_backend", "user_id": "u-1", "workspace_id": "ws-1"}
        fields.update(overrides)
        result = await self.intake.submit(ExecutionRequest(**fields))
        assert result.status == "started"
        return result.run_id

    async def assert_no_leak(self, run_id: str) -> None:
        assert await self.runs.list_active_runs() == []
        assert await self.runs.get_agent_state(run_id) is None


@pytest.fixture
def harness(memory_queue, memory_state, make_card, make_core, project, tmp_path):
    def _build(*script, card="default", failing_sinks=False):
        core = make_core(make_card() if card == "default" else card, project)
        return Harness(
            queue=memory_queue,
            state=memory_state,
            core=core,
            gateway=ScriptedGateway(*script),
            projects_root=str(tmp_path),
            failing_sinks=failing_sinks,
        )

    return _build


def _context_log(project) -> str:
    return (Path(project.local_path) / "context" / "card-card-1.context").read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------


class TestCompletedRun:
    @pytest.mark.asyncio
    async def test_read_file_then_done_end_to_end(self, harness, project, project_dir):
        (project_dir / "x").write_text("contents of x", encoding="utf-8")
        h = harness(
            _reply("", [ToolCall(id="call-1", name="read_file", arguments={"path": "x"})], tokens=(100, 10)),
            _reply("done", tokens=(150, 20)),
        )
        run_id = await h.submit()

        assert await h.worker.run_once(timeout=0) is True

        status = await h.runs.get_run_status(run_id)
        assert status["status"] == "completed"
        assert status["success"] is True
        await h.assert_no_leak(run_id)

        h.core.create_run.assert_awaited_once()
        h.core.update_run.assert_awaited_once()
        args, kwargs = h.core.update_run.call_args
        assert args == ("rec-1",)
        assert kwargs["status"] == "completed"
        assert kwargs["input_tokens"] == 250
        assert kwargs["output_tokens"] == 30
        assert kwargs["cost"] == pytest.approx(1.0)
        assert kwargs["price"] == pytest.approx(2.0)

        log = _context_log(project)
        assert log.count("## 🔧") == 1
        assert log.count("## ✅") == 1
        assert "**Completed**: done" in log

        [billing] = h.billing_sink.events
        assert billing.input_tokens == 250
        assert billing.run_id == "rec-1"
        assert billing.workspace_id == "ws-1"

        sse_types = [e.type for e in h.sse_sink.events]
        assert sse_types[0] == "iteration_start"
        assert "message" in sse_types
        assert sse_types[-1] == "agent_complete"

        history = await h.conversations.get_history("card-1")
        assert history[-1]["role"] == "assistant"
        assert history[-1]["content"] == "done"
        assert history[-1]["metadata"]["toolsUsed"] == ["read_file"]

        triggers = [c.args[1] for c in h.core.transition_card.await_args_list]
        assert triggers == ["agent_start", "agent_complete"]
        assert h.worker.state.processed == 1

    @pytest.mark.asyncio
    async def test_side_channel_failures_do_not_change_outcome(self, harness, project):
        h = harness(_reply("done", tokens=(11, 7)), failing_sinks=True)
        run_id = await h.submit()

        assert await h.worker.run_once(timeout=0) is True

        assert (await h.runs.get_run_status(run_id))["status"] == "completed"
        await h.assert_no_leak(run_id)
        kwargs = h.core.update_run.call_args.kwargs
        assert kwargs["status"] == "completed"
        assert kwargs["input_tokens"] == 11
        stats = h.outbox.stats()
        assert stats["billing"]["failed"] == 1
        assert stats["log_stream"]["failed"] >= 2
        assert stats["sse"]["delivered"] == 0

    @pytest.mark.asyncio
    async def test_card_transition_failure_is_not_fatal(self, harness):
        h = harness(_reply("done"))
        h.core.transition_card.side_effect = RuntimeError("api down")
        run_id = await h.submit()
        await h.worker.run_once(timeout=0)
        assert (await h.runs.get_run_status(run_id))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_conversation_mode_replays_history(self, harness, project):
        h = harness(_reply("Added the tests."))
        await h.context_files.initialize_context(project.local_path, "card-1", "Add health endpoint", "dev_backend")
        await h.context_files.log_human_message(project.local_path, "card-1", "alice", "Please add tests")
        run_id = await h.submit(mode="conversation")

        await h.worker.run_once(timeout=0)

        assert (await h.runs.get_run_status(run_id))["status"] == "completed"
        roles = [m.role for m in h.gateway.calls[0]]
        assert roles == ["system", "user", "user"]
        assert h.gateway.calls[0][1].content == "Please add tests"
        assert "## 🤖" in _context_log(project)


# ---------------------------------------------------------------------------
# Failure paths
# ---------------------------------------------------------------------------


class TestFailedRun:
    @pytest.mark.asyncio
    async def test_gateway_error_fails_run_and_cleans_up(self, harness, project):
        h = harness(GatewayError("invalid api key"))
        run_id = await h.submit()

        assert await h.worker.run_once(timeout=0) is True

        status = await h.runs.get_run_status(run_id)
        assert status["status"] == "failed"
        assert status["message"] == "invalid api key"
        await h.assert_no_leak(run_id)

        kwargs = h.core.update_run.call_args.kwargs
        assert kwargs["status"] == "failed"
        assert kwargs["error"] == "invalid api key"
        assert [e.type for e in h.log_sink.events][-1] == "error"
        assert "**Error**: invalid api key" in _context_log(project)
        assert h.worker.state.failed == 1

    @pytest.mark.asyncio
    async def test_missing_card_fails_fast(self, harness):
        h = harness(_reply("never"), card=None)
        run_id = await h.submit()

        await h.worker.run_once(timeout=0)

        status = await h.runs.get_run_status(run_id)
        assert status["status"] == "failed"
        assert status["message"] == "Card not found"
        await h.assert_no_leak(run_id)
        assert h.gateway.calls == []
        assert h.core.update_run.call_args.kwargs["status"] == "failed"

    @pytest.mark.asyncio
    async def test_unknown_agent_on_queue(self, harness, memory_queue):
        h = harness(_reply("never"))
        await memory_queue.push(
            "agent-execution",
            ExecutionRequest(
                card_id="card-1", agent_id="ghost", user_id="u", workspace_id="w", run_id="run-x"
            ).to_payload(),
        )
        await h.worker.run_once(timeout=0)

        status = await h.runs.get_run_status("run-x")
        assert status["status"] == "failed"
        assert status["message"] == "Agent not found: ghost"
        h.core.create_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_contained(self, harness):
        h = harness(_reply("done"))
        h.runs.remove_active_run = AsyncMock(side_effect=StoreUnavailableError("down"))
        run_id = await h.submit()

        assert await h.worker.process(
            ExecutionRequest.from_payload((await h.queue.pop("agent-execution")).payload)
        ) == "completed"

        assert await h.runs.get_agent_state(run_id) is None
        assert (await h.runs.get_run_status(run_id))["status"] == "completed"

    @pytest.mark.asyncio
    async def test_malformed_item_is_counted_and_dropped(self, harness, memory_queue):
        h = harness()
        await memory_queue.push("agent-execution", {"agentId": "qa"})
        assert await h.worker.run_once(timeout=0) is True
        assert h.worker.state.failed == 1
        assert await memory_queue.length("agent-execution") == 0

    @pytest.mark.asyncio
    async def test_cancellation_records_failure(self, harness):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(60)

        h = harness(hang)
        run_id = await h.submit()
        request = ExecutionRequest.from_payload((await h.queue.pop("agent-execution")).payload)

        task = asyncio.create_task(h.worker.process(request))
        await asyncio.wait_for(started.wait(), timeout=2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        status = await h.runs.get_run_status(run_id)
        assert status["status"] == "failed"
        assert status["message"] == "cancelled during shutdown"
        await h.assert_no_leak(run_id)


# ---------------------------------------------------------------------------
# Gateway retry bound, seen from the run
# ---------------------------------------------------------------------------


class TestGatewayRetries:
    @pytest.mark.asyncio
    async def test_three_transient_failures_fail_the_run(self, harness):
        h = harness(
            TransientGatewayError("rate limited"),
            TransientGatewayError("rate limited"),
            TransientGatewayError("rate limited"),
        )
        run_id = await h.submit()

        assert await h.worker.run_once(timeout=0) is True

        status = await h.runs.get_run_status(run_id)
        assert status["status"] == "failed"
        assert status["message"] == "rate limited"
        assert len(h.gateway.calls) == 3
        await h.assert_no_leak(run_id)
        assert h.core.update_run.call_args.kwargs["status"] == "failed"
        assert h.billing_sink.events == []

    @pytest.mark.asyncio
    async def test_two_transient_failures_then_success_completes(self, harness):
        h = harness(
            TransientGatewayError("overloaded"),
            TransientGatewayError("overloaded"),
            _reply("done", tokens=(40, 8)),
        )
        run_id = await h.submit()

        await h.worker.run_once(timeout=0)

        assert (await h.runs.get_run_status(run_id))["status"] == "completed"
        await h.assert_no_leak(run_id)
        assert len(h.gateway.calls) == 3
        kwargs = h.core.update_run.call_args.kwargs
        assert kwargs["status"] == "completed"
        assert kwargs["input_tokens"] == 40
        assert kwargs["output_tokens"] == 8
        [billing] = h.billing_sink.events
        assert billing.input_tokens == 40


# ---------------------------------------------------------------------------
# Context persistence channels fail independently
# ---------------------------------------------------------------------------


class TestContextIsolation:
    @pytest.mark.asyncio
    async def test_context_file_failure_keeps_conversation_store(self, harness):
        h = harness(_reply("done"))
        h.context_files.initialize_context = AsyncMock(side_effect=OSError("read-only fs"))
        run_id = await h.submit()

        await h.worker.run_once(timeout=0)

        assert (await h.runs.get_run_status(run_id))["status"] == "completed"
        history = await h.conversations.get_history("card-1")
        assert history[-1]["role"] == "assistant"
        assert history[-1]["content"] == "done"

    @pytest.mark.asyncio
    async def test_conversation_store_failure_keeps_context_file(self, harness, project):
        h = harness(_reply("done"))
        h.conversations.init_card_context = AsyncMock(side_effect=StoreUnavailableError("down"))
        run_id = await h.submit()

        await h.worker.run_once(timeout=0)

        assert (await h.runs.get_run_status(run_id))["status"] == "completed"
        log = _context_log(project)
        assert "Agent execution started" in log
        assert "**Completed**: done" in log

    @pytest.mark.asyncio
    async def test_conversation_mode_falls_back_to_stored_history(self, harness):
        h = harness(_reply("Added the tests."))
        await h.conversations.init_card_context("card-1", "proj-1", "dev_backend")
        await h.conversations.append_card_message(
            "card-1", {"role": "user", "content": "Please add tests", "metadata": {}}
        )
        h.context_files.read_context = AsyncMock(side_effect=PermissionError("denied"))
        run_id = await h.submit(mode="conversation")

        await h.worker.run_once(timeout=0)

        assert (await h.runs.get_run_status(run_id))["status"] == "completed"
        roles = [m.role for m in h.gateway.calls[0]]
        assert roles == ["system", "user", "user"]
        assert h.gateway.calls[0][1].content == "Please add tests"


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_run_loop_drains_queue_until_stopped(harness):
    h = harness(_reply("one"), _reply("two"))
    await h.submit()
    await h.submit()
    stop = asyncio.Event()

    task = asyncio.create_task(h.worker.run(stop))
    try:
        for _ in range(200):
            if h.worker.state.processed == 2:
                break
            await asyncio.sleep(0.01)
        assert h.worker.state.processed == 2
        assert h.worker.state.is_processing is True
    finally:
        stop.set()
        await asyncio.wait_for(task, timeout=2)

    assert h.worker.state.is_processing is False
    assert h.worker.state.current_run_id is None
