"""Wires settings into the objects one orchestrator process needs."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from agentworker.agent.definitions import AgentRegistry
from agentworker.agent.executor import GatewayPolicy, ToolCallingExecutor
from agentworker.agent.gateway import ChatGateway, LLMGateway
from agentworker.clients.core_service import CoreServiceClient
from agentworker.context.context_file import ContextFileService
from agentworker.context.conversation import ConversationStore
from agentworker.core.config import Settings
from agentworker.events.outbox import EventOutbox
from agentworker.events.sinks import BillingSink, LogStreamSink, SSESink
from agentworker.runs.state import RunStateStore
from agentworker.store import Stores, open_stores
from agentworker.tools.file_tools import create_file_tools_mcp
from agentworker.tools.registry import ToolRegistry
from agentworker.worker.intake import ExecutionIntake
from agentworker.worker.supervisor import ActiveRunReaper, Supervisor
from agentworker.worker.worker import ExecutionWorker


@dataclass
class Runtime:
    settings: Settings
    stores: Stores
    http: httpx.AsyncClient
    core: CoreServiceClient
    agents: AgentRegistry
    tools: ToolRegistry
    runs: RunStateStore
    conversations: ConversationStore
    context_files: ContextFileService
    outbox: EventOutbox
    executor: ToolCallingExecutor
    intake: ExecutionIntake
    worker: ExecutionWorker

    def build_supervisor(self) -> Supervisor:
        reaper = ActiveRunReaper(self.runs, interval=self.settings.reaper_interval_seconds)
        return Supervisor(self.worker, reaper)

    async def close(self) -> None:
        await self.http.aclose()
        await self.core.close()
        await self.stores.close()


def build_tool_registry(agents: AgentRegistry) -> ToolRegistry:
    tools = ToolRegistry(agents.tool_assignments())
    tools.register(create_file_tools_mcp)
    return tools


async def build_runtime(
    settings: Settings,
    *,
    stores: Stores | None = None,
    gateway: ChatGateway | None = None,
    core: CoreServiceClient | None = None,
    http: httpx.AsyncClient | None = None,
) -> Runtime:
    """Build every collaborator from *settings*; keyword overrides are for tests."""
    stores = stores or await open_stores(settings)
    http = http or httpx.AsyncClient(timeout=settings.sink_timeout_seconds)
    core = core or CoreServiceClient(
        settings.core_service_url,
        settings.internal_service_token,
        api_url=settings.api_url,
    )
    agents = AgentRegistry()
    tools = build_tool_registry(agents)
    runs = RunStateStore(
        stores.state,
        agent_state_ttl=settings.agent_state_ttl_seconds,
        run_status_ttl=settings.run_status_ttl_seconds,
    )
    conversations = ConversationStore(
        stores.state,
        ttl_seconds=settings.conversation_ttl_seconds,
        max_history=settings.conversation_max_messages,
    )
    context_files = ContextFileService()
    outbox = EventOutbox(
        [
            LogStreamSink(http, settings.log_streaming_url),
            BillingSink(stores.queue, settings.billing_queue),
            SSESink(http, settings.api_url),
        ],
        timeout=settings.sink_timeout_seconds,
    )
    executor = ToolCallingExecutor(
        gateway or LLMGateway(markup=settings.billing_markup),
        tools,
        context_files,
        outbox,
        max_iterations=settings.max_tool_iterations,
        policy=GatewayPolicy(
            timeout_seconds=settings.gateway_timeout_seconds,
            max_attempts=settings.gateway_max_attempts,
            backoff_min=settings.gateway_backoff_min,
            backoff_max=settings.gateway_backoff_max,
        ),
    )
    intake = ExecutionIntake(stores.queue, agents, settings.execution_queue)
    worker = ExecutionWorker(
        queue=stores.queue,
        runs=runs,
        core=core,
        agents=agents,
        executor=executor,
        context_files=context_files,
        conversations=conversations,
        outbox=outbox,
        projects_root=settings.projects_root,
        queue_name=settings.execution_queue,
        pop_timeout=settings.pop_timeout_seconds,
        idle_sleep=settings.idle_sleep_seconds,
    )
    return Runtime(
        settings=settings,
        stores=stores,
        http=http,
        core=core,
        agents=agents,
        tools=tools,
        runs=runs,
        conversations=conversations,
        context_files=context_files,
        outbox=outbox,
        executor=executor,
        intake=intake,
        worker=worker,
    )
