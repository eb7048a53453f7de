"""ToolCallingExecutor: bounded LLM ⇄ tool loop for one run."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from agentworker.agent.context import ConversationContext, ExecutionContext, StandardContext
from agentworker.agent.definitions import AgentDefinition
from agentworker.agent.gateway import ChatGateway, ChatOptions, ChatResponse, TransientGatewayError
from agentworker.agent.messages import Message
from agentworker.agent.prompts.task import CONVERSATION_CONTINUATION, build_task_brief
from agentworker.agent.result import ExecutionResult, UsageRecord
from agentworker.context.context_file import ContextFileService
from agentworker.events.outbox import EventOutbox
from agentworker.tools.registry import ToolContext, ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 10
ITERATION_CAP_FALLBACK = "Maximum tool iterations reached. Please review the results."


@dataclass(frozen=True)
class GatewayPolicy:
    """Timeout and retry bounds applied to every gateway call."""

    timeout_seconds: float = 300.0
    max_attempts: int = 3
    backoff_min: float = 2.0
    backoff_max: float = 30.0


def build_messages(agent: AgentDefinition, ctx: ExecutionContext) -> list[Message]:
    """System prompt, then either the task brief or the prior conversation."""
    messages = [Message(role="system", content=agent.system_prompt)]
    if isinstance(ctx, ConversationContext):
        for turn in ctx.history:
            role = "user" if turn.role == "human" else "assistant"
            messages.append(Message(role=role, content=turn.content))
        messages.append(Message(role="user", content=CONVERSATION_CONTINUATION))
    elif isinstance(ctx, StandardContext):
        messages.append(Message(role="user", content=build_task_brief(ctx)))
    else:
        raise TypeError(f"unsupported execution context: {type(ctx).__name__}")
    return messages


def tool_message_content(result: ToolResult) -> str:
    payload = result.data if result.success else {"error": result.error}
    return json.dumps(payload, separators=(",", ":"), default=str)


class ToolCallingExecutor:
    """Drives one run: gateway call, sequential tool calls, repeat.

    The loop stops at the first response without tool calls, or after
    ``max_iterations`` gateway calls. Tool failures are fed back to the
    model, never raised. Only gateway failures that survive the retry
    policy propagate.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        tools: ToolRegistry,
        context_files: ContextFileService,
        outbox: EventOutbox,
        *,
        max_iterations: int = MAX_TOOL_ITERATIONS,
        policy: GatewayPolicy | None = None,
    ) -> None:
        self._gateway = gateway
        self._tools = tools
        self._context_files = context_files
        self._outbox = outbox
        self.max_iterations = max_iterations
        self.policy = policy or GatewayPolicy()

    async def execute(
        self,
        *,
        run_id: str,
        agent: AgentDefinition,
        context: ExecutionContext,
        tool_context: ToolContext,
        provider: str | None = None,
        model: str | None = None,
    ) -> ExecutionResult:
        card_id = context.card.id
        project_path = tool_context.project_path
        effective_provider = provider or agent.default_provider
        effective_model = model or agent.default_model
        if provider or model:
            logger.info(
                "provider override run_id=%s provider=%s model=%s",
                run_id,
                effective_provider,
                effective_model,
            )

        tool_defs = await self._tools.get_tool_definitions(agent.name)
        options = ChatOptions(
            provider=effective_provider,
            model=effective_model,
            tools=tool_defs or None,
            max_tokens=agent.max_tokens,
            temperature=agent.temperature,
            workspace_id=context.workspace.id,
            project_id=context.project.id,
            agent_id=agent.id,
        )

        messages = build_messages(agent, context)
        usage = UsageRecord()
        tools_used: list[str] = []
        last_content = ""
        final_content: str | None = None
        last_provider, last_model = effective_provider, effective_model
        iterations = 0

        while iterations < self.max_iterations:
            iterations += 1
            logger.debug(
                "iteration run_id=%s n=%d messages=%d", run_id, iterations, len(messages)
            )

            response = await self._chat(messages, options)
            usage.accumulate(response.usage)
            last_provider = response.provider or effective_provider
            last_model = response.model or effective_model
            if response.content:
                last_content = response.content

            if not response.has_tool_calls:
                final_content = response.content
                break

            await self._outbox.log_event(
                run_id,
                "log",
                level="info",
                message="Calling tools: " + ", ".join(tc.name for tc in response.tool_calls),
                metadata={
                    "eventType": "tool_calls",
                    "toolCalls": [
                        {"name": tc.name, "arguments": tc.arguments} for tc in response.tool_calls
                    ],
                },
            )
            messages.append(
                Message(
                    role="assistant",
                    content=response.content or "",
                    tool_calls=tuple(response.tool_calls),
                )
            )

            # Sequential on purpose: tools of one run never overlap.
            for call in response.tool_calls:
                logger.info("tool call run_id=%s tool=%s", run_id, call.name)
                if call.name not in tools_used:
                    tools_used.append(call.name)

                await self._side_write(
                    self._context_files.log_tool_call(
                        project_path, card_id, agent.name, call.name, call.arguments
                    )
                )
                result = await self._tools.execute_tool(call.name, call.arguments, tool_context)
                logger.info(
                    "tool done run_id=%s tool=%s success=%s", run_id, call.name, result.success
                )
                await self._side_write(
                    self._context_files.log_tool_result(
                        project_path,
                        card_id,
                        agent.name,
                        call.name,
                        result.data if result.success else result.error,
                        result.success,
                    )
                )
                await self._outbox.log_event(
                    run_id,
                    "log",
                    level="info" if result.success else "warn",
                    message=f"Tool {call.name} {'succeeded' if result.success else 'failed'}",
                    metadata={
                        "eventType": "tool_result",
                        "tool": call.name,
                        "success": result.success,
                        "result": result.data if result.success else result.error,
                    },
                )
                messages.append(
                    Message(
                        role="tool",
                        content=tool_message_content(result),
                        tool_call_id=call.id,
                        name=call.name,
                    )
                )

        capped = final_content is None
        if capped:
            logger.warning("iteration cap reached run_id=%s iterations=%d", run_id, iterations)
            final_content = last_content or ITERATION_CAP_FALLBACK

        return ExecutionResult(
            content=final_content,
            provider=last_provider,
            model=last_model,
            usage=usage,
            tools_used=tools_used,
            iterations=iterations,
            iteration_capped=capped,
        )

    async def _chat(self, messages: list[Message], options: ChatOptions) -> ChatResponse:
        """One gateway call under the hard timeout, retried on transient errors."""
        policy = self.policy
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(multiplier=policy.backoff_min, min=policy.backoff_min, max=policy.backoff_max),
            retry=retry_if_exception_type((TransientGatewayError, asyncio.TimeoutError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                # Snapshot: later appends must not alter what a stub or retry saw.
                return await asyncio.wait_for(
                    self._gateway.chat(list(messages), options),
                    timeout=policy.timeout_seconds,
                )
        raise AssertionError("unreachable")  # pragma: no cover

    async def _side_write(self, write: Awaitable[Any]) -> None:
        try:
            await write
        except Exception as exc:
            logger.warning("context log write failed: %s", exc)
