"""Agent infrastructure: tool-calling loop, LLM gateway, agent catalogue."""

from agentworker.agent.context import ConversationContext, ExecutionContext, StandardContext
from agentworker.agent.definitions import DEFAULT_AGENTS, AgentDefinition, AgentRegistry
from agentworker.agent.executor import MAX_TOOL_ITERATIONS, GatewayPolicy, ToolCallingExecutor
from agentworker.agent.gateway import (
    ChatOptions,
    ChatResponse,
    GatewayError,
    LLMGateway,
    TransientGatewayError,
)
from agentworker.agent.messages import Message, ToolCall
from agentworker.agent.result import ExecutionResult, UsageRecord

__all__ = [
    "AgentDefinition",
    "AgentRegistry",
    "ChatOptions",
    "ChatResponse",
    "ConversationContext",
    "DEFAULT_AGENTS",
    "ExecutionContext",
    "ExecutionResult",
    "GatewayError",
    "GatewayPolicy",
    "LLMGateway",
    "MAX_TOOL_ITERATIONS",
    "Message",
    "StandardContext",
    "ToolCall",
    "ToolCallingExecutor",
    "TransientGatewayError",
    "UsageRecord",
]
