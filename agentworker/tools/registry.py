"""Tool registry: maps agents to FastMCP tools and executes calls."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from mcp import types as mcp_types
from mcp.server.fastmcp import FastMCP

log = structlog.get_logger("agentworker.tools")


@dataclass(frozen=True)
class ToolContext:
    """What a tool may know about the run invoking it."""

    project_id: str
    agent_name: str
    run_id: str
    project_path: str
    tenant_slug: str = ""
    project_slug: str = ""


@dataclass
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None


ToolServerFactory = Callable[[ToolContext], FastMCP]

# Used only to enumerate a factory's tools; never executed against.
_LISTING_CONTEXT = ToolContext(project_id="", agent_name="", run_id="", project_path=".")


class ToolRegistry:
    """Holds FastMCP server factories and per-agent tool assignments.

    A fresh server is built per call so the tool closures capture that
    run's :class:`ToolContext`.
    """

    def __init__(self, assignments: dict[str, Iterable[str]] | None = None) -> None:
        self._factories: list[ToolServerFactory] = []
        self._index: dict[str, tuple[ToolServerFactory, dict[str, Any]]] | None = None
        self._assignments: dict[str, tuple[str, ...]] = {}
        for agent_name, tool_names in (assignments or {}).items():
            self.assign(agent_name, tool_names)

    def register(self, factory: ToolServerFactory) -> None:
        self._factories.append(factory)
        self._index = None

    def assign(self, agent_name: str, tool_names: Iterable[str]) -> None:
        self._assignments[agent_name] = tuple(tool_names)

    async def _tools(self) -> dict[str, tuple[ToolServerFactory, dict[str, Any]]]:
        if self._index is None:
            index: dict[str, tuple[ToolServerFactory, dict[str, Any]]] = {}
            for factory in self._factories:
                for tool in await factory(_LISTING_CONTEXT).list_tools():
                    index[tool.name] = (factory, _to_openai_tool(tool))
            self._index = index
        return self._index

    async def get_tool_definitions(self, agent_name: str) -> list[dict[str, Any]]:
        """OpenAI function definitions for the tools assigned to *agent_name*."""
        tools = await self._tools()
        return [tools[name][1] for name in self._assignments.get(agent_name, ()) if name in tools]

    async def execute_tool(
        self, name: str, arguments: dict[str, Any], context: ToolContext
    ) -> ToolResult:
        """Run one tool. Failures come back as ``ToolResult(success=False)``."""
        tools = await self._tools()
        if name not in tools:
            return ToolResult(success=False, error=f"Unknown tool: {name}")
        if name not in self._assignments.get(context.agent_name, ()):
            return ToolResult(
                success=False,
                error=f"Tool {name} is not available to agent {context.agent_name}",
            )

        factory, _ = tools[name]
        try:
            result = await factory(context).call_tool(name, arguments)
        except Exception as exc:
            log.warning("tool.failed", tool=name, error=str(exc))
            return ToolResult(success=False, error=str(exc))

        # FastMCP >=1.10 returns (list[ContentBlock], dict).
        content_blocks = result[0] if isinstance(result, tuple) else result
        return ToolResult(success=True, data=_decode(_extract_mcp_text(content_blocks)))


# ── Helpers ──────────────────────────────────────────────────────────────────


def _to_openai_tool(tool: mcp_types.Tool) -> dict[str, Any]:
    schema = tool.inputSchema if tool.inputSchema else {"type": "object", "properties": {}}
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description or "",
            "parameters": _strip_titles(schema),
        },
    }


def _strip_titles(schema: dict[str, Any]) -> dict[str, Any]:
    """Recursively remove ``title`` keys from a JSON Schema.

    Some providers reject tool schemas carrying the ``title`` keyword that
    Pydantic generates.
    """
    out: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "title":
            continue
        if isinstance(value, dict):
            out[key] = _strip_titles(value)
        elif isinstance(value, list):
            out[key] = [_strip_titles(v) if isinstance(v, dict) else v for v in value]
        else:
            out[key] = value
    return out


def _extract_mcp_text(content: Sequence[Any]) -> str:
    """Pull text from a sequence of MCP content blocks."""
    parts: list[str] = []
    for block in content:
        if isinstance(block, mcp_types.TextContent):
            parts.append(block.text)
        elif isinstance(block, mcp_types.EmbeddedResource):
            if isinstance(block.resource, mcp_types.TextResourceContents):
                parts.append(block.resource.text)
    return "\n".join(parts)


def _decode(text: str) -> Any:
    """Structured tool output comes back as JSON text; plain strings stay strings."""
    if text[:1] in ("{", "["):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
    return text
