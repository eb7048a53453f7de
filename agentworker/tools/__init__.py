"""Tool servers and the registry that exposes them to agents."""

from agentworker.tools.file_tools import create_file_tools_mcp
from agentworker.tools.registry import ToolContext, ToolRegistry, ToolResult

__all__ = [
    "ToolContext",
    "ToolRegistry",
    "ToolResult",
    "create_file_tools_mcp",
]
