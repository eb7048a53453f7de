"""File MCP tools confined to the run's project directory."""

from __future__ import annotations

import asyncio
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from agentworker.tools.registry import ToolContext

_MAX_CHARS = 50_000
_MAX_ENTRIES = 500


def _truncate(text: str) -> str:
    if len(text) <= _MAX_CHARS:
        return text
    return text[:_MAX_CHARS] + f"\n\n[truncated: {len(text)} chars total]"


def _resolve(root: Path, path: str) -> Path:
    target = (root / path).resolve()
    if target != root and root not in target.parents:
        raise ValueError(f"Path escapes the project root: {path}")
    return target


def create_file_tools_mcp(ctx: ToolContext) -> FastMCP:
    """Create a FastMCP server with file tools rooted at ``ctx.project_path``.

    The root is captured by closure; the model only controls relative paths.
    """
    mcp = FastMCP("file-tools")
    root = Path(ctx.project_path).resolve()

    @mcp.tool()
    async def read_file(path: str) -> str:
        """Read a UTF-8 text file relative to the project root."""
        target = _resolve(root, path)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        text = await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
        return _truncate(text)

    @mcp.tool()
    async def write_file(path: str, content: str) -> str:
        """Create or overwrite a text file relative to the project root."""
        target = _resolve(root, path)

        def _write() -> int:
            target.parent.mkdir(parents=True, exist_ok=True)
            return target.write_text(content, encoding="utf-8")

        written = await asyncio.to_thread(_write)
        return f"Wrote {written} characters to {path}"

    @mcp.tool()
    async def list_directory(path: str = ".") -> str:
        """List a directory relative to the project root; directories end in '/'."""
        target = _resolve(root, path)
        if not target.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")
        entries = sorted(target.iterdir(), key=lambda p: p.name)
        lines = [e.name + "/" if e.is_dir() else e.name for e in entries[:_MAX_ENTRIES]]
        if len(entries) > _MAX_ENTRIES:
            lines.append(f"[{len(entries) - _MAX_ENTRIES} more entries]")
        return "\n".join(lines) if lines else "(empty directory)"

    return mcp
