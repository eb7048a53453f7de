"""Per-card context files.

Each card gets an append-only markdown log under
``{project}/context/card-{card_id}.context``. Humans read it to review a
run, and conversation-mode runs parse it back into chat history. Entries
look like::

    ## 🔧 [2025-01-01T00:00:00+00:00] dev_backend

    **Tool**: `read_file`

    ---

Operator instructions live between ``<!-- INSTRUCTIONS:START -->`` and
``<!-- INSTRUCTIONS:END -->`` markers written by the API.
"""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

log = structlog.get_logger("agentworker.context")

INSTRUCTIONS_START = "<!-- INSTRUCTIONS:START -->"
INSTRUCTIONS_END = "<!-- INSTRUCTIONS:END -->"
_INSTRUCTIONS_HEADER = "## CoPilot Instructions"

_TOOL_RESULT_LIMIT = 2000

ENTRY_EMOJI = {
    "tool_call": "🔧",
    "tool_result": "📤",
    "status": "📋",
    "completion": "✅",
    "error": "❌",
    "human_message": "👤",
    "agent_message": "🤖",
    "log": "📝",
}

_ENTRY_RE = re.compile(r"## ([^\[]+) \[([^\]]+)\] ([^\n]+)\n\n([\s\S]*?)(?=\n---)")


@dataclass(frozen=True)
class ConversationEntry:
    role: str  # human | agent
    content: str
    timestamp: str
    agent_name: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_entry(entry_type: str, agent_name: str, content: str, timestamp: str | None = None) -> str:
    emoji = ENTRY_EMOJI.get(entry_type, ENTRY_EMOJI["log"])
    return f"## {emoji} [{timestamp or _now_iso()}] {agent_name}\n\n{content}\n\n---\n"


class ContextFileService:
    """Reads and appends card context files.

    Writes raise ``OSError`` on failure; callers treat this log as a side
    channel and decide whether to swallow.
    """

    def context_path(self, project_path: str, card_id: str) -> Path:
        return Path(project_path) / "context" / f"card-{card_id}.context"

    async def initialize_context(
        self, project_path: str, card_id: str, card_title: str, agent_name: str
    ) -> Path:
        path = self.context_path(project_path, card_id)
        header = (
            f"# Context: {card_title}\n\n"
            f"**Card ID**: {card_id}\n"
            f"**Started**: {_now_iso()}\n"
            f"**Primary Agent**: {agent_name}\n\n"
            "---\n\n"
        )

        def _init() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Keep an existing log (and its instructions) across runs.
            if not path.exists():
                path.write_text(header, encoding="utf-8")

        await asyncio.to_thread(_init)
        log.info("context.initialized", card_id=card_id, path=str(path))
        return path

    async def append(self, project_path: str, card_id: str, entry_type: str, agent_name: str, content: str) -> None:
        path = self.context_path(project_path, card_id)
        text = format_entry(entry_type, agent_name, content) + "\n"

        def _append() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(text)

        await asyncio.to_thread(_append)

    async def log_tool_call(
        self, project_path: str, card_id: str, agent_name: str, tool_name: str, args: dict[str, Any]
    ) -> None:
        body = f"**Tool**: `{tool_name}`\n\n```json\n{json.dumps(args, indent=2, default=str)}\n```"
        await self.append(project_path, card_id, "tool_call", agent_name, body)

    async def log_tool_result(
        self,
        project_path: str,
        card_id: str,
        agent_name: str,
        tool_name: str,
        result: Any,
        success: bool,
    ) -> None:
        if success:
            text = result if isinstance(result, str) else json.dumps(result, indent=2, default=str)
            body = f"**Tool Result**: `{tool_name}` ✓\n\n```\n{text[:_TOOL_RESULT_LIMIT]}\n```"
        else:
            body = f"**Tool Error**: `{tool_name}` ✗\n\n```\n{result}\n```"
        await self.append(project_path, card_id, "tool_result", agent_name, body)

    async def log_status(
        self, project_path: str, card_id: str, agent_name: str, status: str, message: str | None = None
    ) -> None:
        body = f"**Status**: {status}" + (f"\n\n{message}" if message else "")
        await self.append(project_path, card_id, "status", agent_name, body)

    async def log_error(
        self, project_path: str, card_id: str, agent_name: str, error: str, stack: str | None = None
    ) -> None:
        body = f"**Error**: {error}" + (f"\n\n```\n{stack}\n```" if stack else "")
        await self.append(project_path, card_id, "error", agent_name, body)

    async def log_completion(
        self,
        project_path: str,
        card_id: str,
        agent_name: str,
        summary: str,
        usage: dict[str, Any] | None = None,
    ) -> None:
        body = f"**Completed**: {summary}"
        if usage:
            body += (
                "\n\n**Usage**:\n"
                f"- Input tokens: {usage.get('inputTokens', 0)}\n"
                f"- Output tokens: {usage.get('outputTokens', 0)}\n"
                f"- Cost: ${usage.get('cost', 0.0):.4f}"
            )
        await self.append(project_path, card_id, "completion", agent_name, body)

    async def log_agent_message(self, project_path: str, card_id: str, agent_name: str, message: str) -> None:
        await self.append(project_path, card_id, "agent_message", agent_name, message)

    async def log_human_message(self, project_path: str, card_id: str, author: str, message: str) -> None:
        await self.append(project_path, card_id, "human_message", author, message)

    async def read_context(self, project_path: str, card_id: str) -> str:
        """Full file content, or ``""`` when the card has no log yet."""
        path = self.context_path(project_path, card_id)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            log.debug("context.not_found", card_id=card_id)
            return ""

    async def get_instructions(self, project_path: str, card_id: str) -> str | None:
        return parse_instructions(await self.read_context(project_path, card_id))

    def parse_conversation(self, content: str) -> list[ConversationEntry]:
        return parse_conversation(content)


def parse_conversation(content: str) -> list[ConversationEntry]:
    """Human (👤) and agent (🤖) entries in file order; other entries are skipped."""
    entries: list[ConversationEntry] = []
    for match in _ENTRY_RE.finditer(content):
        emoji, timestamp, author, body = match.groups()
        emoji = emoji.strip()
        if emoji == ENTRY_EMOJI["human_message"]:
            entries.append(ConversationEntry(role="human", content=body.strip(), timestamp=timestamp))
        elif emoji == ENTRY_EMOJI["agent_message"]:
            entries.append(
                ConversationEntry(
                    role="agent", content=body.strip(), timestamp=timestamp, agent_name=author
                )
            )
    return entries


def parse_instructions(content: str) -> str | None:
    start = content.find(INSTRUCTIONS_START)
    end = content.find(INSTRUCTIONS_END)
    if start == -1 or end == -1 or end <= start:
        return None
    instructions = content[start + len(INSTRUCTIONS_START) : end].strip()
    if instructions.startswith(_INSTRUCTIONS_HEADER):
        instructions = instructions[len(_INSTRUCTIONS_HEADER) :].strip()
    return instructions or None
