"""Structured per-card conversation history kept in the state store."""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from typing import Any

from agentworker.services import NotFoundError
from agentworker.store.base import StateStore

CARD_CONTEXT_PREFIX = "context:card:"
DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_MAX_HISTORY = 100


def new_message(role: str, content: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "id": f"msg-{int(time.time() * 1000)}-{secrets.token_hex(4)}",
        "role": role,
        "content": content,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metadata": metadata or {},
    }


class ConversationStore:
    """Card contexts: ``{cardId, projectId, agentName, conversationHistory, metadata}``.

    Every write refreshes the TTL; history keeps only the newest
    ``max_history`` messages.
    """

    def __init__(
        self,
        store: StateStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_history: int = DEFAULT_MAX_HISTORY,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._max_history = max_history

    async def get_card_context(self, card_id: str, history_limit: int | None = None) -> dict[str, Any] | None:
        context = await self._store.get(CARD_CONTEXT_PREFIX + card_id)
        if context is not None and history_limit:
            context["conversationHistory"] = context["conversationHistory"][-history_limit:]
        return context

    async def set_card_context(self, card_id: str, context: dict[str, Any]) -> None:
        meta = context.setdefault("metadata", {})
        meta["lastUpdated"] = datetime.now(timezone.utc).isoformat()
        meta["totalMessages"] = len(context.get("conversationHistory", []))
        await self._store.set(CARD_CONTEXT_PREFIX + card_id, context, self._ttl)

    async def init_card_context(
        self, card_id: str, project_id: str, agent_name: str | None = None
    ) -> dict[str, Any]:
        """Return the existing context, creating an empty one if needed."""
        existing = await self.get_card_context(card_id)
        if existing is not None:
            return existing
        context: dict[str, Any] = {
            "cardId": card_id,
            "projectId": project_id,
            "agentName": agent_name,
            "conversationHistory": [],
            "metadata": {},
        }
        await self.set_card_context(card_id, context)
        return context

    async def append_card_message(self, card_id: str, message: dict[str, Any]) -> None:
        context = await self.get_card_context(card_id)
        if context is None:
            raise NotFoundError(f"Card context not found: {card_id}")
        history = context["conversationHistory"]
        history.append(message)
        context["conversationHistory"] = history[-self._max_history :]
        await self.set_card_context(card_id, context)

    async def get_history(self, card_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        context = await self.get_card_context(card_id, history_limit=limit)
        return context["conversationHistory"] if context else []
