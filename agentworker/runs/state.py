"""Ephemeral per-run records: agent state, run status and the active-run registry."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from agentworker.store.base import StateStore

AGENT_STATE_PREFIX = "agent:state:"
RUN_STATUS_PREFIX = "run:status:"
ACTIVE_RUN_PREFIX = "runs:active:"

AGENT_STATE_TTL = 4 * 60 * 60
RUN_STATUS_TTL = 24 * 60 * 60


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunStateStore:
    """Typed access to the three run-scoped key families.

    Agent state and run status expire on their own so a crashed worker
    cannot leak them. Active-run entries never expire and must be removed
    on every terminal path (or by the reaper).
    """

    def __init__(
        self,
        store: StateStore,
        agent_state_ttl: int = AGENT_STATE_TTL,
        run_status_ttl: int = RUN_STATUS_TTL,
    ) -> None:
        self._store = store
        self.agent_state_ttl = agent_state_ttl
        self.run_status_ttl = run_status_ttl

    # ── agent state ───────────────────────────────────────────────────

    async def set_agent_state(self, run_id: str, state: dict[str, Any]) -> None:
        await self._store.set(AGENT_STATE_PREFIX + run_id, state, self.agent_state_ttl)

    async def get_agent_state(self, run_id: str) -> dict[str, Any] | None:
        return await self._store.get(AGENT_STATE_PREFIX + run_id)

    async def delete_agent_state(self, run_id: str) -> None:
        await self._store.delete(AGENT_STATE_PREFIX + run_id)

    # ── run status ────────────────────────────────────────────────────

    async def set_run_status(
        self,
        run_id: str,
        status: str,
        message: str | None = None,
        **extra: Any,
    ) -> None:
        record: dict[str, Any] = {"runId": run_id, "status": status, "updatedAt": utc_iso()}
        if message is not None:
            record["message"] = message
        record.update(extra)
        await self._store.set(RUN_STATUS_PREFIX + run_id, record, self.run_status_ttl)

    async def get_run_status(self, run_id: str) -> dict[str, Any] | None:
        return await self._store.get(RUN_STATUS_PREFIX + run_id)

    # ── active runs ───────────────────────────────────────────────────

    async def add_active_run(self, run_id: str, agent_id: str, card_id: str) -> None:
        entry = {"runId": run_id, "agentId": agent_id, "cardId": card_id, "startTime": utc_iso()}
        await self._store.set(ACTIVE_RUN_PREFIX + run_id, entry)

    async def remove_active_run(self, run_id: str) -> None:
        await self._store.delete(ACTIVE_RUN_PREFIX + run_id)

    async def list_active_runs(self) -> list[dict[str, Any]]:
        entries = await self._store.scan(ACTIVE_RUN_PREFIX)
        return sorted(entries.values(), key=lambda e: e.get("startTime", ""))

    async def purge_expired(self) -> int:
        return await self._store.purge_expired()
