"""Supervisor: owns the worker task and the active-run reaper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog

from agentworker.runs.state import RunStateStore
from agentworker.worker.worker import ExecutionWorker

logger = structlog.get_logger(__name__)


def _parse_iso(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ActiveRunReaper:
    """Clears active-run entries that outlived the agent-state TTL.

    Those entries have no expiry of their own; they linger only when a
    worker crashed or its cleanup failed. A reaped run still marked
    ``running`` is marked ``failed``. Under a supervisor it sweeps every
    *interval* seconds.
    """

    name = "active_run_reaper"

    def __init__(
        self,
        runs: RunStateStore,
        max_age_seconds: float | None = None,
        interval: float = 60.0,
    ) -> None:
        self._runs = runs
        self._max_age = max_age_seconds if max_age_seconds is not None else runs.agent_state_ttl
        self.interval = interval

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                reaped = await self.sweep()
                logger.info("reaper.cycle", reaped=reaped)
            except Exception:
                logger.exception("reaper.error")

    async def sweep(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        reaped = 0
        for entry in await self._runs.list_active_runs():
            run_id = entry.get("runId")
            started = _parse_iso(entry.get("startTime"))
            if not run_id or (started is not None and (now - started).total_seconds() < self._max_age):
                continue
            status = await self._runs.get_run_status(run_id)
            if status is None or status.get("status") == "running":
                await self._runs.set_run_status(
                    run_id, "failed", "Run abandoned: no terminal status before state expiry"
                )
            await self._runs.delete_agent_state(run_id)
            await self._runs.remove_active_run(run_id)
            logger.warning("reaper.stale_run", run_id=run_id, started=entry.get("startTime"))
            reaped += 1
        purged = await self._runs.purge_expired()
        if purged:
            logger.info("reaper.purged", entries=purged)
        return reaped


class Supervisor:
    """Starts the worker and the reaper; stops them with a drain grace."""

    def __init__(self, worker: ExecutionWorker, reaper: ActiveRunReaper | None = None) -> None:
        self.worker = worker
        self.reaper = reaper
        self._stop: asyncio.Event | None = None
        self._worker_task: asyncio.Task[None] | None = None
        self._reaper_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self.worker.state.stop_requested = False
        self._worker_task = asyncio.create_task(self.worker.run(self._stop), name="execution-worker")
        if self.reaper is not None:
            self._reaper_task = asyncio.create_task(self.reaper.run_forever(), name=self.reaper.name)
        logger.info("supervisor.started", engines=self._engines())

    async def stop(self, grace_seconds: float = 30.0) -> None:
        """Ask the worker to stop, wait up to *grace_seconds*, then cancel it.

        A run cancelled here is recorded as failed and cleaned up by the
        worker before the task exits.
        """
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            await asyncio.gather(self._reaper_task, return_exceptions=True)
            self._reaper_task = None

        if self._worker_task is None:
            return
        self.worker.state.stop_requested = True
        if self._stop is not None:
            self._stop.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._worker_task), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "supervisor.grace_expired", run_id=self.worker.state.current_run_id
            )
            self._worker_task.cancel()
            await asyncio.gather(self._worker_task, return_exceptions=True)
        self._worker_task = None
        logger.info("supervisor.stopped")

    def _engines(self) -> list[str]:
        return [self.reaper.name] if self.reaper is not None else []

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "worker": self.worker.state.to_dict(),
            "engines": self._engines(),
        }
