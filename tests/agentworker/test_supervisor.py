"""Tests for ActiveRunReaper and Supervisor."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from agentworker.runs.state import ACTIVE_RUN_PREFIX, RunStateStore
from agentworker.worker.models import WorkerState
from agentworker.worker.supervisor import ActiveRunReaper, Supervisor


async def _wait_until(predicate, interval: float = 0.01) -> None:
    while not predicate():
        await asyncio.sleep(interval)


@pytest.fixture
def runs(memory_state) -> RunStateStore:
    return RunStateStore(memory_state, agent_state_ttl=3600, run_status_ttl=86400)


# ---------------------------------------------------------------------------
# ActiveRunReaper
# ---------------------------------------------------------------------------


async def _add_active(memory_state, run_id: str, started: datetime) -> None:
    await memory_state.set(
        ACTIVE_RUN_PREFIX + run_id,
        {"runId": run_id, "agentId": "qa", "cardId": "c", "startTime": started.isoformat()},
    )


@pytest.mark.asyncio
async def test_reaper_clears_stale_running_entries(runs, memory_state):
    now = datetime.now(timezone.utc)
    await _add_active(memory_state, "stale", now - timedelta(hours=2))
    await runs.set_run_status("stale", "running")
    await runs.set_agent_state("stale", {"status": "running"})
    await _add_active(memory_state, "fresh", now - timedelta(minutes=5))

    reaped = await ActiveRunReaper(runs).sweep(now)

    assert reaped == 1
    assert [a["runId"] for a in await runs.list_active_runs()] == ["fresh"]
    status = await runs.get_run_status("stale")
    assert status["status"] == "failed"
    assert "abandoned" in status["message"]
    assert await runs.get_agent_state("stale") is None


@pytest.mark.asyncio
async def test_reaper_keeps_terminal_status(runs, memory_state):
    now = datetime.now(timezone.utc)
    await _add_active(memory_state, "done", now - timedelta(hours=5))
    await runs.set_run_status("done", "completed")

    assert await ActiveRunReaper(runs).sweep(now) == 1
    assert (await runs.get_run_status("done"))["status"] == "completed"


@pytest.mark.asyncio
async def test_reaper_treats_unparseable_start_as_stale(runs, memory_state):
    await memory_state.set(ACTIVE_RUN_PREFIX + "odd", {"runId": "odd", "startTime": "yesterday"})
    assert await ActiveRunReaper(runs, max_age_seconds=60).sweep() == 1
    assert await runs.list_active_runs() == []


@pytest.mark.asyncio
async def test_reaper_purges_expired_state(runs, memory_state, clock):
    await memory_state.set("tmp", 1, ttl_seconds=1)
    clock.advance(2)
    await ActiveRunReaper(runs).sweep()
    assert "tmp" not in memory_state._data


@pytest.mark.asyncio
async def test_reaper_sweeps_on_interval(runs):
    reaper = ActiveRunReaper(runs, interval=0.02)
    with patch.object(reaper, "sweep", AsyncMock(return_value=0)) as sweep:
        task = asyncio.create_task(reaper.run_forever())
        try:
            await asyncio.wait_for(_wait_until(lambda: sweep.await_count >= 2), timeout=1.0)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_reaper_survives_sweep_errors(runs):
    reaper = ActiveRunReaper(runs, interval=0.01)
    with patch.object(reaper, "sweep", AsyncMock(side_effect=RuntimeError("store down"))) as sweep:
        task = asyncio.create_task(reaper.run_forever())
        try:
            await asyncio.wait_for(_wait_until(lambda: sweep.await_count >= 2), timeout=1.0)
            assert not task.done()
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class _FakeWorker:
    """Stands in for ExecutionWorker: loops until stopped, optionally ignoring stop."""

    def __init__(self, busy_for: float = 0.0) -> None:
        self.state = WorkerState()
        self.busy_for = busy_for
        self.cancelled = False

    async def run(self, stop: asyncio.Event) -> None:
        self.state.is_processing = True
        try:
            await stop.wait()
            await asyncio.sleep(self.busy_for)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.state.is_processing = False


@pytest.mark.asyncio
async def test_supervisor_drains_within_grace():
    worker = _FakeWorker(busy_for=0.02)
    supervisor = Supervisor(worker)
    await supervisor.start()
    await asyncio.wait_for(_wait_until(lambda: worker.state.is_processing), timeout=1.0)
    assert supervisor.running

    await supervisor.stop(grace_seconds=1.0)

    assert not supervisor.running
    assert worker.cancelled is False
    assert worker.state.stop_requested is True


@pytest.mark.asyncio
async def test_supervisor_cancels_after_grace():
    worker = _FakeWorker(busy_for=10)
    supervisor = Supervisor(worker)
    await supervisor.start()
    await asyncio.wait_for(_wait_until(lambda: worker.state.is_processing), timeout=1.0)

    await supervisor.stop(grace_seconds=0.05)

    assert worker.cancelled is True
    assert worker.state.is_processing is False


@pytest.mark.asyncio
async def test_supervisor_status_and_engines(runs):
    worker = _FakeWorker()
    supervisor = Supervisor(worker, ActiveRunReaper(runs, interval=100))
    await supervisor.start()
    try:
        status = supervisor.status()
        assert status["running"] is True
        assert status["engines"] == ["active_run_reaper"]
        assert "isProcessing" in status["worker"]
    finally:
        await supervisor.stop(grace_seconds=1.0)
    assert supervisor.status()["running"] is False
    assert supervisor._reaper_task is None
