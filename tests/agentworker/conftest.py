"""Shared fixtures for agentworker tests.

SQL store tests run against a throwaway SQLite file through aiosqlite; no
external services are needed.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from agentworker.clients.models import Card, Lane, Project, Workspace
from agentworker.core.database import create_engine, create_session_factory, create_tables
from agentworker.store.memory import MemoryQueue, MemoryStateStore
from agentworker.store.sql import SqlQueue, SqlStateStore


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture
def memory_state(clock) -> MemoryStateStore:
    return MemoryStateStore(clock=clock)


@pytest_asyncio.fixture
async def sql_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'agentworker.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_factory(sql_engine):
    return create_session_factory(sql_engine)


@pytest.fixture
def sql_queue(sql_factory) -> SqlQueue:
    return SqlQueue(sql_factory, poll_interval=0.01)


@pytest.fixture
def sql_state(sql_factory) -> SqlStateStore:
    return SqlStateStore(sql_factory)


# ---------------------------------------------------------------------------
# Core-service resources
# ---------------------------------------------------------------------------


def _card(
    card_id: str = "card-1",
    *,
    lane_number: int = 1,
    status: str = "Ready",
    project_id: str = "proj-1",
) -> Card:
    return Card(
        id=card_id,
        title="Add health endpoint",
        project_id=project_id,
        lane=Lane(id=f"lane-{lane_number}", name=f"Lane {lane_number}", lane_number=lane_number),
        type="feature",
        priority="high",
        status=status,
        description="Expose GET /health returning ok.",
    )


def _project(local_path: str, project_id: str = "proj-1") -> Project:
    return Project(
        id=project_id,
        name="Demo",
        slug="demo",
        local_path=local_path,
        workspace=Workspace(id="ws-1", name="Acme", slug="acme"),
    )


def _core(card: Card | None, project: Project | None) -> MagicMock:
    """Core-service double: run record ``rec-1``, the given card and project."""
    core = MagicMock()
    core.create_run = AsyncMock(return_value={"id": "rec-1"})
    core.update_run = AsyncMock(return_value={})
    core.get_card = AsyncMock(return_value=card)
    core.get_project = AsyncMock(return_value=project)
    core.transition_card = AsyncMock(return_value={})
    core.validate_auth = AsyncMock(return_value=None)
    core.health_check = AsyncMock(return_value=True)
    core.close = AsyncMock()
    return core


@pytest.fixture
def make_card():
    return _card


@pytest.fixture
def make_core():
    return _core


@pytest.fixture
def project_dir(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    (path / "README.md").write_text("# Demo\n", encoding="utf-8")
    return path


@pytest.fixture
def project(project_dir) -> Project:
    return _project(str(project_dir))
