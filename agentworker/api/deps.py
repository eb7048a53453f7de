"""Dependency injection: the process runtime, its services, and auth."""

from __future__ import annotations

import secrets

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from agentworker.agent.definitions import AgentRegistry
from agentworker.clients.core_service import CoreServiceClient
from agentworker.runs.state import RunStateStore
from agentworker.services import AuthenticationError
from agentworker.worker.intake import ExecutionIntake
from agentworker.worker.runtime import Runtime
from agentworker.worker.supervisor import Supervisor

# ---------------------------------------------------------------------------
# Runtime (initialised by app lifespan)
# ---------------------------------------------------------------------------
_runtime: Runtime | None = None
_supervisor: Supervisor | None = None


def set_runtime(runtime: Runtime | None, supervisor: Supervisor | None = None) -> None:
    """Install the process runtime; tests call this with their own wiring."""
    global _runtime, _supervisor  # noqa: PLW0603
    _runtime = runtime
    _supervisor = supervisor


def get_runtime() -> Runtime:
    if _runtime is None:
        raise RuntimeError("runtime not initialised; create the app with its lifespan")
    return _runtime


def get_supervisor() -> Supervisor | None:
    return _supervisor


# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


async def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    runtime: Runtime = Depends(get_runtime),
) -> dict:
    """Accept the internal service token, otherwise ask the core service."""
    if credentials is None:
        raise AuthenticationError("Authorization token required")
    token = credentials.credentials
    if secrets.compare_digest(token, runtime.settings.internal_service_token):
        return {"internal": True}
    user = await runtime.core.validate_auth(token)
    if user is None:
        raise AuthenticationError("Invalid or expired token")
    return {"internal": False, "user": user}


# ---------------------------------------------------------------------------
# Service getters (for Depends())
# ---------------------------------------------------------------------------


def get_intake(runtime: Runtime = Depends(get_runtime)) -> ExecutionIntake:
    return runtime.intake


def get_core(runtime: Runtime = Depends(get_runtime)) -> CoreServiceClient:
    return runtime.core


def get_agents(runtime: Runtime = Depends(get_runtime)) -> AgentRegistry:
    return runtime.agents


def get_runs(runtime: Runtime = Depends(get_runtime)) -> RunStateStore:
    return runtime.runs
