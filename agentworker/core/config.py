"""Runtime configuration: read once from ``AGENTWORKER_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_str(key: str, default: str) -> str:
    return os.environ.get(key, default)


def _env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


def _env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """All tunables for the API process and worker processes.

    Defaults match a single-host development setup; production overrides
    them through the environment.
    """

    # storage
    store_backend: str = "sql"  # sql | memory
    database_url: str = "postgresql+asyncpg://localhost/agentworker"

    # queues
    execution_queue: str = "agent-execution"
    billing_queue: str = "billing-events"
    pop_timeout_seconds: float = 5.0
    idle_sleep_seconds: float = 1.0
    queue_poll_interval: float = 0.2

    # ephemeral state TTLs
    agent_state_ttl_seconds: int = 4 * 60 * 60
    run_status_ttl_seconds: int = 24 * 60 * 60
    conversation_ttl_seconds: int = 7 * 24 * 60 * 60
    conversation_max_messages: int = 100

    # tool-calling loop
    max_tool_iterations: int = 10
    gateway_timeout_seconds: float = 300.0
    gateway_max_attempts: int = 3
    gateway_backoff_min: float = 2.0
    gateway_backoff_max: float = 30.0
    billing_markup: float = 2.0

    # collaborators
    core_service_url: str = "http://localhost:8000"
    internal_service_token: str = "internal-service-token-dev"
    api_url: str = "http://localhost:3010"
    log_streaming_url: str = "http://localhost:8003"
    projects_root: str = "/projects"
    sink_timeout_seconds: float = 5.0

    # process wiring
    run_worker_in_api: bool = True
    reaper_interval_seconds: float = 300.0
    shutdown_grace_seconds: float = 30.0
    cors_origins: tuple[str, ...] = field(default=("http://localhost:3000",))

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from the environment, falling back to defaults."""
        d = cls()
        cors = _env_str("AGENTWORKER_CORS_ORIGINS", ",".join(d.cors_origins))
        return cls(
            store_backend=_env_str("AGENTWORKER_STORE", d.store_backend).lower(),
            database_url=_env_str("AGENTWORKER_DATABASE_URL", d.database_url),
            execution_queue=_env_str("AGENTWORKER_EXECUTION_QUEUE", d.execution_queue),
            billing_queue=_env_str("AGENTWORKER_BILLING_QUEUE", d.billing_queue),
            pop_timeout_seconds=_env_float("AGENTWORKER_POP_TIMEOUT", d.pop_timeout_seconds),
            idle_sleep_seconds=_env_float("AGENTWORKER_IDLE_SLEEP", d.idle_sleep_seconds),
            queue_poll_interval=_env_float("AGENTWORKER_QUEUE_POLL_INTERVAL", d.queue_poll_interval),
            agent_state_ttl_seconds=_env_int("AGENTWORKER_STATE_TTL", d.agent_state_ttl_seconds),
            run_status_ttl_seconds=_env_int("AGENTWORKER_STATUS_TTL", d.run_status_ttl_seconds),
            conversation_ttl_seconds=_env_int(
                "AGENTWORKER_CONVERSATION_TTL", d.conversation_ttl_seconds
            ),
            conversation_max_messages=_env_int(
                "AGENTWORKER_CONVERSATION_MAX_MESSAGES", d.conversation_max_messages
            ),
            max_tool_iterations=_env_int("AGENTWORKER_MAX_TOOL_ITERATIONS", d.max_tool_iterations),
            gateway_timeout_seconds=_env_float(
                "AGENTWORKER_GATEWAY_TIMEOUT", d.gateway_timeout_seconds
            ),
            gateway_max_attempts=_env_int("AGENTWORKER_GATEWAY_ATTEMPTS", d.gateway_max_attempts),
            gateway_backoff_min=_env_float("AGENTWORKER_GATEWAY_BACKOFF_MIN", d.gateway_backoff_min),
            gateway_backoff_max=_env_float("AGENTWORKER_GATEWAY_BACKOFF_MAX", d.gateway_backoff_max),
            billing_markup=_env_float("AGENTWORKER_BILLING_MARKUP", d.billing_markup),
            core_service_url=_env_str("CORE_SERVICE_URL", d.core_service_url),
            internal_service_token=_env_str("INTERNAL_SERVICE_TOKEN", d.internal_service_token),
            api_url=_env_str("API_URL", d.api_url),
            log_streaming_url=_env_str("LOG_STREAMING_URL", d.log_streaming_url),
            projects_root=_env_str("AGENTWORKER_PROJECTS_ROOT", d.projects_root),
            sink_timeout_seconds=_env_float("AGENTWORKER_SINK_TIMEOUT", d.sink_timeout_seconds),
            run_worker_in_api=_env_bool("AGENTWORKER_RUN_WORKER", d.run_worker_in_api),
            reaper_interval_seconds=_env_float(
                "AGENTWORKER_REAPER_INTERVAL", d.reaper_interval_seconds
            ),
            shutdown_grace_seconds=_env_float(
                "AGENTWORKER_SHUTDOWN_GRACE", d.shutdown_grace_seconds
            ),
            cors_origins=tuple(o.strip() for o in cors.split(",") if o.strip()),
        )
