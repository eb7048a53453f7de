"""Execution intake, the worker loop and its supervisor."""

from agentworker.worker.intake import ExecutionIntake, new_run_id
from agentworker.worker.models import ExecutionRequest, IntakeResult, WorkerState
from agentworker.worker.supervisor import ActiveRunReaper, Supervisor
from agentworker.worker.worker import ExecutionWorker

__all__ = [
    "ActiveRunReaper",
    "ExecutionIntake",
    "ExecutionRequest",
    "ExecutionWorker",
    "IntakeResult",
    "Supervisor",
    "WorkerState",
    "new_run_id",
]
