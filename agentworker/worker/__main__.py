"""Standalone execution worker.

Usage:
    python -m agentworker.worker            # consume until SIGINT/SIGTERM
    python -m agentworker.worker --once     # process at most one queued item

Run several of these against the same database to scale horizontally.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from agentworker.core.config import Settings
from agentworker.core.logging import setup_logging
from agentworker.worker.runtime import build_runtime

log = structlog.get_logger("agentworker.worker")


async def _run(once: bool, pop_timeout: float | None) -> int:
    settings = Settings.from_env()
    if settings.store_backend == "memory":
        print("A standalone worker needs a shared store; set AGENTWORKER_STORE=sql.", file=sys.stderr)
        return 2

    runtime = await build_runtime(settings)
    try:
        if once:
            handled = await runtime.worker.run_once(timeout=pop_timeout)
            if not handled:
                print("Queue empty.", file=sys.stderr)
            return 0

        supervisor = runtime.build_supervisor()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await supervisor.start()
        await stop.wait()
        log.info("worker.shutdown_requested")
        await supervisor.stop(grace_seconds=settings.shutdown_grace_seconds)
        return 0
    finally:
        await runtime.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run an agent execution worker")
    parser.add_argument("--once", action="store_true", help="Process at most one queued item, then exit")
    parser.add_argument("--log-level", default=None, help="Override AGENTWORKER_LOG_LEVEL")
    parser.add_argument(
        "--pop-timeout",
        type=float,
        default=None,
        help="Seconds to wait for an item with --once (default: AGENTWORKER_POP_TIMEOUT)",
    )
    args = parser.parse_args()

    setup_logging(level=args.log_level)
    sys.exit(asyncio.run(_run(args.once, args.pop_timeout)))


if __name__ == "__main__":
    main()
