"""structlog over stdlib logging, shared by the API process and the workers.

Level and renderer come from ``AGENTWORKER_LOG_LEVEL`` (default ``INFO``) and
``AGENTWORKER_LOG_FORMAT`` (``console`` or ``json``) unless the caller passes
them. Long string values (model output, tool results) are cut to
``AGENTWORKER_LOG_MAX_VALUE`` characters so one run cannot flood the log.
"""

from __future__ import annotations

import logging
import logging.config
import os
from typing import Any

import structlog

_QUIET_LOGGERS = {
    "uvicorn.access": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "asyncpg": "WARNING",
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "LiteLLM": "WARNING",
    "mcp": "WARNING",
}


def _cap_long_values(limit: int) -> structlog.types.Processor:
    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in event_dict.items():
            if key != "exception" and isinstance(value, str) and len(value) > limit:
                event_dict[key] = f"{value[:limit]}... [{len(value)} chars]"
        return event_dict

    return processor


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog and the stdlib root logger."""
    level = (level or os.environ.get("AGENTWORKER_LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.environ.get("AGENTWORKER_LOG_FORMAT", "console")).lower()
    max_value = int(os.environ.get("AGENTWORKER_LOG_MAX_VALUE", "2000"))

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _cap_long_values(max_value),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    loggers: dict[str, dict[str, str]] = {"agentworker": {"level": level}}
    loggers.update({name: {"level": lvl} for name, lvl in _QUIET_LOGGERS.items()})

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structlog": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": pre_chain,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        renderer,
                    ],
                },
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "formatter": "structlog",
                },
            },
            "root": {"handlers": ["stdout"], "level": level},
            "loggers": loggers,
        }
    )
