"""Request id middleware.

An inbound ``X-Request-ID`` made of safe characters is kept so ids minted
by an upstream gateway survive; anything else is replaced with a UUID4.
Intake reuses the id as the run's correlation id.
"""

from __future__ import annotations

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

log = structlog.get_logger("agentworker.api")

REQUEST_ID_HEADER = "X-Request-ID"
_SAFE_ID = re.compile(r"[A-Za-z0-9._:-]{8,64}")
_UNLOGGED_PATHS = frozenset({"/health"})


def resolve_request_id(raw: str | None) -> str:
    if raw and _SAFE_ID.fullmatch(raw):
        return raw
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        path = request.url.path

        tokens = structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=path
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            log.exception("request.failed", duration_ms=_elapsed_ms(started))
            raise
        finally:
            structlog.contextvars.reset_contextvars(**tokens)

        if path not in _UNLOGGED_PATHS:
            log.info(
                "request.completed",
                request_id=request_id,
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=_elapsed_ms(started),
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)
