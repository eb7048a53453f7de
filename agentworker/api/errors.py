"""Maps service-layer exceptions to JSON error responses.

Bodies are ``{"detail": ..., "requestId": ...}`` so a caller can quote the
id that also tags the worker log lines of the run it submitted.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agentworker.services import (
    AuthenticationError,
    ConflictError,
    CoreServiceError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
    StoreUnavailableError,
    ValidationError,
)

log = structlog.get_logger("agentworker.api")

_STATUS_MAP: dict[type[ServiceError], int] = {
    AuthenticationError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    ValidationError: 422,
    CoreServiceError: 502,
    StoreUnavailableError: 503,
}

STORE_RETRY_AFTER_SECONDS = 5


def status_for(exc: ServiceError) -> int:
    """Most specific mapped status along the MRO, else 500."""
    return next((_STATUS_MAP[cls] for cls in type(exc).__mro__ if cls in _STATUS_MAP), 500)


def _body(request: Request, detail: str) -> dict[str, str | None]:
    return {"detail": detail, "requestId": getattr(request.state, "request_id", None)}


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status = status_for(exc)
    headers = None
    if status >= 500:
        log.warning("request.upstream_failed", status=status, error=str(exc))
        if isinstance(exc, StoreUnavailableError):
            headers = {"Retry-After": str(STORE_RETRY_AFTER_SECONDS)}
    return JSONResponse(status_code=status, content=_body(request, str(exc)), headers=headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # loc is e.g. ("body", "cardId"); drop the "body" prefix.
    messages = [
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(status_code=422, content=_body(request, "; ".join(messages)))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
