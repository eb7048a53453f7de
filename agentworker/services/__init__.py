"""Service layer errors shared by the worker, the clients and the API."""


class ServiceError(Exception):
    """Base service exception."""


class NotFoundError(ServiceError):
    """Resource not found (-> HTTP 404)."""


class ConflictError(ServiceError):
    """Business rule conflict (-> HTTP 409)."""


class ValidationError(ServiceError):
    """Input validation error (-> HTTP 422)."""


class AuthenticationError(ServiceError):
    """Authentication failure (-> HTTP 401)."""


class ForbiddenError(ServiceError):
    """Caller may not act on the resource (-> HTTP 403)."""


class StoreUnavailableError(ServiceError):
    """The queue or state store could not be reached (-> HTTP 503)."""


class CoreServiceError(ServiceError):
    """The core service rejected a request or could not be reached (-> HTTP 502)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RunContextError(ServiceError):
    """Card or project for a run could not be resolved; the run fails at once."""
