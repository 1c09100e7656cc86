import logging
from contextlib import contextmanager
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """An error that maps onto one JSON envelope and one HTTP status"""

    status_code = 500

    def __init__(self, status_code: Optional[int] = None, message: str = "Something went wrong", error: Any = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.message = message
        self.error = error


class ValidationFailed(ServiceError):
    status_code = 400

    def __init__(self, message: str, error: Any = None):
        super().__init__(None, message, error)


class NotAuthenticated(ServiceError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(None, message)


class Forbidden(ServiceError):
    status_code = 403

    def __init__(self, message: str = "Forbidden: Admin privileges required"):
        super().__init__(None, message)


class NotFound(ServiceError):
    status_code = 404

    def __init__(self, message: str):
        super().__init__(None, message)


class Conflict(ServiceError):
    status_code = 409

    def __init__(self, message: str):
        super().__init__(None, message)


class GatewayError(ServiceError):
    """The payment gateway answered, but not with a success"""

    status_code = 500

    def __init__(self, message: str, error: Any = None):
        super().__init__(None, message, error)


class PersistenceError(ServiceError):
    status_code = 500

    def __init__(self, message: str, error: Any = None):
        super().__init__(None, message, error)


@contextmanager
def persistence_guard(message: str):
    """
    Operation boundary for database work.

    ServiceErrors pass through untouched; anything else is logged and turned
    into a 500 carrying `message` and the underlying error text.
    """
    try:
        yield
    except ServiceError:
        raise
    except Exception as e:
        logger.exception(message)
        raise PersistenceError(message, error=str(e))


def envelope(exc: ServiceError) -> dict:
    body = {"success": False, "message": exc.message}
    if exc.error is not None:
        body["error"] = exc.error
    return body


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=envelope(exc))
