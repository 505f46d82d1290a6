"""Error taxonomy surfaced at the HTTP edge.

Core components return explicit results (token validation outcomes, identity
or missing identity, admission decisions, ``None`` for not-found). These
exceptions are raised only where a result has to become an HTTP response, and
for genuine failures such as persistence errors.
"""

import logging
import math
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TaskTrackerError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "TASK_TRACKER_ERROR"
    default_message = "Internal Server Error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def headers(self) -> dict[str, str]:
        return {}


class AuthenticationFailure(TaskTrackerError):
    """Missing, malformed, expired or otherwise invalid credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTHENTICATION_FAILED"
    default_message = "Authentication failed"

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class AuthorizationFailure(TaskTrackerError):
    """A validated token that does not carry an identity."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "USER_NOT_FOUND"
    default_message = "User Not Found"


class RateLimited(TaskTrackerError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMITED"
    default_message = "Too many requests; try again later"

    def __init__(self, retry_after: float, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after

    def headers(self) -> dict[str, str]:
        # Retry-After takes whole seconds; never advertise 0 for a rejection
        return {"Retry-After": str(max(1, math.ceil(self.retry_after)))}


class StoreFailure(TaskTrackerError):
    """The task or user store could not complete an operation."""

    error_code = "STORE_FAILURE"
    default_message = "Storage operation failed"


class SigningKeyMissing(TaskTrackerError):
    error_code = "SIGNING_KEY_MISSING"
    default_message = "JWT signing key is not configured"


def _request_id(request: Request) -> str:
    return request.headers.get("X-Request-ID") or uuid.uuid4().hex


def _problem(request: Request, status_code: int, title: str, detail: str, type_: str):
    return {
        "type": type_,
        "title": title,
        "detail": detail,
        "status": status_code,
        "request_id": _request_id(request),
    }


async def task_tracker_error_handler(request: Request, exc: TaskTrackerError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=_problem(request, exc.status_code, exc.error_code, exc.message, type(exc).__name__),
        headers=exc.headers(),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_problem(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "an error occurred",
            "Internal Server Error",
            type(exc).__name__,
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskTrackerError, task_tracker_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
