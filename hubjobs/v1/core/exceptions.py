import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from hubjobs.config.logging import add_request_context, get_logger

logger = get_logger(__name__)


class HubJobsException(Exception):
    """Base exception for the job processing service."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(HubJobsException):
    """Raised when an engine is configured inconsistently (duplicate names, bad cron)."""

    status_code = status.HTTP_409_CONFLICT


class ValidationError(HubJobsException):
    """Raised when input validation fails."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidCronExpressionError(ConfigurationError, ValidationError):
    """Raised when a cron expression cannot be parsed."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(HubJobsException):
    """Raised when a job, queue or schedule is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class StoreError(HubJobsException):
    """Raised when the job record store cannot be read or written."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class HandlerError(HubJobsException):
    """A queue handler raised while processing a job."""

    def __init__(self, message: str, job_id: str, attempts: int, max_attempts: int):
        super().__init__(
            message,
            {"job_id": job_id, "attempts": attempts, "max_attempts": max_attempts},
        )
        self.job_id = job_id
        self.attempts = attempts
        self.max_attempts = max_attempts


class TransientHandlerError(HandlerError):
    """Handler failed with attempts remaining; the job will be retried."""


class PermanentHandlerError(HandlerError):
    """Handler failed on its last attempt; the job is marked failed."""


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def _error_json(
    request: Request,
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(status_code, message, details, request_id),
    )


async def hubjobs_exception_handler(request: Request, exc: HubJobsException) -> JSONResponse:
    """Render service exceptions; 5xx are logged as errors, 4xx as warnings."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
    )
    return _error_json(request, exc.status_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning("HTTP exception", status_code=exc.status_code, detail=exc.detail)
    return _error_json(request, exc.status_code, str(exc.detail))


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Body and query validation failures, in the same envelope as everything else."""
    errors = jsonable_encoder(exc.errors())
    logger.warning("Request validation failed", errors=errors)
    return _error_json(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Request validation failed",
        {"errors": errors},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        exc_info=exc,
    )
    return _error_json(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns each request an id, binds it to the log context and echoes it as X-Request-ID."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        add_request_context(request_id=request_id, method=request.method, path=request.url.path)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
